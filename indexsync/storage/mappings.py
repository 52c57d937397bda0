"""
Schema mapping loader.

Reads per-document-type field schemas from a JSON file and applies the
configured ones to the index through the connector.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .connector import IndexConnector
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAPPING_FILE = Path(__file__).parent / "mapping.json"


class MappingLoader:
    """Apply field mappings for a fixed list of document types"""

    def __init__(
        self,
        connector: IndexConnector,
        index: str,
        types: Sequence[str],
        mapping_file: Optional[Union[str, Path]] = None
    ):
        self.connector = connector
        self.index = index
        self.types = list(types)
        self.mapping_file = Path(mapping_file) if mapping_file else DEFAULT_MAPPING_FILE
        self._mappings: Optional[Dict[str, Dict[str, str]]] = None

    @property
    def mappings(self) -> Dict[str, Dict[str, str]]:
        """Parsed mapping file, read on first use"""
        if self._mappings is None:
            self._mappings = self._read_mapping_file()
        return self._mappings

    def _read_mapping_file(self) -> Dict[str, Dict[str, str]]:
        try:
            with open(self.mapping_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read mapping file {self.mapping_file}: {e}", key="mapping.file") from e

        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise ConfigurationError(
                f"mapping file {self.mapping_file} must map document types to field schemas",
                key="mapping.file"
            )
        return data

    async def load(self) -> List[str]:
        """
        Apply the mapping of every configured type.

        Returns:
            Document types whose mapping was applied
        """
        applied = []
        for doc_type in self.types:
            schema = self.mappings.get(doc_type)
            if schema is None:
                logger.warning(f"No mapping for type '{doc_type}' in {self.mapping_file}")
                continue
            await self.connector.set_mapping(self.index, doc_type, schema)
            applied.append(doc_type)

        logger.info(f"Loaded mappings for {applied} into '{self.index}'")
        return applied
