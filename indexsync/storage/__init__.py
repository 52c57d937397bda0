"""
Storage package for indexsync.

Provides the index connector contract, the eager and batching Qdrant
connectors and the schema mapping loader.
"""

from .connector import IndexConnector, QdrantIndexConnector
from .bulking import BulkingIndexConnector
from .factory import create_connector
from .mappings import MappingLoader

__all__ = [
    "IndexConnector",
    "QdrantIndexConnector",
    "BulkingIndexConnector",
    "create_connector",
    "MappingLoader"
]
