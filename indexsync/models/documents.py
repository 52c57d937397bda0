"""
Document models exchanged between the source-of-record and the index.

Covers local entity snapshots, stored index documents, bulk operation
results and the timestamp normalization both sides share.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

ID_FIELD = "id"
UPDATED_FIELD = "updated"
ORIGIN_FIELD = "origin"
WHITELIST_FIELD = "whitelist"


def to_epoch_millis(value: Any) -> Optional[int]:
    """
    Normalize a timestamp to epoch milliseconds.

    Args:
        value: Epoch milliseconds (int/float or digit string), a datetime,
            an ISO 8601 string, or None

    Returns:
        Epoch milliseconds, or None if the value is missing or unparseable
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip('-').isdigit():
            return int(text)
        try:
            # Handle ISO format with Z suffix
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            return int(datetime.fromisoformat(text).timestamp() * 1000)
        except ValueError:
            logger.warning(f"Invalid timestamp format: {value}")
            return None

    logger.warning(f"Unsupported timestamp type: {type(value)}")
    return None


class LocalEntity(BaseModel):
    """Minimal snapshot of an entity held by the source-of-record"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    owner_ids: Tuple[str, ...] = Field(min_length=1)
    updated: Optional[int] = None

    @field_validator('updated', mode='before')
    @classmethod
    def normalize_updated(cls, v: Any) -> Optional[int]:
        return to_epoch_millis(v)

    @property
    def owner_id(self) -> str:
        """Primary owner"""
        return self.owner_ids[0]


class RemoteDocument(BaseModel):
    """Document as stored in the index"""
    model_config = ConfigDict(frozen=True)

    id: str
    body: Dict[str, Any] = Field(default_factory=dict)

    @property
    def updated(self) -> Optional[int]:
        return to_epoch_millis(self.body.get(UPDATED_FIELD))

    @property
    def origin(self) -> Optional[List[str]]:
        origin = self.body.get(ORIGIN_FIELD)
        if origin is None:
            return None
        if isinstance(origin, str):
            return [origin]
        return list(origin)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'RemoteDocument':
        """Build from a stored payload, dropping connector bookkeeping keys"""
        body = {k: v for k, v in payload.items() if not k.startswith("_")}
        return cls(id=str(payload.get(ID_FIELD, "")), body=body)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.body)


def validate_document(doc: Any) -> Optional[str]:
    """
    Check that a document satisfies the index wire contract.

    Returns:
        None if valid, otherwise a description of the problem
    """
    if not isinstance(doc, dict):
        return f"document must be a mapping, got {type(doc).__name__}"

    doc_id = doc.get(ID_FIELD)
    if not isinstance(doc_id, str) or not doc_id:
        return "missing or empty 'id' field"

    try:
        json.dumps(doc)
    except (TypeError, ValueError) as e:
        return f"payload is not JSON-serializable: {e}"

    return None


class BulkResult(BaseModel):
    """Outcome of a bulk index operation"""

    operation: str
    index: str
    doc_type: str
    total_count: int = 0
    succeeded: List[str] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict)
    processing_time_ms: float = 0.0

    # Accepted into a batching queue, outcome logged at flush time
    deferred: bool = False

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def affected_count(self) -> int:
        return len(self.succeeded)

    def merge(self, other: 'BulkResult') -> 'BulkResult':
        """Fold another result for the same operation into this one"""
        self.total_count += other.total_count
        self.succeeded.extend(other.succeeded)
        self.failures.update(other.failures)
        self.processing_time_ms += other.processing_time_ms
        return self
