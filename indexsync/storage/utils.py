"""
Storage utilities shared by the index connectors.

Provides the canonical document to Qdrant point ID conversion and the
payload bookkeeping that lets one collection hold several document types.
"""

import hashlib
import json
from typing import Any, Dict

# Payload key holding the document type; keys starting with "_" never
# surface in RemoteDocument bodies
DOC_TYPE_KEY = "_doc_type"

# Vectors are unused; every point carries this constant one
PLACEHOLDER_VECTOR = [1.0]


def document_point_id(doc_type: str, doc_id: str) -> int:
    """
    Convert a typed document ID to a Qdrant point ID using SHA256 hashing.

    Args:
        doc_type: Document type (e.g., "person")
        doc_id: Document identifier within that type

    Returns:
        Unsigned 64-bit integer point ID

    Example:
        >>> document_point_id("person", "john.doe") == document_point_id("person", "john.doe")
        True
    """
    hash_digest = hashlib.sha256(f"{doc_type}:{doc_id}".encode('utf-8')).digest()
    return int.from_bytes(hash_digest[:8], byteorder='big', signed=False)


def to_payload(doc_type: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the document type to a document body"""
    payload = dict(doc)
    payload[DOC_TYPE_KEY] = doc_type
    return payload


def payload_size(doc: Dict[str, Any]) -> int:
    """Approximate wire size of a document in bytes"""
    return len(json.dumps(doc, default=str).encode('utf-8'))
