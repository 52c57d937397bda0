"""
Error hierarchy for indexsync.

All project exceptions inherit from IndexSyncError so top-level boundaries
(CLI, scheduler loop, event handlers) can catch one type while deeper code
catches the specific failure:

    IndexSyncError
    ├── ConnectivityError       index or source-of-record unreachable
    ├── NotFoundError           update/delete of a missing document
    ├── PartialBatchFailure     some documents of a bulk request rejected
    └── ConfigurationError      missing or invalid required setting
"""

from typing import Dict, List, Optional


class IndexSyncError(Exception):
    """Base class for all indexsync errors."""


class ConnectivityError(IndexSyncError):
    """The index or the source-of-record could not be reached."""


class NotFoundError(IndexSyncError):
    """A document expected to exist in the index is missing."""

    def __init__(self, index: str, doc_type: str, doc_id: str):
        self.index = index
        self.doc_type = doc_type
        self.doc_id = doc_id
        super().__init__(f"Document {doc_type}/{doc_id} not found in index '{index}'")


class PartialBatchFailure(IndexSyncError):
    """Some entries of a bulk request were rejected."""

    def __init__(self, operation: str, failures: Dict[str, str], succeeded: int = 0):
        self.operation = operation
        self.failures = dict(failures)
        self.succeeded = succeeded
        super().__init__(
            f"{operation}: {len(self.failures)} of {len(self.failures) + succeeded} "
            f"entries failed ({', '.join(sorted(self.failures)[:10])})"
        )

    @property
    def failed_ids(self) -> List[str]:
        return sorted(self.failures)


class ConfigurationError(IndexSyncError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(f"{key}: {message}" if key else message)
