"""
indexsync core package

Keeps a search index synchronized with a social system-of-record through
scheduled full reconciliation and incremental lifecycle events.
"""

__version__ = "1.0.0"

from .errors import ConfigurationError, ConnectivityError, IndexSyncError, NotFoundError, PartialBatchFailure
from .models import LocalEntity, RemoteDocument, SyncConfig

__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "IndexSyncError",
    "NotFoundError",
    "PartialBatchFailure",
    "LocalEntity",
    "RemoteDocument",
    "SyncConfig"
]
