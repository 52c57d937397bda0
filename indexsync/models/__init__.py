"""
Data models for indexsync.
"""

from .config import (
    BulkingConfig, ConnectorConfig, EntityKindConfig, GlobalSettings,
    MappingConfig, QdrantConfig, ScheduleMode, ScheduleSpec, SyncConfig
)
from .documents import BulkResult, LocalEntity, RemoteDocument, to_epoch_millis

__all__ = [
    "BulkingConfig",
    "ConnectorConfig",
    "EntityKindConfig",
    "GlobalSettings",
    "MappingConfig",
    "QdrantConfig",
    "ScheduleMode",
    "ScheduleSpec",
    "SyncConfig",
    "BulkResult",
    "LocalEntity",
    "RemoteDocument",
    "to_epoch_millis"
]
