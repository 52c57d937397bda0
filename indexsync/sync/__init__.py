"""
Incremental synchronization package for indexsync.

Provides lifecycle event models, per-document locking and the
synchronizer applying events to the index.
"""

from .events import EntityKind, EventType, LifecycleEvent
from .keyed_lock import KeyedLock
from .synchronizer import IncrementalSynchronizer, SyncMetrics, message_origin

__all__ = [
    "EntityKind",
    "EventType",
    "LifecycleEvent",
    "KeyedLock",
    "IncrementalSynchronizer",
    "SyncMetrics",
    "message_origin"
]
