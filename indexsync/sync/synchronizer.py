"""
Incremental synchronization of single-entity lifecycle events.

Applies create, update and delete notifications to the index as they
arrive, keeping the denormalized "origin" owner list of messages correct.
Events for the same document are applied strictly in arrival order; events
for different documents run concurrently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .events import EntityKind, EventType, LifecycleEvent
from .keyed_lock import KeyedLock
from ..indexer.sources import EntitySource, WhitelistEnricher
from ..models.config import EntityKindConfig, SyncConfig
from ..models.documents import ID_FIELD, ORIGIN_FIELD, UPDATED_FIELD, to_epoch_millis
from ..storage.connector import IndexConnector

logger = logging.getLogger(__name__)


def message_origin(payload: Dict[str, Any], owner_id: Optional[str] = None) -> List[str]:
    """
    Owners of a newly indexed message.

    Recipients count once the message has been sent; the sender always does.
    """
    origin: List[str] = []
    recipients = payload.get('recipients') or []
    if payload.get('timeSent') is not None:
        origin.extend(str(r) for r in recipients)

    sender = payload.get('senderId') or owner_id
    if sender:
        origin.append(str(sender))
    return list(dict.fromkeys(origin))


@dataclass
class SyncMetrics:
    """Metrics of the incremental synchronizer."""
    events_processed: int = 0
    events_failed: int = 0
    events_ignored: int = 0

    documents_added: int = 0
    documents_updated: int = 0
    documents_deleted: int = 0

    avg_processing_time_ms: float = 0.0
    max_processing_time_ms: float = 0.0

    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None

    def record(self, result: Dict[str, Any]) -> None:
        operation = result.get("operation")
        if operation == "ignored":
            self.events_ignored += 1
            return

        self.events_processed += 1
        duration = result.get("duration_ms", 0.0)
        self.avg_processing_time_ms += (duration - self.avg_processing_time_ms) / self.events_processed
        self.max_processing_time_ms = max(self.max_processing_time_ms, duration)

        if not result.get("success"):
            self.events_failed += 1
            self.last_error_time = datetime.now()
            self.last_error_message = result.get("error")
        elif operation == "add":
            self.documents_added += 1
        elif operation == "update":
            self.documents_updated += 1
        elif operation == "delete":
            self.documents_deleted += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events_processed": self.events_processed,
            "events_failed": self.events_failed,
            "events_ignored": self.events_ignored,
            "documents_added": self.documents_added,
            "documents_updated": self.documents_updated,
            "documents_deleted": self.documents_deleted,
            "avg_processing_time_ms": self.avg_processing_time_ms,
            "max_processing_time_ms": self.max_processing_time_ms,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "last_error_message": self.last_error_message
        }


class IncrementalSynchronizer:
    """
    Applies lifecycle events to the index one document at a time.

    Every handled event yields a result dictionary with the operation
    performed ("add", "update", "delete", "noop" or "ignored"), success,
    error and duration. A failing event is logged and never affects other
    events.
    """

    def __init__(
        self,
        connector: IndexConnector,
        config: SyncConfig,
        profile_source: Optional[EntitySource] = None,
        whitelist: Optional[WhitelistEnricher] = None
    ):
        """
        Initialize synchronizer.

        Args:
            connector: Index connector shared with the crawler
            config: Index name, document types and feature switches
            profile_source: Re-reads profiles when their skills change
            whitelist: Access whitelist enrichment for activities
        """
        self.connector = connector
        self.config = config
        self.index = config.index
        self.profile_source = profile_source
        self.whitelist = whitelist if config.add_friends else None

        self._locks = KeyedLock()
        self.metrics = SyncMetrics()

        if config.skills_enabled and profile_source is None:
            logger.warning("Skill events require a profile source and will be ignored")

    def _kind_config(self, kind: EntityKind) -> EntityKindConfig:
        if kind == EntityKind.ACTIVITY:
            return self.config.activities
        if kind == EntityKind.MESSAGE:
            return self.config.messages
        return self.config.profiles

    def _accepts(self, event: LifecycleEvent) -> bool:
        if not self.config.handle_events or not self._kind_config(event.kind).enabled:
            return False
        if event.kind == EntityKind.SKILL:
            return self.config.skills_enabled and self.profile_source is not None
        return True

    async def handle_event(self, event: LifecycleEvent) -> Dict[str, Any]:
        """
        Apply one lifecycle event.

        Args:
            event: Event to apply

        Returns:
            Dictionary with operation results
        """
        if not self._accepts(event):
            result = {"operation": "ignored", "event": str(event), "success": True, "duration_ms": 0.0}
            self.metrics.record(result)
            return result

        doc_type = self._kind_config(event.kind).doc_type
        doc_id = event.document_id

        # Acquire before any other await to keep per-document arrival order
        async with self._locks.hold((doc_type, doc_id)):
            start_time = time.perf_counter()
            try:
                operation = await self._dispatch(event, doc_type, doc_id)
                result = {
                    "operation": operation,
                    "event": str(event),
                    "doc_type": doc_type,
                    "doc_id": doc_id,
                    "success": True
                }
                logger.debug(f"Applied {event}: {operation}")
            except Exception as e:
                error_msg = f"Error handling {event}: {e}"
                logger.error(error_msg)
                result = {
                    "operation": event.event_type.value,
                    "event": str(event),
                    "doc_type": doc_type,
                    "doc_id": doc_id,
                    "success": False,
                    "error": error_msg
                }
            result["duration_ms"] = (time.perf_counter() - start_time) * 1000

        self.metrics.record(result)
        return result

    async def handle_events(self, events: Iterable[LifecycleEvent]) -> List[Dict[str, Any]]:
        """Apply events concurrently, ordered per document."""
        return await asyncio.gather(*(self.handle_event(event) for event in events))

    async def _dispatch(self, event: LifecycleEvent, doc_type: str, doc_id: str) -> str:
        if event.kind == EntityKind.SKILL:
            return await self._skills_changed(event, doc_type, doc_id)

        if event.kind == EntityKind.MESSAGE:
            if event.event_type == EventType.CREATED:
                return await self._add(doc_type, doc_id, await self._message_document(event, doc_type, doc_id))
            if event.event_type == EventType.UPDATED:
                return await self._update_or_add(doc_type, doc_id, await self._message_document(event, doc_type, doc_id))
            return await self._message_deleted(event, doc_type, doc_id)

        if event.event_type == EventType.DELETED:
            return await self._delete_if_present(doc_type, doc_id)

        if event.kind == EntityKind.ACTIVITY:
            doc = await self._activity_document(event)
        else:
            doc = self._document(event.payload)

        if event.event_type == EventType.CREATED:
            return await self._add(doc_type, doc_id, doc)
        return await self._update_or_add(doc_type, doc_id, doc)

    @staticmethod
    def _document(payload: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(payload)
        if UPDATED_FIELD in doc:
            doc[UPDATED_FIELD] = to_epoch_millis(doc[UPDATED_FIELD])
        return doc

    async def _activity_document(self, event: LifecycleEvent) -> Dict[str, Any]:
        doc = self._document(event.payload)
        owner_id = event.owner_id
        if owner_id:
            doc[ORIGIN_FIELD] = [owner_id]
        for key in ('groupId', 'appId'):
            if event.properties.get(key) is not None:
                doc[key] = event.properties[key]

        if self.whitelist is not None and owner_id:
            try:
                await self.whitelist(owner_id, [doc])
            except Exception as e:
                logger.warning(f"Could not build whitelist for {owner_id}, indexing without it: {e}")
        return doc

    async def _message_document(self, event: LifecycleEvent, doc_type: str, doc_id: str) -> Dict[str, Any]:
        doc = self._document(event.payload)
        if event.properties.get('messageCollectionId') is not None:
            doc['messageCollection'] = event.properties['messageCollectionId']
        if event.properties.get('appId') is not None:
            doc['appId'] = event.properties['appId']

        if event.event_type == EventType.UPDATED:
            # Update payloads do not carry the owner union; keep the stored one
            existing = await self.connector.get(self.index, doc_type, doc_id)
            if existing is not None and existing.origin is not None:
                doc[ORIGIN_FIELD] = existing.origin
                return doc

        doc[ORIGIN_FIELD] = message_origin(event.payload, event.owner_id)
        return doc

    async def _add(self, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> str:
        await self.connector.add(self.index, doc_type, doc_id, doc)
        return "add"

    async def _update_or_add(self, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> str:
        if await self.connector.entry_exists(self.index, doc_type, doc_id):
            await self.connector.update(self.index, doc_type, doc_id, doc)
            return "update"

        logger.info(f"{doc_type}/{doc_id} missing from index, adding instead of updating")
        await self.connector.add(self.index, doc_type, doc_id, doc)
        return "add"

    async def _delete_if_present(self, doc_type: str, doc_id: str) -> str:
        if not await self.connector.entry_exists(self.index, doc_type, doc_id):
            return "noop"
        await self.connector.delete(self.index, doc_type, doc_id)
        return "delete"

    async def _message_deleted(self, event: LifecycleEvent, doc_type: str, doc_id: str) -> str:
        existing = await self.connector.get(self.index, doc_type, doc_id)
        if existing is None:
            return "noop"

        user_id = event.owner_id
        if user_id is None:
            logger.warning(f"Delete of {doc_type}/{doc_id} names no user, keeping current origin")
        remaining = [owner for owner in (existing.origin or []) if owner != user_id]
        if remaining:
            await self.connector.update(self.index, doc_type, doc_id, {ID_FIELD: doc_id, ORIGIN_FIELD: remaining})
            return "update"

        await self.connector.delete(self.index, doc_type, doc_id)
        return "delete"

    async def _skills_changed(self, event: LifecycleEvent, doc_type: str, user_id: str) -> str:
        profile = await self.profile_source.fetch_one(user_id, user_id)
        if profile is None:
            logger.warning(f"Profile {user_id} not found after skill change")
            return "noop"
        return await self._update_or_add(doc_type, user_id, self._document(profile))

    def get_status(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "handle_events": self.config.handle_events,
            "active_documents": len(self._locks),
            "metrics": self.metrics.to_dict()
        }
