"""
Batching index connector.

Queues mutations from any number of producers and flushes them to an eager
connector when the queue reaches a size limit, a payload limit, or the
flush interval elapses. Only one batch is in flight at a time so mutations
to the same document are applied in the order they were queued.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from itertools import groupby
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .connector import IndexConnector
from .utils import payload_size
from ..errors import ConnectivityError
from ..models.config import BulkingConfig
from ..models.documents import ID_FIELD, BulkResult, RemoteDocument, validate_document

logger = logging.getLogger(__name__)


@dataclass
class QueuedAction:
    """One pending mutation"""
    action: str  # add, update, delete
    index: str
    doc_type: str
    doc_id: str
    doc: Optional[Dict[str, Any]] = None
    size: int = 0

    @property
    def group_key(self):
        return (self.action, self.index, self.doc_type)


@dataclass
class BulkingMetrics:
    """Counters of the batching connector"""
    queued_actions: int = 0
    flushed_actions: int = 0
    failed_actions: int = 0
    flushes: int = 0
    failed_flushes: int = 0
    last_flush_duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queued_actions": self.queued_actions,
            "flushed_actions": self.flushed_actions,
            "failed_actions": self.failed_actions,
            "flushes": self.flushes,
            "failed_flushes": self.failed_flushes,
            "last_flush_duration_ms": self.last_flush_duration_ms
        }


class BulkingIndexConnector(IndexConnector):
    """
    Connector that batches mutations before handing them to an eager connector.

    Reads flush the queue first so callers always observe their own writes.
    Failures of individual queued documents are logged when the batch
    executes, so `update` and `delete` of a missing document do not raise
    `NotFoundError` here. Callers that need that check call `entry_exists`
    first. A flush whose request fails puts the unexecuted actions back at
    the head of the queue and re-raises; the next flush or `close` retries them.
    """

    def __init__(
        self,
        inner: IndexConnector,
        max_actions: int = 1000,
        max_bytes: int = 5 * 1024 * 1024,
        flush_interval: float = 5.0
    ):
        """
        Initialize the batching connector.

        Args:
            inner: Connector executing the flushed batches
            max_actions: Flush once this many actions are queued
            max_bytes: Flush once queued payloads reach this size
            flush_interval: Flush queued actions at least this often (seconds)
        """
        self.inner = inner
        self.max_actions = max_actions
        self.max_bytes = max_bytes
        self.flush_interval = flush_interval

        self._pending: List[QueuedAction] = []
        self._pending_bytes = 0
        self._last_flush = time.monotonic()

        # At most one batch in flight
        self._flush_lock = asyncio.Lock()
        self._closing = asyncio.Event()
        self._timer_task: Optional[asyncio.Task] = None
        self._closed = False

        self.metrics = BulkingMetrics()

        logger.info(
            f"Initialized BulkingIndexConnector (actions: {max_actions}, "
            f"bytes: {max_bytes}, interval: {flush_interval}s)"
        )

    @classmethod
    def from_config(cls, inner: IndexConnector, config: BulkingConfig) -> 'BulkingIndexConnector':
        return cls(
            inner,
            max_actions=config.actions,
            max_bytes=config.max_bytes,
            flush_interval=config.seconds
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _ensure_timer(self) -> None:
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.create_task(self._flush_periodically())

    async def _flush_periodically(self) -> None:
        """Background timer flushing queues that sat for a full interval"""
        while not self._closing.is_set():
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=self.flush_interval)
                break
            except asyncio.TimeoutError:
                pass

            if self._pending and time.monotonic() - self._last_flush >= self.flush_interval:
                try:
                    await self.flush()
                except Exception as e:
                    logger.error(f"Scheduled flush failed: {e}")

    async def _enqueue(self, actions: List[QueuedAction]) -> None:
        if self._closed:
            raise ConnectivityError("Connector is closed")

        self._pending.extend(actions)
        self._pending_bytes += sum(a.size for a in actions)
        self.metrics.queued_actions += len(actions)
        self._ensure_timer()

        if len(self._pending) >= self.max_actions or self._pending_bytes >= self.max_bytes:
            await self.flush()

    async def flush(self) -> List[BulkResult]:
        """
        Execute everything queued so far.

        Returns:
            One result per executed bulk request
        """
        async with self._flush_lock:
            batch, self._pending = self._pending, []
            self._pending_bytes = 0
            self._last_flush = time.monotonic()
            if not batch:
                return []

            start_time = time.perf_counter()
            results = []
            done = 0
            try:
                # Consecutive actions of the same kind travel as one bulk request
                for (action, index, doc_type), group in groupby(batch, key=lambda a: a.group_key):
                    group = list(group)
                    if action == "add":
                        result = await self.inner.bulk_add(index, doc_type, [a.doc for a in group])
                    elif action == "update":
                        result = await self.inner.bulk_update(index, doc_type, [a.doc for a in group])
                    else:
                        result = await self.inner.bulk_delete(index, doc_type, [a.doc_id for a in group])
                    results.append(result)
                    done += len(group)
                    self.metrics.flushed_actions += len(group)
                    self.metrics.failed_actions += len(result.failures)
            except Exception as e:
                self.metrics.failed_flushes += 1
                # Unexecuted actions go back ahead of anything queued meanwhile
                unexecuted = batch[done:]
                self._pending = unexecuted + self._pending
                self._pending_bytes = sum(a.size for a in self._pending)
                logger.error(
                    f"Flush failed after {done} of {len(batch)} actions, "
                    f"requeued {len(unexecuted)}: {e}"
                )
                raise

            self.metrics.flushes += 1
            self.metrics.last_flush_duration_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(f"Flushed {len(batch)} actions in {self.metrics.last_flush_duration_ms:.1f}ms")
            return results

    async def index_exists(self, name: str) -> bool:
        return await self.inner.index_exists(name)

    async def create_index(self, name: str) -> None:
        await self.inner.create_index(name)

    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[RemoteDocument]:
        await self.flush()
        return await self.inner.get(index, doc_type, doc_id)

    async def add(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        doc = {**doc, ID_FIELD: doc_id}
        problem = validate_document(doc)
        if problem:
            raise ValueError(f"Cannot index {doc_type}/{doc_id}: {problem}")
        await self._enqueue([QueuedAction("add", index, doc_type, doc_id, doc, payload_size(doc))])

    async def update(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        doc = {**doc, ID_FIELD: doc_id}
        problem = validate_document(doc)
        if problem:
            raise ValueError(f"Cannot update {doc_type}/{doc_id}: {problem}")
        await self._enqueue([QueuedAction("update", index, doc_type, doc_id, doc, payload_size(doc))])

    async def delete(self, index: str, doc_type: str, doc_id: str) -> None:
        await self._enqueue([QueuedAction("delete", index, doc_type, doc_id, size=len(doc_id))])

    async def _bulk_enqueue(
        self,
        action: str,
        index: str,
        doc_type: str,
        entries: Sequence[Dict[str, Any]]
    ) -> BulkResult:
        result = BulkResult(
            operation=f"bulk_{action}", index=index, doc_type=doc_type,
            total_count=len(entries), deferred=True
        )
        actions = []
        for position, doc in enumerate(entries):
            problem = validate_document(doc)
            if problem:
                key = doc.get(ID_FIELD) if isinstance(doc, dict) and doc.get(ID_FIELD) else f"#{position}"
                result.failures[str(key)] = problem
                continue
            actions.append(QueuedAction(action, index, doc_type, doc[ID_FIELD], doc, payload_size(doc)))
            result.succeeded.append(doc[ID_FIELD])

        if result.failures:
            logger.warning(f"Rejected {len(result.failures)} malformed {doc_type} documents: {result.failures}")
        if actions:
            await self._enqueue(actions)
        return result

    async def bulk_add(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        return await self._bulk_enqueue("add", index, doc_type, entries)

    async def bulk_update(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        return await self._bulk_enqueue("update", index, doc_type, entries)

    async def bulk_delete(self, index: str, doc_type: str, ids: Iterable[str]) -> BulkResult:
        ids = list(ids)
        await self._enqueue([QueuedAction("delete", index, doc_type, doc_id, size=len(doc_id)) for doc_id in ids])
        return BulkResult(
            operation="bulk_delete", index=index, doc_type=doc_type,
            total_count=len(ids), succeeded=ids, deferred=True
        )

    async def get_all(self, index: str, doc_type: str) -> List[RemoteDocument]:
        await self.flush()
        return await self.inner.get_all(index, doc_type)

    async def count(self, index: str, doc_type: str) -> int:
        await self.flush()
        return await self.inner.count(index, doc_type)

    async def clear_index(self, index: str) -> None:
        await self.flush()
        await self.inner.clear_index(index)

    async def set_mapping(self, index: str, doc_type: str, schema: Dict[str, str]) -> None:
        await self.inner.set_mapping(index, doc_type, schema)

    async def health_check(self) -> Dict[str, Any]:
        health = await self.inner.health_check()
        health["pending_actions"] = len(self._pending)
        return health

    def get_performance_metrics(self) -> Dict[str, Any]:
        metrics = self.metrics.to_dict()
        metrics["pending_actions"] = len(self._pending)
        return metrics

    async def close(self) -> None:
        """Drain the queue, stop the timer and close the inner connector"""
        if self._closed:
            return

        # The timer exits after any flush it has in flight
        self._closing.set()
        if self._timer_task is not None:
            await self._timer_task
        self._timer_task = None

        try:
            await self.flush()
        finally:
            if self._pending:
                logger.error(f"Closing with {len(self._pending)} unflushed actions")
            self._closed = True
            await self.inner.close()
            logger.info("Closed BulkingIndexConnector")
