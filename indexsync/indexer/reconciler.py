"""
Full reconciliation of one entity kind against the index.

A pass loads every entity from the source-of-record and every document
from the index, diffs them, and repairs the index with at most one bulk
delete, one bulk add and one bulk update. Each phase is best-effort: a
failure is logged and the remaining phases still run.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from .delta_calculator import DeltaCalculator, DiffPlan
from .owner_index import OwnerIndex
from .sources import MINIMAL_FIELDS, EntitySource
from ..models.documents import ID_FIELD, ORIGIN_FIELD, UPDATED_FIELD, BulkResult, LocalEntity, to_epoch_millis
from ..storage.connector import IndexConnector

logger = logging.getLogger(__name__)

Enricher = Callable[[str, List[Dict[str, Any]]], Awaitable[List[Dict[str, Any]]]]


@dataclass
class EntityKindSpec:
    """
    Capabilities that parameterize the generic reconciliation pass.

    Attributes:
        name: Kind name used in logs and results ("profiles", ...)
        index: Target index
        doc_type: Document type within the index
        source: Source-of-record access for this kind
        multi_owner: Entities belong to several users; "origin" holds the union
        stamp_origin: Single-owner documents get "origin" = [owner]
        enricher: Optional hook adding fields (e.g. an access whitelist) per owner
    """
    name: str
    index: str
    doc_type: str
    source: EntitySource
    multi_owner: bool = False
    stamp_origin: bool = False
    enricher: Optional[Enricher] = None


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass for one kind"""
    kind: str
    deleted: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    bulk_operations: int = 0
    errors: List[str] = field(default_factory=list)
    plan: Optional[DiffPlan] = None
    processing_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "success": self.success,
            "deleted": self.deleted,
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "bulk_operations": self.bulk_operations,
            "errors": list(self.errors),
            "plan": self.plan.to_dict() if self.plan else None,
            "processing_time_ms": self.processing_time_ms
        }


class Reconciler:
    """
    Generic three-way reconciliation for one entity kind.

    Holds no state between passes; the owner index and diff plan are
    rebuilt from the source-of-record and the index every time.
    """

    def __init__(self, kind: EntityKindSpec, connector: IndexConnector):
        """
        Initialize reconciler.

        Args:
            kind: Entity kind capabilities and target
            connector: Index connector shared with the incremental synchronizer
        """
        self.kind = kind
        self.connector = connector
        self._calculator = DeltaCalculator()

    @property
    def name(self) -> str:
        return self.kind.name

    def _build_owner_index(self, entities: Sequence[LocalEntity]) -> OwnerIndex:
        owners = OwnerIndex(multi_owner=self.kind.multi_owner)
        for entity in entities:
            for owner_id in entity.owner_ids:
                owners.add(entity.id, owner_id)
        return owners

    def _record_error(self, result: ReconcileResult, phase: str, error: Exception) -> None:
        message = f"{self.name} {phase} phase failed: {error}"
        result.errors.append(message)
        logger.error(message)

    def _record_bulk(self, result: ReconcileResult, bulk: BulkResult) -> int:
        result.bulk_operations += 1
        result.failed += len(bulk.failures)
        return len(bulk.succeeded)

    async def _fetch_documents(
        self,
        owners: OwnerIndex,
        ids: Set[str],
        result: ReconcileResult
    ) -> List[Dict[str, Any]]:
        """
        Fetch full documents for ids, one source request per owner.

        Multi-owner documents get the union of all owners as "origin"
        regardless of which owner they were fetched through.
        """
        documents = []
        for owner_id, entity_ids in owners.group_by_owner().items():
            wanted = [entity_id for entity_id in entity_ids if entity_id in ids]
            if not wanted:
                continue

            try:
                docs = await self.kind.source.fetch_full(owner_id, wanted)
                docs = [dict(doc) for doc in docs]
                if self.kind.enricher is not None:
                    docs = await self.kind.enricher(owner_id, docs)
            except Exception as e:
                self._record_error(result, f"fetch ({owner_id})", e)
                continue

            for doc in docs:
                if UPDATED_FIELD in doc:
                    doc[UPDATED_FIELD] = to_epoch_millis(doc[UPDATED_FIELD])
                doc_id = doc.get(ID_FIELD)
                if self.kind.multi_owner:
                    doc[ORIGIN_FIELD] = owners.all_owners(doc_id) or [owner_id]
                elif self.kind.stamp_origin:
                    doc[ORIGIN_FIELD] = [owner_id]
                documents.append(doc)

        return documents

    async def reconcile(self) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Returns:
            ReconcileResult with per-phase counts and errors
        """
        start_time = time.perf_counter()
        result = ReconcileResult(kind=self.name)
        index, doc_type = self.kind.index, self.kind.doc_type

        logger.info(f"Reconciling {self.name} ({index}/{doc_type})")

        # Load
        try:
            local_entities = await self.kind.source.list_all(MINIMAL_FIELDS)
            remote_documents = await self.connector.get_all(index, doc_type)
        except Exception as e:
            self._record_error(result, "load", e)
            result.processing_time_ms = (time.perf_counter() - start_time) * 1000
            return result

        owners = self._build_owner_index(local_entities)
        plan = self._calculator.calculate_diff(local_entities, remote_documents)
        result.plan = plan
        result.unchanged = len(plan.unchanged)

        # Delete: indexed but gone from the source
        if plan.to_delete:
            try:
                bulk = await self.connector.bulk_delete(index, doc_type, sorted(plan.to_delete))
                result.deleted = self._record_bulk(result, bulk)
            except Exception as e:
                self._record_error(result, "delete", e)
            owners.remove_all(plan.to_delete)

        # Add: new in the source
        if plan.to_add:
            try:
                docs = await self._fetch_documents(owners, plan.to_add, result)
                if docs:
                    bulk = await self.connector.bulk_add(index, doc_type, docs)
                    result.added = self._record_bulk(result, bulk)
            except Exception as e:
                self._record_error(result, "add", e)
            owners.remove_all(plan.to_add)

        # Update: only entities with a strictly newer local timestamp remain
        owners.retain(plan.to_update)
        if len(owners):
            try:
                docs = await self._fetch_documents(owners, plan.to_update, result)
                if docs:
                    bulk = await self.connector.bulk_update(index, doc_type, docs)
                    result.updated = self._record_bulk(result, bulk)
            except Exception as e:
                self._record_error(result, "update", e)

        result.processing_time_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Reconciled {self.name}: {result.deleted} deleted, {result.added} added, "
            f"{result.updated} updated, {result.unchanged} unchanged "
            f"in {result.processing_time_ms:.1f}ms"
        )
        return result
