"""
Diff calculation between source-of-record entities and indexed documents.

Produces the delete/add/update sets one reconciliation pass acts on.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from ..models.documents import LocalEntity, RemoteDocument

logger = logging.getLogger(__name__)


def is_changed(local_updated: Optional[int], remote_updated: Optional[int]) -> bool:
    """
    Decide whether an entity present on both sides needs re-indexing.

    Only a local timestamp strictly newer than the indexed one counts.
    A missing timestamp on either side means unchanged, so entities whose
    source never reports an update time are not refreshed by the crawler.
    """
    if local_updated is None or remote_updated is None:
        return False
    return local_updated > remote_updated


@dataclass
class DiffPlan:
    """
    Work of one reconciliation pass for one entity kind.
    """
    to_delete: Set[str] = field(default_factory=set)
    to_add: Set[str] = field(default_factory=set)
    to_update: Set[str] = field(default_factory=set)
    unchanged: Set[str] = field(default_factory=set)
    calculation_time: float = 0.0
    total_local: int = 0
    total_remote: int = 0

    @property
    def total_changes(self) -> int:
        """Total number of changes detected"""
        return len(self.to_delete) + len(self.to_add) + len(self.to_update)

    @property
    def is_empty(self) -> bool:
        return self.total_changes == 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "to_delete": len(self.to_delete),
            "to_add": len(self.to_add),
            "to_update": len(self.to_update),
            "unchanged": len(self.unchanged),
            "total_local": self.total_local,
            "total_remote": self.total_remote
        }


class DeltaCalculator:
    """Three-way diff of local entities against remote documents"""

    def calculate_diff(
        self,
        local_entities: Iterable[LocalEntity],
        remote_documents: Iterable[RemoteDocument]
    ) -> DiffPlan:
        """
        Calculate the diff between the source-of-record and the index.

        - Delete: indexed but no longer held by the source
        - Add: held by the source but not indexed
        - Update: on both sides with a strictly newer local timestamp

        Args:
            local_entities: Snapshots from the source-of-record
            remote_documents: Documents currently in the index

        Returns:
            DiffPlan with categorized IDs
        """
        start_time = time.perf_counter()

        local_updated: Dict[str, Optional[int]] = {}
        for entity in local_entities:
            # Duplicate rows (one per owner) keep the newest timestamp
            previous = local_updated.get(entity.id)
            if entity.id not in local_updated or (
                entity.updated is not None and (previous is None or entity.updated > previous)
            ):
                local_updated[entity.id] = entity.updated

        remote_updated: Dict[str, Optional[int]] = {}
        for doc in remote_documents:
            if not doc.id:
                logger.warning(f"Skipping indexed document without an id: {doc.body}")
                continue
            remote_updated[doc.id] = doc.updated

        local_ids = set(local_updated)
        remote_ids = set(remote_updated)

        plan = DiffPlan(
            to_delete=remote_ids - local_ids,
            to_add=local_ids - remote_ids,
            total_local=len(local_ids),
            total_remote=len(remote_ids)
        )

        for entity_id in local_ids & remote_ids:
            if is_changed(local_updated[entity_id], remote_updated[entity_id]):
                plan.to_update.add(entity_id)
            else:
                plan.unchanged.add(entity_id)

        plan.calculation_time = time.perf_counter() - start_time
        logger.debug(
            f"Diff: {len(plan.to_delete)} delete, {len(plan.to_add)} add, "
            f"{len(plan.to_update)} update, {len(plan.unchanged)} unchanged"
        )
        return plan
