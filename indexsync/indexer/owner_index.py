"""
Bidirectional entity/owner bookkeeping for one reconciliation pass.
"""

from typing import Dict, Iterable, Iterator, List, Optional, Set


class OwnerIndex:
    """
    Maps entity IDs to owning users and back.

    Keeps three tables: entity -> primary owner, owner -> entities, and for
    multi-owner kinds entity -> all owners in discovery order. Every entity
    in the primary table has a matching reverse entry, and removal clears
    an entity from all tables at once.
    """

    def __init__(self, multi_owner: bool = False):
        self.multi_owner = multi_owner
        self._owner_by_entity: Dict[str, str] = {}
        self._entities_by_owner: Dict[str, Set[str]] = {}
        self._all_owners: Dict[str, List[str]] = {}

    def add(self, entity_id: str, owner_id: str) -> None:
        """
        Record that owner_id owns entity_id.

        The first owner seen becomes the primary owner. Further owners are
        appended to the all-owners list of multi-owner indexes and ignored
        otherwise.
        """
        if entity_id not in self._owner_by_entity:
            self._owner_by_entity[entity_id] = owner_id
            self._entities_by_owner.setdefault(owner_id, set()).add(entity_id)

        if self.multi_owner:
            owners = self._all_owners.setdefault(entity_id, [])
            if owner_id not in owners:
                owners.append(owner_id)

    def owner_of(self, entity_id: str) -> Optional[str]:
        return self._owner_by_entity.get(entity_id)

    def entities_of(self, owner_id: str) -> Set[str]:
        return set(self._entities_by_owner.get(owner_id, ()))

    def all_owners(self, entity_id: str) -> List[str]:
        """Every owner of an entity; the primary owner alone for single-owner indexes"""
        if self.multi_owner:
            return list(self._all_owners.get(entity_id, ()))
        owner = self._owner_by_entity.get(entity_id)
        return [owner] if owner is not None else []

    def remove(self, entity_id: str) -> None:
        owner = self._owner_by_entity.pop(entity_id, None)
        if owner is not None:
            entities = self._entities_by_owner.get(owner)
            if entities is not None:
                entities.discard(entity_id)
                if not entities:
                    del self._entities_by_owner[owner]
        self._all_owners.pop(entity_id, None)

    def remove_all(self, entity_ids: Iterable[str]) -> None:
        for entity_id in entity_ids:
            self.remove(entity_id)

    def retain(self, entity_ids: Iterable[str]) -> None:
        """Drop every entity not in entity_ids"""
        keep = set(entity_ids)
        self.remove_all([e for e in self._owner_by_entity if e not in keep])

    def group_by_owner(self) -> Dict[str, List[str]]:
        """Entities grouped under their primary owner, sorted for stable batches"""
        return {
            owner: sorted(entities)
            for owner, entities in sorted(self._entities_by_owner.items())
            if entities
        }

    def ids(self) -> Set[str]:
        return set(self._owner_by_entity)

    def owners(self) -> Set[str]:
        return set(self._entities_by_owner)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._owner_by_entity

    def __len__(self) -> int:
        return len(self._owner_by_entity)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._owner_by_entity))
