"""
Shared fixtures and test doubles for the indexsync test suite.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest

from indexsync.errors import ConnectivityError, NotFoundError
from indexsync.indexer.sources import EntitySource, SocialGraph
from indexsync.models.documents import ID_FIELD, BulkResult, LocalEntity, RemoteDocument, validate_document
from indexsync.storage.connector import IndexConnector


class InMemoryConnector(IndexConnector):
    """Dict-backed connector recording every mutating call"""

    def __init__(self, latency: float = 0.0):
        self.indexes: Dict[str, Dict[Tuple[str, str], Dict[str, Any]]] = {}
        self.mappings: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.calls: List[Tuple[str, str, Tuple[str, ...]]] = []
        self.failing: Set[str] = set()
        self.latency = latency
        self.closed = False

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            raise ConnectivityError(f"{operation} unavailable")

    async def _pause(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    @property
    def bulk_calls(self) -> List[Tuple[str, str, Tuple[str, ...]]]:
        return [call for call in self.calls if call[0].startswith("bulk_")]

    def documents(self, index: str, doc_type: str) -> Dict[str, Dict[str, Any]]:
        return {
            doc_id: doc for (t, doc_id), doc in self.indexes.get(index, {}).items() if t == doc_type
        }

    async def index_exists(self, name: str) -> bool:
        self._maybe_fail("index_exists")
        return name in self.indexes

    async def create_index(self, name: str) -> None:
        self._maybe_fail("create_index")
        self.indexes.setdefault(name, {})

    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[RemoteDocument]:
        self._maybe_fail("get")
        await self._pause()
        doc = self.indexes.get(index, {}).get((doc_type, doc_id))
        return RemoteDocument.from_payload(dict(doc)) if doc is not None else None

    async def add(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        self._maybe_fail("add")
        await self._pause()
        self.calls.append(("add", doc_type, (doc_id,)))
        self.indexes.setdefault(index, {})[(doc_type, doc_id)] = {**doc, ID_FIELD: doc_id}

    async def update(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        self._maybe_fail("update")
        await self._pause()
        stored = self.indexes.get(index, {}).get((doc_type, doc_id))
        if stored is None:
            raise NotFoundError(index, doc_type, doc_id)
        self.calls.append(("update", doc_type, (doc_id,)))
        stored.update(doc)

    async def delete(self, index: str, doc_type: str, doc_id: str) -> None:
        self._maybe_fail("delete")
        await self._pause()
        if index not in self.indexes:
            return
        if (doc_type, doc_id) not in self.indexes[index]:
            raise NotFoundError(index, doc_type, doc_id)
        self.calls.append(("delete", doc_type, (doc_id,)))
        del self.indexes[index][(doc_type, doc_id)]

    async def bulk_add(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        self._maybe_fail("bulk_add")
        self.calls.append(("bulk_add", doc_type, tuple(e.get(ID_FIELD) for e in entries)))
        result = BulkResult(operation="bulk_add", index=index, doc_type=doc_type, total_count=len(entries))
        store = self.indexes.setdefault(index, {})
        for doc in entries:
            problem = validate_document(doc)
            if problem:
                result.failures[str(doc.get(ID_FIELD))] = problem
                continue
            store[(doc_type, doc[ID_FIELD])] = dict(doc)
            result.succeeded.append(doc[ID_FIELD])
        return result

    async def bulk_update(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        self._maybe_fail("bulk_update")
        self.calls.append(("bulk_update", doc_type, tuple(e.get(ID_FIELD) for e in entries)))
        result = BulkResult(operation="bulk_update", index=index, doc_type=doc_type, total_count=len(entries))
        store = self.indexes.get(index, {})
        for doc in entries:
            stored = store.get((doc_type, doc.get(ID_FIELD)))
            if stored is None:
                result.failures[str(doc.get(ID_FIELD))] = "document not found"
                continue
            stored.update(doc)
            result.succeeded.append(doc[ID_FIELD])
        return result

    async def bulk_delete(self, index: str, doc_type: str, ids: Iterable[str]) -> BulkResult:
        self._maybe_fail("bulk_delete")
        ids = list(ids)
        self.calls.append(("bulk_delete", doc_type, tuple(ids)))
        result = BulkResult(operation="bulk_delete", index=index, doc_type=doc_type, total_count=len(ids))
        store = self.indexes.get(index, {})
        for doc_id in ids:
            if store.pop((doc_type, doc_id), None) is None:
                result.failures[doc_id] = "document not found"
            else:
                result.succeeded.append(doc_id)
        return result

    async def get_all(self, index: str, doc_type: str) -> List[RemoteDocument]:
        self._maybe_fail("get_all")
        return [RemoteDocument.from_payload(dict(doc)) for doc in self.documents(index, doc_type).values()]

    async def clear_index(self, index: str) -> None:
        self._maybe_fail("clear_index")
        self.calls.append(("clear_index", index, ()))
        self.indexes[index] = {}

    async def set_mapping(self, index: str, doc_type: str, schema: Dict[str, str]) -> None:
        self.indexes.setdefault(index, {})
        self.mappings[(index, doc_type)] = dict(schema)
        self.calls.append(("set_mapping", doc_type, tuple(schema)))

    async def close(self) -> None:
        self.closed = True


class FakeSource(EntitySource):
    """Source-of-record holding full documents and their owners"""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.owners: Dict[str, List[str]] = {}
        self.fetch_calls: List[Tuple[str, Tuple[str, ...]]] = []
        self.fail_list = False

    def put(self, doc_id: str, owners, updated: Optional[int] = None, **fields) -> Dict[str, Any]:
        if isinstance(owners, str):
            owners = [owners]
        doc = {ID_FIELD: doc_id, **fields}
        if updated is not None:
            doc["updated"] = updated
        self.docs[doc_id] = doc
        self.owners[doc_id] = list(owners)
        return doc

    def remove(self, doc_id: str) -> None:
        self.docs.pop(doc_id, None)
        self.owners.pop(doc_id, None)

    async def list_all(self, fields: Sequence[str] = ("id", "updated")) -> List[LocalEntity]:
        if self.fail_list:
            raise ConnectivityError("source unavailable")
        return [
            LocalEntity(id=doc_id, owner_ids=tuple(self.owners[doc_id]), updated=doc.get("updated"))
            for doc_id, doc in self.docs.items()
        ]

    async def fetch_full(self, owner_id: str, ids: Sequence[str]) -> List[Dict[str, Any]]:
        self.fetch_calls.append((owner_id, tuple(ids)))
        return [
            dict(self.docs[doc_id]) for doc_id in ids
            if doc_id in self.docs and owner_id in self.owners[doc_id]
        ]


class FakeSocialGraph(SocialGraph):
    def __init__(self, friends: Optional[Dict[str, List[str]]] = None):
        self.friends = friends or {}
        self.lookups: List[str] = []

    async def get_friend_ids(self, user_id: str) -> List[str]:
        self.lookups.append(user_id)
        return list(self.friends.get(user_id, []))


@pytest.fixture
def connector():
    return InMemoryConnector()


@pytest.fixture
def source():
    return FakeSource()
