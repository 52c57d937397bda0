"""
Index connectors for indexsync.

Defines the connector contract shared by the reconciliation engine and the
incremental synchronizer, and the eager Qdrant implementation that issues
one request per operation.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance, FieldCondition, Filter, MatchValue, PayloadSchemaType,
    PointStruct, VectorParams
)
from qdrant_client.http.models.models import PointIdsList
from qdrant_client.http.exceptions import ResponseHandlingException

from .utils import DOC_TYPE_KEY, PLACEHOLDER_VECTOR, document_point_id, to_payload
from ..errors import ConnectivityError, NotFoundError, PartialBatchFailure
from ..models.config import QdrantConfig
from ..models.documents import ID_FIELD, BulkResult, RemoteDocument, validate_document

logger = logging.getLogger(__name__)


class IndexConnector(ABC):
    """
    CRUD and bulk facade over the external index.

    Every operation may raise ConnectivityError; callers treat it as
    retryable at the next scheduled pass rather than retrying inline.
    """

    @abstractmethod
    async def index_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    async def create_index(self, name: str) -> None:
        """Create an index; an existing index counts as success"""

    @abstractmethod
    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[RemoteDocument]:
        ...

    async def entry_exists(self, index: str, doc_type: str, doc_id: str) -> bool:
        return await self.get(index, doc_type, doc_id) is not None

    @abstractmethod
    async def add(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        """Store a document, creating the index if needed and overwriting any previous version"""

    @abstractmethod
    async def update(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        """Merge fields into an existing document; raises NotFoundError if it is missing"""

    @abstractmethod
    async def delete(self, index: str, doc_type: str, doc_id: str) -> None:
        """Delete a document; no-op without index, NotFoundError without document"""

    @abstractmethod
    async def bulk_add(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        ...

    @abstractmethod
    async def bulk_update(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        ...

    @abstractmethod
    async def bulk_delete(self, index: str, doc_type: str, ids: Iterable[str]) -> BulkResult:
        ...

    @abstractmethod
    async def get_all(self, index: str, doc_type: str) -> List[RemoteDocument]:
        """Return every document of a type; empty if the index does not exist"""

    @abstractmethod
    async def clear_index(self, index: str) -> None:
        """Delete and recreate an index"""

    @abstractmethod
    async def set_mapping(self, index: str, doc_type: str, schema: Dict[str, str]) -> None:
        ...

    async def count(self, index: str, doc_type: str) -> int:
        return len(await self.get_all(index, doc_type))

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "unknown"}

    async def close(self) -> None:
        """Release the underlying connection"""

    async def __aenter__(self) -> 'IndexConnector':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class QdrantIndexConnector(IndexConnector):
    """
    Eager connector storing documents as Qdrant points.

    Each index is a collection; document types share it and are told apart
    by a payload key. Every call is one round-trip, which keeps behavior
    easy to follow for debugging and low volumes.
    """

    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        location: Optional[str] = None,
        scroll_batch_size: int = 256,
        client: Optional[QdrantClient] = None
    ):
        """
        Initialize the connector.

        Args:
            url: Qdrant server URL
            api_key: Optional API key for authentication
            timeout: Request timeout in seconds
            location: Embedded location such as ":memory:" (overrides url)
            scroll_batch_size: Page size used by get_all
            client: Pre-built client, mainly for tests
        """
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.location = location
        self.scroll_batch_size = scroll_batch_size

        self._client: Optional[QdrantClient] = client
        self._closed = False

        # Performance tracking
        self._total_requests = 0
        self._total_request_time = 0.0
        self._failed_requests = 0

        logger.info(f"Initialized QdrantIndexConnector: {location or url}")

    @classmethod
    def from_config(cls, config: QdrantConfig) -> 'QdrantIndexConnector':
        return cls(
            url=config.url,
            api_key=config.api_key,
            timeout=config.timeout,
            location=config.location,
            scroll_batch_size=config.scroll_batch_size
        )

    @property
    def client(self) -> QdrantClient:
        """Get Qdrant client instance"""
        if self._client is None:
            if self.location:
                self._client = QdrantClient(location=self.location)
            else:
                self._client = QdrantClient(
                    url=self.url,
                    api_key=self.api_key,
                    timeout=int(self.timeout)
                )
        return self._client

    async def _call(self, operation: str, func: Callable, *args, **kwargs) -> Any:
        """Run a blocking client call off the event loop, mapping transport failures"""
        start_time = time.time()
        self._total_requests += 1
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ResponseHandlingException, ConnectionError, TimeoutError) as e:
            self._failed_requests += 1
            raise ConnectivityError(f"{operation} failed: {e}") from e
        except Exception:
            self._failed_requests += 1
            raise
        finally:
            self._total_request_time += time.time() - start_time

    @staticmethod
    def _type_filter(doc_type: str) -> Filter:
        return Filter(must=[FieldCondition(key=DOC_TYPE_KEY, match=MatchValue(value=doc_type))])

    @staticmethod
    def _point(doc_type: str, doc: Dict[str, Any]) -> PointStruct:
        return PointStruct(
            id=document_point_id(doc_type, doc[ID_FIELD]),
            vector=PLACEHOLDER_VECTOR,
            payload=to_payload(doc_type, doc)
        )

    async def index_exists(self, name: str) -> bool:
        return await self._call("index_exists", self.client.collection_exists, collection_name=name)

    async def create_index(self, name: str) -> None:
        if await self.index_exists(name):
            return
        try:
            await self._call(
                "create_index",
                self.client.create_collection,
                collection_name=name,
                vectors_config=VectorParams(size=len(PLACEHOLDER_VECTOR), distance=Distance.DOT)
            )
            logger.info(f"Created index '{name}'")
        except ConnectivityError:
            raise
        except Exception as e:
            # Lost a creation race with another writer
            if "already exists" in str(e).lower():
                logger.debug(f"Index '{name}' already exists")
                return
            raise

    async def _fetch_payloads(self, index: str, doc_type: str, ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """Retrieve stored payloads keyed by document ID"""
        if not ids:
            return {}
        point_ids = [document_point_id(doc_type, doc_id) for doc_id in ids]
        records = await self._call(
            "retrieve",
            self.client.retrieve,
            collection_name=index,
            ids=point_ids,
            with_payload=True,
            with_vectors=False
        )
        payloads = {}
        for record in records:
            payload = record.payload or {}
            if payload.get(DOC_TYPE_KEY) == doc_type:
                payloads[str(payload.get(ID_FIELD))] = payload
        return payloads

    async def get(self, index: str, doc_type: str, doc_id: str) -> Optional[RemoteDocument]:
        if not await self.index_exists(index):
            return None
        payloads = await self._fetch_payloads(index, doc_type, [doc_id])
        payload = payloads.get(doc_id)
        return RemoteDocument.from_payload(payload) if payload is not None else None

    async def add(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        doc = {**doc, ID_FIELD: doc_id}
        problem = validate_document(doc)
        if problem:
            raise ValueError(f"Cannot index {doc_type}/{doc_id}: {problem}")

        await self.create_index(index)
        await self._call(
            "add",
            self.client.upsert,
            collection_name=index,
            points=[self._point(doc_type, doc)],
            wait=True
        )

    async def update(self, index: str, doc_type: str, doc_id: str, doc: Dict[str, Any]) -> None:
        if not await self.entry_exists(index, doc_type, doc_id):
            raise NotFoundError(index, doc_type, doc_id)

        doc = {**doc, ID_FIELD: doc_id}
        problem = validate_document(doc)
        if problem:
            raise ValueError(f"Cannot update {doc_type}/{doc_id}: {problem}")

        await self._call(
            "update",
            self.client.set_payload,
            collection_name=index,
            payload=to_payload(doc_type, doc),
            points=[document_point_id(doc_type, doc_id)],
            wait=True
        )

    async def delete(self, index: str, doc_type: str, doc_id: str) -> None:
        if not await self.index_exists(index):
            return
        if not await self._fetch_payloads(index, doc_type, [doc_id]):
            raise NotFoundError(index, doc_type, doc_id)

        await self._call(
            "delete",
            self.client.delete,
            collection_name=index,
            points_selector=PointIdsList(points=[document_point_id(doc_type, doc_id)]),
            wait=True
        )

    def _report(self, result: BulkResult) -> BulkResult:
        """Log partial failures of a bulk request"""
        if result.failures:
            logger.warning(str(PartialBatchFailure(
                f"{result.operation} {result.index}/{result.doc_type}",
                result.failures,
                succeeded=len(result.succeeded)
            )))
        return result

    async def _upsert_isolating_failures(
        self,
        operation: str,
        index: str,
        doc_type: str,
        docs: List[Dict[str, Any]],
        result: BulkResult
    ) -> None:
        """Upsert a batch; if the server rejects it, retry one by one so a bad document cannot block the rest"""
        if not docs:
            return
        try:
            await self._call(
                operation,
                self.client.upsert,
                collection_name=index,
                points=[self._point(doc_type, doc) for doc in docs],
                wait=True
            )
            result.succeeded.extend(doc[ID_FIELD] for doc in docs)
            return
        except ConnectivityError:
            raise
        except Exception as e:
            if len(docs) == 1:
                result.failures[docs[0][ID_FIELD]] = str(e)
                return
            logger.warning(f"{operation} batch of {len(docs)} rejected ({e}), retrying individually")

        for doc in docs:
            await self._upsert_isolating_failures(operation, index, doc_type, [doc], result)

    async def bulk_add(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        start_time = time.perf_counter()
        result = BulkResult(operation="bulk_add", index=index, doc_type=doc_type, total_count=len(entries))
        if not entries:
            return result

        valid_docs = []
        for position, doc in enumerate(entries):
            problem = validate_document(doc)
            if problem:
                key = doc.get(ID_FIELD) if isinstance(doc, dict) and doc.get(ID_FIELD) else f"#{position}"
                result.failures[str(key)] = problem
            else:
                valid_docs.append(doc)

        if valid_docs:
            await self.create_index(index)
            await self._upsert_isolating_failures("bulk_add", index, doc_type, valid_docs, result)

        result.processing_time_ms = (time.perf_counter() - start_time) * 1000
        return self._report(result)

    async def bulk_update(self, index: str, doc_type: str, entries: Sequence[Dict[str, Any]]) -> BulkResult:
        start_time = time.perf_counter()
        result = BulkResult(operation="bulk_update", index=index, doc_type=doc_type, total_count=len(entries))
        if not entries:
            return result

        valid_docs = []
        for position, doc in enumerate(entries):
            problem = validate_document(doc)
            if problem:
                key = doc.get(ID_FIELD) if isinstance(doc, dict) and doc.get(ID_FIELD) else f"#{position}"
                result.failures[str(key)] = problem
            else:
                valid_docs.append(doc)

        existing: Dict[str, Dict[str, Any]] = {}
        if valid_docs and await self.index_exists(index):
            existing = await self._fetch_payloads(index, doc_type, [doc[ID_FIELD] for doc in valid_docs])

        # Partial update: merge new fields over the stored document
        merged_docs = []
        for doc in valid_docs:
            stored = existing.get(doc[ID_FIELD])
            if stored is None:
                result.failures[doc[ID_FIELD]] = "document not found"
                continue
            merged = {k: v for k, v in stored.items() if k != DOC_TYPE_KEY}
            merged.update(doc)
            merged_docs.append(merged)

        await self._upsert_isolating_failures("bulk_update", index, doc_type, merged_docs, result)

        result.processing_time_ms = (time.perf_counter() - start_time) * 1000
        return self._report(result)

    async def bulk_delete(self, index: str, doc_type: str, ids: Iterable[str]) -> BulkResult:
        start_time = time.perf_counter()
        ids = list(dict.fromkeys(ids))
        result = BulkResult(operation="bulk_delete", index=index, doc_type=doc_type, total_count=len(ids))
        if not ids or not await self.index_exists(index):
            return result

        existing = await self._fetch_payloads(index, doc_type, ids)
        present = [doc_id for doc_id in ids if doc_id in existing]
        for doc_id in ids:
            if doc_id not in existing:
                result.failures[doc_id] = "document not found"

        if present:
            await self._call(
                "bulk_delete",
                self.client.delete,
                collection_name=index,
                points_selector=PointIdsList(points=[document_point_id(doc_type, doc_id) for doc_id in present]),
                wait=True
            )
            result.succeeded.extend(present)

        result.processing_time_ms = (time.perf_counter() - start_time) * 1000
        return self._report(result)

    async def get_all(self, index: str, doc_type: str) -> List[RemoteDocument]:
        if not await self.index_exists(index):
            return []

        documents: List[RemoteDocument] = []
        offset = None
        while True:
            records, offset = await self._call(
                "get_all",
                self.client.scroll,
                collection_name=index,
                scroll_filter=self._type_filter(doc_type),
                limit=self.scroll_batch_size,
                offset=offset,
                with_payload=True,
                with_vectors=False
            )
            documents.extend(RemoteDocument.from_payload(record.payload or {}) for record in records)
            if offset is None:
                break

        logger.debug(f"Retrieved {len(documents)} {doc_type} documents from '{index}'")
        return documents

    async def count(self, index: str, doc_type: str) -> int:
        if not await self.index_exists(index):
            return 0
        response = await self._call(
            "count",
            self.client.count,
            collection_name=index,
            count_filter=self._type_filter(doc_type),
            exact=True
        )
        return response.count

    async def clear_index(self, index: str) -> None:
        if await self.index_exists(index):
            await self._call("clear_index", self.client.delete_collection, collection_name=index)
            logger.info(f"Deleted index '{index}'")
        await self.create_index(index)

    async def set_mapping(self, index: str, doc_type: str, schema: Dict[str, str]) -> None:
        """
        Apply a field schema to an index.

        Creates the index if needed and adds a payload index per field.
        Existing payload indexes are left in place.

        Args:
            index: Index name
            doc_type: Document type the schema belongs to
            schema: Field name to Qdrant payload schema type ("keyword", "integer", ...)
        """
        await self.create_index(index)

        fields = {DOC_TYPE_KEY: PayloadSchemaType.KEYWORD.value, **schema}
        for field_name, field_type in fields.items():
            try:
                field_schema = PayloadSchemaType(str(field_type).lower())
            except ValueError:
                logger.warning(f"Skipping {doc_type}.{field_name}: unknown field type '{field_type}'")
                continue
            await self._call(
                "set_mapping",
                self.client.create_payload_index,
                collection_name=index,
                field_name=field_name,
                field_schema=field_schema
            )
        logger.info(f"Applied mapping for {doc_type} ({len(schema)} fields) to '{index}'")

    async def health_check(self) -> Dict[str, Any]:
        """
        Check index server health.

        Returns:
            Health status information
        """
        try:
            start_time = time.time()
            collections = await asyncio.to_thread(self.client.get_collections)
            elapsed = time.time() - start_time
            return {
                "status": "healthy",
                "response_time_ms": elapsed * 1000,
                "collections_count": len(collections.collections),
                "url": self.location or self.url
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "url": self.location or self.url
            }

    def get_performance_metrics(self) -> Dict[str, Any]:
        avg_time = self._total_request_time / self._total_requests if self._total_requests else 0.0
        return {
            "total_requests": self._total_requests,
            "failed_requests": self._failed_requests,
            "success_rate": (
                (self._total_requests - self._failed_requests) / self._total_requests
                if self._total_requests else 1.0
            ),
            "average_request_time_ms": avg_time * 1000
        }

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug(f"Error closing Qdrant client: {e}")
            self._client = None
        logger.info("Closed QdrantIndexConnector")
