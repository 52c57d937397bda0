"""
Tests for BulkingIndexConnector batching behavior.
"""

import asyncio

import pytest

from indexsync.errors import ConnectivityError
from indexsync.models.config import BulkingConfig, ConnectorConfig
from indexsync.storage.bulking import BulkingIndexConnector
from indexsync.storage.connector import QdrantIndexConnector
from indexsync.storage.factory import create_connector

INDEX = "shindig"


class TestBulkingIndexConnector:
    """Test queueing, flush triggers and ordering"""

    @pytest.mark.asyncio
    async def test_actions_are_queued_until_threshold(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=3, flush_interval=60)
        try:
            await bulking.add(INDEX, "person", "p1", {"displayName": "A"})
            await bulking.add(INDEX, "person", "p2", {"displayName": "B"})

            assert bulking.pending_count == 2
            assert connector.calls == []

            await bulking.add(INDEX, "person", "p3", {"displayName": "C"})

            assert bulking.pending_count == 0
            assert connector.bulk_calls == [("bulk_add", "person", ("p1", "p2", "p3"))]
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_byte_threshold(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, max_bytes=64, flush_interval=60)
        try:
            await bulking.add(INDEX, "person", "p1", {"aboutMe": "x" * 100})
            assert bulking.pending_count == 0
            assert "p1" in connector.documents(INDEX, "person")
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_interval_flush(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=0.05)
        try:
            await bulking.add(INDEX, "person", "p1", {})
            await asyncio.sleep(0.3)

            assert bulking.pending_count == 0
            assert "p1" in connector.documents(INDEX, "person")
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_order_is_preserved(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        try:
            await bulking.add(INDEX, "message", "m1", {"origin": ["a", "b"]})
            await bulking.update(INDEX, "message", "m1", {"origin": ["b"]})
            await bulking.delete(INDEX, "message", "m1")
            await bulking.add(INDEX, "message", "m1", {"origin": ["c"]})

            await bulking.flush()

            assert [call[0] for call in connector.bulk_calls] == [
                "bulk_add", "bulk_update", "bulk_delete", "bulk_add"
            ]
            assert connector.documents(INDEX, "message")["m1"]["origin"] == ["c"]
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_reads_flush_first(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        try:
            await bulking.add(INDEX, "person", "p1", {"displayName": "A"})

            doc = await bulking.get(INDEX, "person", "p1")
            assert doc.body["displayName"] == "A"

            await bulking.delete(INDEX, "person", "p1")
            assert await bulking.get_all(INDEX, "person") == []
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_bulk_results_are_deferred(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        try:
            result = await bulking.bulk_add(INDEX, "person", [{"id": "p1"}, {"displayName": "no id"}])

            assert result.deferred
            assert result.succeeded == ["p1"]
            assert list(result.failures) == ["#1"]
            assert bulking.pending_count == 1
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_queued_update_of_missing_document_is_counted(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        try:
            await bulking.update(INDEX, "person", "ghost", {"displayName": "?"})
            results = await bulking.flush()

            assert results[0].failures == {"ghost": "document not found"}
            assert bulking.metrics.failed_actions == 1
        finally:
            await bulking.close()

    @pytest.mark.asyncio
    async def test_close_drains_and_closes_inner(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        await bulking.bulk_add(INDEX, "person", [{"id": "p1"}, {"id": "p2"}])

        await bulking.close()

        assert set(connector.documents(INDEX, "person")) == {"p1", "p2"}
        assert connector.closed is True
        with pytest.raises(ConnectivityError):
            await bulking.add(INDEX, "person", "p3", {})

    @pytest.mark.asyncio
    async def test_failed_flush_raises(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        try:
            await bulking.add(INDEX, "person", "p1", {})
            connector.failing.add("bulk_add")

            with pytest.raises(ConnectivityError):
                await bulking.flush()
            assert bulking.metrics.failed_flushes == 1
        finally:
            connector.failing.clear()
            await bulking.close()

    @pytest.mark.asyncio
    async def test_failed_group_requeues_rest_of_batch(self, connector):
        bulking = BulkingIndexConnector(connector, max_actions=100, flush_interval=60)
        await bulking.add(INDEX, "person", "a", {})
        await bulking.add(INDEX, "person", "b", {})
        await bulking.flush()

        await bulking.add(INDEX, "person", "c", {})
        await bulking.delete(INDEX, "person", "b")
        await bulking.add(INDEX, "person", "d", {})
        connector.failing.add("bulk_delete")

        with pytest.raises(ConnectivityError):
            await bulking.flush()
        assert bulking.pending_count == 2
        assert set(connector.documents(INDEX, "person")) == {"a", "b", "c"}

        connector.failing.clear()
        await bulking.close()

        assert set(connector.documents(INDEX, "person")) == {"a", "c", "d"}
        assert bulking.pending_count == 0

    def test_factory_selects_strategy(self):
        bulking = create_connector(ConnectorConfig(kind="bulking", bulking=BulkingConfig(actions=10, seconds=2)))
        eager = create_connector(ConnectorConfig(kind="eager"))

        assert isinstance(bulking, BulkingIndexConnector)
        assert bulking.max_actions == 10
        assert bulking.flush_interval == 2
        assert isinstance(bulking.inner, QdrantIndexConnector)
        assert isinstance(eager, QdrantIndexConnector)
