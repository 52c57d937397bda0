"""
Tests for IncrementalSynchronizer event handling.

Events are applied through the in-memory connector, which can add latency
to single-document calls to expose ordering problems.
"""

import asyncio

import pytest

from indexsync.errors import ConnectivityError
from indexsync.indexer.sources import SocialGraph, WhitelistEnricher
from indexsync.models.config import SyncConfig
from indexsync.sync.events import EntityKind, LifecycleEvent
from indexsync.sync.synchronizer import IncrementalSynchronizer, message_origin

from conftest import FakeSocialGraph, InMemoryConnector

INDEX = "shindig"


class BrokenSocialGraph(SocialGraph):
    async def get_friend_ids(self, user_id):
        raise ConnectivityError("graph unavailable")


def make_synchronizer(connector, source=None, whitelist=None, **config):
    return IncrementalSynchronizer(connector, SyncConfig(**config), profile_source=source, whitelist=whitelist)


class TestMessageOrigin:
    """Test origin computation for new messages"""

    def test_sent_message_includes_recipients(self):
        payload = {"id": "m1", "recipients": ["bob", "carol"], "timeSent": 123, "senderId": "alice"}
        assert message_origin(payload) == ["bob", "carol", "alice"]

    def test_draft_only_has_sender(self):
        payload = {"id": "m1", "recipients": ["bob"], "senderId": "alice"}
        assert message_origin(payload) == ["alice"]

    def test_owner_used_without_sender(self):
        assert message_origin({"id": "m1", "recipients": ["alice"], "timeSent": 1}, "alice") == ["alice"]


class TestProfileEvents:
    """Test profile create/update/delete"""

    @pytest.mark.asyncio
    async def test_created(self, connector):
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.created(
            EntityKind.PROFILE, {"id": "alice", "displayName": "Alice", "updated": "2024-01-01T00:00:00Z"}
        ))

        assert result["success"] is True
        assert result["operation"] == "add"
        doc = connector.documents(INDEX, "person")["alice"]
        assert doc["displayName"] == "Alice"
        assert doc["updated"] == 1704067200000

    @pytest.mark.asyncio
    async def test_update_of_missing_document_adds(self, connector):
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.updated(EntityKind.PROFILE, {"id": "alice", "aboutMe": "hi"}))

        assert result["operation"] == "add"
        assert "alice" in connector.documents(INDEX, "person")

    @pytest.mark.asyncio
    async def test_update_merges(self, connector):
        await connector.add(INDEX, "person", "alice", {"displayName": "Alice"})
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.updated(EntityKind.PROFILE, {"id": "alice", "aboutMe": "hi"}))

        assert result["operation"] == "update"
        assert connector.documents(INDEX, "person")["alice"] == {"id": "alice", "displayName": "Alice", "aboutMe": "hi"}

    @pytest.mark.asyncio
    async def test_delete(self, connector):
        await connector.add(INDEX, "person", "alice", {})
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.deleted(EntityKind.PROFILE, {"id": "alice"}))
        assert result["operation"] == "delete"

        result = await sync.handle_event(LifecycleEvent.deleted(EntityKind.PROFILE, {"id": "alice"}))
        assert result["operation"] == "noop"
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_skill_change_reindexes_profile(self, connector, source):
        source.put("alice", "alice", updated=5, skills=["python"])
        sync = make_synchronizer(connector, source=source)

        result = await sync.handle_event(LifecycleEvent.skill_changed("alice"))
        assert result["operation"] == "add"

        source.put("alice", "alice", updated=6, skills=["python", "go"])
        result = await sync.handle_event(LifecycleEvent.skill_changed("alice"))

        assert result["operation"] == "update"
        assert connector.documents(INDEX, "person")["alice"]["skills"] == ["python", "go"]

    @pytest.mark.asyncio
    async def test_skill_change_for_unknown_profile(self, connector, source):
        sync = make_synchronizer(connector, source=source)

        result = await sync.handle_event(LifecycleEvent.skill_changed("ghost"))

        assert result["operation"] == "noop"
        assert connector.documents(INDEX, "person") == {}


class TestActivityEvents:
    """Test activity enrichment"""

    @pytest.mark.asyncio
    async def test_created_with_context(self, connector):
        sync = make_synchronizer(connector)

        await sync.handle_event(LifecycleEvent.created(
            EntityKind.ACTIVITY, {"id": "a1", "title": "Hi"}, userId="alice", groupId="@self", appId="app1"
        ))

        doc = connector.documents(INDEX, "activity")["a1"]
        assert doc["origin"] == ["alice"]
        assert doc["groupId"] == "@self"
        assert doc["appId"] == "app1"
        assert "whitelist" not in doc

    @pytest.mark.asyncio
    async def test_whitelist(self, connector):
        whitelist = WhitelistEnricher(FakeSocialGraph({"alice": ["bob"]}))
        sync = make_synchronizer(connector, whitelist=whitelist, add_friends=True)

        await sync.handle_event(LifecycleEvent.created(EntityKind.ACTIVITY, {"id": "a1"}, userId="alice"))

        assert connector.documents(INDEX, "activity")["a1"]["whitelist"] == ["bob", "alice"]

    @pytest.mark.asyncio
    async def test_whitelist_failure_still_indexes(self, connector):
        sync = make_synchronizer(connector, whitelist=WhitelistEnricher(BrokenSocialGraph()), add_friends=True)

        result = await sync.handle_event(LifecycleEvent.created(EntityKind.ACTIVITY, {"id": "a1"}, userId="alice"))

        assert result["success"] is True
        assert "whitelist" not in connector.documents(INDEX, "activity")["a1"]


class TestMessageEvents:
    """Test message origin maintenance"""

    @pytest.mark.asyncio
    async def test_created(self, connector):
        sync = make_synchronizer(connector)

        await sync.handle_event(LifecycleEvent.created(
            EntityKind.MESSAGE,
            {"id": "m1", "senderId": "alice", "recipients": ["bob"], "timeSent": 1},
            userId="alice", messageCollectionId="@outbox", appId="app1"
        ))

        doc = connector.documents(INDEX, "message")["m1"]
        assert doc["origin"] == ["bob", "alice"]
        assert doc["messageCollection"] == "@outbox"
        assert doc["appId"] == "app1"

    @pytest.mark.asyncio
    async def test_update_keeps_stored_origin(self, connector):
        await connector.add(INDEX, "message", "m1", {"origin": ["bob", "carol", "alice"], "title": "old"})
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.updated(
            EntityKind.MESSAGE, {"id": "m1", "title": "new", "senderId": "alice"}, userId="alice"
        ))

        assert result["operation"] == "update"
        doc = connector.documents(INDEX, "message")["m1"]
        assert doc["origin"] == ["bob", "carol", "alice"]
        assert doc["title"] == "new"

    @pytest.mark.asyncio
    async def test_delete_prunes_one_owner(self, connector):
        await connector.add(INDEX, "message", "m1", {"origin": ["bob", "alice"]})
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.deleted(EntityKind.MESSAGE, {"id": "m1"}, userId="bob"))

        assert result["operation"] == "update"
        assert connector.documents(INDEX, "message")["m1"]["origin"] == ["alice"]

    @pytest.mark.asyncio
    async def test_delete_without_user_keeps_shared_message(self, connector):
        await connector.add(INDEX, "message", "m1", {"origin": ["alice", "bob"]})
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.deleted(EntityKind.MESSAGE, {"id": "m1"}))

        assert result["operation"] == "update"
        assert connector.documents(INDEX, "message")["m1"]["origin"] == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_delete_by_last_owner_removes_document(self, connector):
        await connector.add(INDEX, "message", "m1", {"origin": ["alice"]})
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.deleted(EntityKind.MESSAGE, {"id": "m1"}, userId="alice"))

        assert result["operation"] == "delete"
        assert connector.documents(INDEX, "message") == {}

    @pytest.mark.asyncio
    async def test_delete_of_missing_message(self, connector):
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.deleted(EntityKind.MESSAGE, {"id": "m1"}, userId="alice"))

        assert result["operation"] == "noop"


class TestEventHandling:
    """Test switches, ordering and failure isolation"""

    @pytest.mark.asyncio
    async def test_disabled_kind_is_ignored(self, connector):
        sync = make_synchronizer(connector, activities={"enabled": False, "doc_type": "activity"})

        result = await sync.handle_event(LifecycleEvent.created(EntityKind.ACTIVITY, {"id": "a1"}, userId="alice"))

        assert result["operation"] == "ignored"
        assert connector.calls == []
        assert sync.metrics.events_ignored == 1

    @pytest.mark.asyncio
    async def test_event_handling_disabled(self, connector):
        sync = make_synchronizer(connector, handle_events=False)

        result = await sync.handle_event(LifecycleEvent.created(EntityKind.PROFILE, {"id": "p1"}))

        assert result["operation"] == "ignored"

    @pytest.mark.asyncio
    async def test_skills_need_a_profile_source(self, connector):
        sync = make_synchronizer(connector)

        result = await sync.handle_event(LifecycleEvent.skill_changed("alice"))

        assert result["operation"] == "ignored"

    @pytest.mark.asyncio
    async def test_events_for_one_document_apply_in_order(self):
        connector = InMemoryConnector(latency=0.01)
        sync = make_synchronizer(connector)

        results = await sync.handle_events([
            LifecycleEvent.created(EntityKind.PROFILE, {"id": "p1", "displayName": "A"}),
            LifecycleEvent.updated(EntityKind.PROFILE, {"id": "p1", "displayName": "B"}),
            LifecycleEvent.deleted(EntityKind.PROFILE, {"id": "p1"}),
        ])

        assert [r["operation"] for r in results] == ["add", "update", "delete"]
        assert [c[0] for c in connector.calls] == ["add", "update", "delete"]
        assert connector.documents(INDEX, "person") == {}

    @pytest.mark.asyncio
    async def test_different_documents_run_concurrently(self):
        connector = InMemoryConnector(latency=0.05)
        sync = make_synchronizer(connector)
        events = [LifecycleEvent.created(EntityKind.PROFILE, {"id": f"p{i}"}) for i in range(10)]

        start = asyncio.get_running_loop().time()
        await sync.handle_events(events)
        elapsed = asyncio.get_running_loop().time() - start

        assert len(connector.documents(INDEX, "person")) == 10
        assert elapsed < 0.4

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, connector):
        await connector.add(INDEX, "person", "p1", {})
        connector.failing.add("update")
        sync = make_synchronizer(connector)

        results = await sync.handle_events([
            LifecycleEvent.updated(EntityKind.PROFILE, {"id": "p1", "aboutMe": "x"}),
            LifecycleEvent.created(EntityKind.PROFILE, {"id": "p2"}),
        ])

        assert results[0]["success"] is False
        assert "update unavailable" in results[0]["error"]
        assert results[1]["success"] is True
        assert sync.metrics.events_failed == 1
        assert sync.metrics.documents_added == 1

    @pytest.mark.asyncio
    async def test_status(self, connector):
        sync = make_synchronizer(connector)
        await sync.handle_event(LifecycleEvent.created(EntityKind.PROFILE, {"id": "p1"}))

        status = sync.get_status()

        assert status["index"] == INDEX
        assert status["active_documents"] == 0
        assert status["metrics"]["documents_added"] == 1
