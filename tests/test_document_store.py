"""
Tests — backing document store.

Covers:
    1. Writes: create / set / update / delete / get
    2. Listen: initial snapshot, re-delivery after writes, removal
    3. Ordering: shared comparison, missing-index failure
    4. Write failures
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from worksync.core.exceptions import NotFoundError, OrderingUnavailableError, StoreWriteError
from worksync.integrations.document_store import (
    DocumentStore,
    Record,
    StoreQuery,
    sort_records,
)
from worksync.models.document import StoredDocument

from conftest import NOW, iso, task_fields


# ═══════════════════════════════════════════════════════════════════════════
#  1. WRITES
# ═══════════════════════════════════════════════════════════════════════════

class TestWrites:
    """create / set / update / delete round trips."""

    def test_create_assigns_id_and_timestamps(self, store, run):
        async def scenario():
            doc_id = await store.create("tasks", task_fields("Write docs"))
            return doc_id, await store.get("tasks", doc_id)

        doc_id, data = run(scenario())
        assert len(doc_id) == 20
        assert data["title"] == "Write docs"
        assert data["createdAt"]
        assert data["updatedAt"]

    def test_create_keeps_caller_created_at(self, store, run):
        async def scenario():
            doc_id = await store.create("tasks", task_fields("A", created=NOW))
            return await store.get("tasks", doc_id)

        assert run(scenario())["createdAt"] == iso(NOW)

    def test_set_upserts_under_given_id(self, store, run):
        async def scenario():
            await store.set("users", "u1", {"uid": "u1", "email": "a@x.io"})
            await store.set("users", "u1", {"uid": "u1", "email": "b@x.io"})
            return await store.get("users", "u1")

        assert run(scenario())["email"] == "b@x.io"
        assert StoredDocument.query.filter_by(collection="users").count() == 1

    def test_update_merges(self, store, run):
        async def scenario():
            doc_id = await store.create("tasks", task_fields("A"))
            await store.update("tasks", doc_id, {"status": "completed"})
            return await store.get("tasks", doc_id)

        data = run(scenario())
        assert data["status"] == "completed"
        assert data["title"] == "A"

    def test_update_missing_raises_not_found(self, store, run):
        with pytest.raises(NotFoundError):
            run(store.update("tasks", "nope", {"status": "todo"}))

    def test_delete_is_idempotent(self, store, run):
        async def scenario():
            doc_id = await store.create("tasks", task_fields("A"))
            await store.delete("tasks", doc_id)
            await store.delete("tasks", doc_id)
            return await store.get("tasks", doc_id)

        assert run(scenario()) is None

    def test_collections_are_isolated(self, store, run):
        async def scenario():
            await store.set("projects", "same", {"name": "P"})
            await store.set("services", "same", {"name": "S", "projectId": "same"})
            return await store.get("projects", "same"), await store.get("services", "same")

        project, service = run(scenario())
        assert project["name"] == "P"
        assert service["name"] == "S"


# ═══════════════════════════════════════════════════════════════════════════
#  2. LISTEN
# ═══════════════════════════════════════════════════════════════════════════

class TestListen:
    """Full snapshots, delivered asynchronously."""

    def test_initial_snapshot_is_delivered_asynchronously(self, store, run):
        received = []

        async def scenario():
            await store.create("tasks", task_fields("A"))
            store.listen(StoreQuery("tasks"), received.append)
            delivered_inline = len(received)
            await asyncio.sleep(0)
            return delivered_inline

        assert run(scenario()) == 0
        assert len(received) == 1
        assert [r.data["title"] for r in received[0].records] == ["A"]

    def test_every_write_redelivers_full_snapshot(self, store, run):
        received = []

        async def scenario():
            store.listen(StoreQuery("tasks"), received.append)
            await asyncio.sleep(0)
            first = await store.create("tasks", task_fields("A"))
            await asyncio.sleep(0)
            await store.create("tasks", task_fields("B"))
            await asyncio.sleep(0)
            await store.delete("tasks", first)
            await asyncio.sleep(0)

        run(scenario())
        assert [s.size for s in received] == [0, 1, 2, 1]
        assert [r.data["title"] for r in received[-1].records] == ["B"]

    def test_writes_to_other_collections_do_not_redeliver(self, store, run):
        received = []

        async def scenario():
            store.listen(StoreQuery("tasks"), received.append)
            await asyncio.sleep(0)
            await store.create("projects", {"name": "P"})
            await asyncio.sleep(0)

        run(scenario())
        assert len(received) == 1

    def test_where_filters_records(self, indexed_store, run):
        received = []

        async def scenario():
            await indexed_store.create("notifications", {"recipientUid": "u1", "title": "mine"})
            await indexed_store.create("notifications", {"recipientUid": "u2", "title": "theirs"})
            indexed_store.listen(StoreQuery("notifications", where=("recipientUid", "u1")),
                                 received.append)
            await asyncio.sleep(0)

        run(scenario())
        assert [r.data["title"] for r in received[0].records] == ["mine"]

    def test_removed_registration_gets_no_late_snapshot(self, store, run):
        received = []

        async def scenario():
            registration = store.listen(StoreQuery("tasks"), received.append)
            registration.remove()
            registration.remove()
            await store.create("tasks", task_fields("A"))
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        run(scenario())
        assert received == []
        assert store.listener_count("tasks") == 0

    def test_pending_deliveries_counter(self, store, run):
        async def scenario():
            store.listen(StoreQuery("tasks"), lambda s: None)
            before = store.pending_deliveries
            await asyncio.sleep(0)
            return before, store.pending_deliveries

        assert run(scenario()) == (1, 0)


# ═══════════════════════════════════════════════════════════════════════════
#  3. ORDERING
# ═══════════════════════════════════════════════════════════════════════════

class TestOrdering:
    """One comparison for server and client ordering."""

    def test_sort_records_descending_missing_last_stable(self):
        records = [
            Record("a", {"createdAt": iso(NOW)}, 1),
            Record("b", {}, 2),
            Record("c", {"createdAt": iso(NOW + timedelta(hours=1))}, 3),
            Record("d", {"createdAt": iso(NOW)}, 4),
        ]
        ordered = [r.id for r in sort_records(records, "createdAt")]
        assert ordered == ["c", "a", "d", "b"]

    def test_sort_records_ascending(self):
        records = [Record("x", {"n": 3}), Record("y", {"n": 1}), Record("z", {"n": 2})]
        assert [r.id for r in sort_records(records, "n", descending=False)] == ["y", "z", "x"]

    def test_ordered_listen_sorts(self, store, run):
        received = []

        async def scenario():
            await store.create("tasks", task_fields("old", created=NOW))
            await store.create("tasks", task_fields("new", created=NOW + timedelta(days=1)))
            store.listen(StoreQuery("tasks", order_by="createdAt"), received.append)
            await asyncio.sleep(0)

        run(scenario())
        assert [r.data["title"] for r in received[0].records] == ["new", "old"]

    def test_filtered_ordered_listen_without_index_fails(self, store, run):
        errors, received = [], []

        async def scenario():
            query = StoreQuery("notifications", where=("recipientUid", "u1"), order_by="timestamp")
            store.listen(query, received.append, errors.append)
            await asyncio.sleep(0)

        run(scenario())
        assert received == []
        assert len(errors) == 1
        assert isinstance(errors[0], OrderingUnavailableError)

    def test_filtered_ordered_listen_with_index_succeeds(self, indexed_store, run):
        errors, received = [], []

        async def scenario():
            query = StoreQuery("notifications", where=("recipientUid", "u1"), order_by="timestamp")
            indexed_store.listen(query, received.append, errors.append)
            await asyncio.sleep(0)

        run(scenario())
        assert errors == []
        assert len(received) == 1

    def test_malformed_index_declaration_rejected(self):
        with pytest.raises(ValueError):
            DocumentStore(composite_indexes=["notifications:recipientUid"])


# ═══════════════════════════════════════════════════════════════════════════
#  4. WRITE FAILURES
# ═══════════════════════════════════════════════════════════════════════════

class TestWriteFailures:

    def test_commit_failure_raises_store_write_error(self, store, run):
        with patch("worksync.integrations.document_store.db.session.commit",
                   side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with pytest.raises(StoreWriteError) as exc_info:
                run(store.create("tasks", task_fields("A")))
        assert exc_info.value.operation == "create"
        assert StoredDocument.query.count() == 0
