"""
Tests — Local Entity Cache and assignment normalization.

Covers:
    1. Assignment tagged value
    2. Atomic replacement + de-duplication
    3. Derived indexes
    4. New-record signal (count heuristic)
    5. Local patches and display lookups
"""

from datetime import timedelta

import pytest

from worksync.integrations.document_store import Record
from worksync.models.assignment import ALL_SENTINEL, Assignment, AssignmentKind
from worksync.services.entity_cache import EntityCache

from conftest import NOW, iso, task_fields


def _records(*pairs):
    return [Record(doc_id, data, seq) for seq, (doc_id, data) in enumerate(pairs, start=1)]


# ═══════════════════════════════════════════════════════════════════════════
#  1. ASSIGNMENT
# ═══════════════════════════════════════════════════════════════════════════

class TestAssignment:

    @pytest.mark.parametrize("raw,kind", [
        (None, AssignmentKind.NONE),
        ("", AssignmentKind.NONE),
        ([], AssignmentKind.NONE),
        ("u1", AssignmentKind.SINGLE),
        (ALL_SENTINEL, AssignmentKind.ALL),
        (["u1", ALL_SENTINEL], AssignmentKind.ALL),
        (["u1", "u2", "u1"], AssignmentKind.MANY),
    ])
    def test_normalize_shapes(self, raw, kind):
        assert Assignment.normalize(raw).kind == kind

    def test_many_deduplicates(self):
        assert Assignment.normalize(["u1", "u2", "u1"]).user_ids == {"u1", "u2"}

    def test_filter_semantics(self):
        everyone = Assignment.everyone()
        nobody = Assignment.none()
        pair = Assignment.many(["u1", "u2"])
        assert everyone.matches_filter("anyone")
        assert not everyone.matches_filter("unassigned")
        assert nobody.matches_filter("unassigned")
        assert not nobody.matches_filter("u1")
        assert pair.matches_filter("u2")
        assert pair.matches_filter(None)

    def test_newly_assigned(self):
        previous = Assignment.single("u1")
        current = Assignment.many(["u1", "u2"])
        assert current.newly_assigned(previous) == {"u2"}
        assert Assignment.everyone().newly_assigned(Assignment.none(), {"u1", "u3"}) == {"u1", "u3"}
        assert Assignment.single("u1").newly_assigned(Assignment.everyone(), {"u1"}) == frozenset()

    def test_to_raw(self):
        assert Assignment.everyone().to_raw() == ALL_SENTINEL
        assert Assignment.many(["b", "a"]).to_raw() == ["a", "b"]
        assert Assignment.none().to_raw() == []


# ═══════════════════════════════════════════════════════════════════════════
#  2. REPLACEMENT
# ═══════════════════════════════════════════════════════════════════════════

class TestSnapshotReplacement:

    def test_snapshot_replaces_collection_wholesale(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A")), ("t2", task_fields("B"))))
        cache.apply_snapshot("tasks", _records(("t3", task_fields("C"))))
        assert [t.id for t in cache.list_all("tasks")] == ["t3"]
        assert cache.get("tasks", "t1") is None

    def test_duplicate_users_collapse_last_seen_wins(self):
        cache = EntityCache()
        cache.apply_snapshot("users", _records(
            ("doc-a", {"uid": "u1", "email": "old@x.io"}),
            ("doc-b", {"uid": "u2", "email": "two@x.io"}),
            ("doc-c", {"uid": "u1", "email": "new@x.io"}),
        ))
        assert cache.count("users") == 2
        assert cache.get("users", "u1").email == "new@x.io"
        assert cache.user_ids() == {"u1", "u2"}

    def test_listeners_see_complete_state(self):
        cache = EntityCache()
        seen = []
        cache.add_listener(lambda collection, source: seen.append(
            (collection, source, cache.count(collection))
        ))
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A")), ("t2", task_fields("B"))))
        assert seen == [("tasks", "snapshot", 2)]

    def test_unloaded_collection_reads_empty(self):
        cache = EntityCache()
        assert not cache.is_loaded("tasks")
        assert cache.list_all("tasks") == []
        assert cache.get("tasks", None) is None


# ═══════════════════════════════════════════════════════════════════════════
#  3. INDEXES
# ═══════════════════════════════════════════════════════════════════════════

class TestIndexes:

    @pytest.fixture()
    def cache(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(
            ("t1", task_fields("A", projectId="p1", serviceId="s1", assignedTo=["u1"])),
            ("t2", task_fields("B", projectId="p1", serviceId="s2", assignedTo=ALL_SENTINEL)),
            ("t3", task_fields("C", projectId="p2", assignedTo="u2")),
        ))
        cache.apply_snapshot("services", _records(
            ("s1", {"name": "Design", "projectId": "p1"}),
            ("s2", {"name": "Content", "projectId": "p1"}),
        ))
        return cache

    def test_by_project(self, cache):
        assert [t.id for t in cache.list_by_project("p1")] == ["t1", "t2"]
        assert cache.list_by_project("missing") == []

    def test_by_service(self, cache):
        assert [t.id for t in cache.list_by_service("s2")] == ["t2"]

    def test_by_assignee_includes_everyone(self, cache):
        assert [t.id for t in cache.list_by_assignee("u1")] == ["t1", "t2"]
        assert [t.id for t in cache.list_by_assignee("u2")] == ["t2", "t3"]

    def test_services_for_project(self, cache):
        assert [s.id for s in cache.services_for_project("p1")] == ["s1", "s2"]


# ═══════════════════════════════════════════════════════════════════════════
#  4. NEW-RECORD SIGNAL
# ═══════════════════════════════════════════════════════════════════════════

class TestNewRecordSignal:

    def test_first_snapshot_sets_baseline(self):
        cache = EntityCache()
        assert cache.apply_snapshot("tasks", _records(("t1", task_fields("A")))) == []

    def test_two_creations_in_one_batch_signal_once(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A", created=NOW))))
        signals = cache.apply_snapshot("tasks", _records(
            ("t3", task_fields("C", created=NOW + timedelta(minutes=2))),
            ("t2", task_fields("B", created=NOW + timedelta(minutes=1))),
            ("t1", task_fields("A", created=NOW)),
        ))
        assert len(signals) == 1
        assert signals[0].record_id == "t3"
        assert signals[0].entity.title == "C"

    def test_create_paired_with_delete_does_not_signal(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A"))))
        assert cache.apply_snapshot("tasks", _records(("t2", task_fields("B")))) == []

    def test_shrinking_then_growing_signals_again(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A")), ("t2", task_fields("B"))))
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A"))))
        signals = cache.apply_snapshot("tasks", _records(("t9", task_fields("Z")), ("t1", task_fields("A"))))
        assert [s.record_id for s in signals] == ["t9"]

    def test_clear_resets_baseline(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A"))))
        cache.clear()
        assert cache.apply_snapshot("tasks", _records(("t1", task_fields("A")), ("t2", task_fields("B")))) == []


# ═══════════════════════════════════════════════════════════════════════════
#  5. PATCHES AND LOOKUPS
# ═══════════════════════════════════════════════════════════════════════════

class TestLocalPatchAndLookups:

    def test_local_patch_rebuilds_indexes(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A", status="todo"))))
        sources = []
        cache.add_listener(lambda c, s: sources.append(s))
        updated = cache.apply_local_patch("tasks", "t1", status="completed")
        assert updated.status == "completed"
        assert cache.get("tasks", "t1").status == "completed"
        assert sources == ["local"]

    def test_local_patch_of_unknown_entity_is_noop(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", [])
        assert cache.apply_local_patch("tasks", "ghost", status="completed") is None

    def test_held_changes_overlay_snapshots_until_released(self):
        cache = EntityCache()
        cache.hold("tasks", "t1", status="completed")
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A")), ("t2", task_fields("B"))))
        assert cache.get("tasks", "t1").status == "completed"
        assert cache.get("tasks", "t2").status == "todo"

        cache.release("tasks", "t1")
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A")), ("t2", task_fields("B"))))
        assert cache.get("tasks", "t1").status == "todo"

    def test_clear_drops_held_changes(self):
        cache = EntityCache()
        cache.hold("tasks", "t1", status="completed")
        cache.clear()
        cache.apply_snapshot("tasks", _records(("t1", task_fields("A"))))
        assert cache.get("tasks", "t1").status == "todo"

    def test_dangling_references_degrade(self):
        cache = EntityCache()
        cache.apply_snapshot("users", _records(("u1", {"uid": "u1", "email": "ana@x.io"})))
        cache.apply_snapshot("tasks", _records(
            ("t1", task_fields("A", projectId="ghost", assignedTo=["u1", "u9"])),
            ("t2", task_fields("B", assignedTo=ALL_SENTINEL)),
            ("t3", task_fields("C")),
        ))
        t1, t2, t3 = (cache.get("tasks", i) for i in ("t1", "t2", "t3"))
        assert cache.project_name(t1.project_id) == "Unknown"
        assert cache.assignee_label(t1) == "ana, Unknown"
        assert cache.assignee_label(t2) == "Everyone"
        assert cache.assignee_label(t3) == "Unassigned"

    def test_wire_timestamps_are_parsed(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", _records(
            ("t1", task_fields("A", dueDate="2026-03-11", created=NOW)),
            ("t2", task_fields("B", dueDate={"seconds": NOW.timestamp()})),
        ))
        assert cache.get("tasks", "t1").due_date.isoformat() == "2026-03-11T00:00:00+00:00"
        assert cache.get("tasks", "t1").created_at == NOW
        assert cache.get("tasks", "t2").due_date == NOW
        assert iso(cache.get("tasks", "t1").created_at) == iso(NOW)
