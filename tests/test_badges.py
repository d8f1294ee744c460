"""
Tests — Badge/Count Aggregator and display helpers.
"""

from datetime import timedelta

import pytest

from worksync.integrations.document_store import Record
from worksync.models.assignment import ALL_SENTINEL
from worksync.services.alert_feed import AlertFeed
from worksync.services.badge_aggregator import compute_badges
from worksync.services.entity_cache import EntityCache
from worksync.utils.helpers import format_badge, format_time_left, parse_datetime, time_ago

from conftest import NOW, FixedClock, task_fields


@pytest.fixture()
def cache():
    cache = EntityCache()
    cache.apply_snapshot("tasks", [
        Record("t1", task_fields("A", dueDate=(NOW + timedelta(hours=2)).isoformat(),
                                 assignedTo=["u1"], serviceId="s1")),
        Record("t2", task_fields("B", dueDate=(NOW + timedelta(days=2)).isoformat(),
                                 assignedTo=ALL_SENTINEL, serviceId="s1")),
        Record("t3", task_fields("C", status="completed", assignedTo=["u1"])),
        Record("t4", task_fields("D")),
    ])
    cache.apply_snapshot("services", [
        Record("s1", {"name": "Design", "projectId": "p1"}),
        Record("s2", {"name": "Empty", "projectId": "p1"}),
    ])
    cache.apply_snapshot("notifications", [
        Record("n1", {"recipientUid": "u1", "type": "deadline", "title": "x", "read": False}),
        Record("n2", {"recipientUid": "u1", "type": "assigned", "title": "y", "read": True}),
    ])
    return cache


class TestComputeBadges:

    def test_counts(self, cache):
        alerts = AlertFeed(clock=FixedClock())
        alerts.push("New Task Created")
        badges = compute_badges(cache, alerts, actor_id="u1", now=NOW)
        assert badges.all == 4
        assert badges.today == 1
        assert badges.upcoming == 1
        assert badges.completed == 1
        assert badges.unread_notifications == 1
        assert badges.incomplete_assigned == 2
        assert badges.inbox_total == 3
        assert badges.alert_unread == 1
        assert badges.service_counts == {"s1": 2, "s2": 0}

    def test_recomputed_from_current_state(self, cache):
        before = compute_badges(cache, actor_id="u1", now=NOW)
        cache.apply_local_patch("tasks", "t1", status="completed")
        after = compute_badges(cache, actor_id="u1", now=NOW)
        assert (before.completed, after.completed) == (1, 2)
        assert (before.incomplete_assigned, after.incomplete_assigned) == (2, 1)

    def test_opening_alert_panel_clears_its_badge(self, cache):
        alerts = AlertFeed(clock=FixedClock())
        alerts.push("one")
        alerts.push("two")
        alerts.mark_all_seen()
        assert compute_badges(cache, alerts, actor_id="u1", now=NOW).alert_unread == 0

    def test_labels_are_capped(self):
        cache = EntityCache()
        cache.apply_snapshot("tasks", [Record(f"t{i}", task_fields(f"T{i}")) for i in range(120)])
        alerts = AlertFeed(clock=FixedClock())
        for i in range(12):
            alerts.push(f"alert {i}")
        labels = compute_badges(cache, alerts, actor_id="u1", now=NOW).labels()
        assert labels["all"] == "99+"
        assert labels["alerts"] == "9+"
        assert labels["completed"] == ""


class TestDisplayHelpers:

    @pytest.mark.parametrize("count,cap,label", [(0, 99, ""), (5, 99, "5"), (99, 99, "99"),
                                                 (100, 99, "99+"), (10, 9, "9+")])
    def test_format_badge(self, count, cap, label):
        assert format_badge(count, cap=cap) == label

    @pytest.mark.parametrize("delta,label", [
        (timedelta(minutes=30), "in less than an hour"),
        (timedelta(hours=1), "in 1 hour"),
        (timedelta(hours=5), "in 5 hours"),
        (timedelta(hours=30), "tomorrow"),
        (timedelta(hours=72), "in 3 days"),
    ])
    def test_format_time_left(self, delta, label):
        assert format_time_left(NOW + delta, NOW) == label

    def test_time_ago(self):
        assert time_ago(NOW, NOW) == "Just now"
        assert time_ago(NOW - timedelta(minutes=12), NOW) == "12 minutes ago"
        assert time_ago(NOW - timedelta(hours=3), NOW) == "3 hours ago"
        assert time_ago(NOW - timedelta(days=2), NOW) == "2 days ago"

    def test_parse_datetime_rejects_garbage(self):
        assert parse_datetime("not a date") is None
        assert parse_datetime({"seconds": "x"}) is None
        assert parse_datetime("2026-03-10T09:00:00Z") == NOW


class TestAlertFeed:

    def test_push_drops_expired_toasts(self):
        clock = FixedClock()
        alerts = AlertFeed(ttl_seconds=3, clock=clock)
        for i in range(5):
            alerts.push(f"old {i}")
        clock.advance(seconds=4)
        alerts.push("fresh")
        assert [a.title for a in alerts._toasts] == ["fresh"]
        assert len(alerts.panel) == 6
