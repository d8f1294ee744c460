"""
Badge/Count Aggregator — stateless counts over the cache and alert panel.

Recomputed on every cache or notification change; nothing is stored here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from worksync.models.entities import NOTIFICATIONS, SERVICES, TASKS
from worksync.services.view_projector import apply_quick_filter, assigned_to_user
from worksync.utils.helpers import format_badge


@dataclass(frozen=True)
class BadgeCounts:
    all: int = 0
    today: int = 0
    upcoming: int = 0
    completed: int = 0
    everything: int = 0
    unread_notifications: int = 0
    incomplete_assigned: int = 0
    inbox_total: int = 0
    alert_unread: int = 0
    service_counts: dict = field(default_factory=dict)

    def labels(self) -> dict:
        """Display labels: empty when zero, capped at "9+" for the alert bell, "99+" elsewhere."""
        return {
            "all": format_badge(self.all),
            "today": format_badge(self.today),
            "upcoming": format_badge(self.upcoming),
            "completed": format_badge(self.completed),
            "everything": format_badge(self.everything),
            "inbox": format_badge(self.inbox_total),
            "alerts": format_badge(self.alert_unread, cap=9),
        }

    def to_dict(self) -> dict:
        return {
            "all": self.all,
            "today": self.today,
            "upcoming": self.upcoming,
            "completed": self.completed,
            "everything": self.everything,
            "unread_notifications": self.unread_notifications,
            "incomplete_assigned": self.incomplete_assigned,
            "inbox_total": self.inbox_total,
            "alert_unread": self.alert_unread,
            "service_counts": dict(self.service_counts),
        }


def compute_badges(cache, alerts=None, *, actor_id: str, now: datetime) -> BadgeCounts:
    items = cache.list_all(TASKS)
    notifications = cache.list_all(NOTIFICATIONS)
    unread = sum(1 for n in notifications if not n.read)
    assigned = assigned_to_user(items, actor_id)
    return BadgeCounts(
        all=len(items),
        today=len(apply_quick_filter(items, "today", now)),
        upcoming=len(apply_quick_filter(items, "upcoming", now)),
        completed=len(apply_quick_filter(items, "completed", now)),
        everything=len(items),
        unread_notifications=unread,
        incomplete_assigned=len(assigned),
        inbox_total=unread + len(assigned),
        alert_unread=alerts.unread_count() if alerts is not None else 0,
        service_counts={s.id: len(cache.list_by_service(s.id)) for s in cache.list_all(SERVICES)},
    )
