"""
Notification / Deadline Engine.

Derives notifications from cache state and assignment changes:

    - Deadline notifications: one per incomplete work item due within the
      deadline window, under a deterministic id, classified urgent inside
      the urgent threshold. Re-running on unchanged state writes nothing.
      Items leaving the window, completing or disappearing lose theirs.
    - Assignment notifications: one per user newly added to an item's
      assignment, never to the acting user.

Fan-out: every emitted notification is written to the store (durable,
cleared only by read/dismiss) and mirrored as an in-session alert whose
expiry is independent of the durable record.

Usage:
    engine = NotificationEngine(store, cache, alerts, actor_id="u0", actor_email="me@x")
    result = await engine.evaluate_deadlines()
    await engine.notify_assignment(item_id, title, previous, current, created=False)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from worksync.core.exceptions import NotFoundError, StoreError
from worksync.models.assignment import Assignment, AssignmentKind
from worksync.models.entities import NOTIFICATIONS, TASKS, Notification
from worksync.utils.helpers import format_time_left, utcnow

logger = logging.getLogger(__name__)

DEADLINE_PREFIX = "deadline"


def deadline_notification_id(item_id: str, recipient_id: str) -> str:
    """Deterministic id of the deadline notification for one item and recipient."""
    return f"{DEADLINE_PREFIX}-{recipient_id}-{item_id}"


@dataclass
class DeadlineScanResult:
    """What one deadline evaluation changed."""
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.removed)

    def to_dict(self) -> dict:
        return {
            "created": list(self.created),
            "updated": list(self.updated),
            "removed": list(self.removed),
            "errors": list(self.errors),
            "skipped": self.skipped,
        }


_MISSING = object()


class NotificationEngine:
    """Deadline and assignment notifications for one session actor."""

    def __init__(self, store, cache, alerts, *, actor_id: str, actor_email: str,
                 window_hours: int = 48, urgent_hours: int = 24,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._cache = cache
        self._alerts = alerts
        self.actor_id = actor_id
        self.actor_email = actor_email
        self.window = timedelta(hours=window_hours)
        self.urgent = timedelta(hours=urgent_hours)
        self._clock = clock
        # Writes issued but not yet confirmed by a snapshot: id -> urgent flag (None = deleted)
        self._expected: dict[str, bool | None] = {}

    # ── Local knowledge of the notification set ───────────────────────────

    def _known(self, nid: str):
        """Urgent flag of an existing deadline notification, or None when absent."""
        expected = self._expected.get(nid, _MISSING)
        if expected is not _MISSING:
            return expected
        current = self._cache.get(NOTIFICATIONS, nid)
        return None if current is None else current.urgent

    def reconcile(self) -> None:
        """Forget expectations the latest notifications snapshot confirms."""
        for nid, expected in list(self._expected.items()):
            current = self._cache.get(NOTIFICATIONS, nid)
            if expected is None and current is None:
                del self._expected[nid]
            elif current is not None and current.urgent == expected:
                del self._expected[nid]

    # ── Deadlines ─────────────────────────────────────────────────────────

    async def evaluate_deadlines(self, now: datetime | None = None) -> DeadlineScanResult:
        """Bring deadline notifications in line with the cached work items."""
        result = DeadlineScanResult()
        if not (self._cache.is_loaded(TASKS) and self._cache.is_loaded(NOTIFICATIONS)):
            result.skipped = True
            return result

        now = now or self._clock()
        window_end = now + self.window
        urgent_end = now + self.urgent
        live_ids = set()

        for item in self._cache.list_all(TASKS):
            nid = deadline_notification_id(item.id, self.actor_id)
            live_ids.add(nid)
            current = self._known(nid)
            in_window = (
                not item.is_completed
                and item.due_date is not None
                and now <= item.due_date <= window_end
            )
            if not in_window:
                if current is not None:
                    await self._remove(nid, result)
                continue

            urgent = item.due_date <= urgent_end
            if current is None:
                await self._create_deadline(item, nid, urgent, now, result)
            elif current != urgent:
                await self._reclassify(item, nid, urgent, now, result)

        prefix = f"{DEADLINE_PREFIX}-{self.actor_id}-"
        for n in self._cache.list_all(NOTIFICATIONS):
            if n.type == "deadline" and n.id.startswith(prefix) and n.id not in live_ids:
                if self._known(n.id) is not None:
                    await self._remove(n.id, result)

        if result.changed or result.errors:
            logger.info("Deadline scan: %s", result.to_dict(), extra={"actor_id": self.actor_id})
        return result

    def _deadline_text(self, item, urgent: bool, now: datetime) -> tuple[str, str]:
        title = "Urgent Deadline" if urgent else "Upcoming Deadline"
        message = f'"{item.title}" is due {format_time_left(item.due_date, now)}'
        return title, message

    async def _create_deadline(self, item, nid, urgent, now, result) -> None:
        title, message = self._deadline_text(item, urgent, now)
        notification = Notification(
            id=nid,
            recipient_id=self.actor_id,
            type="deadline",
            title=title,
            message=message,
            work_item_id=item.id,
            timestamp=now,
            read=False,
            urgent=urgent,
        )
        self._expected[nid] = urgent
        try:
            await self._store.set(NOTIFICATIONS, nid, notification.to_fields())
        except StoreError as exc:
            self._expected.pop(nid, None)
            self._report_failure(nid, exc, result)
            return
        result.created.append(nid)
        self._alerts.push(title, message, work_item_id=item.id)

    async def _reclassify(self, item, nid, urgent, now, result) -> None:
        title, message = self._deadline_text(item, urgent, now)
        previous = self._expected.get(nid, _MISSING)
        self._expected[nid] = urgent
        try:
            await self._store.update(NOTIFICATIONS, nid, {
                "urgent": urgent,
                "title": title,
                "message": message,
            })
        except (StoreError, NotFoundError) as exc:
            if previous is _MISSING:
                self._expected.pop(nid, None)
            else:
                self._expected[nid] = previous
            self._report_failure(nid, exc, result)
            return
        result.updated.append(nid)

    async def _remove(self, nid, result) -> None:
        previous = self._expected.get(nid, _MISSING)
        self._expected[nid] = None
        try:
            await self._store.delete(NOTIFICATIONS, nid)
        except StoreError as exc:
            if previous is _MISSING:
                self._expected.pop(nid, None)
            else:
                self._expected[nid] = previous
            self._report_failure(nid, exc, result)
            return
        result.removed.append(nid)

    def _report_failure(self, nid, exc, result) -> None:
        logger.error("Deadline notification write failed: %s", exc,
                     extra={"notification_id": nid, "actor_id": self.actor_id})
        result.errors.append(str(exc))
        self._alerts.push("Error saving notification", str(exc), level="error")

    # ── Assignment ────────────────────────────────────────────────────────

    async def notify_assignment(self, item_id: str, item_title: str,
                                previous: Assignment, current: Assignment, *,
                                created: bool) -> list[str]:
        """Emit one "assigned" notification per newly assigned user (actor excluded)."""
        recipients = sorted(
            current.newly_assigned(previous, self._cache.user_ids()) - {self.actor_id}
        )
        if current.kind == AssignmentKind.ALL:
            title = "New Task Assigned to All"
            message = f'{self.actor_email} assigned everyone: "{item_title}"'
        else:
            title = "New Task Assigned" if created else "Task Assigned to You"
            message = f'{self.actor_email} assigned you: "{item_title}"'

        emitted = []
        for uid in recipients:
            notification = Notification(
                id="",
                recipient_id=uid,
                type="assigned",
                title=title,
                message=message,
                work_item_id=item_id,
                timestamp=self._clock(),
            )
            nid = await self.emit(notification)
            if nid is not None:
                emitted.append(nid)
        return emitted

    async def emit(self, notification: Notification) -> str | None:
        """Fan-out: durable record plus in-session alert. Returns the stored id."""
        try:
            nid = await self._store.create(NOTIFICATIONS, notification.to_fields())
        except StoreError as exc:
            logger.error("Notification for %s not saved: %s", notification.recipient_id, exc,
                         extra={"actor_id": self.actor_id, "entity_id": notification.work_item_id})
            self._alerts.push("Error saving notification", str(exc), level="error")
            return None
        logger.info("Notification %s sent to %s", nid, notification.recipient_id,
                    extra={"notification_id": nid, "actor_id": self.actor_id})
        self._alerts.push(notification.title, notification.message,
                          work_item_id=notification.work_item_id)
        return nid

    # ── Inbox actions ─────────────────────────────────────────────────────

    async def mark_read(self, nid: str) -> bool:
        try:
            await self._store.update(NOTIFICATIONS, nid, {"read": True})
        except (StoreError, NotFoundError) as exc:
            logger.error("Mark read failed: %s", exc, extra={"notification_id": nid})
            self._alerts.push("Error updating notification", str(exc), level="error")
            return False
        return True

    async def mark_all_read(self) -> int:
        count = 0
        for n in self._cache.list_all(NOTIFICATIONS):
            if not n.read and await self.mark_read(n.id):
                count += 1
        return count

    async def dismiss(self, nid: str) -> bool:
        try:
            await self._store.delete(NOTIFICATIONS, nid)
        except StoreError as exc:
            logger.error("Dismiss failed: %s", exc, extra={"notification_id": nid})
            self._alerts.push("Error removing notification", str(exc), level="error")
            return False
        self._expected.pop(nid, None)
        return True
