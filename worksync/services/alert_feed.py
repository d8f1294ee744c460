"""
Ephemeral in-session alerts.

Two surfaces, both gone when the session ends:
  - toasts: short-lived alerts that expire ``ttl_seconds`` after they were
    raised, regardless of what happens to any durable notification;
  - panel: the session notification panel, which keeps every alert until
    it is cleared and tracks its own unread count.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from worksync.utils.helpers import utcnow

logger = logging.getLogger(__name__)

ALERT_LEVELS = ("info", "success", "error")


@dataclass(frozen=True)
class Alert:
    id: int
    title: str
    message: str
    level: str
    raised_at: datetime
    expires_at: datetime
    work_item_id: str | None = None
    seen: bool = False


class AlertFeed:
    """Toasts plus the session notification panel."""

    def __init__(self, ttl_seconds: float = 3, clock: Callable[[], datetime] = utcnow) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._ids = itertools.count(1)
        self._toasts: list[Alert] = []
        self._panel: list[Alert] = []

    def push(self, title: str, message: str = "", *, level: str = "info",
             work_item_id: str | None = None) -> Alert:
        if level not in ALERT_LEVELS:
            level = "info"
        now = self._clock()
        alert = Alert(
            id=next(self._ids),
            title=title,
            message=message,
            level=level,
            raised_at=now,
            expires_at=now + self.ttl,
            work_item_id=work_item_id,
        )
        self._prune(now)
        self._toasts.append(alert)
        self._panel.insert(0, alert)
        log = logger.warning if level == "error" else logger.info
        log("Alert: %s %s", title, message, extra={"entity_id": work_item_id})
        return alert

    def _prune(self, now: datetime) -> None:
        self._toasts = [a for a in self._toasts if a.expires_at > now]

    def active_toasts(self) -> list[Alert]:
        """Unexpired toasts; expired ones are dropped on every push and read."""
        self._prune(self._clock())
        return list(self._toasts)

    @property
    def panel(self) -> list[Alert]:
        return list(self._panel)

    def unread_count(self) -> int:
        return sum(1 for a in self._panel if not a.seen)

    def mark_all_seen(self) -> None:
        """Opening the panel marks everything in it as seen."""
        self._panel = [replace(a, seen=True) for a in self._panel]

    def clear_panel(self) -> None:
        self._panel = []

    def reset(self) -> None:
        self._toasts = []
        self._panel = []
