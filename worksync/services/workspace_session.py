"""
Workspace Session — the one controller that owns a signed-in actor's state.

Holds the explicit ``AppState`` (actor, admin flag, view selection) and
the per-session components, wired leaves first:

    DocumentStore ─► SubscriptionManager ─► EntityCache ─► ViewProjector
                                                     ├──► NotificationEngine
                                                     └──► BadgeAggregator
    MutationCoordinator sits beside the cache and writes to the store.

Lifecycle:
    session = WorkspaceSession(store, app.config)
    await session.start(user_id, email)      # user record + five subscriptions
    await session.wait_until_synced()        # first snapshot of every collection
    session.set_view("kanban")
    board = session.project()
    session.end()                            # synchronous teardown

Nothing is module-global: two sessions over one store are independent.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Callable

from worksync.core.exceptions import StoreError, ValidationError
from worksync.models.entities import NOTIFICATIONS, PROJECTS, SERVICES, STATUSES, TASKS, USERS
from worksync.services import view_projector
from worksync.services.alert_feed import AlertFeed
from worksync.services.badge_aggregator import BadgeCounts, compute_badges
from worksync.services.entity_cache import EntityCache
from worksync.services.mutation_coordinator import MutationCoordinator
from worksync.services.notification_engine import NotificationEngine
from worksync.services.subscription_manager import SubscriptionManager
from worksync.services.view_projector import EverythingFilters, ViewState
from worksync.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SYNCED_COLLECTIONS = (TASKS, PROJECTS, SERVICES, USERS, NOTIFICATIONS)


@dataclass
class AppState:
    """Explicit application state of one session."""
    actor_id: str | None = None
    actor_email: str = ""
    is_admin: bool = False
    started: bool = False
    view: ViewState = field(default_factory=ViewState)
    subscription_errors: list = field(default_factory=list)


class WorkspaceSession:
    """Controller for one authenticated actor."""

    def __init__(self, store, config, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.config = config
        self._clock = clock
        self.state = AppState()
        self.cache = EntityCache()
        self.alerts = AlertFeed(ttl_seconds=config.get("ALERT_TTL_SECONDS", 3), clock=clock)
        self.subscriptions = SubscriptionManager(store)
        self.notifications: NotificationEngine | None = None
        self.mutations: MutationCoordinator | None = None
        self.last_deadline_scan = None
        self._tasks: set[asyncio.Task] = set()
        self._scan_task: asyncio.Task | None = None
        self._rescan = False

    # ═════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═════════════════════════════════════════════════════════════════════

    def is_admin_email(self, email: str) -> bool:
        allowed = {e.strip().lower() for e in self.config.get("ADMIN_EMAILS", ())}
        return (email or "").strip().lower() in allowed

    async def start(self, user_id: str, email: str) -> AppState:
        """Begin a session for the authenticated actor."""
        if self.state.started:
            raise RuntimeError("Session already started; call end() first")
        if not user_id:
            raise ValidationError("user_id is required", {"user_id": "required"})

        self.state = AppState(
            actor_id=user_id,
            actor_email=email or "",
            is_admin=self.is_admin_email(email),
            started=True,
        )
        self.notifications = NotificationEngine(
            self.store, self.cache, self.alerts,
            actor_id=user_id,
            actor_email=email or "",
            window_hours=self.config.get("DEADLINE_WINDOW_HOURS", 48),
            urgent_hours=self.config.get("DEADLINE_URGENT_HOURS", 24),
            clock=self._clock,
        )
        self.mutations = MutationCoordinator(
            self.store, self.cache, self.alerts, self.notifications, actor_id=user_id,
        )

        await self._ensure_user_record()
        self._open_subscriptions()
        logger.info("Session started (admin=%s)", self.state.is_admin, extra={"actor_id": user_id})
        return self.state

    async def _ensure_user_record(self) -> None:
        uid = self.state.actor_id
        try:
            if await self.store.get(USERS, uid) is not None:
                return
            email = self.state.actor_email
            await self.store.set(USERS, uid, {
                "uid": uid,
                "email": email,
                "displayName": email.split("@")[0],
                "role": "admin" if self.state.is_admin else "user",
            })
            logger.info("User record created", extra={"actor_id": uid})
        except StoreError as exc:
            logger.error("Could not create user record: %s", exc, extra={"actor_id": uid})
            self.alerts.push("Profile error", str(exc), level="error")

    def _open_subscriptions(self) -> None:
        subscribe = self.subscriptions.subscribe
        on_error = self._on_subscription_error
        subscribe(TASKS, partial(self._on_snapshot, TASKS), order_by="createdAt", on_error=on_error)
        subscribe(PROJECTS, partial(self._on_snapshot, PROJECTS), order_by="createdAt", on_error=on_error)
        subscribe(SERVICES, partial(self._on_snapshot, SERVICES), order_by="createdAt", on_error=on_error)
        subscribe(USERS, partial(self._on_snapshot, USERS), on_error=on_error)
        subscribe(
            NOTIFICATIONS, partial(self._on_snapshot, NOTIFICATIONS),
            where=("recipientUid", self.state.actor_id), order_by="timestamp", on_error=on_error,
        )

    def end(self) -> None:
        """Tear the session down; subscriptions detach before the cache is cleared."""
        actor_id = self.state.actor_id
        detached = self.subscriptions.unsubscribe_all()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._scan_task = None
        self._rescan = False
        if self.mutations is not None:
            self.mutations.detach()
        self.cache.clear()
        self.alerts.reset()
        self.state = AppState()
        self.notifications = None
        self.mutations = None
        self.last_deadline_scan = None
        logger.info("Session ended (%d subscriptions detached)", detached, extra={"actor_id": actor_id})

    # ═════════════════════════════════════════════════════════════════════
    # Snapshot handling
    # ═════════════════════════════════════════════════════════════════════

    def _on_snapshot(self, collection: str, snapshot) -> None:
        if not self.state.started:
            return
        signals = self.cache.apply_snapshot(collection, snapshot.records)
        if collection == TASKS:
            for signal in signals:
                self.alerts.push("New Task Created", f'"{signal.entity.title}" was added',
                                 work_item_id=signal.record_id)
        if collection == NOTIFICATIONS:
            self.notifications.reconcile()
        if collection in (TASKS, NOTIFICATIONS):
            self._schedule_deadline_scan()

    def _on_subscription_error(self, error) -> None:
        self.state.subscription_errors.append(error)
        self.alerts.push("Sync error", str(error), level="error")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc,
                         extra={"actor_id": self.state.actor_id})

    def _schedule_deadline_scan(self) -> None:
        if self._scan_task is not None and not self._scan_task.done():
            self._rescan = True
            return
        self._scan_task = self._spawn(self._run_deadline_scans())

    async def _run_deadline_scans(self) -> None:
        while True:
            self._rescan = False
            self.last_deadline_scan = await self.notifications.evaluate_deadlines()
            if not self._rescan:
                return

    async def settle(self, max_rounds: int = 100) -> None:
        """Run the loop until no snapshot delivery or background task is pending."""
        for _ in range(max_rounds):
            await asyncio.sleep(0)
            running = {t for t in self._tasks if not t.done()}
            if running:
                await asyncio.wait(running)
                continue
            if self.store.pending_deliveries == 0:
                return
        logger.warning("Session did not settle after %d rounds", max_rounds,
                       extra={"actor_id": self.state.actor_id})

    async def wait_until_synced(self) -> bool:
        """Settle, then report whether every collection has had its first snapshot."""
        await self.settle()
        return all(self.cache.is_loaded(c) for c in SYNCED_COLLECTIONS)

    def add_change_listener(self, callback: Callable[[str, str], None]) -> None:
        """Presentation hook: ``callback(collection, source)`` after every cache change."""
        self.cache.add_listener(callback)

    # ═════════════════════════════════════════════════════════════════════
    # View state
    # ═════════════════════════════════════════════════════════════════════

    def _update_view(self, **changes) -> ViewState:
        self.state.view = dataclasses.replace(self.state.view, **changes)
        return self.state.view

    @staticmethod
    def _check(value, allowed, name):
        if value not in allowed:
            raise ValidationError(f"Unknown {name}: {value}", {name: f"must be one of {', '.join(allowed)}"})

    def set_view(self, main_view: str) -> ViewState:
        self._check(main_view, view_projector.MAIN_VIEWS, "view")
        return self._update_view(main_view=main_view)

    def set_quick_filter(self, quick_filter: str) -> ViewState:
        self._check(quick_filter, view_projector.QUICK_FILTERS, "quick_filter")
        return self._update_view(quick_filter=quick_filter)

    def set_search(self, term: str) -> ViewState:
        """Search box of the list and kanban views; empty shows everything."""
        return self._update_view(search=(term or "").strip())

    def set_everything_filters(self, **filters) -> ViewState:
        """Replace any of project / client / assignee / status; others are kept."""
        if filters.get("status"):
            self._check(filters["status"], STATUSES, "status")
        current = self.state.view.everything
        return self._update_view(everything=dataclasses.replace(current, **filters))

    def clear_everything_filters(self) -> ViewState:
        return self._update_view(everything=EverythingFilters())

    def set_layout(self, layout: str) -> ViewState:
        self._check(layout, view_projector.LAYOUTS, "layout")
        return self._update_view(everything_layout=layout)

    def set_work_tab(self, tab: str, sub_filter: str | None = None) -> ViewState:
        self._check(tab, view_projector.WORK_TABS, "work_tab")
        changes = {"work_tab": tab}
        if sub_filter is not None:
            self._check(sub_filter, view_projector.WORK_SUB_FILTERS, "work_sub_filter")
            changes["work_sub_filter"] = sub_filter
        return self._update_view(**changes)

    def set_inbox_filter(self, inbox_filter: str) -> ViewState:
        self._check(inbox_filter, view_projector.INBOX_FILTERS, "inbox_filter")
        return self._update_view(inbox_filter=inbox_filter)

    def open_project(self, project_id: str) -> ViewState:
        return self._update_view(main_view="project-detail", project_id=project_id, service_id=None)

    def open_service(self, service_id: str) -> ViewState:
        service = self.cache.get(SERVICES, service_id)
        project_id = service.project_id if service else self.state.view.project_id
        return self._update_view(main_view="service-board", service_id=service_id, project_id=project_id)

    def open_alert_panel(self) -> list:
        self.alerts.mark_all_seen()
        return self.alerts.panel

    def clear_alert_panel(self) -> None:
        self.alerts.clear_panel()

    # ═════════════════════════════════════════════════════════════════════
    # Derived output
    # ═════════════════════════════════════════════════════════════════════

    def project(self):
        """Projection of the active view over the current cache."""
        return view_projector.project(
            self.state.view, self.cache,
            actor_id=self.state.actor_id,
            now=self._clock(),
            preview_limit=self.config.get("ASSIGNED_PREVIEW_LIMIT", 10),
        )

    def badges(self) -> BadgeCounts:
        return compute_badges(self.cache, self.alerts, actor_id=self.state.actor_id, now=self._clock())
