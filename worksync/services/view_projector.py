"""
View Projector — pure (cache, view state) → presentation lists.

Nothing here holds state or performs I/O. Every function takes the
entities it needs plus an explicit ``now`` and returns fresh tuples, so
the same inputs always produce the same output.

Filter semantics (an empty criterion passes):
    status    exact match on ``status`` (missing status reads as "todo")
    project   exact match on ``project_id``
    assignee  "unassigned" ⇒ empty assignment; otherwise membership,
              with the All assignment matching any assignee
    client    case-insensitive substring of "title description"

List order: newest ``created_at`` first, records without a creation time
last, ties in snapshot arrival order. Boards partition the filtered list
into the four fixed lanes; unknown statuses land in "todo".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from worksync.models.entities import NOTIFICATIONS, PROJECTS, STATUSES, TASKS

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# View state
# ═════════════════════════════════════════════════════════════════════════════

MAIN_VIEWS = ("home", "list", "kanban", "everything", "project-detail", "service-board", "inbox")
QUICK_FILTERS = ("all", "today", "upcoming", "completed")
LAYOUTS = ("list", "board")
WORK_TABS = ("todo", "done")
WORK_SUB_FILTERS = ("today", "overdue", "next", "unscheduled")
INBOX_FILTERS = ("all", "deadlines", "assigned", "unread")


@dataclass(frozen=True)
class EverythingFilters:
    """Filter set of the "everything" view."""
    project: str | None = None
    client: str = ""
    assignee: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class ViewState:
    """Transient per-session view selection; never persisted."""
    main_view: str = "home"
    quick_filter: str = "all"
    everything: EverythingFilters = field(default_factory=EverythingFilters)
    everything_layout: str = "list"
    project_id: str | None = None
    service_id: str | None = None
    work_tab: str = "todo"
    work_sub_filter: str = "today"
    inbox_filter: str = "all"
    search: str = ""


# ═════════════════════════════════════════════════════════════════════════════
# Projection results
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ListProjection:
    view: str
    items: tuple


@dataclass(frozen=True)
class BoardProjection:
    view: str
    lanes: dict

    def all_items(self) -> list:
        return [item for lane in STATUSES for item in self.lanes[lane]]


@dataclass(frozen=True)
class HomeStats:
    total: int
    in_progress: int
    completed: int
    overdue: int
    completion_rate: int


@dataclass(frozen=True)
class HomeProjection:
    view: str
    stats: HomeStats
    my_work: tuple
    assigned_to_me: tuple
    assigned_total: int


@dataclass(frozen=True)
class ServiceSummary:
    service: object
    item_count: int


@dataclass(frozen=True)
class ProjectDetailProjection:
    view: str
    project: object
    project_name: str
    services: tuple


@dataclass(frozen=True)
class InboxEntry:
    id: str
    kind: str                 # "notification" or "task"
    type: str                 # deadline / assigned / info, or "assigned" for task entries
    title: str
    message: str
    work_item_id: str | None
    timestamp: datetime | None
    read: bool
    urgent: bool = False


@dataclass(frozen=True)
class InboxProjection:
    view: str
    entries: tuple
    counts: dict


# ═════════════════════════════════════════════════════════════════════════════
# Filtering, ordering, partitioning
# ═════════════════════════════════════════════════════════════════════════════

def matches_filters(item, filters: EverythingFilters) -> bool:
    if filters.project and item.project_id != filters.project:
        return False
    client = (filters.client or "").strip().lower()
    if client and client not in item.search_text:
        return False
    if not item.assigned_to.matches_filter(filters.assignee):
        return False
    if filters.status and item.status != filters.status:
        return False
    return True


def filter_items(items, filters: EverythingFilters) -> list:
    return [item for item in items if matches_filters(item, filters)]


def search_items(items, term: str) -> list:
    """Case-insensitive substring search over title, description and tags."""
    needle = (term or "").strip().lower()
    if not needle:
        return list(items)
    return [
        item for item in items
        if needle in item.search_text or any(needle in tag.lower() for tag in item.tags)
    ]


def order_items(items) -> list:
    """Newest first; undated records last; ties keep arrival order."""
    dated = [i for i in items if i.created_at is not None]
    undated = [i for i in items if i.created_at is None]
    return sorted(dated, key=lambda i: i.created_at, reverse=True) + undated


def partition_lanes(items) -> dict:
    lanes = {status: [] for status in STATUSES}
    for item in items:
        lanes[item.lane].append(item)
    return {status: tuple(lanes[status]) for status in STATUSES}


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _due_day(item) -> datetime | None:
    return _start_of_day(item.due_date) if item.due_date else None


def apply_quick_filter(items, quick_filter: str, now: datetime) -> list:
    """Sidebar filters; calendar days are taken in ``now``'s timezone."""
    today = _start_of_day(now)
    tomorrow = today + timedelta(days=1)
    if quick_filter == "today":
        return [i for i in items if i.due_date and _due_day(i) == today]
    if quick_filter == "upcoming":
        return [i for i in items if i.due_date and i.due_date >= tomorrow]
    if quick_filter == "completed":
        return [i for i in items if i.is_completed]
    return list(items)


def work_queue(items, tab: str, sub_filter: str, now: datetime) -> list:
    """Personal work queue of the home view."""
    if tab == "done":
        return [i for i in items if i.is_completed]
    today = _start_of_day(now)
    tomorrow = today + timedelta(days=1)
    open_items = [i for i in items if not i.is_completed]
    if sub_filter == "today":
        return [i for i in open_items if i.due_date and _due_day(i) == today]
    if sub_filter == "overdue":
        return [i for i in open_items if i.due_date and _due_day(i) < today]
    if sub_filter == "next":
        return [i for i in open_items if i.due_date and _due_day(i) >= tomorrow]
    if sub_filter == "unscheduled":
        return [i for i in open_items if not i.due_date]
    return open_items


def assigned_to_user(items, user_id: str) -> list:
    """Incomplete items whose assignment covers ``user_id``."""
    return [i for i in items if not i.is_completed and i.assigned_to.includes(user_id)]


def home_stats(items, now: datetime) -> HomeStats:
    total = len(items)
    completed = sum(1 for i in items if i.is_completed)
    return HomeStats(
        total=total,
        in_progress=sum(1 for i in items if i.status == "inProgress"),
        completed=completed,
        overdue=sum(1 for i in items if not i.is_completed and i.due_date and i.due_date < now),
        completion_rate=round(completed / total * 100) if total else 0,
    )


def inbox_entries(notifications, assigned_items, inbox_filter: str) -> list:
    """Durable notifications plus assigned items, newest first."""
    entries = []
    if inbox_filter in ("all", "assigned"):
        for item in assigned_items:
            entries.append(InboxEntry(
                id=f"task-{item.id}",
                kind="task",
                type="assigned",
                title=item.title,
                message=f"Status: {item.status}",
                work_item_id=item.id,
                timestamp=item.created_at,
                read=item.is_completed,
            ))
    for n in notifications:
        if inbox_filter == "deadlines" and n.type != "deadline":
            continue
        if inbox_filter == "assigned" and n.type != "assigned":
            continue
        if inbox_filter == "unread" and n.read:
            continue
        entries.append(InboxEntry(
            id=n.id,
            kind="notification",
            type=n.type,
            title=n.title,
            message=n.message,
            work_item_id=n.work_item_id,
            timestamp=n.timestamp,
            read=n.read,
            urgent=n.urgent,
        ))
    dated = [e for e in entries if e.timestamp is not None]
    undated = [e for e in entries if e.timestamp is None]
    return sorted(dated, key=lambda e: e.timestamp, reverse=True) + undated


def inbox_counts(notifications, assigned_items) -> dict:
    return {
        "all": len(notifications) + len(assigned_items),
        "deadlines": sum(1 for n in notifications if n.type == "deadline"),
        "assigned": len(assigned_items) + sum(1 for n in notifications if n.type == "assigned"),
        "unread": (sum(1 for n in notifications if not n.read)
                   + sum(1 for i in assigned_items if not i.is_completed)),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Entry point
# ═════════════════════════════════════════════════════════════════════════════

def project(state: ViewState, cache, *, actor_id: str, now: datetime,
            preview_limit: int = 10):
    """Project the cache through ``state`` into the active view's presentation."""
    items = order_items(cache.list_all(TASKS))
    view = state.main_view

    if view == "list":
        listed = search_items(apply_quick_filter(items, state.quick_filter, now), state.search)
        return ListProjection(view, tuple(listed))

    if view == "kanban":
        listed = search_items(apply_quick_filter(items, state.quick_filter, now), state.search)
        return BoardProjection(view, partition_lanes(listed))

    if view == "everything":
        filtered = filter_items(items, state.everything)
        if state.everything_layout == "board":
            return BoardProjection(view, partition_lanes(filtered))
        return ListProjection(view, tuple(filtered))

    if view == "service-board":
        service_items = order_items(cache.list_by_service(state.service_id)) if state.service_id else []
        return BoardProjection(view, partition_lanes(service_items))

    if view == "project-detail":
        services = tuple(
            ServiceSummary(service=s, item_count=len(cache.list_by_service(s.id)))
            for s in cache.services_for_project(state.project_id)
        ) if state.project_id else ()
        return ProjectDetailProjection(
            view=view,
            project=cache.get(PROJECTS, state.project_id),
            project_name=cache.project_name(state.project_id),
            services=services,
        )

    if view == "inbox":
        notifications = cache.list_all(NOTIFICATIONS)
        assigned = [i for i in items if i.assigned_to.includes(actor_id)]
        return InboxProjection(
            view=view,
            entries=tuple(inbox_entries(notifications, assigned, state.inbox_filter)),
            counts=inbox_counts(notifications, assigned),
        )

    assigned = assigned_to_user(items, actor_id)
    return HomeProjection(
        view="home",
        stats=home_stats(items, now),
        my_work=tuple(work_queue(items, state.work_tab, state.work_sub_filter, now)),
        assigned_to_me=tuple(assigned[:preview_limit]),
        assigned_total=len(assigned),
    )
