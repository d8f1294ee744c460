"""
worksync
Client-side entity records materialized from store snapshots.

Records:
    - WorkItem (collection "tasks")
    - Project (collection "projects")
    - Service (collection "services")
    - User (collection "users")
    - Notification (collection "notifications")

Each record is immutable; ``from_record`` reads the wire shape (camelCase
fields as written by every client). Notifications, which the engine
writes itself, also have ``to_fields``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from worksync.models.assignment import Assignment
from worksync.utils.helpers import parse_datetime, to_iso


# ── Constants ────────────────────────────────────────────────────────────────

PRIORITIES = ("low", "medium", "high")
DEFAULT_PRIORITY = "medium"

STATUSES = ("todo", "inProgress", "clientChecking", "completed")
DEFAULT_STATUS = "todo"
COMPLETED = "completed"

ROLES = ("admin", "user")
NOTIFICATION_TYPES = ("deadline", "assigned", "info")

TASKS = "tasks"
PROJECTS = "projects"
SERVICES = "services"
USERS = "users"
NOTIFICATIONS = "notifications"


def _id_set(raw) -> frozenset:
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        return frozenset({raw})
    return frozenset(str(v) for v in raw if v)


def _tag_set(raw) -> frozenset:
    if not raw:
        return frozenset()
    if isinstance(raw, str):
        raw = raw.split(",")
    return frozenset(t.strip() for t in raw if t and str(t).strip())


@dataclass(frozen=True)
class ChecklistItem:
    text: str
    completed: bool = False


@dataclass(frozen=True)
class WorkItem:
    id: str
    title: str
    description: str = ""
    due_date: datetime | None = None
    priority: str = DEFAULT_PRIORITY
    status: str = DEFAULT_STATUS
    project_id: str | None = None
    service_id: str | None = None
    assigned_to: Assignment = field(default_factory=Assignment.none)
    watchers: frozenset = field(default_factory=frozenset)
    checklist: tuple = ()
    tags: frozenset = field(default_factory=frozenset)
    owner_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, doc_id: str, data: dict) -> WorkItem:
        checklist = tuple(
            ChecklistItem(text=str(c.get("text", "")), completed=bool(c.get("completed", False)))
            for c in (data.get("checklist") or [])
            if isinstance(c, dict)
        )
        return cls(
            id=doc_id,
            title=data.get("title") or "",
            description=data.get("description") or "",
            due_date=parse_datetime(data.get("dueDate")),
            priority=data.get("priority") or DEFAULT_PRIORITY,
            status=data.get("status") or DEFAULT_STATUS,
            project_id=data.get("projectId") or None,
            service_id=data.get("serviceId") or None,
            assigned_to=Assignment.normalize(data.get("assignedTo")),
            watchers=_id_set(data.get("watchers")),
            checklist=checklist,
            tags=_tag_set(data.get("tags")),
            owner_id=data.get("userId"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
        )

    @property
    def lane(self) -> str:
        """Board lane; unknown or missing statuses fall into ``todo``."""
        return self.status if self.status in STATUSES else DEFAULT_STATUS

    @property
    def is_completed(self) -> bool:
        return self.status == COMPLETED

    @property
    def search_text(self) -> str:
        return f"{self.title} {self.description}".lower()


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    color: str = ""
    owner_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, doc_id: str, data: dict) -> Project:
        return cls(
            id=doc_id,
            name=data.get("name") or "",
            color=data.get("color") or "",
            owner_id=data.get("userId"),
            created_at=parse_datetime(data.get("createdAt")),
        )


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    project_id: str
    description: str = ""
    owner_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, doc_id: str, data: dict) -> Service:
        return cls(
            id=doc_id,
            name=data.get("name") or "",
            project_id=data.get("projectId") or "",
            description=data.get("description") or "",
            owner_id=data.get("userId"),
            created_at=parse_datetime(data.get("createdAt")),
        )


@dataclass(frozen=True)
class User:
    """One record per identity-provider subject; ``id`` is the subject."""

    id: str
    email: str
    display_name: str = ""
    role: str = "user"
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, doc_id: str, data: dict) -> User:
        email = data.get("email") or ""
        return cls(
            id=data.get("uid") or doc_id,
            email=email,
            display_name=data.get("displayName") or email.split("@")[0],
            role=data.get("role") if data.get("role") in ROLES else "user",
            created_at=parse_datetime(data.get("createdAt")),
        )


@dataclass(frozen=True)
class Notification:
    id: str
    recipient_id: str
    type: str
    title: str
    message: str = ""
    work_item_id: str | None = None
    timestamp: datetime | None = None
    read: bool = False
    urgent: bool = False

    @classmethod
    def from_record(cls, doc_id: str, data: dict) -> Notification:
        ntype = data.get("type")
        return cls(
            id=doc_id,
            recipient_id=data.get("recipientUid") or "",
            type=ntype if ntype in NOTIFICATION_TYPES else "info",
            title=data.get("title") or "",
            message=data.get("message") or "",
            work_item_id=data.get("taskId"),
            timestamp=parse_datetime(data.get("timestamp")),
            read=bool(data.get("read", False)),
            urgent=bool(data.get("urgent", False)),
        )

    def to_fields(self) -> dict:
        return {
            "recipientUid": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "taskId": self.work_item_id,
            "timestamp": to_iso(self.timestamp),
            "read": self.read,
            "urgent": self.urgent,
        }


ENTITY_TYPES = {
    TASKS: WorkItem,
    PROJECTS: Project,
    SERVICES: Service,
    USERS: User,
    NOTIFICATIONS: Notification,
}
