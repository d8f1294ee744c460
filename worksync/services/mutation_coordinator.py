"""
Optimistic Mutation Coordinator.

Every user intent that changes persistent state goes through here:

    intent ─► validate ─► (optional) speculative cache patch ─► async store write
                                                          │
                                         success: clear pending, success alert
                                         failure: error alert, NO rollback

Speculative state: at most one pending value per entity. A second edit
before confirmation replaces the tracked value. While pending, the value
is held over every incoming tasks snapshot, so a snapshot that was
already on its way cannot bounce the item back. The entry goes away when
its write returns: on success the store agrees with it, on failure the
cache keeps the speculative value until the next snapshot corrects it.

Failures never propagate to the caller: each operation returns a
``MutationResult`` and pushes an error alert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from worksync.core.exceptions import (
    CascadeDeleteError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from worksync.models.assignment import Assignment
from worksync.models.entities import (
    COMPLETED,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    PRIORITIES,
    PROJECTS,
    SERVICES,
    STATUSES,
    TASKS,
)
from worksync.utils.helpers import parse_datetime, to_iso

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    ok: bool
    value: object = None
    error: Exception | None = None

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""


@dataclass
class PendingEdit:
    """The speculative value tracked for one entity."""
    collection: str
    entity_id: str
    changes: dict = field(default_factory=dict)


def _unique(values) -> list:
    seen = []
    for v in values or ():
        if v and v not in seen:
            seen.append(v)
    return seen


def _assignment_input(raw) -> Assignment:
    """Editor input (a sentinel, one id or a list of ids) as an Assignment."""
    if isinstance(raw, (list, tuple, set, frozenset)):
        raw = _unique(raw)
    return Assignment.normalize(raw)


class MutationCoordinator:
    """Speculative edits plus remote writes for one session."""

    def __init__(self, store, cache, alerts, notifications, *, actor_id: str) -> None:
        self._store = store
        self._cache = cache
        self._alerts = alerts
        self._notifications = notifications
        self.actor_id = actor_id
        self.pending: dict[str, PendingEdit] = {}

    def detach(self) -> None:
        for edit in self.pending.values():
            self._cache.release(edit.collection, edit.entity_id)
        self.pending.clear()

    def _begin_edit(self, collection: str, entity_id: str, changes: dict) -> PendingEdit:
        edit = PendingEdit(collection, entity_id, dict(changes))
        self.pending[entity_id] = edit
        self._cache.hold(collection, entity_id, **changes)
        self._cache.apply_local_patch(collection, entity_id, **changes)
        return edit

    def _end_edit(self, edit: PendingEdit) -> None:
        """Forget ``edit`` unless a later edit of the same entity replaced it."""
        if self.pending.get(edit.entity_id) is edit:
            del self.pending[edit.entity_id]
            self._cache.release(edit.collection, edit.entity_id)

    def _fail(self, title: str, exc: Exception, **extra) -> MutationResult:
        logger.error("%s: %s", title, exc, extra={"actor_id": self.actor_id, **extra})
        self._alerts.push(title, str(exc), level="error")
        return MutationResult(ok=False, error=exc)

    # ═════════════════════════════════════════════════════════════════════
    # Optimistic status changes
    # ═════════════════════════════════════════════════════════════════════

    async def move_to_lane(self, item_id: str, status: str) -> MutationResult:
        """Lane move: patch the cache now, write in the background of the caller."""
        if status not in STATUSES:
            return self._fail("Error moving task",
                              ValidationError(f"Unknown status: {status}", {"status": status}),
                              entity_id=item_id)
        if self._cache.get(TASKS, item_id) is None:
            return self._fail("Error moving task", NotFoundError(TASKS, item_id), entity_id=item_id)

        edit = self._begin_edit(TASKS, item_id, {"status": status})
        try:
            await self._store.update(TASKS, item_id, {"status": status})
        except (StoreError, NotFoundError) as exc:
            self._end_edit(edit)
            return self._fail("Error moving task", exc, entity_id=item_id)

        self._end_edit(edit)
        self._alerts.push("Task Updated", "Task moved successfully!", level="success",
                          work_item_id=item_id)
        return MutationResult(ok=True, value=status)

    async def toggle_complete(self, item_id: str) -> MutationResult:
        item = self._cache.get(TASKS, item_id)
        if item is None:
            return self._fail("Error updating task", NotFoundError(TASKS, item_id), entity_id=item_id)
        return await self.move_to_lane(item_id, DEFAULT_STATUS if item.is_completed else COMPLETED)

    # ═════════════════════════════════════════════════════════════════════
    # Work items
    # ═════════════════════════════════════════════════════════════════════

    def _validate_item(self, data: dict, *, creating: bool) -> None:
        errors = {}
        title = (data.get("title") or "").strip() if "title" in data or creating else None
        if title is not None and not title:
            errors["title"] = "required"

        status = data.get("status")
        if status is not None and status not in STATUSES:
            errors["status"] = f"must be one of {', '.join(STATUSES)}"
        priority = data.get("priority")
        if priority is not None and priority not in PRIORITIES:
            errors["priority"] = f"must be one of {', '.join(PRIORITIES)}"

        project_id = data.get("project_id")
        service_id = data.get("service_id")
        if creating and not data.get("from_service_board"):
            if not project_id:
                errors["project_id"] = "required"
            if not service_id:
                errors["service_id"] = "required"
        if service_id:
            service = self._cache.get(SERVICES, service_id)
            if service is not None and project_id and service.project_id != project_id:
                errors["service_id"] = "does not belong to the selected project"

        if "due_date" in data and data["due_date"] not in (None, "") \
                and parse_datetime(data["due_date"]) is None:
            errors["due_date"] = "invalid date"

        if errors:
            raise ValidationError("Invalid task", details=errors)

    def _item_fields(self, data: dict) -> dict:
        """Editor keys (snake_case) to stored fields; only keys present are written."""
        mapping = {
            "title": ("title", lambda v: (v or "").strip()),
            "description": ("description", lambda v: v or ""),
            "due_date": ("dueDate", lambda v: to_iso(parse_datetime(v)) if v else None),
            "priority": ("priority", lambda v: v),
            "status": ("status", lambda v: v),
            "project_id": ("projectId", lambda v: v or None),
            "service_id": ("serviceId", lambda v: v or None),
            "assigned_to": ("assignedTo", lambda v: _assignment_input(v).to_raw()),
            "watchers": ("watchers", _unique),
            "checklist": ("checklist", lambda v: [
                {"text": c["text"].strip(), "completed": bool(c.get("completed", False))}
                for c in (v or [])
                if (c.get("text") or "").strip()
            ]),
            "tags": ("tags", lambda v: _unique(
                [t.strip() for t in (v.split(",") if isinstance(v, str) else v or [])]
            )),
        }
        fields = {}
        for key, (name, convert) in mapping.items():
            if key in data:
                fields[name] = convert(data[key])
        return fields

    async def create_item(self, data: dict) -> MutationResult:
        """Create a work item and notify its assignees."""
        try:
            self._validate_item(data, creating=True)
        except ValidationError as exc:
            return self._fail("Error saving task", exc)

        service = self._cache.get(SERVICES, data.get("service_id"))
        payload = {
            "description": "",
            "dueDate": None,
            "priority": DEFAULT_PRIORITY,
            "assignedTo": None,
            "watchers": [],
            "checklist": [],
            "tags": [],
        }
        payload.update(self._item_fields(data))
        payload["status"] = DEFAULT_STATUS
        payload["userId"] = self.actor_id
        if not payload.get("projectId") and service is not None:
            payload["projectId"] = service.project_id

        try:
            item_id = await self._store.create(TASKS, payload)
        except StoreError as exc:
            return self._fail("Error saving task", exc)
        logger.info("Task %s created", item_id, extra={"entity_id": item_id, "actor_id": self.actor_id})

        await self._notifications.notify_assignment(
            item_id, payload["title"], Assignment.none(),
            Assignment.normalize(payload["assignedTo"]), created=True,
        )
        return MutationResult(ok=True, value=item_id)

    async def update_item(self, item_id: str, data: dict) -> MutationResult:
        """Merge editor changes into an item; newly added assignees are notified."""
        previous = self._cache.get(TASKS, item_id)
        if previous is None:
            return self._fail("Error saving task", NotFoundError(TASKS, item_id), entity_id=item_id)
        merged = {"project_id": previous.project_id, **data}
        try:
            self._validate_item(merged, creating=False)
        except ValidationError as exc:
            return self._fail("Error saving task", exc, entity_id=item_id)

        fields = self._item_fields(data)
        try:
            await self._store.update(TASKS, item_id, fields)
        except (StoreError, NotFoundError) as exc:
            return self._fail("Error saving task", exc, entity_id=item_id)
        logger.info("Task %s updated (%s)", item_id, ", ".join(sorted(fields)),
                    extra={"entity_id": item_id, "actor_id": self.actor_id})

        if "assignedTo" in fields:
            await self._notifications.notify_assignment(
                item_id, fields.get("title", previous.title), previous.assigned_to,
                Assignment.normalize(fields["assignedTo"]), created=False,
            )
        return MutationResult(ok=True, value=item_id)

    async def delete_item(self, item_id: str) -> MutationResult:
        try:
            await self._store.delete(TASKS, item_id)
        except StoreError as exc:
            return self._fail("Error deleting task", exc, entity_id=item_id)
        self.pending.pop(item_id, None)
        logger.info("Task %s deleted", item_id, extra={"entity_id": item_id, "actor_id": self.actor_id})
        return MutationResult(ok=True, value=item_id)

    # ═════════════════════════════════════════════════════════════════════
    # Projects and services
    # ═════════════════════════════════════════════════════════════════════

    async def create_project(self, name: str, color: str = "#667eea") -> MutationResult:
        name = (name or "").strip()
        if not name:
            return self._fail("Error creating project",
                              ValidationError("Project name is required", {"name": "required"}))
        try:
            project_id = await self._store.create(PROJECTS, {
                "name": name,
                "color": color,
                "userId": self.actor_id,
            })
        except StoreError as exc:
            return self._fail("Error creating project", exc)
        logger.info("Project %s created", project_id, extra={"entity_id": project_id})
        return MutationResult(ok=True, value=project_id)

    async def create_service(self, project_id: str, name: str, description: str = "") -> MutationResult:
        name = (name or "").strip()
        errors = {}
        if not name:
            errors["name"] = "required"
        if not project_id:
            errors["project_id"] = "required"
        if errors:
            return self._fail("Error creating service",
                              ValidationError("Invalid service", details=errors))
        try:
            service_id = await self._store.create(SERVICES, {
                "name": name,
                "description": description or "",
                "projectId": project_id,
                "userId": self.actor_id,
            })
        except StoreError as exc:
            return self._fail("Error creating service", exc)
        logger.info("Service %s created in project %s", service_id, project_id,
                    extra={"entity_id": service_id})
        return MutationResult(ok=True, value=service_id)

    async def _cascade(self, resource: str, resource_id: str, targets: list) -> MutationResult:
        """Delete ``targets`` in order; stop at the first failure without rollback."""
        deleted = []
        for collection, doc_id in targets:
            try:
                await self._store.delete(collection, doc_id)
            except StoreError as exc:
                error = CascadeDeleteError(resource, resource_id, deleted, (collection, doc_id), exc)
                return self._fail("Error deleting", error, entity_id=resource_id)
            deleted.append((collection, doc_id))
        logger.info("Cascade delete of %s/%s removed %d record(s)", resource, resource_id,
                    len(deleted), extra={"collection": resource, "entity_id": resource_id})
        return MutationResult(ok=True, value=deleted)

    async def delete_service(self, service_id: str) -> MutationResult:
        """Delete a service and every item that references it."""
        targets = [(TASKS, item.id) for item in self._cache.list_by_service(service_id)]
        targets.append((SERVICES, service_id))
        return await self._cascade(SERVICES, service_id, targets)

    async def delete_project(self, project_id: str) -> MutationResult:
        """Delete a project, its services, and every item under either."""
        services = self._cache.services_for_project(project_id)
        item_ids = [item.id for item in self._cache.list_by_project(project_id)]
        for service in services:
            item_ids.extend(item.id for item in self._cache.list_by_service(service.id))
        targets = [(TASKS, item_id) for item_id in _unique(item_ids)]
        targets.extend((SERVICES, s.id) for s in services)
        targets.append((PROJECTS, project_id))
        return await self._cascade(PROJECTS, project_id, targets)
