"""
Local Entity Cache — id-keyed, in-memory mirror of every subscribed collection.

Each snapshot replaces the whole collection at once: the new state
(records plus by-project / by-service / by-assignee indexes) is built
aside and swapped in with a single assignment, so readers never observe
a half-applied snapshot. De-duplication by id happens here and nowhere
else (for users the id is the identity-provider subject; last seen wins).

All reads are synchronous and never touch the network.

New-record signal: the first snapshot of a collection sets the baseline
count. Any later snapshot whose record count exceeds the previous count
yields exactly one ``NewRecordSignal`` naming the first record in
snapshot order. This is a count heuristic, not a diff: two creations in
one snapshot still yield one signal, and a create paired with a delete
yields none.

Held changes: an entity with an unconfirmed speculative edit keeps that
edit across snapshots (``hold``) until the writer confirms or gives up
(``release``).
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable

from worksync.models.assignment import AssignmentKind
from worksync.models.entities import ENTITY_TYPES, PROJECTS, SERVICES, TASKS, USERS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewRecordSignal:
    collection: str
    record_id: str
    entity: object


class _CollectionState:
    """Immutable materialization of one collection plus its derived indexes."""

    __slots__ = ("entities", "by_id", "by_project", "by_service", "by_assignee", "everyone")

    def __init__(self, entities) -> None:
        self.entities = tuple(entities)
        self.by_id = {e.id: e for e in self.entities}
        by_project: dict[str, list[str]] = {}
        by_service: dict[str, list[str]] = {}
        by_assignee: dict[str, list[str]] = {}
        everyone: list[str] = []
        for e in self.entities:
            project_id = getattr(e, "project_id", None)
            if project_id:
                by_project.setdefault(project_id, []).append(e.id)
            service_id = getattr(e, "service_id", None)
            if service_id:
                by_service.setdefault(service_id, []).append(e.id)
            assignment = getattr(e, "assigned_to", None)
            if assignment is not None:
                if assignment.kind == AssignmentKind.ALL:
                    everyone.append(e.id)
                for uid in assignment.user_ids:
                    by_assignee.setdefault(uid, []).append(e.id)
        self.by_project = {k: tuple(v) for k, v in by_project.items()}
        self.by_service = {k: tuple(v) for k, v in by_service.items()}
        self.by_assignee = {k: tuple(v) for k, v in by_assignee.items()}
        self.everyone = tuple(everyone)

    def select(self, ids) -> list:
        wanted = set(ids)
        return [e for e in self.entities if e.id in wanted]


_EMPTY = _CollectionState(())


class EntityCache:
    """Per-session cache of tasks, projects, services, users and notifications."""

    def __init__(self) -> None:
        self._collections: dict[str, _CollectionState] = {}
        self._counts: dict[str, int] = {}
        self._held: dict[str, dict[str, dict]] = {}
        self._listeners: list[Callable[[str, str], None]] = []

    # ── Change listeners ──────────────────────────────────────────────────

    def add_listener(self, callback: Callable[[str, str], None]) -> None:
        """``callback(collection, source)``; source is "snapshot" or "local"."""
        self._listeners.append(callback)

    def remove_listener(self, callback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, collection: str, source: str) -> None:
        for callback in list(self._listeners):
            callback(collection, source)

    # ── Writes (snapshot + speculative) ───────────────────────────────────

    def apply_snapshot(self, collection: str, records) -> list[NewRecordSignal]:
        """Replace ``collection`` wholesale with the snapshot's records."""
        entity_cls = ENTITY_TYPES[collection]
        by_id: dict[str, object] = {}
        held = self._held.get(collection, {})
        for record in records:
            entity = entity_cls.from_record(record.id, record.data)
            if entity.id in held:
                entity = dataclasses.replace(entity, **held[entity.id])
            by_id[entity.id] = entity

        state = _CollectionState(by_id.values())
        previous = self._counts.get(collection)
        self._collections[collection] = state
        self._counts[collection] = len(state.entities)

        signals = []
        if previous is not None and len(state.entities) > previous:
            newest = state.entities[0]
            signals.append(NewRecordSignal(collection, newest.id, newest))
        logger.debug("Snapshot applied: %d records (previously %s)", len(state.entities), previous,
                     extra={"collection": collection, "record_count": len(state.entities)})
        self._notify(collection, "snapshot")
        return signals

    def apply_local_patch(self, collection: str, entity_id: str, **changes):
        """Speculatively change one cached entity. Returns the new entity or None."""
        state = self._collections.get(collection)
        if state is None or entity_id not in state.by_id:
            return None
        updated = dataclasses.replace(state.by_id[entity_id], **changes)
        self._collections[collection] = _CollectionState(
            updated if e.id == entity_id else e for e in state.entities
        )
        logger.debug("Local patch %s", sorted(changes),
                     extra={"collection": collection, "entity_id": entity_id})
        self._notify(collection, "local")
        return updated

    def hold(self, collection: str, entity_id: str, **changes) -> None:
        """Keep ``changes`` applied over every snapshot until ``release``."""
        self._held.setdefault(collection, {})[entity_id] = dict(changes)

    def release(self, collection: str, entity_id: str) -> None:
        """Stop overlaying held changes; the next snapshot shows the store's value."""
        self._held.get(collection, {}).pop(entity_id, None)

    def clear(self) -> None:
        self._collections.clear()
        self._counts.clear()
        self._held.clear()

    # ── Reads ─────────────────────────────────────────────────────────────

    def _state(self, collection: str) -> _CollectionState:
        return self._collections.get(collection, _EMPTY)

    def is_loaded(self, collection: str) -> bool:
        return collection in self._collections

    def count(self, collection: str) -> int:
        return len(self._state(collection).entities)

    def get(self, collection: str, entity_id: str | None):
        if not entity_id:
            return None
        return self._state(collection).by_id.get(entity_id)

    def list_all(self, collection: str) -> list:
        return list(self._state(collection).entities)

    def list_by_project(self, project_id: str, collection: str = TASKS) -> list:
        state = self._state(collection)
        return state.select(state.by_project.get(project_id, ()))

    def list_by_service(self, service_id: str) -> list:
        state = self._state(TASKS)
        return state.select(state.by_service.get(service_id, ()))

    def list_by_assignee(self, user_id: str) -> list:
        """Tasks whose assignment covers ``user_id`` (including All), in snapshot order."""
        state = self._state(TASKS)
        return state.select(state.by_assignee.get(user_id, ()) + state.everyone)

    def services_for_project(self, project_id: str) -> list:
        return self.list_by_project(project_id, collection=SERVICES)

    def user_ids(self) -> frozenset:
        return frozenset(self._state(USERS).by_id)

    # ── Display lookups (dangling references degrade, never fail) ─────────

    def project_name(self, project_id: str | None) -> str:
        project = self.get(PROJECTS, project_id)
        return project.name if project else "Unknown"

    def service_name(self, service_id: str | None) -> str:
        service = self.get(SERVICES, service_id)
        return service.name if service else "Unknown"

    def user_name(self, user_id: str | None) -> str:
        user = self.get(USERS, user_id)
        if user is None:
            return "Unknown"
        return user.display_name or user.email

    def assignee_label(self, item) -> str:
        assignment = item.assigned_to
        if assignment.kind == AssignmentKind.ALL:
            return "Everyone"
        if assignment.is_empty:
            return "Unassigned"
        return ", ".join(self.user_name(uid) for uid in sorted(assignment.user_ids))
