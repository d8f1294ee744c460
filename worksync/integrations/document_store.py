"""
Backing document store — collections of JSON records keyed by id.

Every write made by the engine goes through this class, and every read
the engine makes arrives as a full snapshot pushed to a listener.

Design:
  - Writes are coroutines: each is an independent request that suspends
    the caller once before touching the database, then commits.
  - Listeners receive a complete, authoritative snapshot once on
    registration and again after every committed write to the collection.
    Deliveries are always scheduled on the running event loop
    (``loop.call_soon``), so two callbacks never overlap and a removed
    registration never receives a late snapshot.
  - A listen that both filters and orders needs a declared composite
    index (``STORE_COMPOSITE_INDEXES``); otherwise it fails with
    ``OrderingUnavailableError`` delivered to the error callback.

Testability: build a ``DocumentStore(composite_indexes=[...])`` per test;
patch ``update``/``delete`` with ``unittest.mock`` to inject failures.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from worksync.core.exceptions import (
    NotFoundError,
    OrderingUnavailableError,
    StoreError,
    StoreWriteError,
)
from worksync.models import db
from worksync.models.document import StoredDocument
from worksync.utils.helpers import parse_datetime, utcnow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Queries, records, snapshots
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StoreQuery:
    """Listen target: a collection, an optional equality filter and an optional order."""

    collection: str
    where: tuple | None = None          # (field, value)
    order_by: str | None = None
    descending: bool = True

    def unordered(self) -> StoreQuery:
        return replace(self, order_by=None)


@dataclass(frozen=True)
class Record:
    id: str
    data: dict
    seq: int = 0        # insertion order, used as the ordering tie-breaker


@dataclass(frozen=True)
class Snapshot:
    query: StoreQuery
    records: tuple
    read_at: datetime = field(default_factory=utcnow)

    @property
    def size(self) -> int:
        return len(self.records)


def _order_key(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, float(value))
    moment = parse_datetime(value)
    if moment is not None:
        return (0, moment.timestamp())
    return (1, str(value))


def sort_records(records, order_field: str, descending: bool = True) -> list:
    """The one ordering comparison used by the store and by client-side fallback.

    Records are ordered by ``order_field``; records missing the field go
    last; ties keep their incoming (insertion) order.
    """
    present = [r for r in records if r.data.get(order_field) not in (None, "")]
    missing = [r for r in records if r.data.get(order_field) in (None, "")]
    present = sorted(present, key=lambda r: _order_key(r.data[order_field]), reverse=descending)
    return present + missing


# ═══════════════════════════════════════════════════════════════════════════
#  Listener registration
# ═══════════════════════════════════════════════════════════════════════════

_registration_ids = itertools.count(1)


class ListenerRegistration:
    """Handle returned by ``DocumentStore.listen``; ``remove()`` is idempotent."""

    def __init__(self, store: DocumentStore, query: StoreQuery,
                 on_snapshot: Callable, on_error: Callable | None) -> None:
        self.id = next(_registration_ids)
        self.query = query
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True
        self._store = store

    def remove(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._forget(self)

    def __repr__(self):
        return f"<ListenerRegistration {self.id} {self.query.collection} active={self.active}>"


# ═══════════════════════════════════════════════════════════════════════════
#  Store
# ═══════════════════════════════════════════════════════════════════════════

class DocumentStore:
    """Document store on top of the ``documents`` table."""

    def __init__(self, *, composite_indexes=()) -> None:
        self._indexes = set()
        for entry in composite_indexes:
            parts = tuple(p.strip() for p in entry.split(":"))
            if len(parts) != 3:
                raise ValueError(f"Composite index must be collection:filter:order, got {entry!r}")
            self._indexes.add(parts)
        self._listeners: dict[str, list[ListenerRegistration]] = {}
        self._pending = 0

    @classmethod
    def from_config(cls, config) -> DocumentStore:
        return cls(composite_indexes=config.get("STORE_COMPOSITE_INDEXES", ()))

    # ── Listening ─────────────────────────────────────────────────────────

    def has_index(self, query: StoreQuery) -> bool:
        if not (query.where and query.order_by):
            return True
        return (query.collection, query.where[0], query.order_by) in self._indexes

    def listen(self, query: StoreQuery, on_snapshot: Callable,
               on_error: Callable | None = None) -> ListenerRegistration:
        """Register a snapshot listener. Must be called from inside the event loop."""
        registration = ListenerRegistration(self, query, on_snapshot, on_error)
        if not self.has_index(query):
            error = OrderingUnavailableError(query.collection, query.where[0], query.order_by)
            self._schedule(self._deliver_error, registration, error)
            return registration
        self._listeners.setdefault(query.collection, []).append(registration)
        self._schedule(self._deliver_snapshot, registration)
        logger.debug("Listener %s registered", registration.id,
                     extra={"collection": query.collection})
        return registration

    @property
    def pending_deliveries(self) -> int:
        return self._pending

    def listener_count(self, collection: str | None = None) -> int:
        if collection is not None:
            return len(self._listeners.get(collection, []))
        return sum(len(v) for v in self._listeners.values())

    def snapshot(self, query: StoreQuery) -> Snapshot:
        """Read one snapshot synchronously, outside any listener."""
        return self._build_snapshot(query)

    def _forget(self, registration: ListenerRegistration) -> None:
        regs = self._listeners.get(registration.query.collection, [])
        if registration in regs:
            regs.remove(registration)

    def _schedule(self, fn, *args) -> None:
        loop = asyncio.get_running_loop()
        self._pending += 1
        loop.call_soon(self._run_delivery, fn, args)

    def _run_delivery(self, fn, args) -> None:
        self._pending -= 1
        fn(*args)

    def _deliver_error(self, registration: ListenerRegistration, error: BaseException) -> None:
        if not registration.active:
            return
        registration.remove()
        if registration.on_error is not None:
            registration.on_error(error)
        else:
            logger.error("Unhandled listener error: %s", error,
                         extra={"collection": registration.query.collection})

    def _deliver_snapshot(self, registration: ListenerRegistration) -> None:
        if not registration.active:
            return
        try:
            snapshot = self._build_snapshot(registration.query)
        except SQLAlchemyError as exc:
            db.session.rollback()
            self._deliver_error(registration, StoreError(f"Snapshot read failed: {exc}"))
            return
        registration.on_snapshot(snapshot)

    def _build_snapshot(self, query: StoreQuery) -> Snapshot:
        rows = (
            StoredDocument.query
            .filter_by(collection=query.collection)
            .order_by(StoredDocument.id.asc())
            .all()
        )
        records = [Record(id=row.doc_id, data=dict(row.data or {}), seq=row.id) for row in rows]
        if query.where:
            key, value = query.where
            records = [r for r in records if r.data.get(key) == value]
        if query.order_by:
            records = sort_records(records, query.order_by, query.descending)
        return Snapshot(query=query, records=tuple(records))

    def _broadcast(self, collection: str) -> None:
        for registration in list(self._listeners.get(collection, [])):
            self._schedule(self._deliver_snapshot, registration)

    # ── Writes ────────────────────────────────────────────────────────────

    async def create(self, collection: str, fields: dict) -> str:
        """Add a record under a server-assigned id and return the id."""
        await asyncio.sleep(0)
        doc_id = uuid.uuid4().hex[:20]
        self._insert(collection, doc_id, fields, operation="create")
        return doc_id

    async def set(self, collection: str, doc_id: str, fields: dict) -> str:
        """Create or replace the record stored under ``doc_id``."""
        await asyncio.sleep(0)
        existing = self._find(collection, doc_id)
        if existing is None:
            self._insert(collection, doc_id, fields, operation="set")
            return doc_id
        now = utcnow().isoformat()
        data = dict(fields)
        data.setdefault("createdAt", (existing.data or {}).get("createdAt", now))
        data["updatedAt"] = now
        existing.data = data
        self._commit("set", collection, doc_id)
        return doc_id

    async def update(self, collection: str, doc_id: str, partial: dict) -> None:
        """Merge ``partial`` into an existing record."""
        await asyncio.sleep(0)
        existing = self._find(collection, doc_id)
        if existing is None:
            raise NotFoundError(collection, doc_id)
        merged = dict(existing.data or {})
        merged.update(partial)
        merged["updatedAt"] = utcnow().isoformat()
        existing.data = merged
        self._commit("update", collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a record; deleting a missing record is a no-op."""
        await asyncio.sleep(0)
        existing = self._find(collection, doc_id)
        if existing is None:
            logger.debug("Delete of missing %s/%s ignored", collection, doc_id,
                         extra={"collection": collection})
            return
        db.session.delete(existing)
        self._commit("delete", collection, doc_id)

    async def get(self, collection: str, doc_id: str) -> dict | None:
        await asyncio.sleep(0)
        existing = self._find(collection, doc_id)
        return dict(existing.data) if existing is not None else None

    def _find(self, collection: str, doc_id: str) -> StoredDocument | None:
        return StoredDocument.query.filter_by(collection=collection, doc_id=doc_id).first()

    def _insert(self, collection: str, doc_id: str, fields: dict, *, operation: str) -> None:
        now = utcnow().isoformat()
        data = dict(fields)
        data.setdefault("createdAt", now)
        data["updatedAt"] = now
        db.session.add(StoredDocument(collection=collection, doc_id=doc_id, data=data))
        self._commit(operation, collection, doc_id)

    def _commit(self, operation: str, collection: str, doc_id: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Store %s failed for %s/%s: %s", operation, collection, doc_id, exc,
                         extra={"collection": collection, "entity_id": doc_id})
            raise StoreWriteError(operation, collection, doc_id, reason=str(exc)) from exc
        logger.debug("Store %s %s/%s committed", operation, collection, doc_id,
                     extra={"collection": collection, "entity_id": doc_id})
        self._broadcast(collection)
