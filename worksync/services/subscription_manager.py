"""
Subscription Manager — one live snapshot stream per collection.

Wraps ``DocumentStore.listen`` with the two rules every caller relies on:

  - Ordering fallback: when the store cannot serve the requested order
    (missing composite index) the subscription re-listens unordered and
    applies the same comparison client-side. Callers never see the
    difference.
  - Terminal errors: any other failure ends the subscription and is
    surfaced exactly once through ``on_error``. There is no retry.

Usage:
    manager = SubscriptionManager(store)
    sub = manager.subscribe("tasks", cache_callback, order_by="createdAt")
    ...
    sub.unsubscribe()          # idempotent
    manager.unsubscribe_all()  # session teardown
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from typing import Callable

from worksync.core.exceptions import OrderingUnavailableError, SubscriptionError
from worksync.integrations.document_store import DocumentStore, Snapshot, StoreQuery, sort_records

logger = logging.getLogger(__name__)

_subscription_ids = itertools.count(1)


class Subscription:
    """A caller's view of one live listen."""

    def __init__(self, manager: SubscriptionManager, query: StoreQuery,
                 on_snapshot: Callable[[Snapshot], None],
                 on_error: Callable[[SubscriptionError], None] | None) -> None:
        self.id = next(_subscription_ids)
        self.query = query
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.fallback = False
        self.error: SubscriptionError | None = None
        self.snapshot_count = 0
        self._registration = None
        self._closed = False
        self._manager = manager

    @property
    def collection(self) -> str:
        return self.query.collection

    @property
    def active(self) -> bool:
        return not self._closed and self.error is None

    def unsubscribe(self) -> None:
        """Release the underlying listener. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._registration is not None:
            self._registration.remove()
        self._manager._discard(self)
        logger.debug("Subscription %s closed", self.id,
                     extra={"collection": self.collection, "subscription_id": self.id})

    def __repr__(self):
        return f"<Subscription {self.id} {self.collection} fallback={self.fallback} active={self.active}>"


class SubscriptionManager:
    """Owns every live subscription of a session."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._subscriptions: dict[int, Subscription] = {}

    def subscribe(self, collection: str, on_snapshot: Callable[[Snapshot], None], *,
                  where: tuple | None = None, order_by: str | None = None,
                  descending: bool = True,
                  on_error: Callable[[SubscriptionError], None] | None = None) -> Subscription:
        """Open a snapshot stream for ``collection`` (optionally filtered and ordered)."""
        query = StoreQuery(collection=collection, where=where, order_by=order_by,
                           descending=descending)
        sub = Subscription(self, query, on_snapshot, on_error)
        self._subscriptions[sub.id] = sub
        self._listen(sub, query)
        logger.debug("Subscription %s opened", sub.id,
                     extra={"collection": collection, "subscription_id": sub.id})
        return sub

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def unsubscribe_all(self) -> int:
        """Detach every subscription synchronously. Returns how many were open."""
        subs = list(self._subscriptions.values())
        for sub in subs:
            sub.unsubscribe()
        return len(subs)

    def _discard(self, sub: Subscription) -> None:
        self._subscriptions.pop(sub.id, None)

    def _listen(self, sub: Subscription, query: StoreQuery) -> None:
        sub._registration = self._store.listen(
            query,
            lambda snapshot: self._handle_snapshot(sub, snapshot),
            lambda error: self._handle_error(sub, error),
        )

    def _handle_snapshot(self, sub: Subscription, snapshot: Snapshot) -> None:
        if not sub.active:
            return
        if sub.fallback:
            ordered = sort_records(snapshot.records, sub.query.order_by, sub.query.descending)
            snapshot = replace(snapshot, query=sub.query, records=tuple(ordered))
        sub.snapshot_count += 1
        logger.debug("Snapshot #%d received (%d records)", sub.snapshot_count, snapshot.size,
                     extra={"collection": sub.collection, "subscription_id": sub.id,
                            "record_count": snapshot.size})
        try:
            sub.on_snapshot(snapshot)
        except Exception:
            logger.exception("Snapshot handler failed",
                             extra={"collection": sub.collection, "subscription_id": sub.id})

    def _handle_error(self, sub: Subscription, error: BaseException) -> None:
        if not sub.active:
            return
        if isinstance(error, OrderingUnavailableError) and not sub.fallback:
            logger.warning("Ordered listen unavailable (%s), retrying without ordering", error,
                           extra={"collection": sub.collection, "subscription_id": sub.id})
            sub.fallback = True
            self._listen(sub, sub.query.unordered())
            return

        sub.error = SubscriptionError(sub.collection, error)
        if sub._registration is not None:
            sub._registration.remove()
        self._discard(sub)
        logger.error("Subscription terminated: %s", error,
                     extra={"collection": sub.collection, "subscription_id": sub.id})
        if sub.on_error is not None:
            sub.on_error(sub.error)
