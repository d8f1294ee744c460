"""
Engine-wide exception hierarchy.

Every component raises these types so that the session controller, the
mutation coordinator and the operator CLI can treat failures the
same way regardless of where they originate.

Usage:
    from worksync.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="tasks", resource_id="abc123")
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a record does not exist in the backing store.

    Args:
        resource: Collection or entity name (e.g. "tasks", "Project").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when user input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class StoreError(Exception):
    """Base class for failures reported by the backing document store."""


class OrderingUnavailableError(StoreError):
    """Raised when the store cannot serve a filtered query in the requested order.

    The store needs a composite index for every (filter field, order field)
    pair. This is the only subscription failure the subscription manager
    recovers from, by re-subscribing unordered and sorting client-side.
    """

    def __init__(self, collection: str, filter_field: str, order_field: str) -> None:
        self.collection = collection
        self.filter_field = filter_field
        self.order_field = order_field
        super().__init__(
            f"The query on {collection} requires an index "
            f"({filter_field} ASC, {order_field} DESC)"
        )


class StoreWriteError(StoreError):
    """Raised when a create/update/delete request fails."""

    def __init__(self, operation: str, collection: str, doc_id: str | None = None,
                 reason: str = "") -> None:
        self.operation = operation
        self.collection = collection
        self.doc_id = doc_id
        self.reason = reason
        msg = f"{operation} on {collection}"
        if doc_id is not None:
            msg += f"/{doc_id}"
        msg += " failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SubscriptionError(Exception):
    """Terminal subscription failure, surfaced once to the subscriber."""

    def __init__(self, collection: str, cause: BaseException) -> None:
        self.collection = collection
        self.cause = cause
        super().__init__(f"Subscription to {collection} failed: {cause}")


class CascadeDeleteError(Exception):
    """Raised when a cascading delete stops part-way.

    Already-applied deletions are not rolled back; the next snapshots show
    whatever the store now holds.

    Args:
        resource: Parent collection ("projects" or "services").
        resource_id: Parent id.
        deleted: (collection, doc_id) pairs that were deleted before the failure.
        failed: The (collection, doc_id) pair whose delete failed.
    """

    def __init__(self, resource: str, resource_id: str,
                 deleted: list[tuple[str, str]], failed: tuple[str, str],
                 cause: BaseException | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.deleted = list(deleted)
        self.failed = failed
        self.cause = cause
        super().__init__(
            f"Deleting {resource}/{resource_id} stopped at {failed[0]}/{failed[1]} "
            f"after {len(self.deleted)} deletion(s)"
        )
