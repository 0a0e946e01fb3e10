"""Error taxonomy for link-graph operations.

Every error carries a stable ``code`` that the service layer copies into
``ServiceError.code``. Validation, cycle and not-found errors are raised
before the first write of a cascade; ``TransactionError`` means a cascade
was rolled back in full.
"""

from __future__ import annotations

from typing import Any


class LinkGraphError(Exception):
    """Base class for all errors raised by the link-graph subsystem."""

    code = "LINK_GRAPH_ERROR"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(LinkGraphError):
    """The request is malformed or would break an invariant."""

    code = "VALIDATION_ERROR"


class CycleError(LinkGraphError):
    """The requested link would make rendering recurse forever."""

    code = "CYCLE_ERROR"


class NotFoundError(LinkGraphError):
    """A referenced datatype, record, slot or edge is missing or tombstoned."""

    code = "NOT_FOUND"

    @classmethod
    def for_entity(cls, entity: str, entity_id: Any) -> NotFoundError:
        return cls(f"{entity} not found: {entity_id}", entity=entity, id=entity_id)


class TransactionError(LinkGraphError):
    """Storage failed mid-cascade; the whole unit was rolled back."""

    code = "TRANSACTION_ERROR"


class NotificationError(LinkGraphError):
    """A change notification could not be delivered. Logged, never raised to callers."""

    code = "NOTIFICATION_ERROR"
