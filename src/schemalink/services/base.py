"""BaseService — abstract foundation for all schemalink services.

Every service receives a :class:`Registry` at construction time. The
Registry provides transactional access to the database, the graph snapshot,
the cache store and the event bus. Services own their transaction
boundaries via ``self._registry.transaction()``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from schemalink.services.result import ServiceError, ServiceResult

if TYPE_CHECKING:
    from schemalink.domain.errors import LinkGraphError
    from schemalink.infrastructure.registry import Registry
    from schemalink.plugins.event_bus import ChangeEvent

logger = logging.getLogger(__name__)


class BaseService:
    """Abstract base for all service-layer classes.

    Usage::

        class DatatypeLinkService(BaseService):
            def set_datatype_link(self, ...) -> ServiceResult:
                with self._registry.transaction(actor=actor) as txn:
                    ...
    """

    def __init__(self, registry: Registry) -> None:
        self._registry = registry

    @staticmethod
    def _failure(op: str, exc: LinkGraphError) -> ServiceResult:
        """Convert a raised link-graph error into a failed ServiceResult."""
        if exc.code == "TRANSACTION_ERROR":
            logger.error("%s rolled back: %s", op, exc.message, exc_info=exc)
        else:
            logger.info("%s rejected (%s): %s", op, exc.code, exc.message)
        return ServiceResult(
            ok=False,
            op=op,
            error=ServiceError(code=exc.code, message=exc.message, detail=exc.detail),
        )

    def _publish(self, events: Sequence[ChangeEvent], *, actor: str | None = None) -> list[str]:
        """Publish a committed mutation's notifications as one batch.

        No-op if the event bus is not initialized. Returns warnings for the
        result; a publishing failure never turns a committed change into an
        error.
        """
        bus = self._registry.event_bus
        if bus is None or not events:
            return []
        try:
            bus.publish(events, actor=actor)
        except Exception:
            hooks = ", ".join(e.hook_name for e in events)
            logger.warning("Publishing change events failed (%s)", hooks, exc_info=True)
            return [f"Change notification failed for {hooks}"]
        return []
