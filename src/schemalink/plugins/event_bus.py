"""Change notifier: WAL-backed delivery of link-graph events to pluggy hooks.

A mutation publishes its notifications as one batch after its transaction
commits. The batch is persisted to ``event_wal`` in a single write, then
delivered in order, either inline (``sync``) or as one task on a thread
pool. Undelivered rows survive a crash and are picked up by ``drain()``.

INVARIANT: Delivery failures are logged and recorded on the WAL row, never
raised to the publisher.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, NamedTuple

from sqlalchemy import insert, select, update

from schemalink.domain.errors import NotificationError
from schemalink.infrastructure.database.schema import event_wal
from schemalink.services._helpers import now_iso

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from schemalink.plugins.manager import PluginManager

logger = logging.getLogger(__name__)

RETRYABLE = ("pending", "failed")


class ChangeEvent(NamedTuple):
    """One notification: a hook name and its keyword payload."""

    hook_name: str
    payload: dict[str, Any]


class _Stored(NamedTuple):
    event_id: int
    event: ChangeEvent


class EventBus:
    """Persists change events and delivers them through the plugin manager.

    Parameters:
        engine: Engine of the registry database (holds ``event_wal``).
        plugin_manager: Plugin manager whose hook relay receives the events.
        sync: Deliver inline before ``publish`` returns.
        max_retries: Failed deliveries before a row becomes ``dead_letter``.
        max_workers: Thread pool size for asynchronous delivery.
    """

    def __init__(
        self,
        engine: Engine,
        plugin_manager: PluginManager,
        *,
        sync: bool = False,
        max_retries: int = 3,
        max_workers: int = 2,
    ) -> None:
        self._engine = engine
        self._pm = plugin_manager
        self._max_retries = max_retries
        self._pool: ThreadPoolExecutor | None = (
            None if sync else ThreadPoolExecutor(max_workers=max_workers)
        )
        self._in_flight: list[Future[None]] = []

    @property
    def plugin_manager(self) -> PluginManager:
        return self._pm

    def publish(self, events: Sequence[ChangeEvent], *, actor: str | None = None) -> list[int]:
        """Persist *events* together and deliver them in order.

        Returns the WAL row ids, in the order of *events*.
        """
        if not events:
            return []
        stored = self._persist(events, actor=actor)
        if self._pool is None:
            self._deliver_batch(stored)
        else:
            self._in_flight = [f for f in self._in_flight if not f.done()]
            self._in_flight.append(self._pool.submit(self._deliver_batch, stored))
        return [s.event_id for s in stored]

    def dispatch(self, hook_name: str, payload: dict[str, Any], *, actor: str | None = None) -> int:
        """Publish a single event. Returns its WAL row id."""
        return self.publish([ChangeEvent(hook_name, payload)], actor=actor)[0]

    def drain(self) -> list[dict[str, Any]]:
        """Wait for in-flight batches, then redeliver every pending or failed row.

        Returns ``{id, hook_name, status}`` for each redelivered row.
        """
        self._wait()
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(event_wal.c.id, event_wal.c.hook_name, event_wal.c.payload)
                .where(event_wal.c.status.in_(RETRYABLE))
                .order_by(event_wal.c.id)
            ).fetchall()

        summary: list[dict[str, Any]] = []
        for row in rows:
            event = ChangeEvent(row.hook_name, json.loads(row.payload))
            status = self._deliver(_Stored(row.id, event))
            summary.append({"id": row.id, "hook_name": row.hook_name, "status": status})
        return summary

    def shutdown(self) -> None:
        """Finish in-flight deliveries and stop the thread pool."""
        self._wait()
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, events: Sequence[ChangeEvent], *, actor: str | None) -> list[_Stored]:
        created = now_iso()
        stored: list[_Stored] = []
        with self._engine.begin() as conn:
            for event in events:
                result = conn.execute(
                    insert(event_wal).values(
                        hook_name=event.hook_name,
                        payload=json.dumps(event.payload),
                        status="pending",
                        retries=0,
                        actor=actor,
                        created=created,
                    )
                )
                assert result.lastrowid is not None
                stored.append(_Stored(result.lastrowid, event))
        return stored

    def _record_outcome(self, event_id: int, error: str | None) -> str:
        """Write the delivery outcome to the WAL row and return its new status."""
        with self._engine.begin() as conn:
            if error is None:
                status = "completed"
                values: dict[str, Any] = {"status": status, "error": None, "completed": now_iso()}
            else:
                retries = conn.execute(
                    select(event_wal.c.retries).where(event_wal.c.id == event_id)
                ).scalar_one() + 1
                status = "dead_letter" if retries >= self._max_retries else "failed"
                values = {
                    "status": status,
                    "error": error,
                    "retries": retries,
                    "completed": now_iso() if status == "dead_letter" else None,
                }
            conn.execute(update(event_wal).where(event_wal.c.id == event_id).values(**values))
        return status

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver_batch(self, stored: list[_Stored]) -> None:
        for item in stored:
            self._deliver(item)

    def _deliver(self, item: _Stored) -> str:
        hook = getattr(self._pm.hook, item.event.hook_name, None)
        if hook is None:
            # No hookspec, nothing to call.
            return self._record_outcome(item.event_id, None)
        try:
            hook(**item.event.payload)
        except Exception as exc:
            err = NotificationError(
                f"{item.event.hook_name} delivery failed: {exc}", event_id=item.event_id
            )
            logger.warning("%s", err.message, exc_info=True)
            return self._record_outcome(item.event_id, str(exc))
        return self._record_outcome(item.event_id, None)

    def _wait(self) -> None:
        for future in self._in_flight:
            try:
                future.result(timeout=30)
            except Exception:
                logger.debug("Notification batch did not finish cleanly", exc_info=True)
        self._in_flight.clear()
