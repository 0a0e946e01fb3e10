"""Registry — repository pattern with ACID transaction coordination.

The Registry is the single dependency injected into every service. It owns
the database engine, the cached graph snapshot, the cache store and the
event bus. The :meth:`transaction` context manager gives each link mutation
one atomic unit:

- **DB**: SQLAlchemy ``engine.begin()`` issuing ``BEGIN IMMEDIATE``, so the
  snapshot read, the validation and every write of a cascade run under one
  write lock and commit or roll back together.
- **Graph**: the cached snapshot is invalidated on transaction end (success
  or failure); the next read-only access rebuilds from committed state.
- **Errors**: storage failures surface as :class:`TransactionError` after a
  full rollback.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from schemalink.domain.errors import TransactionError
from schemalink.infrastructure.cache import CacheStore
from schemalink.infrastructure.database.engine import init_database
from schemalink.infrastructure.graph.engine import GraphEngine, SchemaGraph
from schemalink.services._helpers import now_iso

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

    from sqlalchemy import Connection, Table
    from sqlalchemy.engine import Engine

    from schemalink.config.settings import SchemalinkSettings
    from schemalink.plugins.event_bus import EventBus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# RegistryTransaction: yielded to callers within transaction()
# ---------------------------------------------------------------------------


@dataclass
class RegistryTransaction:
    """Active transaction: connection, audit stamp and a lazily loaded snapshot.

    ``now`` and ``actor`` are fixed for the whole unit so every row touched
    by one cascade carries the same tombstone stamp.
    """

    conn: Connection
    now: str
    actor: str | None
    _registry: Registry
    _snapshot: SchemaGraph | None = field(default=None, repr=False)

    @property
    def graph(self) -> SchemaGraph:
        """Graph snapshot read through this transaction's connection."""
        if self._snapshot is None:
            self._snapshot = SchemaGraph.load(self.conn)
        return self._snapshot

    @property
    def cache(self) -> CacheStore:
        return self._registry.cache

    def soft_delete(self, table: Table, ids: Iterable[int]) -> int:
        """Tombstone active rows of *table* by id. Returns rows updated."""
        id_list = sorted(set(ids))
        if not id_list:
            return 0
        result = self.conn.execute(
            update(table)
            .where(table.c.id.in_(id_list), table.c.deleted_at.is_(None))
            .values(deleted_at=self.now, deleted_by=self.actor)
        )
        return result.rowcount

    def clear_cache(self, *keys: str) -> int:
        """Delete cache entries inside this transaction."""
        return self._registry.cache.delete_many(keys, conn=self.conn)


# ---------------------------------------------------------------------------
# Registry: the repository
# ---------------------------------------------------------------------------


class Registry:
    """Repository encapsulating database, graph snapshot, cache and events.

    Constructed once at CLI startup from :class:`SchemalinkSettings` and
    stored on the click context. Services receive the Registry via their
    :class:`BaseService` constructor.
    """

    def __init__(self, settings: SchemalinkSettings) -> None:
        self._settings = settings
        self._engine: Engine = init_database(
            self.root,
            busy_timeout=settings.database.busy_timeout,
            echo=settings.database.echo,
        )
        self._graph = GraphEngine(self._engine)
        self._cache = CacheStore(self._engine)
        self._event_bus: EventBus | None = None

    @property
    def root(self) -> Path:
        """The registry root directory."""
        return self._settings.registry_root

    @property
    def engine(self) -> Engine:
        """The underlying SQLAlchemy engine (for direct access when needed)."""
        return self._engine

    @property
    def graph(self) -> GraphEngine:
        """Cached graph snapshot for read-only paths."""
        return self._graph

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def settings(self) -> SchemalinkSettings:
        """The resolved settings for this registry."""
        return self._settings

    @property
    def event_bus(self) -> EventBus | None:
        """The change-notification bus (None if not initialized)."""
        return self._event_bus

    def init_event_bus(self, *, sync: bool | None = None) -> EventBus:
        """Initialize the change-notification bus.

        Creates a PluginManager, discovers entry-point plugins, registers the
        built-in cache invalidation plugin (unless ``[cache] enabled = false``)
        and wires up the EventBus.
        """
        from schemalink.plugins.builtins.cache import CacheInvalidationPlugin
        from schemalink.plugins.event_bus import EventBus
        from schemalink.plugins.manager import PluginManager

        pm = PluginManager()
        pm.discover_and_load()

        if self._settings.cache.enabled:
            pm.register_plugin(
                CacheInvalidationPlugin(self._cache, self._engine),
                name="cache-builtin",
            )

        events = self._settings.events
        self._event_bus = EventBus(
            self._engine,
            pm,
            sync=self._settings.event_sync if sync is None else sync,
            max_retries=events.max_retries,
            max_workers=events.max_workers,
        )
        return self._event_bus

    def close(self) -> None:
        """Flush in-flight notifications and release the engine."""
        if self._event_bus is not None:
            self._event_bus.shutdown()
        self._engine.dispose()

    @contextmanager
    def transaction(self, *, actor: str | None = None) -> Iterator[RegistryTransaction]:
        """One atomic unit of check + mutate.

        Any exception raised inside the block rolls back every write.
        Storage errors are re-raised as :class:`TransactionError`; domain
        errors (validation, cycle, not found) propagate unchanged.

        Usage::

            with registry.transaction(actor="alice") as txn:
                graph = txn.graph  # snapshot under the write lock
                txn.conn.execute(insert(datatype_edges).values(...))
        """
        stamp_actor = actor if actor is not None else self._settings.actor
        try:
            with self._engine.begin() as conn:
                yield RegistryTransaction(
                    conn=conn,
                    now=now_iso(),
                    actor=stamp_actor,
                    _registry=self,
                )
        except SQLAlchemyError as exc:
            logger.error("Transaction rolled back", exc_info=True)
            raise TransactionError(f"Storage failure, changes rolled back: {exc}") from exc
        finally:
            self._graph.invalidate()
