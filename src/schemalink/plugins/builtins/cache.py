"""Built-in cache invalidation plugin.

Deletes the cached entries that a committed link change made stale. The
entries are rebuilt lazily by whatever renders them; this plugin never
recomputes anything.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pluggy
from sqlalchemy import func, select

from schemalink.infrastructure.cache import (
    associated_datatypes_key,
    associated_records_key,
    cached_datatype_key,
    cached_record_key,
)
from schemalink.infrastructure.database.schema import datarecords

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from schemalink.infrastructure.cache import CacheStore

hookimpl = pluggy.HookimplMarker("schemalink")

logger = logging.getLogger(__name__)


class CacheInvalidationPlugin:
    """Clears datatype and datarecord cache entries on link events."""

    def __init__(self, cache: CacheStore, engine: Engine) -> None:
        self._cache = cache
        self._engine = engine

    @hookimpl
    def datatype_modified(self, datatype_id: int, clear_record_cache: bool) -> None:
        keys = [cached_datatype_key(datatype_id)]
        if clear_record_cache:
            keys.extend(cached_record_key(rid) for rid in self._root_records_of(datatype_id))
        removed = self._cache.delete_many(keys)
        logger.debug("datatype %s modified, %d cache entries cleared", datatype_id, removed)

    @hookimpl
    def datatype_link_status_changed(
        self,
        root_datatype_id: int,
        new_remote_id: int | None,
        previous_remote_id: int | None,
    ) -> None:
        self._cache.delete(
            cached_datatype_key(root_datatype_id),
            associated_datatypes_key(root_datatype_id),
        )

    @hookimpl
    def record_modified(self, record_id: int) -> None:
        self._cache.delete(cached_record_key(record_id))

    @hookimpl
    def record_link_status_changed(self, record_ids: list[int], remote_datatype_id: int) -> None:
        self._cache.delete_many(associated_records_key(rid) for rid in record_ids)

    def _root_records_of(self, datatype_id: int) -> list[int]:
        """Ids of the root records whose cached copy embeds *datatype_id* records."""
        root_id = func.coalesce(datarecords.c.grandparent_id, datarecords.c.id).label("root_id")
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(root_id)
                .where(
                    datarecords.c.datatype_id == datatype_id,
                    datarecords.c.deleted_at.is_(None),
                )
                .distinct()
            )
            return [int(r.root_id) for r in rows]
