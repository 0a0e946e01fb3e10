"""Key/value cache of derived data, stored next to the registry tables.

Entries are rebuilt lazily by whoever reads them; this subsystem only ever
deletes. Methods take an optional ``Connection`` so a deletion can join the
caller's transaction (cleared together with the mutation that made the entry
stale) or run in its own.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select

from schemalink.infrastructure.database.schema import cache_entries

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from sqlalchemy import Connection
    from sqlalchemy.engine import Engine


TOP_LEVEL_LAYOUTS = "top_level_layouts"


def record_order_key(datatype_id: int) -> str:
    return f"datatype_{datatype_id}_record_order"


def cached_layout_key(layout_id: int) -> str:
    return f"cached_layout_{layout_id}"


def cached_datatype_key(datatype_id: int) -> str:
    return f"cached_datatype_{datatype_id}"


def cached_record_key(record_id: int) -> str:
    return f"cached_datarecord_{record_id}"


def associated_records_key(record_id: int) -> str:
    return f"associated_datarecords_for_{record_id}"


def associated_datatypes_key(datatype_id: int) -> str:
    return f"associated_datatypes_for_{datatype_id}"


class CacheStore:
    """Get/set/delete JSON values in the ``cache_entries`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @contextmanager
    def _conn(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self._engine.begin() as own:
            yield own

    def get(self, key: str, *, conn: Connection | None = None) -> Any | None:
        with self._conn(conn) as c:
            raw = c.execute(select(cache_entries.c.value).where(cache_entries.c.key == key)).scalar()
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, *, now: str, conn: Connection | None = None) -> None:
        with self._conn(conn) as c:
            c.execute(delete(cache_entries).where(cache_entries.c.key == key))
            c.execute(insert(cache_entries).values(key=key, value=json.dumps(value), updated=now))

    def delete(self, *keys: str, conn: Connection | None = None) -> int:
        """Delete *keys*; returns how many existed."""
        return self.delete_many(keys, conn=conn)

    def delete_many(self, keys: Iterable[str], *, conn: Connection | None = None) -> int:
        key_list = sorted(set(keys))
        if not key_list:
            return 0
        with self._conn(conn) as c:
            result = c.execute(delete(cache_entries).where(cache_entries.c.key.in_(key_list)))
        return result.rowcount

    def keys(self, *, conn: Connection | None = None) -> list[str]:
        with self._conn(conn) as c:
            return [str(r.key) for r in c.execute(select(cache_entries.c.key).order_by(cache_entries.c.key))]
