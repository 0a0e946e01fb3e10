"""Database engine setup for SQLite with WAL mode and write-locking transactions.

SQLite is the persistence layer: WAL mode for concurrent reads, ACID
transactions for the link cascades. The DB is stored at
``{registry_root}/.schemalink/schemalink.db``.

Every transaction starts with ``BEGIN IMMEDIATE`` so the write lock is held
from the first snapshot read until commit. The validation reads and the
writes of one link mutation therefore never interleave with another
writer's. Waiting for the lock is bounded by ``busy_timeout``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine

from schemalink.infrastructure.database.schema import metadata

DB_DIRNAME = ".schemalink"
DB_FILENAME = "schemalink.db"


def create_db_engine(db_path: Path, *, busy_timeout: float = 5.0, echo: bool = False) -> Engine:
    """Create a SQLite engine with WAL mode, foreign keys and ``BEGIN IMMEDIATE``."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=echo,
        connect_args={"timeout": busy_timeout},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        # Hand transaction control to SQLAlchemy so the "begin" hook below owns BEGIN.
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_database(registry_root: Path, *, busy_timeout: float = 5.0, echo: bool = False) -> Engine:
    """Initialize the registry database at ``{registry_root}/.schemalink/schemalink.db``.

    Creates the ``.schemalink/`` directory and all tables from
    :data:`schema.metadata`. Idempotent — safe to call on an existing registry.

    Returns the engine ready for use.
    """
    db_dir = registry_root / DB_DIRNAME
    db_dir.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(db_dir / DB_FILENAME, busy_timeout=busy_timeout, echo=echo)
    metadata.create_all(engine)
    return engine
