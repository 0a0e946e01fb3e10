"""SQLite database engine and schema via SQLAlchemy Core."""

from schemalink.infrastructure.database.engine import create_db_engine, init_database
from schemalink.infrastructure.database.schema import (
    cache_entries,
    datafields,
    datarecords,
    datatype_edges,
    datatypes,
    event_wal,
    layout_slots,
    layouts,
    metadata,
    record_links,
    slot_fields,
    slot_links,
    sort_fields,
)

__all__ = [
    "cache_entries",
    "create_db_engine",
    "datafields",
    "datarecords",
    "datatype_edges",
    "datatypes",
    "event_wal",
    "init_database",
    "layout_slots",
    "layouts",
    "metadata",
    "record_links",
    "slot_fields",
    "slot_links",
    "sort_fields",
]
