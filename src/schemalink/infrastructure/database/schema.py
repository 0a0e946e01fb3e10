"""SQLAlchemy Core table definitions for the schemalink registry.

Every mutable row carries ``deleted_at`` / ``deleted_by``: deletions are
soft, and all service queries filter on ``deleted_at IS NULL``. Partial
unique indexes over active rows back the "one link per ordered pair" rules.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

metadata = MetaData()


def _audit_columns() -> list[Column[Any]]:
    return [
        Column("created", Text, nullable=False),
        Column("created_by", Text),
        Column("deleted_at", Text),
        Column("deleted_by", Text),
    ]


datatypes = Table(
    "datatypes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("is_template", Integer, default=0, server_default="0"),
    Column("template_group", Text),
    Column("grandparent_id", Integer),  # self for top-level datatypes
    Column("metadata_for_id", Integer),  # set on a type that describes another
    Column("master_revision", Integer, default=0, server_default="0"),
    *_audit_columns(),
)

# Structural edges (is_link=0) and link edges (is_link=1) share one table.
datatype_edges = Table(
    "datatype_edges",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ancestor_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("descendant_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("is_link", Integer, nullable=False, default=0, server_default="0"),
    Column("multiple_allowed", Integer, nullable=False, default=1, server_default="1"),
    *_audit_columns(),
)

datafields = Table(
    "datafields",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("datatype_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("name", Text, nullable=False),
    *_audit_columns(),
)

# Fields a datatype's default record ordering depends on.
sort_fields = Table(
    "sort_fields",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("datatype_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("field_id", Integer, ForeignKey("datafields.id"), nullable=False),
    Column("display_order", Integer, default=0, server_default="0"),
    *_audit_columns(),
)

layouts = Table(
    "layouts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("datatype_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("parent_layout_id", Integer),  # top-level layout; self when top-level
    Column("source_layout_id", Integer),  # layout this one was cloned from
    Column("layout_type", Text, nullable=False, default="master", server_default="master"),
    Column("is_default", Integer, default=0, server_default="0"),
    Column("source_sync_version", Integer, default=1, server_default="1"),
    *_audit_columns(),
)

layout_slots = Table(
    "layout_slots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("layout_id", Integer, ForeignKey("layouts.id"), nullable=False),
    Column("display_order", Integer, default=0, server_default="0"),
    *_audit_columns(),
)

slot_fields = Table(
    "slot_fields",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("slot_id", Integer, ForeignKey("layout_slots.id"), nullable=False),
    Column("field_id", Integer, ForeignKey("datafields.id"), nullable=False),
    Column("display_order", Integer, default=0, server_default="0"),
    *_audit_columns(),
)

# A slot rendering another datatype through a nested (cloned) layout.
slot_links = Table(
    "slot_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("slot_id", Integer, ForeignKey("layout_slots.id"), nullable=False),
    Column("datatype_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("child_layout_id", Integer, ForeignKey("layouts.id"), nullable=False),
    *_audit_columns(),
)

datarecords = Table(
    "datarecords",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("datatype_id", Integer, ForeignKey("datatypes.id"), nullable=False),
    Column("parent_id", Integer),
    Column("grandparent_id", Integer),  # structural root record; self when top-level
    Column("updated", Text),
    Column("updated_by", Text),
    *_audit_columns(),
)

record_links = Table(
    "record_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ancestor_id", Integer, ForeignKey("datarecords.id"), nullable=False),
    Column("descendant_id", Integer, ForeignKey("datarecords.id"), nullable=False),
    *_audit_columns(),
)

cache_entries = Table(
    "cache_entries",
    metadata,
    Column("key", Text, primary_key=True),
    Column("value", Text, nullable=False),  # JSON
    Column("updated", Text, nullable=False),
)

event_wal = Table(
    "event_wal",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hook_name", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON
    Column("status", Text, nullable=False),
    Column("error", Text),
    Column("retries", Integer, default=0, server_default="0"),
    Column("actor", Text),
    Column("created", Text, nullable=False),
    Column("completed", Text),
)

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

Index(
    "ux_datatype_edges_active_pair",
    datatype_edges.c.ancestor_id,
    datatype_edges.c.descendant_id,
    unique=True,
    sqlite_where=datatype_edges.c.deleted_at.is_(None),
)
Index(
    "ux_record_links_active_pair",
    record_links.c.ancestor_id,
    record_links.c.descendant_id,
    unique=True,
    sqlite_where=record_links.c.deleted_at.is_(None),
)
Index("ix_datatype_edges_descendant", datatype_edges.c.descendant_id)
Index("ix_datarecords_datatype", datarecords.c.datatype_id)
Index("ix_record_links_descendant", record_links.c.descendant_id)
Index("ix_layouts_datatype", layouts.c.datatype_id)
Index("ix_layout_slots_layout", layout_slots.c.layout_id)
Index("ix_slot_links_slot", slot_links.c.slot_id)
Index("ix_slot_fields_slot", slot_fields.c.slot_id)
Index("ix_event_wal_status", event_wal.c.status)
