"""Shared pytest fixtures and seeding helpers for schemalink tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pluggy
import pytest
from click.testing import CliRunner
from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Engine

from schemalink.config.settings import SchemalinkSettings
from schemalink.infrastructure.database.engine import init_database
from schemalink.infrastructure.database.schema import (
    datafields,
    datarecords,
    datatype_edges,
    datatypes,
    layout_slots,
    layouts,
    record_links,
    slot_fields,
    sort_fields,
)
from schemalink.infrastructure.registry import Registry

NOW = "2026-01-01T00:00:00+00:00"

hookimpl = pluggy.HookimplMarker("schemalink")


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_engine(tmp_path: Path) -> Engine:
    """Initialized SQLite engine with all tables created."""
    engine = init_database(tmp_path)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def registry(tmp_path: Path) -> Registry:
    """Registry on a temp directory with a synchronous event bus."""
    settings = SchemalinkSettings.from_cli(registry_root=tmp_path)
    r = Registry(settings)
    r.init_event_bus(sync=True)
    try:
        yield r
    finally:
        r.close()


@pytest.fixture
def recorder(registry: Registry) -> RecordingPlugin:
    """A RecordingPlugin registered on the registry's event bus."""
    plugin = RecordingPlugin()
    assert registry.event_bus is not None
    registry.event_bus.plugin_manager.register_plugin(plugin, name="recorder")
    return plugin


@pytest.fixture
def _isolated_registry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to a temp directory so the CLI opens an isolated registry.

    Use via ``@pytest.mark.usefixtures("_isolated_registry")`` on command test
    classes. ``tmp_path`` is the same directory, so tests can seed it first.
    """
    monkeypatch.delenv("SCHEMALINK_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Event recording
# ---------------------------------------------------------------------------


class RecordingPlugin:
    """Plugin that records every change notification."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def named(self, hook_name: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == hook_name]

    @hookimpl
    def datatype_modified(self, datatype_id: int, clear_record_cache: bool) -> None:
        self.calls.append(
            (
                "datatype_modified",
                {"datatype_id": datatype_id, "clear_record_cache": clear_record_cache},
            )
        )

    @hookimpl
    def datatype_link_status_changed(
        self,
        root_datatype_id: int,
        new_remote_id: int | None,
        previous_remote_id: int | None,
    ) -> None:
        self.calls.append(
            (
                "datatype_link_status_changed",
                {
                    "root_datatype_id": root_datatype_id,
                    "new_remote_id": new_remote_id,
                    "previous_remote_id": previous_remote_id,
                },
            )
        )

    @hookimpl
    def record_modified(self, record_id: int) -> None:
        self.calls.append(("record_modified", {"record_id": record_id}))

    @hookimpl
    def record_link_status_changed(self, record_ids: list[int], remote_datatype_id: int) -> None:
        self.calls.append(
            (
                "record_link_status_changed",
                {"record_ids": record_ids, "remote_datatype_id": remote_datatype_id},
            )
        )


# ---------------------------------------------------------------------------
# Seeding helpers (direct SQLAlchemy Core inserts)
# ---------------------------------------------------------------------------


@dataclass
class SeededType:
    """A datatype with its default master layout."""

    id: int
    layout_id: int
    slot_ids: list[int] = field(default_factory=list)


def _insert(engine: Engine, table: Any, **values: Any) -> int:
    with engine.begin() as conn:
        result = conn.execute(insert(table).values(created=NOW, created_by="seed", **values))
        return int(result.inserted_primary_key[0])


def add_datatype(
    engine: Engine,
    name: str,
    *,
    parent_id: int | None = None,
    is_template: bool = False,
    metadata_for_id: int | None = None,
    slots: int = 2,
) -> SeededType:
    """Insert a datatype with a default layout holding *slots* empty slots.

    With *parent_id* the datatype is a structural child of that datatype.
    """
    dt_id = _insert(
        engine,
        datatypes,
        name=name,
        is_template=int(is_template),
        metadata_for_id=metadata_for_id,
    )
    with engine.begin() as conn:
        root_id = dt_id
        if parent_id is not None:
            parent_root = conn.execute(
                select(datatypes.c.grandparent_id).where(datatypes.c.id == parent_id)
            ).scalar_one()
            root_id = parent_root or parent_id
            conn.execute(
                insert(datatype_edges).values(
                    ancestor_id=parent_id,
                    descendant_id=dt_id,
                    is_link=0,
                    created=NOW,
                    created_by="seed",
                )
            )
        conn.execute(update(datatypes).where(datatypes.c.id == dt_id).values(grandparent_id=root_id))

    layout_id = _insert(engine, layouts, datatype_id=dt_id, is_default=1, layout_type="master")
    with engine.begin() as conn:
        conn.execute(
            update(layouts).where(layouts.c.id == layout_id).values(parent_layout_id=layout_id)
        )
    slot_ids = [
        _insert(engine, layout_slots, layout_id=layout_id, display_order=i + 1)
        for i in range(slots)
    ]
    return SeededType(id=dt_id, layout_id=layout_id, slot_ids=slot_ids)


def add_field(engine: Engine, datatype_id: int, name: str, *, slot_id: int | None = None) -> int:
    """Insert a datafield, optionally placing it in a layout slot."""
    field_id = _insert(engine, datafields, datatype_id=datatype_id, name=name)
    if slot_id is not None:
        _insert(engine, slot_fields, slot_id=slot_id, field_id=field_id, display_order=1)
    return field_id


def add_sort_field(engine: Engine, datatype_id: int, field_id: int) -> int:
    return _insert(engine, sort_fields, datatype_id=datatype_id, field_id=field_id)


def add_record(engine: Engine, datatype_id: int, *, parent_id: int | None = None) -> int:
    """Insert a datarecord; child records inherit their parent's root."""
    rec_id = _insert(engine, datarecords, datatype_id=datatype_id, parent_id=parent_id)
    with engine.begin() as conn:
        root_id = rec_id
        if parent_id is not None:
            parent_root = conn.execute(
                select(datarecords.c.grandparent_id).where(datarecords.c.id == parent_id)
            ).scalar_one()
            root_id = parent_root or parent_id
        conn.execute(
            update(datarecords).where(datarecords.c.id == rec_id).values(grandparent_id=root_id)
        )
    return rec_id


def add_link(
    engine: Engine, ancestor_id: int, descendant_id: int, *, multiple_allowed: bool = True
) -> int:
    """Insert a datatype link edge directly, without any layout copy."""
    return _insert(
        engine,
        datatype_edges,
        ancestor_id=ancestor_id,
        descendant_id=descendant_id,
        is_link=1,
        multiple_allowed=int(multiple_allowed),
    )


def add_record_link(engine: Engine, ancestor_id: int, descendant_id: int) -> int:
    return _insert(engine, record_links, ancestor_id=ancestor_id, descendant_id=descendant_id)


def count_rows(engine: Engine, table: Any, *, active_only: bool = True, **where: Any) -> int:
    """Count rows of *table* matching column equality filters."""
    stmt = select(func.count()).select_from(table)
    for column, value in where.items():
        stmt = stmt.where(table.c[column] == value)
    if active_only and "deleted_at" in table.c:
        stmt = stmt.where(table.c.deleted_at.is_(None))
    with engine.connect() as conn:
        return int(conn.execute(stmt).scalar_one())


def active_record_links(engine: Engine, record_id: int) -> set[tuple[int, int]]:
    """``(ancestor, descendant)`` pairs of active record links touching *record_id*."""
    with engine.connect() as conn:
        rows = conn.execute(
            select(record_links.c.ancestor_id, record_links.c.descendant_id).where(
                (record_links.c.ancestor_id == record_id)
                | (record_links.c.descendant_id == record_id),
                record_links.c.deleted_at.is_(None),
            )
        )
        return {(int(r.ancestor_id), int(r.descendant_id)) for r in rows}
