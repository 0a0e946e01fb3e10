"""Tests for layout cloning and subtree collection."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine

from schemalink.domain.errors import TransactionError
from schemalink.infrastructure.database.schema import layout_slots, layouts, slot_fields, slot_links
from schemalink.infrastructure.layouts import (
    clone_layout_into_slot,
    collect_subtree,
    create_slot,
    default_layout_id,
    find_slot_links,
    soft_delete_subtree,
    top_level_layout_id,
)
from tests.conftest import NOW, add_datatype, add_field, count_rows


def _clone(engine: Engine, source_layout_id: int, slot_id: int, datatype_id: int, **kw) -> int:
    with engine.begin() as conn:
        return clone_layout_into_slot(
            conn,
            source_layout_id=source_layout_id,
            slot_id=slot_id,
            datatype_id=datatype_id,
            now=NOW,
            actor="test",
            **kw,
        )


class TestLookups:
    def test_default_layout(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        with db_engine.connect() as conn:
            assert default_layout_id(conn, a.id) == a.layout_id
            assert default_layout_id(conn, 9999) is None
            assert top_level_layout_id(conn, a.layout_id) == a.layout_id

    def test_create_slot_appends(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A", slots=2)
        with db_engine.begin() as conn:
            slot_id = create_slot(conn, a.layout_id, now=NOW, actor="test")
            order = conn.execute(
                select(layout_slots.c.display_order).where(layout_slots.c.id == slot_id)
            ).scalar_one()
        assert order == 3


class TestClone:
    def test_copies_slots_and_fields(self, db_engine: Engine) -> None:
        local = add_datatype(db_engine, "Local")
        remote = add_datatype(db_engine, "Remote", slots=2)
        add_field(db_engine, remote.id, "title", slot_id=remote.slot_ids[0])

        child_id = _clone(db_engine, remote.layout_id, local.slot_ids[0], remote.id)

        with db_engine.connect() as conn:
            child = conn.execute(select(layouts).where(layouts.c.id == child_id)).one()
            link = conn.execute(
                select(slot_links).where(slot_links.c.slot_id == local.slot_ids[0])
            ).one()
        assert child.datatype_id == remote.id
        assert child.parent_layout_id == local.layout_id
        assert child.source_layout_id == remote.layout_id
        assert child.is_default == 0
        assert link.child_layout_id == child_id
        assert link.datatype_id == remote.id
        assert count_rows(db_engine, layout_slots, layout_id=child_id) == 2
        assert count_rows(db_engine, slot_fields) == 2  # original + copy

    def test_nested_links_copied(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        b = add_datatype(db_engine, "B")
        c = add_datatype(db_engine, "C")
        _clone(db_engine, c.layout_id, b.slot_ids[0], c.id)  # B shows C

        _clone(db_engine, b.layout_id, a.slot_ids[0], b.id)  # A shows B (and C)

        with db_engine.connect() as conn:
            nested = conn.execute(
                select(layouts.c.datatype_id, layouts.c.parent_layout_id).where(
                    layouts.c.parent_layout_id == a.layout_id, layouts.c.id != a.layout_id
                )
            ).fetchall()
        assert sorted(r.datatype_id for r in nested) == [b.id, c.id]

    def test_depth_limit(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        b = add_datatype(db_engine, "B")
        c = add_datatype(db_engine, "C")
        _clone(db_engine, c.layout_id, b.slot_ids[0], c.id)

        with pytest.raises(TransactionError):
            _clone(db_engine, b.layout_id, a.slot_ids[0], b.id, max_depth=1)


class TestSubtree:
    def test_collect_and_delete(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        b = add_datatype(db_engine, "B")
        c = add_datatype(db_engine, "C")
        add_field(db_engine, c.id, "name", slot_id=c.slot_ids[1])
        _clone(db_engine, c.layout_id, b.slot_ids[0], c.id)
        _clone(db_engine, b.layout_id, a.slot_ids[0], b.id)

        with db_engine.connect() as conn:
            sl_ids = find_slot_links(conn, a.id, b.id)
            subtree = collect_subtree(conn, sl_ids)

        assert len(sl_ids) == 1
        assert len(subtree.slot_links) == 2
        assert len(subtree.layouts) == 2
        assert len(subtree.slots) == 4
        assert len(subtree.slot_fields) == 1
        assert subtree.top_level_layouts == {a.layout_id}
        assert subtree.max_depth_seen == 2

        before = count_rows(db_engine, layouts)
        with db_engine.begin() as conn:
            removed = soft_delete_subtree(conn, subtree, now=NOW, actor="test")
        assert removed == subtree.row_count
        assert count_rows(db_engine, layouts) == before - 2
        # B's own default layout still shows C
        with db_engine.connect() as conn:
            assert len(find_slot_links(conn, b.id, c.id)) == 1

    def test_collect_depth_limit(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        b = add_datatype(db_engine, "B")
        c = add_datatype(db_engine, "C")
        _clone(db_engine, c.layout_id, b.slot_ids[0], c.id)
        _clone(db_engine, b.layout_id, a.slot_ids[0], b.id)

        with db_engine.connect() as conn:
            sl_ids = find_slot_links(conn, a.id, b.id)
            with pytest.raises(TransactionError):
                collect_subtree(conn, sl_ids, max_depth=1)
