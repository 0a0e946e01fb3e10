"""Layout cloning and subtree collection for linked datatypes.

A slot that renders a linked datatype holds a ``slot_links`` row pointing at
a child layout, which is a deep copy of the remote datatype's default
layout. Copies nest: the child layout may itself hold slot links.

Both directions are walked with an explicit stack (never Python recursion)
and a depth limit, so worst-case nesting is deterministic. Collection is a
pure read; deletion happens only after the whole subtree is known.

The caller owns the transaction — pass the ``Connection`` of the active
registry transaction so clones and deletions commit or roll back together
with the link edge they belong to.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, insert, select, update

from schemalink.domain.errors import TransactionError
from schemalink.domain.types import LayoutType
from schemalink.infrastructure.database.schema import (
    layout_slots,
    layouts,
    slot_fields,
    slot_links,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection

DEFAULT_MAX_DEPTH = 32


@dataclass
class LayoutSubtree:
    """Ids of every layout row that visualizes one or more slot links."""

    slot_links: set[int] = field(default_factory=set)
    layouts: set[int] = field(default_factory=set)
    slots: set[int] = field(default_factory=set)
    slot_fields: set[int] = field(default_factory=set)
    top_level_layouts: set[int] = field(default_factory=set)
    max_depth_seen: int = 0

    @property
    def row_count(self) -> int:
        return len(self.slot_links) + len(self.layouts) + len(self.slots) + len(self.slot_fields)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def default_layout_id(conn: Connection, datatype_id: int) -> int | None:
    """The active top-level master layout marked default for *datatype_id*."""
    row = conn.execute(
        select(layouts.c.id)
        .where(
            layouts.c.datatype_id == datatype_id,
            layouts.c.is_default == 1,
            layouts.c.layout_type == LayoutType.MASTER,
            layouts.c.parent_layout_id == layouts.c.id,
            layouts.c.deleted_at.is_(None),
        )
        .order_by(layouts.c.id)
    ).first()
    return None if row is None else int(row.id)


def top_level_layout_id(conn: Connection, layout_id: int) -> int:
    """The top-level layout *layout_id* is nested in (itself when top-level)."""
    row = conn.execute(select(layouts.c.parent_layout_id).where(layouts.c.id == layout_id)).first()
    if row is None or row.parent_layout_id is None:
        return layout_id
    return int(row.parent_layout_id)


def find_slot_links(conn: Connection, owner_datatype_id: int, remote_datatype_id: int) -> list[int]:
    """Active slot links to *remote_datatype_id* inside any layout of *owner_datatype_id*.

    Covers the owner's own default layout as well as every copy of the
    owner's layout nested inside other datatypes' layouts.
    """
    rows = conn.execute(
        select(slot_links.c.id)
        .select_from(
            slot_links.join(layout_slots, slot_links.c.slot_id == layout_slots.c.id).join(
                layouts, layout_slots.c.layout_id == layouts.c.id
            )
        )
        .where(
            slot_links.c.datatype_id == remote_datatype_id,
            layouts.c.datatype_id == owner_datatype_id,
            slot_links.c.deleted_at.is_(None),
            layout_slots.c.deleted_at.is_(None),
            layouts.c.deleted_at.is_(None),
        )
        .order_by(slot_links.c.id)
    )
    return [int(r.id) for r in rows]


def create_slot(conn: Connection, layout_id: int, *, now: str, actor: str | None) -> int:
    """Append an empty slot to *layout_id* and return its id."""
    current_max = conn.execute(
        select(func.max(layout_slots.c.display_order)).where(
            layout_slots.c.layout_id == layout_id,
            layout_slots.c.deleted_at.is_(None),
        )
    ).scalar()
    result = conn.execute(
        insert(layout_slots).values(
            layout_id=layout_id,
            display_order=(current_max or 0) + 1,
            created=now,
            created_by=actor,
        )
    )
    assert result.inserted_primary_key is not None
    return int(result.inserted_primary_key[0])


# ---------------------------------------------------------------------------
# Subtree collection + deletion
# ---------------------------------------------------------------------------


def collect_subtree(
    conn: Connection,
    slot_link_ids: Iterable[int],
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> LayoutSubtree:
    """Gather every row below *slot_link_ids* without modifying anything.

    Raises:
        TransactionError: If nesting exceeds *max_depth*, which only happens
            when stored layouts are corrupt.
    """
    subtree = LayoutSubtree()
    stack: list[tuple[int, int]] = [(sl_id, 1) for sl_id in slot_link_ids]

    for sl_id, _ in stack:
        row = conn.execute(
            select(layout_slots.c.layout_id)
            .select_from(slot_links.join(layout_slots, slot_links.c.slot_id == layout_slots.c.id))
            .where(slot_links.c.id == sl_id)
        ).first()
        if row is not None:
            subtree.top_level_layouts.add(top_level_layout_id(conn, int(row.layout_id)))

    while stack:
        sl_id, depth = stack.pop()
        if sl_id in subtree.slot_links:
            continue
        if depth > max_depth:
            msg = f"Layout nesting below slot link {sl_id} exceeds {max_depth} levels"
            raise TransactionError(msg, slot_link_id=sl_id, max_depth=max_depth)
        subtree.slot_links.add(sl_id)
        subtree.max_depth_seen = max(subtree.max_depth_seen, depth)

        child = conn.execute(
            select(slot_links.c.child_layout_id).where(
                slot_links.c.id == sl_id, slot_links.c.deleted_at.is_(None)
            )
        ).first()
        if child is None or child.child_layout_id in subtree.layouts:
            continue
        child_layout_id = int(child.child_layout_id)
        subtree.layouts.add(child_layout_id)

        slot_ids = [
            int(r.id)
            for r in conn.execute(
                select(layout_slots.c.id).where(
                    layout_slots.c.layout_id == child_layout_id,
                    layout_slots.c.deleted_at.is_(None),
                )
            )
        ]
        if not slot_ids:
            continue
        subtree.slots.update(slot_ids)

        subtree.slot_fields.update(
            int(r.id)
            for r in conn.execute(
                select(slot_fields.c.id).where(
                    slot_fields.c.slot_id.in_(slot_ids),
                    slot_fields.c.deleted_at.is_(None),
                )
            )
        )
        for r in conn.execute(
            select(slot_links.c.id).where(
                slot_links.c.slot_id.in_(slot_ids),
                slot_links.c.deleted_at.is_(None),
            )
        ):
            stack.append((int(r.id), depth + 1))

    return subtree


def soft_delete_subtree(
    conn: Connection,
    subtree: LayoutSubtree,
    *,
    now: str,
    actor: str | None,
) -> int:
    """Tombstone every row in *subtree*. Returns the number of rows updated."""
    updated = 0
    for table, ids in (
        (slot_fields, subtree.slot_fields),
        (slot_links, subtree.slot_links),
        (layout_slots, subtree.slots),
        (layouts, subtree.layouts),
    ):
        if not ids:
            continue
        result = conn.execute(
            update(table)
            .where(table.c.id.in_(sorted(ids)), table.c.deleted_at.is_(None))
            .values(deleted_at=now, deleted_by=actor)
        )
        updated += result.rowcount
    return updated


# ---------------------------------------------------------------------------
# Cloning
# ---------------------------------------------------------------------------


def clone_layout_into_slot(
    conn: Connection,
    *,
    source_layout_id: int,
    slot_id: int,
    datatype_id: int,
    now: str,
    actor: str | None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> int:
    """Deep-copy *source_layout_id* into the empty slot *slot_id*.

    The copy is independently owned: new layout, slot, slot-field and nested
    slot-link rows are created, all nested under the top-level layout that
    holds *slot_id*. Returns the id of the new child layout.
    """
    slot_row = conn.execute(select(layout_slots.c.layout_id).where(layout_slots.c.id == slot_id)).one()
    top_id = top_level_layout_id(conn, int(slot_row.layout_id))

    first_layout_id: int | None = None
    stack: list[tuple[int, int, int, int]] = [(source_layout_id, slot_id, datatype_id, 1)]
    while stack:
        src_layout_id, target_slot_id, target_datatype_id, depth = stack.pop()
        if depth > max_depth:
            msg = f"Layout {source_layout_id} nests deeper than {max_depth} levels"
            raise TransactionError(msg, source_layout_id=source_layout_id, max_depth=max_depth)

        src = conn.execute(select(layouts).where(layouts.c.id == src_layout_id)).one()
        new_layout_id = int(
            conn.execute(
                insert(layouts).values(
                    datatype_id=target_datatype_id,
                    parent_layout_id=top_id,
                    source_layout_id=src_layout_id,
                    layout_type=src.layout_type,
                    is_default=0,
                    source_sync_version=src.source_sync_version,
                    created=now,
                    created_by=actor,
                )
            ).inserted_primary_key[0]
        )
        if first_layout_id is None:
            first_layout_id = new_layout_id

        conn.execute(
            insert(slot_links).values(
                slot_id=target_slot_id,
                datatype_id=target_datatype_id,
                child_layout_id=new_layout_id,
                created=now,
                created_by=actor,
            )
        )

        src_slots = conn.execute(
            select(layout_slots)
            .where(layout_slots.c.layout_id == src_layout_id, layout_slots.c.deleted_at.is_(None))
            .order_by(layout_slots.c.display_order, layout_slots.c.id)
        ).fetchall()
        for src_slot in src_slots:
            new_slot_id = int(
                conn.execute(
                    insert(layout_slots).values(
                        layout_id=new_layout_id,
                        display_order=src_slot.display_order,
                        created=now,
                        created_by=actor,
                    )
                ).inserted_primary_key[0]
            )
            for sf in conn.execute(
                select(slot_fields).where(
                    slot_fields.c.slot_id == src_slot.id, slot_fields.c.deleted_at.is_(None)
                )
            ).fetchall():
                conn.execute(
                    insert(slot_fields).values(
                        slot_id=new_slot_id,
                        field_id=sf.field_id,
                        display_order=sf.display_order,
                        created=now,
                        created_by=actor,
                    )
                )
            nested = conn.execute(
                select(slot_links.c.child_layout_id, slot_links.c.datatype_id).where(
                    slot_links.c.slot_id == src_slot.id, slot_links.c.deleted_at.is_(None)
                )
            ).first()
            if nested is not None:
                stack.append(
                    (int(nested.child_layout_id), new_slot_id, int(nested.datatype_id), depth + 1)
                )

    assert first_layout_id is not None
    return first_layout_id
