"""DatatypeLinkService — create, replace and remove datatype-level links.

A link lets one datatype render another inside a layout slot without owning
it. Every change runs as one registry transaction:

1. **Plan** — read a snapshot under the write lock, validate the request,
   run the cycle guard and compute every cascade (layout subtrees, record
   links, sort fields) without writing.
2. **Apply** — remove the previous link and its dependents, then create the
   new link and clone the remote layout into the slot. Both halves commit
   together or not at all.
3. **Notify** — after commit, dispatch ``datatype_modified`` and
   ``datatype_link_status_changed`` (plus ``record_link_status_changed`` when
   record links were dropped).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import aliased

from schemalink.domain.cycles import would_create_cycle
from schemalink.domain.errors import CycleError, LinkGraphError, NotFoundError, ValidationError
from schemalink.domain.types import Hook, LayoutType
from schemalink.infrastructure.cache import TOP_LEVEL_LAYOUTS, cached_layout_key, record_order_key
from schemalink.infrastructure.database.schema import (
    datafields,
    datarecords,
    datatype_edges,
    datatypes,
    layout_slots,
    layouts,
    record_links,
    slot_fields,
    slot_links,
    sort_fields,
)
from schemalink.infrastructure.layouts import (
    LayoutSubtree,
    clone_layout_into_slot,
    collect_subtree,
    create_slot,
    default_layout_id,
    find_slot_links,
    soft_delete_subtree,
    top_level_layout_id,
)
from schemalink.plugins.event_bus import ChangeEvent
from schemalink.services._helpers import sorted_ids
from schemalink.services.base import BaseService
from schemalink.services.result import ServiceResult

if TYPE_CHECKING:
    from sqlalchemy import Connection, Row

    from schemalink.infrastructure.registry import RegistryTransaction

logger = logging.getLogger(__name__)


@dataclass
class _RemovalPlan:
    """Everything that goes away with the previous link."""

    remote_id: int
    edge_id: int
    subtree: LayoutSubtree
    record_link_ids: list[int]
    ancestor_record_ids: list[int]
    sort_field_ids: list[int]


@dataclass
class _LinkPlan:
    """A fully validated link request, computed before the first write."""

    local_id: int
    local_root_id: int
    local_is_template: bool
    slot_id: int
    slot_layout_id: int
    slot_top_layout_id: int
    new_remote_id: int | None
    previous_remote_id: int | None
    source_layout_id: int | None = None
    own_layout_id: int | None = None  # set when editing inside a linked context
    removal: _RemovalPlan | None = None
    touched_top_layouts: set[int] = field(default_factory=set)


class DatatypeLinkService(BaseService):
    """Maintains link edges between datatypes and their layout copies."""

    # ------------------------------------------------------------------
    # set_datatype_link: create / replace / remove
    # ------------------------------------------------------------------

    def set_datatype_link(
        self,
        local_id: int,
        slot_id: int,
        *,
        new_remote_id: int | None = None,
        previous_remote_id: int | None = None,
        actor: str | None = None,
    ) -> ServiceResult:
        """Link *local_id* to *new_remote_id* in *slot_id*, replacing *previous_remote_id*.

        Either remote may be omitted: only *new_remote_id* creates a link,
        only *previous_remote_id* removes one, both replace. All validation
        happens before any write; once writes begin the whole cascade is
        atomic.

        Args:
            local_id: Datatype that owns the layout holding the slot.
            slot_id: Empty slot (or the slot holding the previous link).
            new_remote_id: Top-level datatype to link to.
            previous_remote_id: Currently linked datatype to unlink.
            actor: Identity stamped on created and tombstoned rows.
        """
        op = "set_datatype_link"
        try:
            with self._registry.transaction(actor=actor) as txn:
                plan = self._plan(txn, local_id, slot_id, new_remote_id, previous_remote_id)
                outcome = self._apply(txn, plan)
        except LinkGraphError as exc:
            return self._failure(op, exc)

        logger.info(
            "datatype %s link updated: %s -> %s (slot %s)",
            local_id,
            previous_remote_id,
            new_remote_id,
            slot_id,
        )

        events = [
            ChangeEvent(
                Hook.DATATYPE_MODIFIED,
                {"datatype_id": local_id, "clear_record_cache": previous_remote_id is not None},
            ),
            ChangeEvent(
                Hook.DATATYPE_LINK_STATUS_CHANGED,
                {
                    "root_datatype_id": plan.local_root_id,
                    "new_remote_id": new_remote_id,
                    "previous_remote_id": previous_remote_id,
                },
            ),
        ]
        if plan.removal is not None and plan.removal.ancestor_record_ids:
            events.append(
                ChangeEvent(
                    Hook.RECORD_LINK_STATUS_CHANGED,
                    {
                        "record_ids": plan.removal.ancestor_record_ids,
                        "remote_datatype_id": plan.removal.remote_id,
                    },
                )
            )
        warnings = self._publish(events, actor=actor)

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "slot_id": slot_id,
                "using_link": new_remote_id is not None,
                "linked_datatype_id": (
                    new_remote_id if new_remote_id is not None else previous_remote_id
                ),
                **outcome,
            },
            warnings=warnings,
        )

    def remove_datatype_link(
        self,
        local_id: int,
        slot_id: int,
        previous_remote_id: int,
        *,
        actor: str | None = None,
    ) -> ServiceResult:
        """Remove the link ``local_id -> previous_remote_id`` shown in *slot_id*."""
        return self.set_datatype_link(
            local_id,
            slot_id,
            previous_remote_id=previous_remote_id,
            actor=actor,
        )

    # ------------------------------------------------------------------
    # linkable_datatypes: candidates for a new link
    # ------------------------------------------------------------------

    def linkable_datatypes(self, local_id: int) -> ServiceResult:
        """List the datatypes *local_id* links to and the ones it could link to.

        A candidate is top-level, is neither *local_id* nor one of its
        structural ancestors, is not a metadata datatype or the datatype
        *local_id* describes, is not already linked, and would not close a
        link cycle. Read-only; uses the cached committed snapshot.
        """
        op = "linkable_datatypes"
        graph = self._registry.graph.graph
        if local_id not in graph:
            return self._failure(op, NotFoundError.for_entity("Datatype", local_id))

        local = graph.node(local_id)
        ancestors = set(graph.get_ancestry_chain(local_id))
        linked_to = graph.get_link_targets(local_id)
        linked_from = graph.linked_from()

        candidates: list[dict[str, Any]] = []
        for dt_id in sorted(graph.structural.nodes):
            attrs = graph.node(dt_id)
            if (
                dt_id == local_id
                or dt_id in ancestors
                or dt_id in linked_to
                or not graph.is_top_level(dt_id)
                or attrs["metadata_for_id"] is not None
                or local["metadata_for_id"] == dt_id
                or would_create_cycle(linked_from, local_id, dt_id)
            ):
                continue
            candidates.append(
                {"id": dt_id, "name": attrs["name"], "is_template": attrs["is_template"]}
            )

        linked = [
            {
                "id": dt_id,
                "name": graph.node(dt_id)["name"],
                "multiple_allowed": graph.link_edge(local_id, dt_id)["multiple_allowed"],  # type: ignore[index]
            }
            for dt_id in sorted(linked_to)
        ]

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "datatype_id": local_id,
                "linked": linked,
                "candidates": candidates,
                "count": len(candidates),
            },
        )

    # ------------------------------------------------------------------
    # Plan: validation and cascade computation (no writes)
    # ------------------------------------------------------------------

    def _plan(
        self,
        txn: RegistryTransaction,
        local_id: int,
        slot_id: int,
        new_remote_id: int | None,
        previous_remote_id: int | None,
    ) -> _LinkPlan:
        if new_remote_id is None and previous_remote_id is None:
            raise ValidationError("Neither a new nor a previous remote datatype was given")
        if new_remote_id is not None and new_remote_id == local_id:
            raise ValidationError("A datatype can't be linked to itself", datatype_id=local_id)
        if new_remote_id is not None and new_remote_id == previous_remote_id:
            raise ValidationError("Already linked to this datatype", datatype_id=new_remote_id)

        conn = txn.conn
        local = _active_datatype(conn, local_id, "Local datatype")
        new_remote = (
            _active_datatype(conn, new_remote_id, "Remote datatype")
            if new_remote_id is not None
            else None
        )
        if previous_remote_id is not None:
            _active_datatype(conn, previous_remote_id, "Previous remote datatype")

        slot_layout = self._check_slot(conn, local_id, slot_id, previous_remote_id)

        graph = txn.graph
        plan = _LinkPlan(
            local_id=local_id,
            local_root_id=graph.root_of(local_id),
            local_is_template=bool(local.is_template),
            slot_id=slot_id,
            slot_layout_id=int(slot_layout.id),
            slot_top_layout_id=top_level_layout_id(conn, int(slot_layout.id)),
            new_remote_id=new_remote_id,
            previous_remote_id=previous_remote_id,
        )
        plan.touched_top_layouts.add(plan.slot_top_layout_id)

        if new_remote is not None:
            assert new_remote_id is not None
            if new_remote.metadata_for_id is not None:
                raise ValidationError(
                    "Not allowed to link to a metadata datatype", datatype_id=new_remote_id
                )
            if local.metadata_for_id == new_remote_id:
                raise ValidationError(
                    "A metadata datatype can't link to the datatype it describes",
                    datatype_id=local_id,
                )
            if not graph.is_top_level(new_remote_id):
                raise ValidationError(
                    "Not allowed to link to child datatypes", datatype_id=new_remote_id
                )
            if new_remote_id in graph.get_ancestry_chain(local_id):
                raise ValidationError(
                    "A datatype isn't allowed to link to its own ancestor",
                    datatype_id=new_remote_id,
                )
            if graph.has_link(local_id, new_remote_id):
                raise ValidationError(
                    "Unable to link to the same datatype multiple times",
                    datatype_id=new_remote_id,
                )

        if previous_remote_id is not None:
            edge = graph.link_edge(local_id, previous_remote_id)
            if edge is None:
                raise NotFoundError(
                    f"No link from datatype {local_id} to datatype {previous_remote_id}",
                    entity="Link",
                    local_id=local_id,
                    remote_id=previous_remote_id,
                )
            plan.removal = self._plan_removal(txn, local_id, previous_remote_id, int(edge["edge_id"]))
            plan.touched_top_layouts.update(plan.removal.subtree.top_level_layouts)

        if new_remote_id is not None:
            exclude = (local_id, previous_remote_id) if previous_remote_id is not None else None
            if would_create_cycle(graph.linked_from(exclude=exclude), local_id, new_remote_id):
                raise CycleError(
                    "Unable to link these two datatypes, rendering would become stuck in an "
                    "infinite loop",
                    local_id=local_id,
                    remote_id=new_remote_id,
                )

            plan.source_layout_id = default_layout_id(conn, new_remote_id)
            if plan.source_layout_id is None:
                raise NotFoundError.for_entity("Default layout of datatype", new_remote_id)

            # Editing a linked datatype from inside another type's layout: the
            # local type's own layout needs a copy as well.
            context_datatype_id = conn.execute(
                select(layouts.c.datatype_id).where(layouts.c.id == plan.slot_top_layout_id)
            ).scalar_one()
            if graph.root_of(int(context_datatype_id)) != plan.local_root_id:
                plan.own_layout_id = default_layout_id(conn, local_id)
                if plan.own_layout_id is None:
                    raise NotFoundError.for_entity("Default layout of datatype", local_id)
                plan.touched_top_layouts.add(plan.own_layout_id)

        return plan

    @staticmethod
    def _check_slot(
        conn: Connection,
        local_id: int,
        slot_id: int,
        previous_remote_id: int | None,
    ) -> Row[Any]:
        """Validate the target slot and return its layout row."""
        slot = conn.execute(
            select(layout_slots).where(
                layout_slots.c.id == slot_id, layout_slots.c.deleted_at.is_(None)
            )
        ).first()
        if slot is None:
            raise NotFoundError.for_entity("Slot", slot_id)

        layout = conn.execute(
            select(layouts).where(
                layouts.c.id == slot.layout_id, layouts.c.deleted_at.is_(None)
            )
        ).first()
        if layout is None:
            raise NotFoundError.for_entity("Layout", slot.layout_id)
        if layout.layout_type != LayoutType.MASTER:
            raise ValidationError(
                "Unable to link to a remote datatype outside of a master layout",
                layout_id=layout.id,
            )
        if layout.datatype_id != local_id:
            raise ValidationError(
                f"Slot {slot_id} does not belong to a layout of datatype {local_id}",
                slot_id=slot_id,
            )

        field_count = conn.execute(
            select(func.count())
            .select_from(slot_fields)
            .where(slot_fields.c.slot_id == slot_id, slot_fields.c.deleted_at.is_(None))
        ).scalar_one()
        if field_count:
            raise ValidationError(
                "Unable to link a remote datatype into a slot that already holds fields",
                slot_id=slot_id,
            )

        held = [
            int(r.datatype_id)
            for r in conn.execute(
                select(slot_links.c.datatype_id).where(
                    slot_links.c.slot_id == slot_id, slot_links.c.deleted_at.is_(None)
                )
            )
        ]
        if any(dt_id != previous_remote_id for dt_id in held):
            raise ValidationError(
                "Unable to link a remote datatype into a slot that already holds another link",
                slot_id=slot_id,
                linked_datatype_ids=held,
            )
        return layout

    def _plan_removal(
        self,
        txn: RegistryTransaction,
        local_id: int,
        remote_id: int,
        edge_id: int,
    ) -> _RemovalPlan:
        conn = txn.conn
        subtree = collect_subtree(
            conn,
            find_slot_links(conn, local_id, remote_id),
            max_depth=self._registry.settings.links.max_layout_depth,
        )

        ancestor = aliased(datarecords)
        descendant = aliased(datarecords)
        link_rows = conn.execute(
            select(record_links.c.id, record_links.c.ancestor_id)
            .select_from(
                record_links.join(ancestor, record_links.c.ancestor_id == ancestor.c.id).join(
                    descendant, record_links.c.descendant_id == descendant.c.id
                )
            )
            .where(
                ancestor.c.datatype_id == local_id,
                descendant.c.datatype_id == remote_id,
                record_links.c.deleted_at.is_(None),
                ancestor.c.deleted_at.is_(None),
                descendant.c.deleted_at.is_(None),
            )
        ).fetchall()

        sort_field_ids = [
            int(r.id)
            for r in conn.execute(
                select(sort_fields.c.id)
                .select_from(sort_fields.join(datafields, sort_fields.c.field_id == datafields.c.id))
                .where(
                    sort_fields.c.datatype_id == local_id,
                    datafields.c.datatype_id == remote_id,
                    sort_fields.c.deleted_at.is_(None),
                    datafields.c.deleted_at.is_(None),
                )
            )
        ]

        return _RemovalPlan(
            remote_id=remote_id,
            edge_id=edge_id,
            subtree=subtree,
            record_link_ids=sorted_ids([int(r.id) for r in link_rows]),
            ancestor_record_ids=sorted_ids([int(r.ancestor_id) for r in link_rows]),
            sort_field_ids=sort_field_ids,
        )

    # ------------------------------------------------------------------
    # Apply: writes (caller's transaction rolls back on any exception)
    # ------------------------------------------------------------------

    def _apply(self, txn: RegistryTransaction, plan: _LinkPlan) -> dict[str, Any]:
        conn = txn.conn
        outcome: dict[str, Any] = {
            "layout_rows_removed": 0,
            "record_links_removed": 0,
            "records_updated": [],
            "cloned_layout_ids": [],
        }

        removal = plan.removal
        if removal is not None:
            outcome["layout_rows_removed"] = soft_delete_subtree(
                conn, removal.subtree, now=txn.now, actor=txn.actor
            )
            txn.soft_delete(datatype_edges, [removal.edge_id])
            outcome["record_links_removed"] = txn.soft_delete(record_links, removal.record_link_ids)
            if removal.ancestor_record_ids:
                conn.execute(
                    update(datarecords)
                    .where(
                        datarecords.c.id.in_(removal.ancestor_record_ids),
                        datarecords.c.deleted_at.is_(None),
                    )
                    .values(updated=txn.now, updated_by=txn.actor)
                )
                outcome["records_updated"] = removal.ancestor_record_ids
            if removal.sort_field_ids:
                txn.soft_delete(sort_fields, removal.sort_field_ids)
                txn.clear_cache(record_order_key(plan.local_id))
            if plan.local_is_template:
                _bump_master_revision(conn, plan.local_id)

        if plan.new_remote_id is not None:
            assert plan.source_layout_id is not None
            conn.execute(
                insert(datatype_edges).values(
                    ancestor_id=plan.local_id,
                    descendant_id=plan.new_remote_id,
                    is_link=1,
                    multiple_allowed=int(self._registry.settings.links.default_multiple_allowed),
                    created=txn.now,
                    created_by=txn.actor,
                )
            )
            max_depth = self._registry.settings.links.max_layout_depth
            cloned = [
                clone_layout_into_slot(
                    conn,
                    source_layout_id=plan.source_layout_id,
                    slot_id=plan.slot_id,
                    datatype_id=plan.new_remote_id,
                    now=txn.now,
                    actor=txn.actor,
                    max_depth=max_depth,
                )
            ]
            if plan.own_layout_id is not None:
                own_slot_id = create_slot(conn, plan.own_layout_id, now=txn.now, actor=txn.actor)
                cloned.append(
                    clone_layout_into_slot(
                        conn,
                        source_layout_id=plan.source_layout_id,
                        slot_id=own_slot_id,
                        datatype_id=plan.new_remote_id,
                        now=txn.now,
                        actor=txn.actor,
                        max_depth=max_depth,
                    )
                )
            outcome["cloned_layout_ids"] = cloned

            if plan.local_is_template:
                _bump_master_revision(conn, plan.local_id)
            conn.execute(
                update(layouts)
                .where(layouts.c.id == plan.slot_layout_id)
                .values(source_sync_version=layouts.c.source_sync_version + 1)
            )

        txn.clear_cache(
            TOP_LEVEL_LAYOUTS,
            *(cached_layout_key(lid) for lid in sorted(plan.touched_top_layouts)),
        )
        return outcome


def _active_datatype(conn: Connection, datatype_id: int, label: str) -> Row[Any]:
    row = conn.execute(
        select(datatypes).where(datatypes.c.id == datatype_id, datatypes.c.deleted_at.is_(None))
    ).first()
    if row is None:
        raise NotFoundError.for_entity(label, datatype_id)
    return row


def _bump_master_revision(conn: Connection, datatype_id: int) -> None:
    conn.execute(
        update(datatypes)
        .where(datatypes.c.id == datatype_id)
        .values(master_revision=datatypes.c.master_revision + 1)
    )
