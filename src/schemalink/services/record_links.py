"""RecordLinkService — reconcile datarecord links with their datatype link.

Record links are the instance-level mirror of a datatype link edge. Each
operation reads the link edge and current record links under the write lock,
checks the edge's cardinality, then applies the diff in one transaction.
Change notifications are batched: one ``record_modified`` per root record of
an added or removed remote endpoint, and one ``record_link_status_changed``
per remote datatype.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.orm import aliased

from schemalink.domain.errors import LinkGraphError, NotFoundError, ValidationError
from schemalink.domain.types import Hook, LinkRole, SyncMode
from schemalink.infrastructure.cache import record_order_key
from schemalink.infrastructure.database.schema import (
    datafields,
    datarecords,
    datatype_edges,
    record_links,
    sort_fields,
)
from schemalink.plugins.event_bus import ChangeEvent
from schemalink.services._helpers import sorted_ids
from schemalink.services.base import BaseService
from schemalink.services.result import ServiceResult

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from schemalink.infrastructure.registry import RegistryTransaction

logger = logging.getLogger(__name__)


@dataclass
class _LinkContext:
    """The local record's side of one datatype link edge."""

    record_id: int
    local_type_id: int
    remote_type_id: int
    role: LinkRole
    multiple_allowed: bool


@dataclass
class _Existing:
    link_id: int
    remote_id: int
    remote_root_id: int


class RecordLinkService(BaseService):
    """Creates and removes links between individual datarecords."""

    # ------------------------------------------------------------------
    # sync_record_links
    # ------------------------------------------------------------------

    def sync_record_links(
        self,
        local_record_id: int,
        ancestor_type_id: int,
        descendant_type_id: int,
        desired_remote_ids: Iterable[int],
        *,
        mode: SyncMode = SyncMode.FULL_SYNC,
        actor: str | None = None,
    ) -> ServiceResult:
        """Make the record links of *local_record_id* match *desired_remote_ids*.

        Existing links to desired records are kept. Under ``FULL_SYNC`` every
        other link to the remote datatype is removed; ``ADD_ONLY`` leaves them
        alone. Desired records without a link get one.

        The cardinality of the datatype link is checked against the final
        state before anything is written; a violation rejects the whole call.
        A repeated call with the same arguments writes nothing and emits no
        events.
        """
        op = "sync_record_links"
        desired = set(desired_remote_ids)
        try:
            with self._registry.transaction(actor=actor) as txn:
                ctx = self._resolve(txn.conn, local_record_id, ancestor_type_id, descendant_type_id)
                existing = self._existing_links(txn.conn, ctx)
                self._check_remote_records(txn.conn, ctx, desired)

                kept = [e for e in existing if e.remote_id in desired]
                stale = [e for e in existing if e.remote_id not in desired]
                removed = stale if mode == SyncMode.FULL_SYNC else []
                linked_ids = {e.remote_id for e in existing}
                new_ids = sorted_ids([rid for rid in desired if rid not in linked_ids])

                if not ctx.multiple_allowed:
                    remaining = len(existing) - len(removed)
                    self._check_cardinality(txn.conn, ctx, remaining, new_ids)

                created = self._create_links(txn, ctx, new_ids)
                self._remove_links(txn, [e.link_id for e in removed])

                roots: set[int] = set()
                if created or removed:
                    roots = self._remote_roots(txn.conn, new_ids) | {
                        e.remote_root_id for e in removed
                    }
                    self._touch_ancestor_records(txn, ctx, new_ids + [e.remote_id for e in removed])
                    self._clear_record_order(txn, ctx)
        except LinkGraphError as exc:
            return self._failure(op, exc)

        warnings = self._publish(_change_events(ctx.remote_type_id, roots), actor=actor)
        if created or removed:
            logger.info(
                "record %s links to datatype %s: +%d -%d",
                local_record_id,
                ctx.remote_type_id,
                len(created),
                len(removed),
            )

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "record_id": local_record_id,
                "role": str(ctx.role),
                "remote_datatype_id": ctx.remote_type_id,
                "mode": str(mode),
                "kept": sorted_ids([e.remote_id for e in kept]),
                "created": new_ids,
                "removed": sorted_ids([e.remote_id for e in removed]),
                "affected_roots": sorted_ids(roots),
            },
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # unlink_records
    # ------------------------------------------------------------------

    def unlink_records(
        self,
        local_record_id: int,
        ancestor_type_id: int,
        descendant_type_id: int,
        remote_ids: Iterable[int],
        *,
        actor: str | None = None,
    ) -> ServiceResult:
        """Remove only the links from *local_record_id* to *remote_ids*.

        Remote ids that are not currently linked are reported back and
        otherwise ignored.
        """
        op = "unlink_records"
        targets = set(remote_ids)
        try:
            with self._registry.transaction(actor=actor) as txn:
                ctx = self._resolve(txn.conn, local_record_id, ancestor_type_id, descendant_type_id)
                existing = self._existing_links(txn.conn, ctx)
                removed = [e for e in existing if e.remote_id in targets]
                self._remove_links(txn, [e.link_id for e in removed])

                roots: set[int] = set()
                if removed:
                    roots = {e.remote_root_id for e in removed}
                    self._touch_ancestor_records(txn, ctx, [e.remote_id for e in removed])
                    self._clear_record_order(txn, ctx)
        except LinkGraphError as exc:
            return self._failure(op, exc)

        warnings = self._publish(_change_events(ctx.remote_type_id, roots), actor=actor)

        removed_ids = sorted_ids([e.remote_id for e in removed])
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "record_id": local_record_id,
                "remote_datatype_id": ctx.remote_type_id,
                "removed": removed_ids,
                "not_linked": sorted_ids(targets - set(removed_ids)),
                "affected_roots": sorted_ids(roots),
            },
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # unlink_all: deletion cascade
    # ------------------------------------------------------------------

    def unlink_all(self, record_id: int, *, actor: str | None = None) -> ServiceResult:
        """Tombstone every link that references *record_id* on either side.

        Called when a datarecord is deleted; the record itself may already be
        tombstoned. The root records on the opposite side are scheduled for
        recache, batched per remote datatype.
        """
        op = "unlink_all"
        try:
            with self._registry.transaction(actor=actor) as txn:
                exists = txn.conn.execute(
                    select(datarecords.c.id).where(datarecords.c.id == record_id)
                ).first()
                if exists is None:
                    raise NotFoundError.for_entity("Datarecord", record_id)

                other = aliased(datarecords)
                rows = txn.conn.execute(
                    select(
                        record_links.c.id,
                        record_links.c.ancestor_id,
                        other.c.id.label("other_id"),
                        other.c.datatype_id.label("other_type_id"),
                        func.coalesce(other.c.grandparent_id, other.c.id).label("other_root_id"),
                    )
                    .select_from(
                        record_links.join(
                            other,
                            or_(
                                (record_links.c.ancestor_id == record_id)
                                & (record_links.c.descendant_id == other.c.id),
                                (record_links.c.descendant_id == record_id)
                                & (record_links.c.ancestor_id == other.c.id),
                            ),
                        )
                    )
                    .where(record_links.c.deleted_at.is_(None))
                    .order_by(record_links.c.id)
                ).fetchall()

                removed = txn.soft_delete(record_links, [int(r.id) for r in rows])
                ancestors = [int(r.other_id) for r in rows if r.ancestor_id == r.other_id]
                if ancestors:
                    txn.conn.execute(
                        update(datarecords)
                        .where(datarecords.c.id.in_(sorted_ids(ancestors)))
                        .values(updated=txn.now, updated_by=txn.actor)
                    )
        except LinkGraphError as exc:
            return self._failure(op, exc)

        by_type: dict[int, set[int]] = {}
        for r in rows:
            by_type.setdefault(int(r.other_type_id), set()).add(int(r.other_root_id))

        events = [
            event
            for remote_type_id in sorted(by_type)
            for event in _change_events(remote_type_id, by_type[remote_type_id])
        ]
        warnings = self._publish(events, actor=actor)

        logger.info("record %s deleted: %d record links removed", record_id, removed)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "record_id": record_id,
                "links_removed": removed,
                "affected_roots": {
                    str(type_id): sorted_ids(roots) for type_id, roots in sorted(by_type.items())
                },
            },
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve(
        conn: Connection,
        record_id: int,
        ancestor_type_id: int,
        descendant_type_id: int,
    ) -> _LinkContext:
        edge = conn.execute(
            select(datatype_edges.c.multiple_allowed).where(
                datatype_edges.c.ancestor_id == ancestor_type_id,
                datatype_edges.c.descendant_id == descendant_type_id,
                datatype_edges.c.is_link == 1,
                datatype_edges.c.deleted_at.is_(None),
            )
        ).first()
        if edge is None:
            raise NotFoundError(
                f"No link from datatype {ancestor_type_id} to datatype {descendant_type_id}",
                entity="Link",
                ancestor_type_id=ancestor_type_id,
                descendant_type_id=descendant_type_id,
            )

        record = conn.execute(
            select(datarecords).where(
                datarecords.c.id == record_id, datarecords.c.deleted_at.is_(None)
            )
        ).first()
        if record is None:
            raise NotFoundError.for_entity("Datarecord", record_id)

        if record.datatype_id == ancestor_type_id:
            role, remote_type_id = LinkRole.ANCESTOR, descendant_type_id
        elif record.datatype_id == descendant_type_id:
            role, remote_type_id = LinkRole.DESCENDANT, ancestor_type_id
        else:
            raise ValidationError(
                f"Datarecord {record_id} is of datatype {record.datatype_id}, which is not "
                f"part of the link {ancestor_type_id} -> {descendant_type_id}",
                record_id=record_id,
            )

        return _LinkContext(
            record_id=record_id,
            local_type_id=int(record.datatype_id),
            remote_type_id=remote_type_id,
            role=role,
            multiple_allowed=bool(edge.multiple_allowed),
        )

    @staticmethod
    def _existing_links(conn: Connection, ctx: _LinkContext) -> list[_Existing]:
        """Active links between the local record and records of the remote type."""
        remote = aliased(datarecords)
        if ctx.role == LinkRole.ANCESTOR:
            local_col, remote_col = record_links.c.ancestor_id, record_links.c.descendant_id
        else:
            local_col, remote_col = record_links.c.descendant_id, record_links.c.ancestor_id

        rows = conn.execute(
            select(
                record_links.c.id,
                remote.c.id.label("remote_id"),
                func.coalesce(remote.c.grandparent_id, remote.c.id).label("remote_root_id"),
            )
            .select_from(record_links.join(remote, remote_col == remote.c.id))
            .where(
                local_col == ctx.record_id,
                remote.c.datatype_id == ctx.remote_type_id,
                remote.c.deleted_at.is_(None),
                record_links.c.deleted_at.is_(None),
            )
            .order_by(record_links.c.id)
        )
        return [
            _Existing(int(r.id), int(r.remote_id), int(r.remote_root_id)) for r in rows
        ]

    @staticmethod
    def _check_remote_records(conn: Connection, ctx: _LinkContext, ids: set[int]) -> None:
        if not ids:
            return
        found = {
            int(r.id)
            for r in conn.execute(
                select(datarecords.c.id).where(
                    datarecords.c.id.in_(sorted(ids)),
                    datarecords.c.datatype_id == ctx.remote_type_id,
                    datarecords.c.deleted_at.is_(None),
                )
            )
        }
        missing = sorted_ids(ids - found)
        if missing:
            raise NotFoundError(
                f"Datarecords not found for datatype {ctx.remote_type_id}: {missing}",
                entity="Datarecord",
                ids=missing,
            )

    @staticmethod
    def _check_cardinality(
        conn: Connection,
        ctx: _LinkContext,
        remaining: int,
        new_ids: list[int],
    ) -> None:
        """Enforce ``multiple_allowed = false`` against the post-sync state.

        The local record keeps at most one link to the remote type whichever
        side it is on. A descendant-side record additionally may not take an
        ancestor that already links to another record of the local type.
        """
        if remaining + len(new_ids) > 1:
            raise ValidationError(
                f"Datarecord {ctx.record_id} may link to only one datarecord of "
                f"datatype {ctx.remote_type_id}",
                record_id=ctx.record_id,
                existing=remaining,
                requested=new_ids,
            )
        if ctx.role == LinkRole.ANCESTOR or not new_ids:
            return

        local = aliased(datarecords)
        taken = sorted_ids(
            [
                int(r.ancestor_id)
                for r in conn.execute(
                    select(record_links.c.ancestor_id)
                    .select_from(record_links.join(local, record_links.c.descendant_id == local.c.id))
                    .where(
                        record_links.c.ancestor_id.in_(new_ids),
                        local.c.datatype_id == ctx.local_type_id,
                        local.c.deleted_at.is_(None),
                        record_links.c.deleted_at.is_(None),
                    )
                )
            ]
        )
        if taken:
            raise ValidationError(
                f"Datarecords {taken} already link to a datarecord of datatype "
                f"{ctx.local_type_id}, which allows only one",
                record_id=ctx.record_id,
                ancestor_ids=taken,
            )

    @staticmethod
    def _remote_roots(conn: Connection, ids: list[int]) -> set[int]:
        if not ids:
            return set()
        return {
            int(r.root_id)
            for r in conn.execute(
                select(
                    func.coalesce(datarecords.c.grandparent_id, datarecords.c.id).label("root_id")
                ).where(datarecords.c.id.in_(ids))
            )
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _create_links(txn: RegistryTransaction, ctx: _LinkContext, remote_ids: list[int]) -> list[int]:
        created: list[int] = []
        for remote_id in remote_ids:
            if ctx.role == LinkRole.ANCESTOR:
                ancestor_id, descendant_id = ctx.record_id, remote_id
            else:
                ancestor_id, descendant_id = remote_id, ctx.record_id
            result = txn.conn.execute(
                insert(record_links).values(
                    ancestor_id=ancestor_id,
                    descendant_id=descendant_id,
                    created=txn.now,
                    created_by=txn.actor,
                )
            )
            created.append(int(result.inserted_primary_key[0]))
        return created

    @staticmethod
    def _remove_links(txn: RegistryTransaction, link_ids: list[int]) -> int:
        return txn.soft_delete(record_links, link_ids)

    @staticmethod
    def _touch_ancestor_records(
        txn: RegistryTransaction, ctx: _LinkContext, remote_ids: list[int]
    ) -> None:
        """Stamp ``updated`` on the ancestor side of every changed link."""
        ids = [ctx.record_id] if ctx.role == LinkRole.ANCESTOR else sorted_ids(remote_ids)
        if not ids:
            return
        txn.conn.execute(
            update(datarecords)
            .where(datarecords.c.id.in_(ids), datarecords.c.deleted_at.is_(None))
            .values(updated=txn.now, updated_by=txn.actor)
        )

    @staticmethod
    def _clear_record_order(txn: RegistryTransaction, ctx: _LinkContext) -> None:
        """Drop the local type's ordering cache if it sorts by a remote-type field."""
        depends = txn.conn.execute(
            select(sort_fields.c.id)
            .select_from(sort_fields.join(datafields, sort_fields.c.field_id == datafields.c.id))
            .where(
                sort_fields.c.datatype_id == ctx.local_type_id,
                datafields.c.datatype_id == ctx.remote_type_id,
                sort_fields.c.deleted_at.is_(None),
            )
        ).first()
        if depends is not None:
            txn.clear_cache(record_order_key(ctx.local_type_id))


def _change_events(remote_type_id: int, roots: set[int]) -> list[ChangeEvent]:
    """One ``record_modified`` per root, then one batched status change."""
    if not roots:
        return []
    root_ids = sorted_ids(roots)
    events = [ChangeEvent(Hook.RECORD_MODIFIED, {"record_id": root_id}) for root_id in root_ids]
    events.append(
        ChangeEvent(
            Hook.RECORD_LINK_STATUS_CHANGED,
            {"record_ids": root_ids, "remote_datatype_id": remote_type_id},
        )
    )
    return events
