"""Command group: datarecord link maintenance."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from schemalink.commands._base import SchemalinkGroup
from schemalink.domain.types import SyncMode
from schemalink.services.record_links import RecordLinkService

if TYPE_CHECKING:
    from schemalink.commands._context import AppContext

_RECORDS_EXAMPLES = """\
  schemalink records sync 101 --ancestor 12 --descendant 7 205 206
  schemalink records sync 101 --ancestor 12 --descendant 7 207 --add-only
  schemalink records unlink 101 --ancestor 12 --descendant 7 205
  schemalink records purge-links 205"""


@click.group(cls=SchemalinkGroup, examples=_RECORDS_EXAMPLES)
@click.pass_obj
def records(app: AppContext) -> None:
    """Reconcile links between individual datarecords."""


@records.command(
    examples="""\
  schemalink records sync 101 --ancestor 12 --descendant 7 205 206
  schemalink records sync 101 --ancestor 12 --descendant 7
  schemalink records sync 101 --ancestor 12 --descendant 7 207 --add-only"""
)
@click.argument("local_record_id", type=int)
@click.argument("remote_ids", nargs=-1, type=int)
@click.option("--ancestor", "ancestor_type_id", required=True, type=int, help="Linking datatype.")
@click.option("--descendant", "descendant_type_id", required=True, type=int, help="Linked datatype.")
@click.option("--add-only", is_flag=True, help="Keep existing links not named in REMOTE_IDS.")
@click.pass_obj
def sync(
    app: AppContext,
    local_record_id: int,
    remote_ids: tuple[int, ...],
    ancestor_type_id: int,
    descendant_type_id: int,
    add_only: bool,
) -> None:
    """Make LOCAL_RECORD_ID link exactly to REMOTE_IDS (or add them with --add-only)."""
    mode = SyncMode.ADD_ONLY if add_only else SyncMode.FULL_SYNC
    app.emit(
        RecordLinkService(app.registry).sync_record_links(
            local_record_id,
            ancestor_type_id,
            descendant_type_id,
            set(remote_ids),
            mode=mode,
        )
    )


@records.command(
    examples="""\
  schemalink records unlink 101 --ancestor 12 --descendant 7 205"""
)
@click.argument("local_record_id", type=int)
@click.argument("remote_ids", nargs=-1, required=True, type=int)
@click.option("--ancestor", "ancestor_type_id", required=True, type=int, help="Linking datatype.")
@click.option("--descendant", "descendant_type_id", required=True, type=int, help="Linked datatype.")
@click.pass_obj
def unlink(
    app: AppContext,
    local_record_id: int,
    remote_ids: tuple[int, ...],
    ancestor_type_id: int,
    descendant_type_id: int,
) -> None:
    """Remove the links from LOCAL_RECORD_ID to REMOTE_IDS."""
    app.emit(
        RecordLinkService(app.registry).unlink_records(
            local_record_id, ancestor_type_id, descendant_type_id, remote_ids
        )
    )


@records.command(
    "purge-links",
    examples="""\
  schemalink records purge-links 205""",
)
@click.argument("record_id", type=int)
@click.pass_obj
def purge_links(app: AppContext, record_id: int) -> None:
    """Remove every link to or from a deleted datarecord."""
    app.emit(RecordLinkService(app.registry).unlink_all(record_id))
