"""Command group: datatype link maintenance."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from schemalink.commands._base import SchemalinkGroup
from schemalink.services.datatype_links import DatatypeLinkService

if TYPE_CHECKING:
    from schemalink.commands._context import AppContext

_LINK_EXAMPLES = """\
  schemalink link set 12 --slot 40 --remote 7
  schemalink link set 12 --slot 40 --remote 9 --previous 7
  schemalink link remove 12 --slot 40 --previous 9
  schemalink link candidates 12"""


@click.group(cls=SchemalinkGroup, examples=_LINK_EXAMPLES)
@click.pass_obj
def link(app: AppContext) -> None:
    """Create, replace and remove links between datatypes."""


@link.command(
    "set",
    examples="""\
  schemalink link set 12 --slot 40 --remote 7
  schemalink link set 12 --slot 40 --remote 9 --previous 7
  schemalink --json --actor alice link set 12 --slot 40 --remote 7""",
)
@click.argument("local_id", type=int)
@click.option("--slot", "slot_id", required=True, type=int, help="Layout slot showing the link.")
@click.option("--remote", "new_remote_id", type=int, default=None, help="Datatype to link to.")
@click.option(
    "--previous",
    "previous_remote_id",
    type=int,
    default=None,
    help="Currently linked datatype to replace.",
)
@click.pass_obj
def set_link(
    app: AppContext,
    local_id: int,
    slot_id: int,
    new_remote_id: int | None,
    previous_remote_id: int | None,
) -> None:
    """Link LOCAL_ID to a remote datatype, replacing any previous link."""
    app.emit(
        DatatypeLinkService(app.registry).set_datatype_link(
            local_id,
            slot_id,
            new_remote_id=new_remote_id,
            previous_remote_id=previous_remote_id,
        )
    )


@link.command(
    examples="""\
  schemalink link remove 12 --slot 40 --previous 7"""
)
@click.argument("local_id", type=int)
@click.option("--slot", "slot_id", required=True, type=int, help="Layout slot showing the link.")
@click.option(
    "--previous",
    "previous_remote_id",
    required=True,
    type=int,
    help="Linked datatype to remove.",
)
@click.pass_obj
def remove(app: AppContext, local_id: int, slot_id: int, previous_remote_id: int) -> None:
    """Remove a datatype link and everything that depends on it."""
    app.emit(
        DatatypeLinkService(app.registry).remove_datatype_link(local_id, slot_id, previous_remote_id)
    )


@link.command(
    examples="""\
  schemalink link candidates 12
  schemalink --json link candidates 12"""
)
@click.argument("local_id", type=int)
@click.pass_obj
def candidates(app: AppContext, local_id: int) -> None:
    """List datatypes LOCAL_ID links to and could link to."""
    app.emit(DatatypeLinkService(app.registry).linkable_datatypes(local_id))
