"""Command: link-graph integrity check."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from schemalink.commands._base import SchemalinkCommand

if TYPE_CHECKING:
    from schemalink.commands._context import AppContext


@click.command(
    cls=SchemalinkCommand,
    examples="""\
  schemalink check
  schemalink --json check""",
)
@click.pass_obj
def check(app: AppContext) -> None:
    """Report link cycles, cardinality breaches and orphaned record links."""
    from schemalink.services.check import CheckService

    app.emit(CheckService(app.registry).check())
