"""Subcommand modules for schemalink.

Provides register_commands() which uses deferred imports to keep
``schemalink --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register the command groups and standalone commands on the root CLI group."""
    # --- Groups ---
    from schemalink.commands.link import link
    from schemalink.commands.records import records

    cli.add_command(link)
    cli.add_command(records)

    # --- Standalone commands ---
    from schemalink.commands.check import check

    cli.add_command(check)
