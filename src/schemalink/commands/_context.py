"""AppContext — shared Click context for all commands.

Created once by the root CLI group and passed to subcommands via
``@click.pass_obj``. Provides lazy Registry initialization and centralized
result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from schemalink.output.formatters import format_result

if TYPE_CHECKING:
    from schemalink.config.settings import SchemalinkSettings
    from schemalink.infrastructure.registry import Registry
    from schemalink.services.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    The registry is created on first use so ``--help`` and ``--version``
    never open the database.
    """

    def __init__(self, settings: SchemalinkSettings) -> None:
        self.settings = settings
        self._registry: Registry | None = None

        from schemalink.config.logging import configure_logging

        configure_logging(
            verbose=settings.verbose,
            log_json=settings.log_json,
            context={"actor": settings.actor},
        )

    @property
    def registry(self) -> Registry:
        """The registry instance (created lazily on first access)."""
        if self._registry is None:
            from schemalink.infrastructure.registry import Registry

            self._registry = Registry(self.settings)
            self._registry.init_event_bus()
        return self._registry

    def close(self) -> None:
        """Flush pending notifications and release the database."""
        if self._registry is not None:
            self._registry.close()
            self._registry = None

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success: writes to stdout. Warnings go to stderr so they don't
          pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        json_output = self.settings.json_output
        output = format_result(result, json_output=json_output)
        if result.ok:
            click.echo(output)
            if not json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            self.close()
            raise SystemExit(1)
