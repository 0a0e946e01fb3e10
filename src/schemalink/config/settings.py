"""SchemalinkSettings: CLI flags, env vars and ``schemalink.toml`` in one frozen object.

Priority (highest first): init kwargs from click, ``SCHEMALINK_*`` env vars
(``__`` separates section and key), the TOML file, the defaults baked into
:mod:`schemalink.config.models`.
"""

from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any

import click
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from schemalink.config.discovery import find_config, read_toml
from schemalink.config.models import CacheConfig, DatabaseConfig, EventsConfig, LinksConfig

# Config file chosen by from_cli(), visible to the TOML source while the model is built.
_active_toml: ContextVar[Path | None] = ContextVar("schemalink_active_toml", default=None)


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Supplies the sections of one ``schemalink.toml`` file."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._data = read_toml(toml_path) if toml_path and toml_path.is_file() else {}

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, field_name in self._data

    def __call__(self) -> dict[str, Any]:
        return self._data


class SchemalinkSettings(BaseSettings):
    """Settings for one registry and the command that opened it.

    Attributes:
        registry_root: Directory holding ``.schemalink/schemalink.db``; the
            config file's directory, or the cwd when there is none.
        config_path: The config file in effect, if any.
        actor: Identity written to ``created_by`` / ``deleted_by``.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "SCHEMALINK_",
        "env_nested_delimiter": "__",
    }

    registry_root: Path = Field(default_factory=Path.cwd)
    config_path: Path | None = None

    json_output: bool = False
    verbose: bool = False
    log_json: bool = False
    sync: bool = False
    actor: str = "system"

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    links: LinksConfig = Field(default_factory=LinksConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlSettingsSource(settings_cls, _active_toml.get()),
        )

    @property
    def event_sync(self) -> bool:
        """True when ``--sync`` or ``[events] sync`` asks for inline delivery."""
        return self.sync or self.events.sync

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        registry_root: Path | None = None,
        **cli_flags: Any,
    ) -> SchemalinkSettings:
        """Build settings for a CLI invocation.

        An explicit *config_path* must exist. Otherwise the file is
        discovered from *registry_root* (or the cwd), and its directory
        becomes the registry root unless one was given.
        """
        if config_path:
            toml_path: Path | None = Path(config_path)
            if not toml_path.is_file():
                raise click.BadParameter(f"{config_path} is not a file", param_hint="--config")
        else:
            toml_path = find_config(registry_root)

        if registry_root is None:
            registry_root = toml_path.parent if toml_path else Path.cwd()

        token = _active_toml.set(toml_path)
        try:
            return cls(registry_root=registry_root, config_path=toml_path, **cli_flags)
        finally:
            _active_toml.reset(token)
