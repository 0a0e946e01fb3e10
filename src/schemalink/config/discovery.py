"""Locating and reading ``schemalink.toml``.

Lookup order: the ``SCHEMALINK_CONFIG`` env var, then a walk up from the
starting directory, the way git finds ``.git/``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

import click

from schemalink.config.models import SchemalinkConfig

CONFIG_FILENAME = "schemalink.toml"
CONFIG_ENV_VAR = "SCHEMALINK_CONFIG"


def find_config(start: Path | None = None) -> Path | None:
    """Return the config file governing *start* (default: cwd), if any.

    A ``SCHEMALINK_CONFIG`` pointing at a missing file disables discovery.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        p = Path(env_path)
        return p if p.is_file() else None

    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def read_toml(path: Path) -> dict[str, Any]:
    """Parse *path*; malformed TOML is reported as a CLI usage error."""
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise click.ClickException(f"Invalid TOML in {path}: {exc}") from exc


def load_config(path: Path | None = None, cwd: Path | None = None) -> SchemalinkConfig:
    """Validated sections from *path* (or the discovered file); defaults when none."""
    path = path or find_config(cwd)
    if path is None:
        return SchemalinkConfig()
    return SchemalinkConfig.model_validate(read_toml(path))
