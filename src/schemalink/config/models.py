"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, schemalink.toml only contains
overrides. A fresh registry needs no config file at all.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# --- schemalink.toml sections ---


class DatabaseConfig(BaseModel):
    """[database] section."""

    model_config = {"frozen": True}

    busy_timeout: float = Field(default=5.0, gt=0)
    echo: bool = False


class LinksConfig(BaseModel):
    """[links] section."""

    model_config = {"frozen": True}

    max_layout_depth: int = Field(default=32, ge=1)
    default_multiple_allowed: bool = True


class EventsConfig(BaseModel):
    """[events] section."""

    model_config = {"frozen": True}

    sync: bool = False
    max_retries: int = Field(default=3, ge=1)
    max_workers: int = Field(default=2, ge=1)


class CacheConfig(BaseModel):
    """[cache] section."""

    model_config = {"frozen": True}

    enabled: bool = True


class SchemalinkConfig(BaseModel):
    """Root configuration composing all sections."""

    model_config = {"frozen": True}

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    links: LinksConfig = Field(default_factory=LinksConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
