"""
Centralized settings for schemaflow.

Manifesto:
    The connection fields of a migration come from the host pipeline, but
    how the runner behaves (which contexts it applies, where it creates its
    temporary workspace, whether failures reach the pipeline) is deployment
    configuration.  One validated, cached settings object holds it.

All fields can be set via ``SCHEMAFLOW_*`` environment variables (e.g.
``SCHEMAFLOW_PROPAGATE_FAILURES=true``) or a ``.env`` file.

Tags:
    schemaflow, configuration, settings, pydantic, caching

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchemaflowSettings(BaseSettings):
    """Schemaflow runtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEMAFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Migration ────────────────────────────────────────────────
    contexts: str = Field(default="main", description="Changeset contexts applied by a run")
    propagate_failures: bool = Field(
        default=False,
        description="Return the real migration result to the pipeline instead of always continuing",
    )

    # ── Workspace ────────────────────────────────────────────────
    workspace_prefix: str = Field(default="changelog")
    changelog_filename: str = Field(default="changelog.xml")
    temp_dir: Path | None = Field(default=None, description="Parent of temporary workspaces (system default if unset)")

    # ── Data source pools ────────────────────────────────────────
    pool_size: int = Field(default=5, ge=1)
    pool_max_overflow: int = Field(default=10, ge=0)
    pool_timeout: float = Field(default=30.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str | None = Field(default=None, description="json | console (auto-detect if unset)")

    @field_validator("changelog_filename")
    @classmethod
    def _plain_filename(cls, value: str) -> str:
        if not value or Path(value).name != value:
            raise ValueError("changelog_filename must be a bare file name")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SchemaflowSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SchemaflowSettings:
    """Load, validate, and cache a :class:`SchemaflowSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = SchemaflowSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "SchemaflowSettings",
    "get_settings",
    "clear_settings_cache",
]
