"""Runs the changelog engine on a leased connection."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from schemaflow.core.errors import MigrationError
from schemaflow.core.logging import get_logger
from schemaflow.core.result import Result, try_result_with

from .database import MigrationDatabase, find_database_implementation
from .engine import ChangelogEngine, UpdateReport

logger = get_logger(__name__)

EngineFactory = Callable[[Path, MigrationDatabase], ChangelogEngine]


class MigrationExecutor:
    """Wraps a connection for the engine and runs ``update``.

    Any engine failure comes back as ``Err(MigrationError)``; errors that
    already are ``MigrationError`` subclasses (parse, checksum) keep their
    type.  No retries.
    """

    def __init__(self, engine_factory: EngineFactory | None = None) -> None:
        self._engine_factory = engine_factory or ChangelogEngine

    def execute(self, connection: Any, changelog_path: Path, contexts: str | None) -> Result[UpdateReport]:
        def _update() -> UpdateReport:
            database = find_database_implementation(connection)
            engine = self._engine_factory(Path(changelog_path), database)
            logger.info("update.started", vendor=database.vendor, changesets=len(engine.changelog), contexts=contexts)
            return engine.update(contexts)

        return try_result_with(
            _update,
            lambda e: MigrationError(f"Failed to run migrations: {e}", cause=e),
        )


__all__ = ["EngineFactory", "MigrationExecutor"]
