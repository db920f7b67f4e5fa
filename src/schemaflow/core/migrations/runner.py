"""Migration runner.

Takes a :class:`MigrationRequest`, runs its changelog exactly once and
returns a :class:`MigrationOutcome`.  Each phase returns a ``Result``; the
first ``Err`` stops the run and names the phase in the outcome.

Phases::

    VALIDATE ─> WORKSPACE ─> WRITE ─> CONNECT ─> MIGRATE
                    │                                │
                    └──── workspace released ────────┘  (always)
                                         └─ lease rolled back and closed (always)
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Any

from schemaflow.core.adapters import ConnectionFactory, DataSourceRegistry, connection_factory_for
from schemaflow.core.errors import DriverError, SchemaflowError
from schemaflow.core.logging import LogContext, get_logger
from schemaflow.core.request import ConnectionSpec, MigrationRequest, validate_request
from schemaflow.core.result import Err, describe_error
from schemaflow.core.settings import SchemaflowSettings, get_settings
from schemaflow.core.workspace import TemporaryWorkspace, WorkspaceManager, write_changelog

from .engine import UpdateReport
from .executor import MigrationExecutor

logger = get_logger(__name__)


class Phase(str, Enum):
    """Where a run stopped."""

    VALIDATE = "validate"
    WORKSPACE = "workspace"
    WRITE = "write"
    CONNECT = "connect"
    MIGRATE = "migrate"


_FAILURE_MESSAGES = {
    Phase.VALIDATE: "Invalid migration configuration",
    Phase.WORKSPACE: "Failed to create changelog workspace",
    Phase.WRITE: "Failed to write changelog",
    Phase.CONNECT: "Failed to obtain database connection",
    Phase.MIGRATE: "Failed to run migrations",
}

# Failures in these phases always stop the host pipeline
_BLOCKING_PHASES = frozenset({Phase.VALIDATE, Phase.WORKSPACE})


@dataclass(frozen=True)
class MigrationOutcome:
    """Result of one run."""

    success: bool
    phase: Phase | None = None
    error: Exception | None = None
    report: UpdateReport | None = None
    invocation_id: str | None = None

    @property
    def message(self) -> str | None:
        if self.success:
            return None
        if isinstance(self.error, DriverError):
            return "Failed to initialize driver"
        return _FAILURE_MESSAGES.get(self.phase) if self.phase else None

    @property
    def applied(self) -> list[str]:
        return self.report.executed if self.report is not None else []

    def continue_pipeline(self, propagate_failures: bool = False) -> bool:
        """Value handed back to the host pipeline.

        Validation and workspace failures always return ``False``.  Later
        failures return ``True`` unless *propagate_failures* is set.
        """
        if self.success:
            return True
        if self.phase in _BLOCKING_PHASES:
            return False
        return not propagate_failures

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "phase": self.phase.value if self.phase else None,
            "message": self.message,
            "invocation_id": self.invocation_id,
        }
        if self.error is not None:
            data["error"] = describe_error(self.error)
        if self.report is not None:
            data["report"] = self.report.to_dict()
        return data


ConnectionProvider = Callable[[ConnectionSpec], ConnectionFactory]


class MigrationRunner:
    """Runs migration requests.

    Parameters
    ----------
    connections
        Maps a request's connection spec to a :class:`ConnectionFactory`.
        Defaults to :func:`connection_factory_for` over *registry*.
    registry
        Data source registry for pooled requests; the global one when
        ``None``.
    workspaces
        Creates the temporary changelog workspace.
    executor
        Runs the engine on the leased connection.
    settings
        Defaults to :func:`get_settings`.

    Example::

        from schemaflow.core.migrations import MigrationRunner
        from schemaflow.core.request import MigrationRequest

        request = MigrationRequest.from_properties(
            changelog=xml, driver="sqlite3", url="sqlite:///app.db",
            user="app", password="secret",
        )
        outcome = MigrationRunner().run(request)
        print(outcome.success, outcome.applied)
    """

    def __init__(
        self,
        *,
        connections: ConnectionProvider | None = None,
        registry: DataSourceRegistry | None = None,
        workspaces: WorkspaceManager | None = None,
        executor: MigrationExecutor | None = None,
        settings: SchemaflowSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._connections = connections or partial(connection_factory_for, registry=registry)
        self._workspaces = workspaces or WorkspaceManager(
            prefix=self.settings.workspace_prefix,
            parent=self.settings.temp_dir,
            filename=self.settings.changelog_filename,
        )
        self._executor = executor or MigrationExecutor()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, request: MigrationRequest) -> MigrationOutcome:
        invocation_id = uuid.uuid4().hex[:12]
        with LogContext(invocation_id=invocation_id):
            logger.info("migration.started", mode=request.connection.mode, contexts=request.contexts)
            outcome = replace(self._run(request), invocation_id=invocation_id)
            if outcome.success:
                logger.info("migration.succeeded", applied=len(outcome.applied))
            return outcome

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, request: MigrationRequest) -> MigrationOutcome:
        validated = validate_request(request)
        if isinstance(validated, Err):
            return self._failed(Phase.VALIDATE, validated.error)

        acquired = self._workspaces.acquire()
        if isinstance(acquired, Err):
            return self._failed(Phase.WORKSPACE, acquired.error)

        with acquired.value as workspace:
            return self._execute(request, workspace)

    def _execute(self, request: MigrationRequest, workspace: TemporaryWorkspace) -> MigrationOutcome:
        written = write_changelog(workspace, request.changelog or "")
        if isinstance(written, Err):
            return self._failed(Phase.WRITE, written.error)

        opened = self._connections(request.connection).open()
        if isinstance(opened, Err):
            return self._failed(Phase.CONNECT, opened.error)

        with opened.value as lease:
            lease.begin_migration()
            executed = self._executor.execute(lease.connection, workspace.changelog_path, request.contexts)
            if isinstance(executed, Err):
                lease.mark_failed()
                return self._failed(Phase.MIGRATE, executed.error)
            lease.mark_committed()
            return MigrationOutcome(success=True, report=executed.value)

    def _failed(self, phase: Phase, error: Exception) -> MigrationOutcome:
        if isinstance(error, SchemaflowError):
            error.with_context(phase=phase.value)
        outcome = MigrationOutcome(success=False, phase=phase, error=error)
        logger.error("migration.failed", phase=phase.value, message=outcome.message, error=describe_error(error))
        return outcome


__all__ = [
    "MigrationOutcome",
    "MigrationRunner",
    "Phase",
]
