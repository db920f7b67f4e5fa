"""
Structured error types for schemaflow.

Every failure a migration invocation can hit has its own type so the runner
can decide, per phase, what to log and what to report back to the pipeline.
Errors carry a category, a retryable flag, structured context and the chained
underlying exception.

Manifesto:
    - **One type per phase:** the outcome names the phase, the type names the
      kind of failure within it
    - **No internal retries:** ``retryable`` is only a hint for a host that
      re-delivers the message
    - **Context travels with the error:** phase, data source, changeset
    - **Causes are kept:** driver and OS exceptions stay reachable as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      SchemaflowError                             │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigurationError   WorkspaceError     DatabaseConnectionError │
        │  (CONFIG)             (STORAGE)          (DATABASE, retryable)   │
        │       │                    │                                     │
        │  MissingConfigError   ChangelogIOError   MigrationError          │
        │  DriverError          (STORAGE)          (MIGRATION)             │
        │                                               │                  │
        │                                          ChangelogParseError     │
        │                                          ChecksumMismatchError   │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = MissingConfigError("url")
    >>> error.key
    'url'
    >>> error.category
    <ErrorCategory.CONFIG: 'CONFIG'>

    >>> try:
    ...     raise OSError("No space left on device")
    ... except OSError as e:
    ...     error = ChangelogIOError("Failed to write changelog", cause=e)
    >>> error.cause
    OSError('No space left on device')

Guardrails:
    ❌ DON'T: Raise bare Exception from a phase function
    ✅ DO: Return Err(<phase error>) with cause= set

    ❌ DON'T: Put passwords into ErrorContext
    ✅ DO: Log the data source name or a redacted URL

Tags:
    error-handling, exception-hierarchy, error-context, schemaflow

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        CONFIG: Missing or invalid mediator configuration, unknown driver
        STORAGE: Temporary directory / changelog file errors
        DATABASE: Connection open, pool checkout
        PARSE: Changelog document could not be read
        MIGRATION: A changeset failed to apply
        INTERNAL: Bugs, unexpected state
    """

    CONFIG = "CONFIG"
    STORAGE = "STORAGE"
    DATABASE = "DATABASE"
    PARSE = "PARSE"
    MIGRATION = "MIGRATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Where in a migration invocation an error happened.

    The runner fills ``phase`` and ``invocation_id``; connection factories add
    ``datasource`` or a redacted ``url``; the engine adds ``changeset``.
    Anything else lands in ``metadata``.

    Examples:
        >>> ErrorContext(phase="connect", datasource="reporting").to_dict()
        {'phase': 'connect', 'datasource': 'reporting'}
    """

    phase: str | None = None
    invocation_id: str | None = None
    datasource: str | None = None
    url: str | None = None
    changeset: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, metadata merged in; ready to pass to a log call."""
        data = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        data.update(self.metadata)
        return data


class SchemaflowError(Exception):
    """
    Base exception for all schemaflow errors.

    Carries a ``category`` (which phase family failed), a ``retryable`` hint
    for hosts that re-deliver messages, an :class:`ErrorContext` and the
    underlying ``cause``, which is also chained as ``__cause__``.
    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = SchemaflowError("Invalid connection state transition")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(phase="migrate").context.phase
        'migrate'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SchemaflowError:
        """
        Attach context and return ``self``, so it chains inside ``Err(...)``.

        Usage:
            return Err(DatabaseConnectionError("Pool exhausted").with_context(datasource="reporting"))
        """
        known = {f.name for f in fields(self.context)} - {"metadata"}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Structured form for ``migration.failed`` events and ``--json`` output."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            data["context"] = context
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(SchemaflowError):
    """Mediator properties or settings are unusable; re-delivery will not help."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigurationError):
    """A required request field (``key``) is empty or unset."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"{key} is required")


class DriverError(ConfigurationError):
    """Database driver could not be resolved or is not a DB-API module."""

    def __init__(self, driver: str, message: str | None = None, **kwargs: Any):
        self.driver = driver
        super().__init__(message or f"Failed to initialize driver: {driver}", **kwargs)


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class WorkspaceError(SchemaflowError):
    """Temporary directory or changelog file could not be created."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class ChangelogIOError(SchemaflowError):
    """Changelog text could not be written to the workspace."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseConnectionError(SchemaflowError):
    """Database connection or pool error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True


# =============================================================================
# MIGRATION ERRORS
# =============================================================================


class MigrationError(SchemaflowError):
    """
    A changeset failed to apply.

    ``changeset`` holds the identifier of the failing changeset when the
    engine knows it.
    """

    default_category = ErrorCategory.MIGRATION
    default_retryable = False

    def __init__(self, message: str, *, changeset: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.changeset = changeset
        if changeset is not None:
            self.context.changeset = changeset


class ChangelogParseError(MigrationError):
    """Changelog document is malformed or uses an unsupported change."""

    default_category = ErrorCategory.PARSE


class ChecksumMismatchError(MigrationError):
    """An applied changeset was modified after it ran."""

    def __init__(self, changeset: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum changed for applied changeset {changeset}: "
            f"recorded {expected}, now {actual}",
            changeset=changeset,
        )


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SchemaflowError",
    # Config
    "ConfigurationError",
    "MissingConfigError",
    "DriverError",
    # Storage
    "WorkspaceError",
    "ChangelogIOError",
    # Database
    "DatabaseConnectionError",
    # Migration
    "MigrationError",
    "ChangelogParseError",
    "ChecksumMismatchError",
]
