"""Schemaflow core -- request model, workspace, connections and migrations.

Manifesto:
    A migration invocation is short-lived and must leave nothing behind:
    no temporary files, no open connections, no half-finished transaction.
    The core is organized so each of those resources is owned by exactly
    one object with a guaranteed release, and every failure is reported as
    a structured error instead of a stack trace in the host's log.

Architecture::

    Layer 1 -- Errors, results, logging, settings
        errors.py          SchemaflowError hierarchy (ErrorCategory, ErrorContext)
        result.py          Result[T] envelope (Ok / Err / try_result_with)
        logging.py         structlog configuration + LogContext
        settings.py        SchemaflowSettings (SCHEMAFLOW_ env vars)

    Layer 2 -- Invocation resources
        request.py         MigrationRequest + validate_request()
        workspace.py       TemporaryWorkspace / WorkspaceManager / write_changelog
        adapters/          Connection factories, data source registry, leases

    Layer 3 -- Migrations
        migrations/        Changelog parser, engine, executor, runner

Tags:
    schemaflow, core, migrations, cleanup, structured-errors

Doc-Types:
    package-overview, architecture-map
"""

from schemaflow.core.errors import (
    ChangelogIOError,
    ChangelogParseError,
    ChecksumMismatchError,
    ConfigurationError,
    DatabaseConnectionError,
    DriverError,
    ErrorCategory,
    ErrorContext,
    MigrationError,
    MissingConfigError,
    SchemaflowError,
    WorkspaceError,
)
from schemaflow.core.request import DirectConnection, MigrationRequest, PooledDataSource, validate_request
from schemaflow.core.result import Err, Ok, Result, describe_error, try_result_with

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "SchemaflowError",
    "ConfigurationError",
    "MissingConfigError",
    "DriverError",
    "WorkspaceError",
    "ChangelogIOError",
    "DatabaseConnectionError",
    "MigrationError",
    "ChangelogParseError",
    "ChecksumMismatchError",
    # Result
    "Ok",
    "Err",
    "Result",
    "describe_error",
    "try_result_with",
    # Request
    "MigrationRequest",
    "PooledDataSource",
    "DirectConnection",
    "validate_request",
]
