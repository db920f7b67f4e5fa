"""Changelog migrations for schemaflow.

Manifesto:
    Schema changes ship as a changelog document, not as a directory of
    loose SQL files.  Every changeset is identified by ``id``, ``author``
    and file name, recorded in ``databasechangelog`` when it runs, and
    never applied twice.  DDL goes through alembic operations so each
    backend gets its own dialect; the changelog stays vendor-neutral.

Modules
-------
changelog    Changelog / ChangeSet / Change model and XML parser
changes      Change handlers (createTable, addColumn, sql, ...)
database     MigrationDatabase + find_database_implementation()
history      databasechangelog table
engine       ChangelogEngine.update() / status()
executor     MigrationExecutor: engine on a leased connection -> Result
runner       MigrationRunner: validate, workspace, connect, migrate, clean up

Tags:
    schemaflow, migrations, changelog, schema, database, idempotent, DDL

Doc-Types:
    package-overview
"""

from schemaflow.core.migrations.changelog import (
    Change,
    Changelog,
    ChangeSet,
    matches_contexts,
    matches_dbms,
    parse_changelog,
    parse_changelog_text,
)
from schemaflow.core.migrations.changes import supported_changes
from schemaflow.core.migrations.database import MigrationDatabase, find_database_implementation
from schemaflow.core.migrations.engine import ChangelogEngine, UpdateReport, validate_changelog
from schemaflow.core.migrations.executor import MigrationExecutor
from schemaflow.core.migrations.history import HISTORY_TABLE, ChangeLogHistory
from schemaflow.core.migrations.runner import MigrationOutcome, MigrationRunner, Phase

__all__ = [
    "Change",
    "ChangeLogHistory",
    "ChangeSet",
    "Changelog",
    "ChangelogEngine",
    "HISTORY_TABLE",
    "MigrationDatabase",
    "MigrationExecutor",
    "MigrationOutcome",
    "MigrationRunner",
    "Phase",
    "UpdateReport",
    "find_database_implementation",
    "matches_contexts",
    "matches_dbms",
    "parse_changelog",
    "parse_changelog_text",
    "supported_changes",
    "validate_changelog",
]
