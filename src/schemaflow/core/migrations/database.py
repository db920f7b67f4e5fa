"""Vendor-aware wrapper around a migration connection."""

from __future__ import annotations

from typing import Any

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from schemaflow.core.logging import get_logger

logger = get_logger(__name__)

# SQLAlchemy dialect name -> changelog dbms name
_VENDOR_NAMES = {
    "postgresql": "postgresql",
    "mysql": "mysql",
    "mariadb": "mariadb",
    "oracle": "oracle",
    "mssql": "mssql",
    "sqlite": "sqlite",
}


class MigrationDatabase:
    """
    A connection plus the alembic operations bound to it.

    Built by :func:`find_database_implementation`; handlers use
    ``operations`` for DDL and ``connection`` for data changes.
    """

    def __init__(self, connection: Connection, context: MigrationContext) -> None:
        self.connection = connection
        self.context = context
        self.operations = Operations(context)
        self.vendor = _VENDOR_NAMES.get(connection.dialect.name, connection.dialect.name)

    @property
    def is_sqlite(self) -> bool:
        return self.vendor == "sqlite"

    @property
    def transactional_ddl(self) -> bool:
        """Whether DDL is undone by a rollback on this backend."""
        return bool(self.context.impl.transactional_ddl)

    def batch(self, table_name: str, *, schema: str | None = None, recreate: str = "auto") -> Any:
        return self.operations.batch_alter_table(table_name, schema=schema, recreate=recreate)

    def execute_sql(self, statement: str) -> None:
        # no_parameters keeps "%" and ":name" in raw SQL away from the driver's paramstyle
        self.connection.exec_driver_sql(statement, execution_options={"no_parameters": True})

    def has_table(self, name: str, schema: str | None = None) -> bool:
        return inspect(self.connection).has_table(name, schema=schema)

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()

    def __repr__(self) -> str:
        return f"MigrationDatabase(vendor={self.vendor!r})"


def find_database_implementation(connection: Connection) -> MigrationDatabase:
    """Detect the vendor of *connection* and wrap it for migrations."""
    context = MigrationContext.configure(connection=connection)
    database = MigrationDatabase(connection, context)
    logger.debug("database.detected", vendor=database.vendor, transactional_ddl=database.transactional_ddl)
    return database


__all__ = ["MigrationDatabase", "find_database_implementation"]
