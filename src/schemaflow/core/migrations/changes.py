"""Change handlers.

Each supported change kind maps to a handler that applies it through
alembic's :class:`~alembic.operations.Operations`, so the DDL emitted is the
one the connected dialect expects.  Operations SQLite cannot do with
``ALTER TABLE`` (dropping or renaming columns, adding constraints) go
through alembic batch mode, which recreates the table when needed.

Supported kinds::

    createTable  dropTable  renameTable
    addColumn    dropColumn renameColumn  addNotNullConstraint
    createIndex  dropIndex
    addUniqueConstraint     addForeignKeyConstraint
    insert       sql
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy.types import TypeEngine, UserDefinedType

from schemaflow.core.errors import ChangelogParseError
from schemaflow.core.logging import get_logger

from .changelog import Change, ColumnSpec, matches_dbms
from .database import MigrationDatabase

logger = get_logger(__name__)

ChangeHandler = Callable[[MigrationDatabase, Change], None]

_HANDLERS: dict[str, ChangeHandler] = {}


def change(kind: str) -> Callable[[ChangeHandler], ChangeHandler]:
    """Register a handler for a change kind."""

    def decorator(fn: ChangeHandler) -> ChangeHandler:
        _HANDLERS[kind] = fn
        return fn

    return decorator


def supported_changes() -> list[str]:
    return sorted(_HANDLERS)


def is_supported(kind: str) -> bool:
    return kind in _HANDLERS


def apply_change(database: MigrationDatabase, item: Change) -> None:
    """Apply one change on the database's connection."""
    handler = _HANDLERS.get(item.kind)
    if handler is None:
        raise ChangelogParseError(f"Unsupported change type: {item.kind}")
    dbms = item.get("dbms")
    if dbms and not matches_dbms(tuple(d.strip() for d in dbms.split(",")), database.vendor):
        logger.debug("change.skipped_dbms", change=item.kind, dbms=dbms, vendor=database.vendor)
        return
    handler(database, item)


# ── Types ────────────────────────────────────────────────────────────────


class VerbatimType(UserDefinedType):
    """A column type rendered exactly as written in the changelog."""

    cache_ok = True

    def __init__(self, spec: str) -> None:
        self.spec = spec

    def get_col_spec(self, **kw: Any) -> str:
        return self.spec


_PLAIN_TYPES: dict[str, Callable[[], TypeEngine]] = {
    "int": sa.Integer,
    "integer": sa.Integer,
    "int4": sa.Integer,
    "mediumint": sa.Integer,
    "smallint": sa.SmallInteger,
    "tinyint": sa.SmallInteger,
    "int2": sa.SmallInteger,
    "bigint": sa.BigInteger,
    "int8": sa.BigInteger,
    "boolean": sa.Boolean,
    "bool": sa.Boolean,
    "bit": sa.Boolean,
    "date": sa.Date,
    "time": sa.Time,
    "datetime": sa.DateTime,
    "timestamp": sa.DateTime,
    "timestamp with time zone": lambda: sa.DateTime(timezone=True),
    "timestamptz": lambda: sa.DateTime(timezone=True),
    "text": sa.Text,
    "clob": sa.Text,
    "longtext": sa.Text,
    "mediumtext": sa.Text,
    "blob": sa.LargeBinary,
    "longblob": sa.LargeBinary,
    "bytea": sa.LargeBinary,
    "float": sa.Float,
    "real": sa.REAL,
    "double": sa.Double,
    "double precision": sa.Double,
    "uuid": sa.Uuid,
    "json": sa.JSON,
}

_SIZED_TYPES: dict[str, Callable[..., TypeEngine]] = {
    "varchar": sa.String,
    "varchar2": sa.String,
    "character varying": sa.String,
    "nvarchar": sa.Unicode,
    "nvarchar2": sa.Unicode,
    "char": sa.CHAR,
    "character": sa.CHAR,
    "nchar": sa.NCHAR,
    "decimal": sa.Numeric,
    "numeric": sa.Numeric,
    "number": sa.Numeric,
    "currency": lambda *args: sa.Numeric(*(args or (18, 4))),
    "varbinary": sa.VARBINARY,
    "binary": sa.BINARY,
}

_TYPE_SYNTAX = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_ ]*?)\s*(?:\(([^)]*)\))?\s*$")


def resolve_type(spec: str) -> TypeEngine:
    """Map a changelog type string to a SQLAlchemy type.

    Examples:
        >>> resolve_type("varchar(50)").length
        50
        >>> resolve_type("decimal(10, 2)").scale
        2
        >>> resolve_type("geometry(Point, 4326)").spec
        'geometry(Point, 4326)'
    """
    cleaned = spec.strip()
    if cleaned.lower().startswith("java.sql.types."):
        cleaned = cleaned[len("java.sql.types."):]

    match = _TYPE_SYNTAX.match(cleaned)
    if match is None:
        return VerbatimType(spec.strip())

    name = " ".join(match.group(1).lower().split())
    args = match.group(2)

    if args is None and name in _PLAIN_TYPES:
        return _PLAIN_TYPES[name]()
    if name in _SIZED_TYPES:
        factory = _SIZED_TYPES[name]
        if args is None or not args.strip():
            return factory()
        try:
            numbers = [int(a.strip().split()[0]) for a in args.split(",")]
        except (ValueError, IndexError):
            return VerbatimType(spec.strip())
        return factory(*numbers)
    return VerbatimType(spec.strip())


# ── Columns ──────────────────────────────────────────────────────────────


def _foreign_key(spec: ColumnSpec, table: str | None) -> sa.ForeignKey | None:
    c = spec.constraints
    if c is None:
        return None
    target: str | None = None
    if c.references:
        # Liquibase form: table(column)
        m = re.match(r"^\s*([\w.]+)\s*\(\s*(\w+)\s*\)\s*$", c.references)
        if m is None:
            raise ChangelogParseError(f"Invalid references value for column {spec.name}: {c.references}")
        target = f"{m.group(1)}.{m.group(2)}"
    elif c.referenced_table_name and c.referenced_column_names:
        target = f"{c.referenced_table_name}.{c.referenced_column_names.split(',')[0].strip()}"
    if target is None:
        return None
    return sa.ForeignKey(
        target,
        name=c.foreign_key_name or (f"fk_{table}_{spec.name}" if table else None),
        ondelete="CASCADE" if c.delete_cascade else None,
    )


def _server_default(spec: ColumnSpec) -> Any:
    attrs = spec.attributes
    if "defaultValueComputed" in attrs:
        return sa.text(attrs["defaultValueComputed"])
    if "defaultValueBoolean" in attrs:
        return sa.true() if attrs["defaultValueBoolean"].lower() in ("true", "1") else sa.false()
    for key in ("defaultValue", "defaultValueNumeric", "defaultValueDate"):
        if key in attrs:
            return attrs[key]
    return None


def build_column(spec: ColumnSpec, table: str | None = None) -> sa.Column:
    """Build a ``Column`` for createTable / addColumn.

    With *table* given, unnamed foreign keys are named ``fk_<table>_<column>``.
    """
    if not spec.type:
        raise ChangelogParseError(f"column {spec.name} requires attribute 'type'")

    constraints = spec.constraints
    args: list[Any] = [spec.name, resolve_type(spec.type)]
    fk = _foreign_key(spec, table)
    if fk is not None:
        args.append(fk)

    kwargs: dict[str, Any] = {
        "primary_key": bool(constraints and constraints.primary_key),
        "autoincrement": True if spec.auto_increment else "auto",
        "comment": spec.remarks,
    }
    if constraints is not None and constraints.nullable is not None:
        kwargs["nullable"] = constraints.nullable
    elif not kwargs["primary_key"]:
        kwargs["nullable"] = True
    if constraints is not None and constraints.unique:
        kwargs["unique"] = True
    default = _server_default(spec)
    if default is not None:
        kwargs["server_default"] = default

    return sa.Column(*args, **kwargs)


def column_value(spec: ColumnSpec) -> Any:
    """Value of an ``insert`` column."""
    attrs = spec.attributes
    if "valueComputed" in attrs:
        return sa.text(attrs["valueComputed"])
    if "valueNumeric" in attrs:
        raw = attrs["valueNumeric"].strip()
        try:
            return int(raw)
        except ValueError:
            return Decimal(raw)
    if "valueBoolean" in attrs:
        return attrs["valueBoolean"].strip().lower() in ("true", "1")
    if "valueDate" in attrs:
        raw = attrs["valueDate"].strip()
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return raw
        if "T" not in raw and " " not in raw:
            return date(parsed.year, parsed.month, parsed.day)
        return parsed
    return attrs.get("value")


def _names(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


# ── Tables ───────────────────────────────────────────────────────────────


@change("createTable")
def create_table(db: MigrationDatabase, item: Change) -> None:
    if not item.columns:
        raise ChangelogParseError(f"createTable {item.get('tableName')} requires at least one column")
    table = item.require("tableName")
    db.operations.create_table(
        table,
        *(build_column(spec, table) for spec in item.columns),
        schema=item.get("schemaName"),
        comment=item.get("remarks"),
    )


@change("dropTable")
def drop_table(db: MigrationDatabase, item: Change) -> None:
    db.operations.drop_table(item.require("tableName"), schema=item.get("schemaName"))


@change("renameTable")
def rename_table(db: MigrationDatabase, item: Change) -> None:
    db.operations.rename_table(
        item.require("oldTableName"),
        item.require("newTableName"),
        schema=item.get("schemaName"),
    )


# ── Columns ──────────────────────────────────────────────────────────────


@change("addColumn")
def add_column(db: MigrationDatabase, item: Change) -> None:
    table = item.require("tableName")
    schema = item.get("schemaName")
    if not item.columns:
        raise ChangelogParseError(f"addColumn {table} requires at least one column")

    for spec in item.columns:
        column = build_column(spec, table)
        # added as a named constraint below; batch mode rejects unnamed ones
        unique = bool(column.unique)
        column.unique = None
        if db.is_sqlite and column.foreign_keys:
            with db.batch(table, schema=schema, recreate="always") as batch:
                batch.add_column(column)
        else:
            db.operations.add_column(table, column, schema=schema)
        if unique:
            with db.batch(table, schema=schema) as batch:
                batch.create_unique_constraint(f"uq_{table}_{column.name}", [column.name])


@change("dropColumn")
def drop_column(db: MigrationDatabase, item: Change) -> None:
    table = item.require("tableName")
    names = [spec.name for spec in item.columns] or [item.require("columnName")]
    with db.batch(table, schema=item.get("schemaName")) as batch:
        for name in names:
            batch.drop_column(name)


@change("renameColumn")
def rename_column(db: MigrationDatabase, item: Change) -> None:
    data_type = item.get("columnDataType")
    with db.batch(item.require("tableName"), schema=item.get("schemaName")) as batch:
        batch.alter_column(
            item.require("oldColumnName"),
            new_column_name=item.require("newColumnName"),
            existing_type=resolve_type(data_type) if data_type else None,
        )


@change("addNotNullConstraint")
def add_not_null_constraint(db: MigrationDatabase, item: Change) -> None:
    table = item.require("tableName")
    column = item.require("columnName")
    schema = item.get("schemaName")
    data_type = item.get("columnDataType")

    fill = item.get("defaultNullValue")
    if fill is not None:
        target = sa.table(table, sa.column(column), schema=schema)
        db.connection.execute(
            sa.update(target).where(target.c[column].is_(None)).values({column: fill})
        )

    with db.batch(table, schema=schema) as batch:
        batch.alter_column(
            column,
            nullable=False,
            existing_type=resolve_type(data_type) if data_type else None,
        )


# ── Indexes and constraints ──────────────────────────────────────────────


@change("createIndex")
def create_index(db: MigrationDatabase, item: Change) -> None:
    columns = [spec.name for spec in item.columns]
    if not columns:
        raise ChangelogParseError(f"createIndex {item.get('indexName')} requires at least one column")
    db.operations.create_index(
        item.require("indexName"),
        item.require("tableName"),
        columns,
        unique=item.get("unique", "false").lower() == "true",
        schema=item.get("schemaName"),
    )


@change("dropIndex")
def drop_index(db: MigrationDatabase, item: Change) -> None:
    db.operations.drop_index(
        item.require("indexName"),
        table_name=item.get("tableName"),
        schema=item.get("schemaName"),
    )


@change("addUniqueConstraint")
def add_unique_constraint(db: MigrationDatabase, item: Change) -> None:
    table = item.require("tableName")
    columns = _names(item.require("columnNames"))
    name = item.get("constraintName") or f"uq_{table}_{'_'.join(columns)}"
    with db.batch(table, schema=item.get("schemaName")) as batch:
        batch.create_unique_constraint(name, columns)


@change("addForeignKeyConstraint")
def add_foreign_key_constraint(db: MigrationDatabase, item: Change) -> None:
    table = item.require("baseTableName")
    with db.batch(table, schema=item.get("baseTableSchemaName")) as batch:
        batch.create_foreign_key(
            item.require("constraintName"),
            item.require("referencedTableName"),
            _names(item.require("baseColumnNames")),
            _names(item.require("referencedColumnNames")),
            referent_schema=item.get("referencedTableSchemaName"),
            ondelete=item.get("onDelete"),
            onupdate=item.get("onUpdate"),
        )


# ── Data ─────────────────────────────────────────────────────────────────


@change("insert")
def insert(db: MigrationDatabase, item: Change) -> None:
    table = item.require("tableName")
    if not item.columns:
        raise ChangelogParseError(f"insert into {table} requires at least one column")
    target = sa.table(table, *(sa.column(spec.name) for spec in item.columns), schema=item.get("schemaName"))
    db.connection.execute(sa.insert(target).values({spec.name: column_value(spec) for spec in item.columns}))


@change("sql")
def sql(db: MigrationDatabase, item: Change) -> None:
    text = item.text or ""
    if item.get("stripComments", "false").lower() == "true":
        text = strip_comments(text)
    if item.get("splitStatements", "true").lower() == "true":
        statements = split_statements(text, item.get("endDelimiter"))
    else:
        statements = [text.strip()] if text.strip() else []
    if not statements:
        raise ChangelogParseError("sql change contains no statements")
    for statement in statements:
        db.execute_sql(statement)


_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)

# Quoted literals and comments are matched whole so a ';' inside them is not a delimiter
_SQL_TOKEN = re.compile(
    r"'(?:[^']|'')*'|\"[^\"]*\"|--[^\n]*|/\*.*?\*/|;|^[ \t]*go[ \t]*$",
    re.DOTALL | re.MULTILINE | re.IGNORECASE,
)


def strip_comments(text: str) -> str:
    return _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", text))


def split_statements(text: str, delimiter: str | None = None) -> list[str]:
    """Split SQL text into statements.

    The default delimiter is any ``;`` outside quotes and comments, or a
    line holding only ``GO``.  A custom *delimiter* only counts at the end
    of a line.  Parts holding nothing but comments are dropped.

    Examples:
        >>> split_statements("create table a (x int); create table b (y int);")
        ['create table a (x int)', 'create table b (y int)']
    """
    if delimiter:
        pattern = re.compile(re.escape(delimiter) + r"[ \t]*(?:\r?\n|$)", re.MULTILINE)
        parts = pattern.split(text)
    else:
        parts, start = [], 0
        for match in _SQL_TOKEN.finditer(text):
            token = match.group(0)
            if token == ";" or token.strip().lower() == "go":
                parts.append(text[start : match.start()])
                start = match.end()
        parts.append(text[start:])
    return [part.strip() for part in parts if strip_comments(part).strip()]


__all__ = [
    "ChangeHandler",
    "VerbatimType",
    "apply_change",
    "build_column",
    "change",
    "column_value",
    "is_supported",
    "resolve_type",
    "split_statements",
    "strip_comments",
    "supported_changes",
]
