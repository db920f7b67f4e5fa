"""Applied-changeset history.

Stored in a ``databasechangelog`` table laid out like Liquibase's, so a
database migrated by either tool shows a familiar history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import sqlalchemy as sa

from schemaflow.core.logging import get_logger

from .changelog import ChangeSet
from .database import MigrationDatabase

logger = get_logger(__name__)

HISTORY_TABLE = "databasechangelog"
TOOL_NAME = "schemaflow"

metadata = sa.MetaData()

changelog_table = sa.Table(
    HISTORY_TABLE,
    metadata,
    sa.Column("id", sa.String(255), nullable=False),
    sa.Column("author", sa.String(255), nullable=False),
    sa.Column("filename", sa.String(255), nullable=False),
    sa.Column("dateexecuted", sa.DateTime, nullable=False),
    sa.Column("orderexecuted", sa.Integer, nullable=False),
    sa.Column("exectype", sa.String(10), nullable=False),
    sa.Column("md5sum", sa.String(35)),
    sa.Column("description", sa.String(255)),
    sa.Column("comments", sa.String(255)),
    sa.Column("tag", sa.String(255)),
    sa.Column("liquibase", sa.String(20)),
    sa.Column("contexts", sa.String(255)),
    sa.Column("labels", sa.String(255)),
    sa.Column("deployment_id", sa.String(10)),
)


@dataclass(frozen=True)
class RanChangeSet:
    """A row of the history table."""

    id: str
    author: str
    filename: str
    dateexecuted: datetime
    orderexecuted: int
    exectype: str
    md5sum: str | None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.id, self.author, self.filename)


class ChangeLogHistory:
    """Reads and writes the history table on one connection."""

    def __init__(self, database: MigrationDatabase) -> None:
        self.database = database

    @property
    def exists(self) -> bool:
        return self.database.has_table(HISTORY_TABLE)

    def ensure_table(self) -> None:
        if self.exists:
            return
        metadata.create_all(self.database.connection, tables=[changelog_table], checkfirst=True)
        self.database.commit()
        logger.info("history.created", table=HISTORY_TABLE)

    def ran_changesets(self) -> dict[tuple[str, str, str], RanChangeSet]:
        if not self.exists:
            return {}
        rows = self.database.connection.execute(
            sa.select(
                changelog_table.c.id,
                changelog_table.c.author,
                changelog_table.c.filename,
                changelog_table.c.dateexecuted,
                changelog_table.c.orderexecuted,
                changelog_table.c.exectype,
                changelog_table.c.md5sum,
            ).order_by(changelog_table.c.orderexecuted)
        )
        ran = [RanChangeSet(*row) for row in rows]
        return {r.key: r for r in ran}

    def next_order(self) -> int:
        current = self.database.connection.execute(
            sa.select(sa.func.max(changelog_table.c.orderexecuted))
        ).scalar()
        return (current or 0) + 1

    def mark_ran(
        self,
        changeset: ChangeSet,
        *,
        exectype: str,
        order: int,
        deployment_id: str,
        previous: RanChangeSet | None = None,
    ) -> None:
        """Record *changeset*; updates the existing row when it ran before."""
        values = {
            "dateexecuted": datetime.now(timezone.utc).replace(tzinfo=None),
            "orderexecuted": order,
            "exectype": exectype,
            "md5sum": changeset.checksum,
            "description": changeset.description[:255] or None,
            "comments": (changeset.comment or "")[:255] or None,
            "liquibase": TOOL_NAME,
            "contexts": changeset.contexts,
            "deployment_id": deployment_id,
        }
        if previous is None:
            statement = sa.insert(changelog_table).values(
                id=changeset.id,
                author=changeset.author,
                filename=changeset.filename,
                **values,
            )
        else:
            statement = self._where(sa.update(changelog_table), changeset).values(**values)
        self.database.connection.execute(statement)

    def update_checksum(self, changeset: ChangeSet) -> None:
        self.database.connection.execute(
            self._where(sa.update(changelog_table), changeset).values(md5sum=changeset.checksum)
        )

    @staticmethod
    def _where(statement, changeset: ChangeSet):
        return statement.where(
            changelog_table.c.id == changeset.id,
            changelog_table.c.author == changeset.author,
            changelog_table.c.filename == changeset.filename,
        )


__all__ = [
    "HISTORY_TABLE",
    "ChangeLogHistory",
    "RanChangeSet",
    "changelog_table",
]
