"""Changelog engine: decides which changesets run and applies them.

Each changeset runs in its own transaction and is recorded in the history
table inside that same transaction, so a crash never leaves a changeset
applied but unrecorded on backends with transactional DDL.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from schemaflow.core.errors import ChangelogParseError, ChecksumMismatchError, MigrationError, SchemaflowError
from schemaflow.core.logging import get_logger

from .changelog import Changelog, ChangeSet, parse_changelog
from .changes import apply_change, is_supported
from .database import MigrationDatabase
from .history import ChangeLogHistory, RanChangeSet

logger = get_logger(__name__)


@dataclass
class UpdateReport:
    """What an update did, by changeset identifier."""

    deployment_id: str
    applied: list[str] = field(default_factory=list)
    reran: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.failed) == 0

    @property
    def executed(self) -> list[str]:
        return self.applied + self.reran

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "applied": list(self.applied),
            "reran": list(self.reran),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


def validate_changelog(changelog: Changelog) -> list[str]:
    """Return problems that would stop an update, without touching a database."""
    problems: list[str] = []
    for changeset in changelog:
        if not changeset.changes:
            problems.append(f"{changeset.identifier}: change set has no changes")
        for item in changeset.changes:
            if not is_supported(item.kind):
                problems.append(f"{changeset.identifier}: unsupported change type {item.kind}")
    return problems


def _deployment_id() -> str:
    return str(int(time.time() * 1000))[-10:]


class ChangelogEngine:
    """
    Applies a changelog to one database.

    Parameters
    ----------
    changelog
        A parsed :class:`Changelog` or a path to parse.
    database
        Target, from :func:`find_database_implementation`.

    Example::

        database = find_database_implementation(connection)
        report = ChangelogEngine(Path("changelog.xml"), database).update("main")
        print(report.applied)
    """

    def __init__(self, changelog: Changelog | Path | str, database: MigrationDatabase) -> None:
        self.changelog = changelog if isinstance(changelog, Changelog) else parse_changelog(changelog)
        self.database = database
        self.history = ChangeLogHistory(database)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(self, contexts: str | None = "main") -> UpdateReport:
        """Apply every pending changeset selected by *contexts*.

        Raises ``MigrationError`` (or a subclass) on the first failing
        changeset with ``failOnError`` enabled; changesets before it stay
        applied.
        """
        self.history.ensure_table()
        ran = self.history.ran_changesets()
        self._validate(ran)
        self.database.commit()

        report = UpdateReport(deployment_id=_deployment_id())
        order = self.history.next_order()
        self.database.commit()

        for changeset in self.changelog:
            if not self._selected(changeset, contexts):
                report.skipped.append(changeset.identifier)
                continue

            previous = ran.get(changeset.key)
            if previous is not None and not self._should_rerun(changeset, previous):
                if previous.md5sum is not None and previous.md5sum != changeset.checksum:
                    # accepted through validCheckSum
                    self.history.update_checksum(changeset)
                    self.database.commit()
                report.skipped.append(changeset.identifier)
                continue

            exectype = "RERAN" if previous is not None else "EXECUTED"
            if self._execute(changeset, exectype=exectype, order=order, report=report, previous=previous):
                order += 1

        logger.info(
            "update.finished",
            applied=len(report.applied),
            reran=len(report.reran),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    def status(self, contexts: str | None = "main") -> list[ChangeSet]:
        """Changesets an ``update`` with *contexts* would run."""
        ran = self.history.ran_changesets()
        self._validate(ran)
        pending: list[ChangeSet] = []
        for changeset in self.changelog:
            if not self._selected(changeset, contexts):
                continue
            previous = ran.get(changeset.key)
            if previous is None or self._should_rerun(changeset, previous):
                pending.append(changeset)
        return pending

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _selected(self, changeset: ChangeSet, contexts: str | None) -> bool:
        return changeset.matches_contexts(contexts) and changeset.matches_dbms(self.database.vendor)

    @staticmethod
    def _should_rerun(changeset: ChangeSet, previous: RanChangeSet) -> bool:
        if changeset.run_always:
            return True
        return changeset.run_on_change and previous.md5sum != changeset.checksum

    def _validate(self, ran: dict[tuple[str, str, str], RanChangeSet]) -> None:
        problems = validate_changelog(self.changelog)
        if problems:
            raise ChangelogParseError("Changelog validation failed: " + "; ".join(problems))

        for changeset in self.changelog:
            previous = ran.get(changeset.key)
            if previous is None or changeset.run_on_change or changeset.run_always:
                continue
            if not changeset.accepts_checksum(previous.md5sum):
                raise ChecksumMismatchError(changeset.identifier, previous.md5sum or "", changeset.checksum)

    def _execute(
        self,
        changeset: ChangeSet,
        *,
        exectype: str,
        order: int,
        report: UpdateReport,
        previous: RanChangeSet | None,
    ) -> bool:
        log = logger.bind(changeset=changeset.identifier)
        try:
            for item in changeset.changes:
                apply_change(self.database, item)
            self.history.mark_ran(
                changeset,
                exectype=exectype,
                order=order,
                deployment_id=report.deployment_id,
                previous=previous,
            )
            self.database.commit()
        except Exception as e:
            self.database.rollback()
            if changeset.fail_on_error:
                if isinstance(e, SchemaflowError):
                    raise e.with_context(changeset=changeset.identifier)
                raise MigrationError(
                    f"Change set {changeset.identifier} failed: {e}",
                    changeset=changeset.identifier,
                    cause=e,
                ) from e
            log.warning("changeset.failed_ignored", error=str(e))
            report.failed.append(changeset.identifier)
            return False

        if exectype == "RERAN":
            report.reran.append(changeset.identifier)
        else:
            report.applied.append(changeset.identifier)
        log.info("changeset.applied", exectype=exectype, order=order)
        return True


__all__ = [
    "ChangelogEngine",
    "UpdateReport",
    "validate_changelog",
]
