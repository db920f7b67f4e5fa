"""Tests for MigrationRunner: phases, cleanup and outcomes."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import sqlalchemy as sa
from structlog.testing import capture_logs

from schemaflow.core.adapters import ConnectionLease, register_datasource
from schemaflow.core.errors import (
    ChangelogIOError,
    DatabaseConnectionError,
    DriverError,
    MigrationError,
    MissingConfigError,
    WorkspaceError,
)
from schemaflow.core.migrations import MigrationExecutor, MigrationOutcome, Phase
from schemaflow.core.request import MigrationRequest
from schemaflow.core.result import Err, Ok
from schemaflow.core.workspace import WorkspaceManager


def direct_request(changelog: str, url: str, **overrides) -> MigrationRequest:
    props = {"changelog": changelog, "user": "app", "password": "secret", "url": url, "driver": "sqlite3"}
    props.update(overrides)
    return MigrationRequest.from_properties(**props)


class FakeFactory:
    """ConnectionFactory handing out a lease around a mock connection."""

    def __init__(self) -> None:
        self.connection = MagicMock(name="connection")
        self.lease: ConnectionLease | None = None

    def open(self):
        self.lease = ConnectionLease(self.connection, source="fake")
        return Ok(self.lease)


class TestHappyPath:
    def test_direct_sqlite_run(self, make_runner, sample_changelog, sqlite_url, sqlite_engine, work_dir):
        outcome = make_runner().run(direct_request(sample_changelog, sqlite_url))

        assert outcome.success
        assert outcome.phase is None
        assert outcome.message is None
        assert outcome.applied == ["changelog.xml::1::ops", "changelog.xml::2::ops"]
        assert outcome.invocation_id
        assert {"person", "databasechangelog"} <= set(sa.inspect(sqlite_engine).get_table_names())
        assert list(work_dir.iterdir()) == []

    def test_second_run_applies_nothing(self, make_runner, sample_changelog, sqlite_url):
        runner = make_runner()
        runner.run(direct_request(sample_changelog, sqlite_url))
        outcome = runner.run(direct_request(sample_changelog, sqlite_url))
        assert outcome.success
        assert outcome.applied == []

    def test_pooled_run(self, make_runner, sample_changelog, sqlite_url, work_dir):
        register_datasource("app", sqlite_url)
        request = MigrationRequest.from_properties(changelog=sample_changelog, datasource="app")
        outcome = make_runner().run(request)
        assert outcome.success
        assert len(outcome.applied) == 2
        assert list(work_dir.iterdir()) == []

    def test_sql_change_with_statements_on_one_line(self, make_runner, sqlite_url, sqlite_engine):
        xml = (
            "<databaseChangeLog><changeSet id=\"1\" author=\"ops\">"
            "<sql>CREATE TABLE a (x int); CREATE TABLE b (y int);</sql>"
            "</changeSet></databaseChangeLog>"
        )
        outcome = make_runner().run(direct_request(xml, sqlite_url))
        assert outcome.success
        assert {"a", "b"} <= set(sa.inspect(sqlite_engine).get_table_names())

    def test_contexts_are_passed_through(self, make_runner, sample_changelog, sqlite_url):
        outcome = make_runner().run(direct_request(sample_changelog, sqlite_url, contexts="main,test"))
        assert len(outcome.applied) == 3

    def test_started_and_succeeded_events(self, make_runner, sample_changelog, sqlite_url):
        with capture_logs() as logs:
            outcome = make_runner().run(direct_request(sample_changelog, sqlite_url))
        events = [e["event"] for e in logs]
        assert events[0] == "migration.started"
        assert "migration.succeeded" in events
        assert "changeset.applied" in events
        assert outcome.success


class TestValidationFailures:
    @pytest.mark.parametrize("missing", ["changelog", "user", "password", "url", "driver"])
    def test_missing_field_fails_without_side_effects(self, make_runner, sample_changelog, sqlite_url, work_dir, missing):
        factory = FakeFactory()
        props = {
            "changelog": sample_changelog,
            "user": "app",
            "password": "secret",
            "url": sqlite_url,
            "driver": "sqlite3",
        }
        props[missing] = ""
        request = MigrationRequest.from_properties(**props)
        outcome = make_runner(connections=lambda spec: factory).run(request)

        assert not outcome.success
        assert outcome.phase is Phase.VALIDATE
        assert isinstance(outcome.error, MissingConfigError)
        assert outcome.error.key == missing
        assert outcome.continue_pipeline() is False
        assert factory.lease is None
        assert list(work_dir.iterdir()) == []

    def test_empty_changelog_fails_before_connecting(self, make_runner, sqlite_url):
        factory = FakeFactory()
        outcome = make_runner(connections=lambda spec: factory).run(direct_request("   ", sqlite_url))
        assert outcome.phase is Phase.VALIDATE
        assert factory.lease is None

    def test_failure_is_logged_with_phase(self, make_runner, sqlite_url):
        with capture_logs() as logs:
            make_runner().run(direct_request("<x/>", sqlite_url, driver=None))
        failed = [e for e in logs if e["event"] == "migration.failed"]
        assert failed[0]["phase"] == "validate"
        assert failed[0]["log_level"] == "error"
        assert failed[0]["error"]["message"] == "Driver is required"


class TestWorkspaceFailures:
    def test_workspace_failure_blocks_pipeline(self, make_runner, sample_changelog, sqlite_url, tmp_path):
        factory = FakeFactory()
        runner = make_runner(workspaces=WorkspaceManager(parent=tmp_path / "missing"), connections=lambda s: factory)
        outcome = runner.run(direct_request(sample_changelog, sqlite_url))
        assert outcome.phase is Phase.WORKSPACE
        assert isinstance(outcome.error, WorkspaceError)
        assert outcome.message == "Failed to create changelog workspace"
        assert outcome.continue_pipeline() is False
        assert factory.lease is None

    def test_write_failure(self, make_runner, sample_changelog, sqlite_url, work_dir, monkeypatch):
        factory = FakeFactory()
        monkeypatch.setattr(
            "schemaflow.core.migrations.runner.write_changelog",
            lambda ws, text: Err(ChangelogIOError("disk full")),
        )
        outcome = make_runner(connections=lambda s: factory).run(direct_request(sample_changelog, sqlite_url))
        assert outcome.phase is Phase.WRITE
        assert outcome.message == "Failed to write changelog"
        assert outcome.continue_pipeline() is True
        assert factory.lease is None
        assert list(work_dir.iterdir()) == []


class TestConnectionFailures:
    def test_unregistered_datasource(self, make_runner, sample_changelog, work_dir):
        request = MigrationRequest.from_properties(changelog=sample_changelog, datasource="nope")
        outcome = make_runner().run(request)
        assert outcome.phase is Phase.CONNECT
        assert isinstance(outcome.error, DatabaseConnectionError)
        assert outcome.error.context.phase == "connect"
        assert outcome.continue_pipeline() is True
        assert outcome.continue_pipeline(propagate_failures=True) is False
        assert list(work_dir.iterdir()) == []

    def test_unknown_driver(self, make_runner, sample_changelog, sqlite_url, work_dir):
        outcome = make_runner().run(direct_request(sample_changelog, sqlite_url, driver="no.such.driver"))
        assert outcome.phase is Phase.CONNECT
        assert isinstance(outcome.error, DriverError)
        assert outcome.message == "Failed to initialize driver"
        assert list(work_dir.iterdir()) == []


class TestMigrationFailures:
    def test_engine_failure_rolls_back_before_close(self, make_runner, sample_changelog, sqlite_url, work_dir):
        factory = FakeFactory()
        executor = MagicMock(spec=MigrationExecutor)
        executor.execute.return_value = Err(MigrationError("changeset 2 failed", changeset="changelog.xml::2::ops"))

        outcome = make_runner(connections=lambda s: factory, executor=executor).run(
            direct_request(sample_changelog, sqlite_url)
        )

        assert outcome.phase is Phase.MIGRATE
        assert outcome.message == "Failed to run migrations"
        assert [c[0] for c in factory.connection.mock_calls] == ["rollback", "close"]
        assert factory.lease.state.value == "closed"
        changelog_path = executor.execute.call_args.args[1]
        assert isinstance(changelog_path, Path)
        assert not changelog_path.exists()
        assert list(work_dir.iterdir()) == []

    def test_executor_receives_materialized_changelog(self, make_runner, sample_changelog, sqlite_url):
        factory = FakeFactory()
        seen = {}

        def execute(connection, path, contexts):
            seen["text"] = Path(path).read_text(encoding="utf-8")
            seen["name"] = Path(path).name
            seen["contexts"] = contexts
            return Err(MigrationError("stop"))

        executor = MagicMock(spec=MigrationExecutor)
        executor.execute.side_effect = execute
        make_runner(connections=lambda s: factory, executor=executor).run(direct_request(sample_changelog, sqlite_url))
        assert seen == {"text": sample_changelog, "name": "changelog.xml", "contexts": "main"}

    def test_unexpected_exception_still_cleans_up(self, make_runner, sample_changelog, sqlite_url, work_dir):
        factory = FakeFactory()
        executor = MagicMock(spec=MigrationExecutor)
        executor.execute.side_effect = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            make_runner(connections=lambda s: factory, executor=executor).run(
                direct_request(sample_changelog, sqlite_url)
            )
        factory.connection.rollback.assert_called_once()
        factory.connection.close.assert_called_once()
        assert list(work_dir.iterdir()) == []

    def test_real_sqlite_failure(self, make_runner, failing_changelog, sqlite_url, sqlite_engine, work_dir):
        outcome = make_runner().run(direct_request(failing_changelog, sqlite_url))
        assert outcome.phase is Phase.MIGRATE
        assert isinstance(outcome.error, MigrationError)
        assert outcome.error.changeset == "changelog.xml::2::ops"
        assert "account" in sa.inspect(sqlite_engine).get_table_names()
        assert list(work_dir.iterdir()) == []

    def test_malformed_changelog(self, make_runner, sqlite_url, work_dir):
        outcome = make_runner().run(direct_request("<databaseChangeLog><changeSet>", sqlite_url))
        assert outcome.phase is Phase.MIGRATE
        assert outcome.error.category.value == "PARSE"
        assert list(work_dir.iterdir()) == []


class TestMigrationOutcome:
    def test_continue_pipeline_matrix(self):
        assert MigrationOutcome(success=True).continue_pipeline(True) is True
        for phase in (Phase.VALIDATE, Phase.WORKSPACE):
            assert MigrationOutcome(success=False, phase=phase).continue_pipeline() is False
        for phase in (Phase.WRITE, Phase.CONNECT, Phase.MIGRATE):
            assert MigrationOutcome(success=False, phase=phase).continue_pipeline() is True
            assert MigrationOutcome(success=False, phase=phase).continue_pipeline(True) is False

    def test_to_dict(self):
        data = MigrationOutcome(success=False, phase=Phase.CONNECT, error=DatabaseConnectionError("down")).to_dict()
        assert data["phase"] == "connect"
        assert data["message"] == "Failed to obtain database connection"
        assert data["error"]["error_type"] == "DatabaseConnectionError"
