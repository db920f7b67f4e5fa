"""Tests for schemaflow.cli: command smoke tests via CliRunner.

Commands run against a SQLite file under ``tmp_path``; logging setup is
patched out and events are captured so they never reach stdout.
"""

from __future__ import annotations

import json

import pytest
import sqlalchemy as sa
import typer
from structlog.testing import capture_logs
from typer.testing import CliRunner

from schemaflow.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr("schemaflow.core.logging.configure_logging", lambda **kwargs: None)
    with capture_logs() as logs:
        yield logs


@pytest.fixture
def changelog_file(write_changelog_file, sample_changelog):
    return write_changelog_file(sample_changelog)


@pytest.fixture
def workspace_env(monkeypatch, work_dir):
    monkeypatch.setenv("SCHEMAFLOW_TEMP_DIR", str(work_dir))
    return work_dir


def migrate_args(changelog, url, *extra):
    return ["migrate", "-c", str(changelog), "--url", url, "-u", "app", "-p", "secret", *extra]


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("schemaflow ")

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "migrate" in result.output


class TestMigrate:
    def test_migrate_applies_changelog(self, changelog_file, sqlite_url, sqlite_engine, workspace_env):
        result = runner.invoke(app, migrate_args(changelog_file, sqlite_url))

        assert result.exit_code == 0, result.output
        assert "Migration complete" in result.output
        assert "person" in sa.inspect(sqlite_engine).get_table_names()
        assert list(workspace_env.iterdir()) == []

    def test_migrate_json(self, changelog_file, sqlite_url, workspace_env):
        result = runner.invoke(app, migrate_args(changelog_file, sqlite_url, "--json"))

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["report"]["applied"] == ["changelog.xml::1::ops", "changelog.xml::2::ops"]

    def test_migrate_contexts(self, changelog_file, sqlite_url, workspace_env):
        result = runner.invoke(app, migrate_args(changelog_file, sqlite_url, "--contexts", "main,test", "--json"))
        assert len(json.loads(result.stdout)["report"]["applied"]) == 3

    def test_credentials_from_environment(self, changelog_file, sqlite_url, workspace_env, monkeypatch):
        monkeypatch.setenv("SCHEMAFLOW_DB_USER", "app")
        monkeypatch.setenv("SCHEMAFLOW_DB_PASSWORD", "secret")
        result = runner.invoke(app, ["migrate", "-c", str(changelog_file), "--url", sqlite_url])
        assert result.exit_code == 0, result.output

    def test_missing_password_fails(self, changelog_file, sqlite_url, workspace_env):
        result = runner.invoke(app, ["migrate", "-c", str(changelog_file), "--url", sqlite_url, "-u", "app"])
        assert result.exit_code == 1
        assert "Password is required" in result.output

    def test_default_driver_still_needs_credentials(self, changelog_file, sqlite_url, workspace_env, monkeypatch):
        monkeypatch.delenv("SCHEMAFLOW_DB_USER", raising=False)
        monkeypatch.delenv("SCHEMAFLOW_DB_PASSWORD", raising=False)
        result = runner.invoke(app, ["migrate", "-c", str(changelog_file), "--url", sqlite_url])
        assert result.exit_code == 1
        assert "User is required" in result.output
        assert list(workspace_env.iterdir()) == []

    def test_help_marks_credentials_required(self):
        command = typer.main.get_command(app).commands["migrate"]
        helps = {param.name: param.help for param in command.params}
        assert "required" in helps["user"]
        assert "required" in helps["password"]

    def test_failing_changelog(self, write_changelog_file, failing_changelog, sqlite_url, workspace_env, quiet_logging):
        path = write_changelog_file(failing_changelog)
        result = runner.invoke(app, migrate_args(path, sqlite_url))

        assert result.exit_code == 1
        assert "Failed to run migrations" in result.output
        assert "migration.failed" in [e["event"] for e in quiet_logging]
        assert list(workspace_env.iterdir()) == []

    def test_unreadable_changelog(self, tmp_path, sqlite_url):
        result = runner.invoke(app, migrate_args(tmp_path / "missing.xml", sqlite_url))
        assert result.exit_code == 1
        assert "cannot read" in result.output


class TestStatus:
    def test_status_lists_pending(self, changelog_file, sqlite_url):
        result = runner.invoke(app, ["status", "-c", str(changelog_file), "--url", sqlite_url])
        assert result.exit_code == 0, result.output
        assert "2 pending change set(s)" in result.output

    def test_status_after_migrate(self, changelog_file, sqlite_url, workspace_env):
        runner.invoke(app, migrate_args(changelog_file, sqlite_url))
        result = runner.invoke(app, ["status", "-c", str(changelog_file), "--url", sqlite_url, "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == []

    def test_status_other_contexts_json(self, changelog_file, sqlite_url):
        result = runner.invoke(
            app, ["status", "-c", str(changelog_file), "--url", sqlite_url, "--contexts", "test", "--json"]
        )
        rows = json.loads(result.stdout)
        assert [r["changeset"] for r in rows] == ["changelog.xml::1::ops", "changelog.xml::3::ops"]

    def test_status_bad_driver(self, changelog_file, sqlite_url):
        result = runner.invoke(
            app, ["status", "-c", str(changelog_file), "--url", sqlite_url, "--driver", "no_such_driver"]
        )
        assert result.exit_code == 1
        assert "CONNECT" in result.output


class TestValidate:
    def test_valid_changelog(self, changelog_file):
        result = runner.invoke(app, ["validate", "-c", str(changelog_file)])
        assert result.exit_code == 0, result.output
        assert "changelog.xml is valid: 3 change set(s)" in result.output

    def test_valid_changelog_json(self, changelog_file):
        result = runner.invoke(app, ["validate", "-c", str(changelog_file), "--json"])
        rows = json.loads(result.stdout)
        assert [r["changes"] for r in rows] == [1, 2, 1]

    def test_unsupported_change(self, write_changelog_file):
        path = write_changelog_file(
            '<databaseChangeLog><changeSet id="1" author="a"><tagDatabase tag="v1"/></changeSet></databaseChangeLog>'
        )
        result = runner.invoke(app, ["validate", "-c", str(path)])
        assert result.exit_code == 1
        assert "tagDatabase" in result.output

    def test_malformed_changelog(self, write_changelog_file):
        path = write_changelog_file("<databaseChangeLog>")
        result = runner.invoke(app, ["validate", "-c", str(path)])
        assert result.exit_code == 1
        assert "PARSE" in result.output
