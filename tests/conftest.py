"""
Shared pytest fixtures and configuration for schemaflow tests.

This module provides:
- Settings cache and data source registry cleanup for test isolation
- Sample changelog documents
- SQLite database URLs under ``tmp_path``
- A workspace directory whose contents tests can inspect for leaks

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(sample_changelog, sqlite_url, make_runner):
            ...
"""

from __future__ import annotations

import textwrap
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import sqlalchemy as sa

from schemaflow.core.adapters import datasource_registry
from schemaflow.core.migrations import MigrationRunner
from schemaflow.core.settings import SchemaflowSettings, clear_settings_cache
from schemaflow.core.workspace import WorkspaceManager


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests that open a real SQLite file as integration tests."""
    for item in items:
        if {"sqlite_url", "sqlite_engine"} & set(getattr(item, "fixturenames", ())):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings_fixture(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and SCHEMAFLOW_* overrides around every test."""
    for key in ("SCHEMAFLOW_PROPAGATE_FAILURES", "SCHEMAFLOW_CONTEXTS", "SCHEMAFLOW_TEMP_DIR"):
        monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def clean_datasource_registry_fixture() -> Generator[None, None, None]:
    """Nothing registered leaks from one test into the next."""
    datasource_registry.clear()
    yield
    datasource_registry.clear()


# =============================================================================
# Changelogs
# =============================================================================


SAMPLE_CHANGELOG = textwrap.dedent("""\
    <?xml version="1.0" encoding="UTF-8"?>
    <databaseChangeLog
        xmlns="http://www.liquibase.org/xml/ns/dbchangelog"
        xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
      <changeSet id="1" author="ops">
        <createTable tableName="person">
          <column name="id" type="int" autoIncrement="true">
            <constraints primaryKey="true" nullable="false"/>
          </column>
          <column name="name" type="varchar(100)">
            <constraints nullable="false"/>
          </column>
        </createTable>
      </changeSet>
      <changeSet id="2" author="ops" context="main">
        <addColumn tableName="person">
          <column name="email" type="varchar(255)"/>
        </addColumn>
        <insert tableName="person">
          <column name="name" value="Ada"/>
          <column name="email" value="ada@example.com"/>
        </insert>
      </changeSet>
      <changeSet id="3" author="ops" context="test">
        <insert tableName="person">
          <column name="name" value="Fixture"/>
        </insert>
      </changeSet>
    </databaseChangeLog>
""")


FAILING_CHANGELOG = textwrap.dedent("""\
    <databaseChangeLog>
      <changeSet id="1" author="ops">
        <createTable tableName="account">
          <column name="id" type="int"><constraints primaryKey="true"/></column>
        </createTable>
      </changeSet>
      <changeSet id="2" author="ops">
        <sql>INSERT INTO no_such_table VALUES (1)</sql>
      </changeSet>
    </databaseChangeLog>
""")


@pytest.fixture
def sample_changelog() -> str:
    """Three changesets: two in context ``main`` (or none), one in ``test``."""
    return SAMPLE_CHANGELOG


@pytest.fixture
def failing_changelog() -> str:
    """First changeset succeeds, second references a missing table."""
    return FAILING_CHANGELOG


@pytest.fixture
def write_changelog_file(tmp_path: Path) -> Callable[[str], Path]:
    """Write changelog text to ``tmp_path/changelog.xml`` and return the path."""

    def _write(text: str, name: str = "changelog.xml") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


# =============================================================================
# Databases
# =============================================================================


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'app.db'}"


@pytest.fixture
def sqlite_engine(sqlite_url: str) -> Generator[sa.engine.Engine, None, None]:
    engine = sa.create_engine(sqlite_url)
    yield engine
    engine.dispose()


# =============================================================================
# Runner
# =============================================================================


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Parent directory for temporary workspaces; empty again after every run."""
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def settings(work_dir: Path) -> SchemaflowSettings:
    return SchemaflowSettings(temp_dir=work_dir)


@pytest.fixture
def make_runner(work_dir: Path, settings: SchemaflowSettings) -> Callable[..., MigrationRunner]:
    """Build a MigrationRunner whose workspaces live under ``work_dir``."""

    def _make(**kwargs: Any) -> MigrationRunner:
        kwargs.setdefault("workspaces", WorkspaceManager(parent=work_dir))
        kwargs.setdefault("settings", settings)
        return MigrationRunner(**kwargs)

    return _make
