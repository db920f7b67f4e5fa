"""
Root Typer application for the schemaflow CLI.

Commands:
    migrate    apply a changelog through a direct driver connection
    status     list changesets an update would run
    validate   parse a changelog without touching a database
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

app = Typer(
    name="schemaflow",
    help="schemaflow: changelog-driven schema migrations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("schemaflow")
        except PackageNotFoundError:
            from schemaflow import __version__ as v
        typer.echo(f"schemaflow {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
) -> None:
    """schemaflow CLI: apply, inspect and validate changelogs."""
    from schemaflow.core.logging import configure_logging
    from schemaflow.core.settings import get_settings

    settings = get_settings()
    configure_logging(
        level=(log_level or settings.log_level).upper(),
        format=settings.log_format or "console",
    )


# ── Commands ─────────────────────────────────────────────────────────────

_CHANGELOG = typer.Option(..., "--changelog", "-c", help="Changelog XML file")
_URL = typer.Option(..., "--url", help="Database URL (SQLAlchemy or jdbc: form)")
_DRIVER = typer.Option("sqlite3", "--driver", help="DB-API driver module")
_USER = typer.Option(
    None, "--user", "-u", envvar="SCHEMAFLOW_DB_USER", help="Database user (required, sqlite included)"
)
_PASSWORD = typer.Option(
    None, "--password", "-p", envvar="SCHEMAFLOW_DB_PASSWORD", help="Database password (required, sqlite included)"
)
_CONTEXTS = typer.Option(None, "--contexts", help="Run contexts (default from settings)")
_JSON = typer.Option(False, "--json", help="JSON output")


@app.command()
def migrate(
    changelog: Path = _CHANGELOG,
    url: str = _URL,
    driver: str = _DRIVER,
    user: str | None = _USER,
    password: str | None = _PASSWORD,
    contexts: str | None = _CONTEXTS,
    json_out: bool = _JSON,
) -> None:
    """Apply pending changesets."""
    from schemaflow.cli.utils import output_outcome, read_changelog
    from schemaflow.core.migrations import MigrationRunner
    from schemaflow.core.request import MigrationRequest
    from schemaflow.core.settings import get_settings

    settings = get_settings()
    request = MigrationRequest.from_properties(
        changelog=read_changelog(changelog),
        user=user,
        password=password,
        url=url,
        driver=driver,
        contexts=contexts or settings.contexts,
    )
    outcome = MigrationRunner(settings=settings).run(request)
    output_outcome(outcome, as_json=json_out)


@app.command()
def status(
    changelog: Path = _CHANGELOG,
    url: str = _URL,
    driver: str = _DRIVER,
    user: str | None = _USER,
    password: str | None = _PASSWORD,
    contexts: str | None = _CONTEXTS,
    json_out: bool = _JSON,
) -> None:
    """List changesets that have not been applied yet."""
    from schemaflow.cli.utils import fail, print_rows
    from schemaflow.core.adapters import DirectConnectionFactory
    from schemaflow.core.errors import SchemaflowError
    from schemaflow.core.migrations import ChangelogEngine, find_database_implementation, parse_changelog
    from schemaflow.core.result import Err
    from schemaflow.core.settings import get_settings

    run_contexts = contexts or get_settings().contexts
    try:
        parsed = parse_changelog(changelog)
    except SchemaflowError as e:
        fail(e.message, e.category.value)

    opened = DirectConnectionFactory(driver, url, user, password).open()
    if isinstance(opened, Err):
        fail(str(opened.error), "CONNECT")

    with opened.value as lease:
        try:
            pending = ChangelogEngine(parsed, find_database_implementation(lease.connection)).status(run_contexts)
        except SchemaflowError as e:
            lease.mark_failed()
            fail(e.message, e.category.value)

    rows = [
        {"changeset": cs.identifier, "contexts": cs.contexts, "changes": cs.description}
        for cs in pending
    ]
    if not json_out:
        typer.echo(f"{len(rows)} pending change set(s)")
    print_rows(rows, title="Pending", as_json=json_out)


@app.command()
def validate(
    changelog: Path = _CHANGELOG,
    json_out: bool = _JSON,
) -> None:
    """Parse a changelog and check every change is supported."""
    from schemaflow.cli.utils import fail, print_rows
    from schemaflow.core.errors import SchemaflowError
    from schemaflow.core.migrations import parse_changelog, validate_changelog

    try:
        parsed = parse_changelog(changelog)
    except SchemaflowError as e:
        fail(e.message, e.category.value)

    problems = validate_changelog(parsed)
    if problems:
        for problem in problems:
            typer.echo(problem, err=True)
        fail(f"{len(problems)} problem(s) in {changelog}", "PARSE")

    rows = [
        {
            "changeset": cs.identifier,
            "contexts": cs.contexts,
            "dbms": ",".join(cs.dbms) or None,
            "changes": len(cs.changes),
        }
        for cs in parsed
    ]
    if not json_out:
        typer.echo(f"{changelog.name} is valid: {len(rows)} change set(s)")
    print_rows(rows, title="Change sets", as_json=json_out)


if __name__ == "__main__":
    app()
