"""
CLI utility helpers: output formatting and changelog loading.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from schemaflow.core.migrations import MigrationOutcome

console = Console()
err_console = Console(stderr=True)


def read_changelog(path: Path) -> str:
    """Read a changelog file as UTF-8 text, exiting with code 1 on failure."""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[bold red]Error[/bold red]: cannot read {path}: {e}")
        raise typer.Exit(code=1) from e


def fail(message: str, code: str = "ERROR") -> None:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


def output_outcome(outcome: MigrationOutcome, *, as_json: bool = False) -> None:
    """Render a migration outcome; exits with code 1 when it failed."""
    if as_json:
        console.print_json(json.dumps(outcome.to_dict(), default=str))
        if not outcome.success:
            raise typer.Exit(code=1)
        return

    if not outcome.success:
        error = outcome.error
        detail = getattr(error, "message", str(error)) if error is not None else "Unknown error"
        phase = outcome.phase.value.upper() if outcome.phase else "ERROR"
        fail(f"{outcome.message}: {detail}", phase)

    report = outcome.report
    if report is None:
        return
    console.print(f"[bold green]Migration complete[/bold green] (deployment {report.deployment_id})")
    _print_dict(
        {
            "applied": len(report.applied),
            "reran": len(report.reran),
            "skipped": len(report.skipped),
            "failed": len(report.failed),
        }
    )
    if report.executed:
        print_rows([{"changeset": ident} for ident in report.executed], title="Executed")
    if report.failed:
        print_rows([{"changeset": ident} for ident in report.failed], title="Failed (ignored)")


def print_rows(rows: list[dict[str, Any]], *, title: str = "", as_json: bool = False) -> None:
    """Render a list of dicts as a Rich table (or JSON)."""
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
