"""
Root Typer application for the categorizer CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from categorizer.core.logging import configure_logging

app = Typer(
    name="categorizer",
    help="categorizer - resumable, chunked word classification jobs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from categorizer import __version__

        typer.echo(f"categorizer {__version__}")
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
    log_level: str = typer.Option("WARNING", "--log-level", envvar="CATEGORIZER_LOG_LEVEL"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    """categorizer CLI - manage the database, sessions and processing runs."""
    configure_logging(level=log_level, json_format=json_logs, stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from categorizer.cli.db import app as db_app  # noqa: E402
from categorizer.cli.process import app as process_app  # noqa: E402
from categorizer.cli.serve import app as serve_app  # noqa: E402
from categorizer.cli.sessions import app as sessions_app  # noqa: E402

app.add_typer(db_app, name="db", help="Schema, health and reference data.")
app.add_typer(sessions_app, name="sessions", help="Inspect and control sessions.")
app.add_typer(process_app, name="process", help="Run or resume a processing session.")
app.add_typer(serve_app, name="serve", help="Start the API server.")
