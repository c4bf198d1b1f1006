"""
CLI: ``categorizer sessions``: inspect and control processing sessions.
"""

from __future__ import annotations

from typing import Any

import typer

from categorizer.cli.utils import (
    console,
    load_settings,
    open_gateway,
    print_dict,
    print_json,
    print_table,
    run_command,
)
from categorizer.core.repositories import PageSlice, SessionStore
from categorizer.execution.metrics import build_analytics, session_summary
from categorizer.execution.models import ProcessingSession, SessionStatus

app = typer.Typer(no_args_is_help=True)

LIST_COLUMNS = ["id", "status", "mode", "processed_words", "total_words", "failed_words", "results", "created_at"]


def _session_row(session: ProcessingSession, result_count: int) -> dict[str, Any]:
    data = session.to_dict()
    data.pop("resume_data")
    data["results"] = result_count
    return data


@app.command("list")
def list_sessions(
    status: SessionStatus | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(20, "--limit", "-n"),
    offset: int = typer.Option(0, "--offset"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List sessions, newest first."""
    settings = load_settings(database)
    page = PageSlice(limit=limit, offset=offset)

    async def body():
        async with open_gateway(settings) as gateway:
            return await SessionStore(gateway).list_sessions(status=status, page=page)

    rows, total = run_command(body)
    items = [_session_row(session, count) for session, count in rows]
    if json_out:
        print_json({"sessions": items, "total": total, "has_more": page.has_more(total)})
        return
    print_table(items, title="Sessions", columns=LIST_COLUMNS)
    if items:
        console.print(f"\n[dim]Showing {len(items)} of {total} (offset {page.offset})[/dim]")


@app.command("show")
def show_session(
    session_id: str = typer.Argument(..., help="Session ID"),
    results: int = typer.Option(10, "--results", "-r", help="Latest results to show"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a session, its derived stats and its latest results."""
    settings = load_settings(database)

    async def body():
        async with open_gateway(settings) as gateway:
            store = SessionStore(gateway)
            session = await store.require(session_id)
            return session, await store.latest_results(session_id, results)

    session, latest = run_command(body)
    summary = session_summary(session)
    if json_out:
        print_json({
            "session": _session_row(session, len(latest)),
            "stats": summary,
            "results": [r.to_dict() for r in latest],
        })
        return
    data = _session_row(session, len(latest))
    data.pop("results")
    print_dict(data, title=f"Session: {session_id}")
    print_dict(summary, title="Stats")
    print_table(
        [r.to_dict() for r in latest],
        title="Latest results",
        columns=["word_id", "original_word", "success", "detected_language", "assigned_category", "error"],
    )


@app.command()
def analytics(
    session_id: str = typer.Argument(..., help="Session ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Language, category and error breakdowns for a session."""
    settings = load_settings(database)

    async def body():
        async with open_gateway(settings) as gateway:
            store = SessionStore(gateway)
            session = await store.require(session_id)
            return build_analytics(session, await store.results(session_id))

    print_json(run_command(body))


def _control(action: str, session_id: str, database: str | None) -> ProcessingSession:
    settings = load_settings(database)

    async def body() -> ProcessingSession:
        async with open_gateway(settings) as gateway:
            return await getattr(SessionStore(gateway), action)(session_id)

    return run_command(body)


@app.command()
def pause(
    session_id: str = typer.Argument(..., help="Session ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Pause a processing session; the running engine stops before its next chunk."""
    session = _control("pause", session_id, database)
    console.print(f"[yellow]Paused[/yellow] {session.id}")


@app.command()
def cancel(
    session_id: str = typer.Argument(..., help="Session ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Cancel a session; it cannot be resumed afterwards, only reset."""
    session = _control("cancel", session_id, database)
    console.print(f"[red]Cancelled[/red] {session.id}")


@app.command()
def reset(
    session_id: str = typer.Argument(..., help="Session ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Back to pending with zeroed counters; results are deleted."""
    session = _control("reset", session_id, database)
    console.print(f"[cyan]Reset[/cyan] {session.id}")


@app.command()
def delete(
    session_id: str = typer.Argument(..., help="Session ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete a session and its results."""
    if not yes:
        typer.confirm(f"Delete session {session_id} and all its results?", abort=True)
    _control("delete", session_id, database)
    console.print(f"[red]Deleted[/red] {session_id}")
