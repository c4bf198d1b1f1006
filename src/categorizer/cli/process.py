"""
CLI: ``categorizer process``: run the engine in-process and print its events.

Ctrl-C stops the run cooperatively: in-flight words finish, the session is
left ``paused`` and ``categorizer process resume <id>`` picks it up again.
"""

from __future__ import annotations

import json

import typer

from categorizer.cli.utils import build_classifier, console, err_console, load_settings, open_gateway, run_command
from categorizer.execution.engine import JobEngine
from categorizer.execution.events import (
    ChunkCompleteEvent,
    CompleteEvent,
    JobEvent,
    ResultEvent,
    StatusEvent,
)
from categorizer.execution.models import ProcessingConfig, ProcessingMode, RunOutcome

app = typer.Typer(no_args_is_help=True)


def _render(event: JobEvent, json_out: bool) -> None:
    if json_out:
        console.print(json.dumps(event.to_dict()), soft_wrap=True, highlight=False, markup=False)
        return
    if isinstance(event, ResultEvent):
        r = event.result
        prefix = f"[dim]{event.processed_words}/{event.total_words}[/dim]"
        if r.success:
            console.print(
                f"{prefix} [green]✓[/green] {r.original_word} → {r.english_translation} "
                f"[cyan]{r.detected_language}[/cyan] [magenta]{r.assigned_category or '-'}[/magenta]"
            )
        else:
            console.print(f"{prefix} [red]✗[/red] {r.original_word or r.word_id}: {r.error}")
    elif isinstance(event, ChunkCompleteEvent):
        stats = event.stats
        console.print(
            f"[bold]chunk {event.chunk_index}/{event.total_chunks}[/bold] "
            f"ok={stats.successful_words} failed={stats.failed_words} "
            f"eta={stats.estimated_time_remaining}s cost=${stats.total_cost:.6f}"
        )
    elif isinstance(event, StatusEvent):
        console.print(f"[yellow]status[/yellow] {event.status} {event.message or ''}")
    elif isinstance(event, CompleteEvent):
        stats = event.stats
        console.print(
            f"[bold green]complete[/bold green] {stats.successful_words}/{stats.total_words} ok, "
            f"{stats.failed_words} failed, {stats.total_tokens} tokens, ${stats.total_cost:.6f}"
        )


def _drive(session_id: str | None, build_session, database: str | None, json_out: bool) -> None:
    settings = load_settings(database)

    async def body() -> tuple[str, RunOutcome]:
        async with open_gateway(settings) as gateway:
            classifier = build_classifier(settings)
            engine = JobEngine(gateway, classifier, inter_chunk_delay=settings.inter_chunk_delay)
            try:
                target = session_id or (await build_session(engine)).id
                if not json_out:
                    console.print(f"[bold]Session[/bold] {target}")

                async def sink(event: JobEvent) -> None:
                    _render(event, json_out)

                return target, await engine.process_words(target, sink=sink)
            finally:
                aclose = getattr(classifier, "aclose", None)
                if aclose is not None:
                    await aclose()

    try:
        target, outcome = run_command(body)
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted; session left paused. Resume with `categorizer process resume`.[/yellow]")
        raise typer.Exit(code=130) from None

    if outcome == RunOutcome.PAUSED:
        err_console.print(f"[yellow]Paused.[/yellow] Resume with: categorizer process resume {target}")
    elif outcome == RunOutcome.CANCELLED:
        err_console.print(f"[red]Cancelled.[/red] {target} can only be reset.")
        raise typer.Exit(code=1)


@app.command()
def start(
    word_ids: list[int] = typer.Option(None, "--word-id", "-w", help="Word to classify (repeatable); default all uncategorised"),
    mode: str = typer.Option("sequential", "--mode", "-m", help="sequential | concurrent"),
    model: str | None = typer.Option(None, "--model"),
    chunk_size: int | None = typer.Option(None, "--chunk-size", "-c"),
    max_retries: int | None = typer.Option(None, "--max-retries"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json", help="Print raw event JSON lines"),
) -> None:
    """Create a session and run it to completion."""
    settings = load_settings(database)

    async def build_session(engine: JobEngine):
        config = ProcessingConfig(
            mode=ProcessingMode.parse(mode),
            model=model or settings.default_model,
            chunk_size=chunk_size or settings.default_chunk_size,
            max_retries=settings.max_retries if max_retries is None else max_retries,
        )
        ids = list(word_ids) if word_ids else await engine.reference.unprocessed_word_ids()
        return await engine.create_session(ids, config)

    _drive(None, build_session, database, json_out)


@app.command()
def resume(
    session_id: str = typer.Argument(..., help="Session ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json", help="Print raw event JSON lines"),
) -> None:
    """Resume a paused or failed session from its cursor."""
    _drive(session_id, None, database, json_out)
