"""
CLI utility helpers: settings, gateway lifecycle and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from categorizer.core.errors import CategorizerError
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.settings import CategorizerSettings
from categorizer.oracle.openai import OpenAIClassifier
from categorizer.oracle.protocol import Classifier

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)


# ── Settings / connection helpers ────────────────────────────────────────


def load_settings(database: str | None = None) -> CategorizerSettings:
    """Settings from the environment, with ``--database`` taking precedence."""
    settings = CategorizerSettings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


def build_classifier(settings: CategorizerSettings) -> Classifier:
    return OpenAIClassifier(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
    )


@asynccontextmanager
async def open_gateway(settings: CategorizerSettings) -> AsyncIterator[PersistenceGateway]:
    """Open a gateway, make sure the schema exists, close it afterwards."""
    gateway = PersistenceGateway(
        settings.database_url,
        max_retries=settings.max_retries,
        initial_delay=settings.retry_initial_delay,
    )
    async with gateway:
        await gateway.create_schema()
        yield gateway


def run_command(fn: Callable[[], Awaitable[T]]) -> T:
    """Run an async command body; categorizer errors exit with status 1."""
    try:
        return asyncio.run(fn())
    except CategorizerError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.code}): {exc.message}")
        raise typer.Exit(code=1) from exc


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def print_table(rows: list[dict[str, Any]], *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(str(row.get(col, "")) for col in columns))
    console.print(table)
