"""
CLI: ``categorizer db``: schema, health and reference data.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from categorizer.cli.utils import console, load_settings, open_gateway, print_dict, print_json, run_command
from categorizer.core.errors import ValidationError
from categorizer.core.repositories import ReferenceRepository

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLAlchemy URL"),
) -> None:
    """Create every table that does not exist yet."""
    settings = load_settings(database)

    async def body() -> None:
        async with open_gateway(settings):
            pass

    run_command(body)
    console.print("[green]Schema ready.[/green]")


@app.command()
def health(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check connectivity and count words, languages and categories."""
    settings = load_settings(database)

    async def body() -> dict[str, int]:
        async with open_gateway(settings) as gateway:
            await gateway.ping()
            return await ReferenceRepository(gateway).counts()

    counts = run_command(body)
    if json_out:
        print_json({"status": "healthy", "counts": counts})
    else:
        print_dict(counts, title="Database healthy")


@app.command()
def seed(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with reference data"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Load languages, categories and words from a JSON file.

    Format: ``{"languages": [{"name", "code", "priority"}], "categories": [...],
    "words": [...]}``; words may also be ``{"word", "language"}`` objects.
    """
    settings = load_settings(database)
    payload = json.loads(path.read_text(encoding="utf-8"))

    async def body() -> dict[str, int]:
        async with open_gateway(settings) as gateway:
            reference = ReferenceRepository(gateway)
            by_name: dict[str, int] = {}
            for entry in payload.get("languages", []):
                language = await reference.add_language(
                    entry["name"], entry.get("code"), int(entry.get("priority", 0))
                )
                by_name[language.name.lower()] = language.id
            categories = await reference.add_categories(payload.get("categories", []))

            words = 0
            for entry in payload.get("words", []):
                if isinstance(entry, str):
                    words += len(await reference.add_words([entry]))
                    continue
                language = entry.get("language")
                language_id = by_name.get(language.lower()) if language else None
                if language and language_id is None:
                    raise ValidationError(f"Unknown language in seed file: {language!r}")
                words += len(await reference.add_words([entry["word"]], language_id))
            return {"languages": len(by_name), "categories": len(categories), "words": words}

    print_dict(run_command(body), title="Seeded")
