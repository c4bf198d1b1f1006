"""Reference data: languages, categories and the word vocabulary.

Reads feed the engine (matching candidates, word text by id); the small
write helpers exist for seeding from the CLI and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from categorizer.core.gateway import PersistenceGateway
from categorizer.core.matching import LanguageRef
from categorizer.core.orm.tables import CategoryTable, LanguageTable, WordTable


@dataclass(frozen=True)
class WordRef:
    id: int
    word: str
    language_id: int | None = None
    english_translation: str | None = None
    category: str | None = None


def _word_ref(row: WordTable) -> WordRef:
    return WordRef(
        id=row.id,
        word=row.word,
        language_id=row.language_id,
        english_translation=row.english_translation,
        category=row.category,
    )


class ReferenceRepository:
    """Queries over ``languages``, ``categories`` and ``words``."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    # ── Reads ────────────────────────────────────────────────────────

    async def languages(self) -> list[LanguageRef]:
        """Languages ordered by ``(priority, name)``."""

        def query(session: Session) -> list[LanguageRef]:
            rows = session.scalars(
                select(LanguageTable).order_by(LanguageTable.priority, LanguageTable.name)
            )
            return [LanguageRef(r.id, r.name, r.code, r.priority) for r in rows]

        return await self.gateway.run(query)

    async def categories(self) -> list[str]:
        """Category names ordered by name."""
        return await self.gateway.run(
            lambda session: list(session.scalars(select(CategoryTable.name).order_by(CategoryTable.name)))
        )

    async def words_by_ids(self, word_ids: Iterable[int]) -> dict[int, WordRef]:
        ids = list(word_ids)
        if not ids:
            return {}

        def query(session: Session) -> dict[int, WordRef]:
            rows = session.scalars(select(WordTable).where(WordTable.id.in_(ids)))
            return {row.id: _word_ref(row) for row in rows}

        return await self.gateway.run(query)

    async def unprocessed_word_ids(self) -> list[int]:
        """Ids of words missing a language, translation or category, by word."""

        def query(session: Session) -> list[int]:
            missing = (
                WordTable.language_id.is_(None)
                | WordTable.english_translation.is_(None)
                | (WordTable.english_translation == "")
                | WordTable.category.is_(None)
                | (WordTable.category == "")
            )
            return list(session.scalars(select(WordTable.id).where(missing).order_by(WordTable.word, WordTable.id)))

        return await self.gateway.run(query)

    async def counts(self) -> dict[str, int]:
        def query(session: Session) -> dict[str, int]:
            return {
                "words": session.scalar(select(func.count()).select_from(WordTable)) or 0,
                "languages": session.scalar(select(func.count()).select_from(LanguageTable)) or 0,
                "categories": session.scalar(select(func.count()).select_from(CategoryTable)) or 0,
            }

        return await self.gateway.run(query)

    # ── Seeding ──────────────────────────────────────────────────────

    async def add_language(self, name: str, code: str | None = None, priority: int = 0) -> LanguageRef:
        def write(session: Session) -> LanguageRef:
            row = LanguageTable(name=name, code=code, priority=priority)
            session.add(row)
            session.flush()
            return LanguageRef(row.id, row.name, row.code, row.priority)

        return await self.gateway.run(write)

    async def add_categories(self, names: Iterable[str]) -> list[str]:
        wanted = [name.strip() for name in names if name and name.strip()]

        def write(session: Session) -> list[str]:
            existing = set(session.scalars(select(CategoryTable.name)))
            for name in wanted:
                if name not in existing:
                    session.add(CategoryTable(name=name))
                    existing.add(name)
            return sorted(existing)

        return await self.gateway.run(write)

    async def add_words(self, words: Iterable[str], language_id: int | None = None) -> list[int]:
        """Insert words, returning their ids in input order."""
        wanted = [word.strip() for word in words if word and word.strip()]

        def write(session: Session) -> list[int]:
            rows = [WordTable(word=word, language_id=language_id) for word in wanted]
            session.add_all(rows)
            session.flush()
            return [row.id for row in rows]

        return await self.gateway.run(write)
