"""
Shared pytest fixtures for categorizer tests.

Every database test gets its own file-backed SQLite database under
``tmp_path`` with the schema created, plus a small reference vocabulary
(English and Spanish, three categories).
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
import pytest_asyncio

from categorizer.core.gateway import PersistenceGateway
from categorizer.core.matching import LanguageRef
from categorizer.core.repositories import ReferenceRepository, SessionStore

CATEGORIES = ["Animals", "Colors", "Food"]


@dataclass
class Vocabulary:
    english: LanguageRef
    spanish: LanguageRef
    categories: list[str]


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'categorizer.db'}"


@pytest_asyncio.fixture
async def gateway(db_url):
    gw = PersistenceGateway(db_url, max_retries=2, initial_delay=0.01)
    await gw.open()
    await gw.create_schema()
    yield gw
    await gw.close()


@pytest.fixture
def reference(gateway) -> ReferenceRepository:
    return ReferenceRepository(gateway)


@pytest.fixture
def store(gateway) -> SessionStore:
    return SessionStore(gateway)


@pytest_asyncio.fixture
async def vocabulary(reference) -> Vocabulary:
    english = await reference.add_language("English", "en", 1)
    spanish = await reference.add_language("Spanish", "es", 2)
    categories = await reference.add_categories(CATEGORIES)
    return Vocabulary(english=english, spanish=spanish, categories=categories)


@pytest.fixture
def add_words(reference, vocabulary):
    """``await add_words("a", "b")`` → ids, inserted without a language."""

    async def _add(*words: str, language_id: int | None = None) -> list[int]:
        return await reference.add_words(words, language_id)

    return _add
