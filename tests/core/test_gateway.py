"""Tests for the persistence gateway: lifecycle, units of work and word upsert."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select

from categorizer.core.gateway import PersistenceGateway
from categorizer.core.orm.tables import WordTable


async def _rows(gateway, word: str) -> list[tuple[int, int | None, str | None, str | None]]:
    def query(session):
        rows = session.scalars(select(WordTable).where(WordTable.word == word).order_by(WordTable.id))
        return [(r.id, r.language_id, r.english_translation, r.category) for r in rows]

    return await gateway.run(query)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_lazy_connect_on_first_use(self, db_url):
        gateway = PersistenceGateway(db_url)
        assert not gateway.is_connected
        assert await gateway.ping() is True
        assert gateway.is_connected
        await gateway.close()
        assert not gateway.is_connected

    @pytest.mark.asyncio
    async def test_concurrent_first_use_shares_one_connect(self, db_url, monkeypatch):
        gateway = PersistenceGateway(db_url)
        connects = []
        original = gateway._connect_sync

        def counting():
            connects.append(1)
            return original()

        monkeypatch.setattr(gateway, "_connect_sync", counting)
        await asyncio.gather(*(gateway.ping() for _ in range(5)))
        assert len(connects) == 1
        await gateway.close()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, db_url):
        async with PersistenceGateway(db_url) as gateway:
            assert gateway.is_connected
            await gateway.create_schema()
        assert not gateway.is_connected

    def test_engine_before_open_raises(self):
        with pytest.raises(RuntimeError):
            _ = PersistenceGateway("sqlite://").engine

    @pytest.mark.asyncio
    async def test_run_commits(self, gateway):
        def write(session):
            session.add(WordTable(word="gato"))

        await gateway.run(write)
        assert len(await _rows(gateway, "gato")) == 1

    @pytest.mark.asyncio
    async def test_run_rolls_back_on_error(self, gateway):
        def write(session):
            session.add(WordTable(word="perro"))
            session.flush()
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await gateway.run(write)
        assert await _rows(gateway, "perro") == []


class TestUpsertClassifiedWord:
    @pytest.mark.asyncio
    async def test_creates_when_absent(self, gateway, vocabulary):
        outcome = await gateway.upsert_classified_word("hola", vocabulary.spanish.id, "hello", "Food")
        assert outcome.created
        assert await _rows(gateway, "hola") == [(outcome.word_id, vocabulary.spanish.id, "hello", "Food")]

    @pytest.mark.asyncio
    async def test_idempotent_second_call_wins(self, gateway, vocabulary):
        first = await gateway.upsert_classified_word("rojo", vocabulary.spanish.id, "red", "Colors")
        second = await gateway.upsert_classified_word("rojo", vocabulary.spanish.id, "crimson", "Animals")
        assert second.word_id == first.word_id
        assert not second.created
        assert await _rows(gateway, "rojo") == [(first.word_id, vocabulary.spanish.id, "crimson", "Animals")]

    @pytest.mark.asyncio
    async def test_relabels_source_row(self, gateway, vocabulary, add_words):
        [source] = await add_words("perro")
        outcome = await gateway.upsert_classified_word(
            "perro", vocabulary.spanish.id, "dog", "Animals", source_word_id=source
        )
        assert outcome.word_id == source
        assert outcome.merged_word_id is None
        assert await _rows(gateway, "perro") == [(source, vocabulary.spanish.id, "dog", "Animals")]

    @pytest.mark.asyncio
    async def test_merges_source_into_existing_row(self, gateway, vocabulary, add_words):
        [source] = await add_words("gato")
        [existing] = await add_words("gato", language_id=vocabulary.spanish.id)

        outcome = await gateway.upsert_classified_word(
            "gato", vocabulary.spanish.id, "cat", "Animals", source_word_id=source
        )
        assert outcome.word_id == existing
        assert outcome.merged_word_id == source
        assert await _rows(gateway, "gato") == [(existing, vocabulary.spanish.id, "cat", "Animals")]

    @pytest.mark.asyncio
    async def test_null_language_pair_is_unique_too(self, gateway, vocabulary):
        first = await gateway.upsert_classified_word("xyzzy", None, "xyzzy", None)
        second = await gateway.upsert_classified_word("xyzzy", None, "magic", None)
        assert first.word_id == second.word_id
        assert len(await _rows(gateway, "xyzzy")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_writer_conflict_becomes_update(self, gateway, vocabulary, add_words, monkeypatch):
        [source] = await add_words("azul")
        real_run = gateway.run
        calls = []

        async def racing_run(fn, *, max_retries=None):
            calls.append(fn)
            if len(calls) == 1:
                # Another writer inserts the pair between our check and our write
                await real_run(lambda s: s.add(WordTable(word="azul", language_id=vocabulary.spanish.id)))
                raise sa_exc.IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
            return await real_run(fn, max_retries=max_retries)

        monkeypatch.setattr(gateway, "run", racing_run)
        outcome = await gateway.upsert_classified_word(
            "azul", vocabulary.spanish.id, "blue", "Colors", source_word_id=source
        )

        assert outcome.conflict_resolved
        assert outcome.merged_word_id == source
        rows = await _rows(gateway, "azul")
        assert rows == [(outcome.word_id, vocabulary.spanish.id, "blue", "Colors")]

    @pytest.mark.asyncio
    async def test_unique_index_enforced_by_store(self, gateway, vocabulary, add_words):
        await add_words("verde", language_id=vocabulary.spanish.id)
        with pytest.raises(sa_exc.IntegrityError):
            await add_words("verde", language_id=vocabulary.spanish.id)

        count = await gateway.run(
            lambda s: s.scalar(select(func.count()).select_from(WordTable).where(WordTable.word == "verde"))
        )
        assert count == 1
