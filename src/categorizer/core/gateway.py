"""
Persistence gateway: retrying, reconnecting façade over the relational store.

One ``PersistenceGateway`` is constructed per process (API lifespan, CLI
command, test fixture) and injected wherever storage is needed. It owns the
SQLAlchemy engine and everything about talking to it:

    ┌──────────────────────────────────────────────────────────────┐
    │ await gateway.run(fn)                                        │
    │   └─ with_retry ─┬─ ensure connected (one shared connect)    │
    │                  ├─ asyncio.to_thread(                       │
    │                  │     with session.begin(): fn(session))    │
    │                  └─ classify_storage_error(exc)              │
    │                        Retryable → sleep, double, retry      │
    │                                    (dispose pool first when  │
    │                                     connections ran out)     │
    │                        Fatal     → raise unchanged           │
    └──────────────────────────────────────────────────────────────┘

Every ``run`` opens a short-lived ORM session and commits it before
returning, so concurrent engine items never hold a connection longer than
their own round trip.

Examples:
    async with PersistenceGateway("sqlite:///categorizer.db") as gateway:
        await gateway.create_schema()
        outcome = await gateway.upsert_classified_word("hola", 2, "hello", "Greetings")
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import delete, select, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from categorizer.core.errors import ConstraintError, MaxRetriesExceededError
from categorizer.core.logging import get_logger
from categorizer.core.orm.base import CategorizerBase
from categorizer.core.orm.session import create_categorizer_engine, session_factory
from categorizer.core.orm.tables import WordTable
from categorizer.core.retry import ExponentialBackoff
from categorizer.core.storage_errors import Fatal, classify_storage_error

T = TypeVar("T")

log = get_logger(__name__)


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of :meth:`PersistenceGateway.upsert_classified_word`.

    ``merged_word_id`` is the source row that was deleted because another
    row already owned the ``(word, language_id)`` pair.
    """

    word_id: int
    created: bool = False
    merged_word_id: int | None = None
    conflict_resolved: bool = False


def _same_word(word: str, language_id: int | None):
    if language_id is None:
        return (WordTable.word == word) & WordTable.language_id.is_(None)
    return (WordTable.word == word) & (WordTable.language_id == language_id)


class PersistenceGateway:
    """Explicitly constructed owner of the store connection.

    Args:
        database_url: SQLAlchemy URL; ignored when ``engine`` is given
        max_retries: Default retries after the first attempt
        initial_delay: Default first backoff delay in seconds
        engine: Pre-built engine (tests)
    """

    def __init__(
        self,
        database_url: str = "sqlite:///categorizer.db",
        *,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        engine: Engine | None = None,
        echo: bool = False,
    ) -> None:
        self.database_url = str(engine.url) if engine is not None else database_url
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self._echo = echo
        self._engine: Engine | None = engine
        self._sessions: sessionmaker[Session] | None = (
            session_factory(engine) if engine is not None else None
        )
        self._connect_task: asyncio.Task[Engine] | None = None
        self._connected = False

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("gateway is not open")
        return self._engine

    async def open(self) -> PersistenceGateway:
        await self._ensure_connected()
        return self

    async def close(self) -> None:
        """Release every pooled connection."""
        if self._connect_task is not None and not self._connect_task.done():
            await asyncio.wait([self._connect_task])
        self._connect_task = None
        if self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)
        self._connected = False
        log.debug("gateway.closed", url=self._safe_url())

    async def __aenter__(self) -> PersistenceGateway:
        return await self.open()

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _safe_url(self) -> str:
        if self._engine is not None:
            return self._engine.url.render_as_string(hide_password=True)
        return self.database_url.split("@")[-1]

    def _connect_sync(self) -> Engine:
        if self._engine is None:
            self._engine = create_categorizer_engine(self.database_url, echo=self._echo)
            self._sessions = session_factory(self._engine)
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return self._engine

    async def _connect(self) -> Engine:
        engine = await asyncio.to_thread(self._connect_sync)
        self._connected = True
        log.info("gateway.connected", url=self._safe_url())
        return engine

    async def _ensure_connected(self) -> Engine:
        """Connect lazily; concurrent callers share one in-flight attempt."""
        if self._connected and self._engine is not None:
            return self._engine
        if self._connect_task is None:
            self._connect_task = asyncio.ensure_future(self._connect())
        task = self._connect_task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._connect_task is task:
                self._connect_task = None
            raise

    async def _reconnect(self) -> None:
        """Drop every pooled connection so the next attempt opens fresh ones."""
        self._connected = False
        self._connect_task = None
        if self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)
        log.warning("gateway.reconnect", url=self._safe_url())

    # ── Retry ────────────────────────────────────────────────────────

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        initial_delay: float | None = None,
    ) -> T:
        """Run ``operation``, retrying failures classified as retryable.

        The delay starts at ``initial_delay`` and doubles per retry. Fatal
        failures propagate unchanged on first occurrence; running out of
        retries raises :class:`MaxRetriesExceededError` chained to the last
        failure.
        """
        backoff = ExponentialBackoff(
            max_retries=self.max_retries if max_retries is None else max_retries,
            base_delay=self.initial_delay if initial_delay is None else initial_delay,
        )
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                verdict = classify_storage_error(exc)
                if isinstance(verdict, Fatal):
                    raise
                if not backoff.should_retry(attempt):
                    log.error(
                        "gateway.retries_exhausted",
                        attempts=attempt + 1,
                        kind=verdict.kind.value,
                        error=str(exc),
                    )
                    raise MaxRetriesExceededError(attempt + 1, cause=exc) from exc

                delay = backoff.next_delay(attempt)
                log.warning(
                    "gateway.retry",
                    attempt=attempt + 1,
                    kind=verdict.kind.value,
                    delay=delay,
                    error=str(exc),
                )
                if verdict.reconnect:
                    await self._reconnect()
                await asyncio.sleep(delay)
                attempt += 1

    # ── Unit of work ─────────────────────────────────────────────────

    def _run_sync(self, fn: Callable[[Session], T]) -> T:
        assert self._sessions is not None
        with self._sessions.begin() as session:
            return fn(session)

    async def run(
        self,
        fn: Callable[[Session], T],
        *,
        max_retries: int | None = None,
    ) -> T:
        """Run ``fn(session)`` in its own committed transaction, with retry."""

        async def attempt() -> T:
            await self._ensure_connected()
            return await asyncio.to_thread(self._run_sync, fn)

        return await self.with_retry(attempt, max_retries=max_retries)

    async def ping(self) -> bool:
        await self.run(lambda session: session.execute(text("SELECT 1")).scalar_one())
        return True

    async def create_schema(self) -> None:
        engine = await self._ensure_connected()
        await asyncio.to_thread(CategorizerBase.metadata.create_all, engine)
        log.info("gateway.schema_created", tables=sorted(CategorizerBase.metadata.tables))

    # ── Word upsert ──────────────────────────────────────────────────

    async def upsert_classified_word(
        self,
        word: str,
        language_id: int | None,
        translation: str | None,
        category: str | None,
        *,
        source_word_id: int | None = None,
        max_retries: int | None = None,
    ) -> UpsertOutcome:
        """Write a classification onto the ``(word, language_id)`` row.

        The existing row is updated in place; otherwise the source row is
        relabelled, or a new row is created. A concurrent writer creating the
        same pair first turns into an update of its row (last writer wins).
        If the winning row is not the source row, the source row is merged
        away.
        """

        def write(session: Session) -> UpsertOutcome:
            existing = session.scalars(select(WordTable).where(_same_word(word, language_id))).first()
            if existing is not None:
                existing.english_translation = translation
                existing.category = category
                merged = _merge_source(session, source_word_id, existing.id)
                return UpsertOutcome(word_id=existing.id, merged_word_id=merged)

            source = session.get(WordTable, source_word_id) if source_word_id is not None else None
            if source is not None:
                source.language_id = language_id
                source.english_translation = translation
                source.category = category
                session.flush()
                return UpsertOutcome(word_id=source.id)

            row = WordTable(
                word=word,
                language_id=language_id,
                english_translation=translation,
                category=category,
            )
            session.add(row)
            session.flush()
            return UpsertOutcome(word_id=row.id, created=True)

        def resolve(session: Session) -> UpsertOutcome:
            existing = session.scalars(select(WordTable).where(_same_word(word, language_id))).first()
            if existing is None:
                raise ConstraintError(
                    f"Unique conflict on word {word!r} could not be resolved"
                ).with_context(word=word, word_id=source_word_id)
            existing.english_translation = translation
            existing.category = category
            merged = _merge_source(session, source_word_id, existing.id)
            return UpsertOutcome(word_id=existing.id, merged_word_id=merged, conflict_resolved=True)

        try:
            return await self.run(write, max_retries=max_retries)
        except sa_exc.IntegrityError:
            log.info("gateway.upsert_conflict", word=word, language_id=language_id)
            return await self.run(resolve, max_retries=max_retries)


def _merge_source(session: Session, source_word_id: int | None, winner_id: int) -> int | None:
    if source_word_id is None or source_word_id == winner_id:
        return None
    deleted = session.execute(delete(WordTable).where(WordTable.id == source_word_id))
    return source_word_id if deleted.rowcount else None


__all__ = ["PersistenceGateway", "UpsertOutcome"]
