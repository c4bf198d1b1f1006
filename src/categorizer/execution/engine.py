"""
Job engine: drives a processing session chunk by chunk.

Manifesto:
    A classification job is slow, rate-limited and interrupted all the
    time. The engine therefore treats the database as the only source of
    truth and checkpoints at every chunk boundary, so a job can be paused,
    cancelled, crash, and be resumed without losing or duplicating work.

Architecture:
    ::

        process_words(session_id, cancel, sink)
          │
          ├─ store.claim()                 pending|paused|failed → processing (CAS + lease)
          ├─ resume index + ledger         which words are still to do
          │
          └─ for chunk in plan_chunks(frozen ordering):
               ├─ stop?                    token set / paused / cancelled
               ├─ store.mark_chunk_started (checkpoint before dispatch)
               ├─ dispatch
               │    sequential: one item at a time, token checked between items
               │    concurrent: AsyncBatchExecutor(max_concurrency=chunk_size)
               │      each item: classify → match → upsert → append result
               ├─ store.record_progress    atomic counter increments
               ├─ emit chunk_complete
               └─ sleep inter_chunk_delay
          complete → emit complete
          finally: release the lease

Outcomes:
    COMPLETED  every word has a result
    PAUSED     paused externally, or the cancellation token was set
               (the session is left ``paused`` and can be resumed)
    CANCELLED  the user cancelled the session (status ``failed``)

Failure policy:
    One word's failure becomes a failed result and never stops the chunk.
    Anything else (reference data missing, storage retries exhausted) marks
    the session ``failed``, bumps ``retry_count`` and is re-raised.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Sequence

from categorizer.core.errors import MaxRetriesExceededError, ValidationError
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.logging import LogContext, get_logger
from categorizer.core.matching import LanguageRef, match_classification
from categorizer.core.repositories.reference import ReferenceRepository, WordRef
from categorizer.core.repositories.sessions import SessionStore
from categorizer.execution.async_batch import AsyncBatchExecutor
from categorizer.execution.chunking import ChunkPlan, plan_chunks, resume_index
from categorizer.execution.events import (
    ChunkCompleteEvent,
    CompleteEvent,
    EventSink,
    JobEvent,
    ResultEvent,
    StatusEvent,
)
from categorizer.execution.metrics import LatencyWindow, build_stats, calculate_cost, estimate_tokens
from categorizer.execution.models import (
    ProcessingConfig,
    ProcessingMode,
    ProcessingResult,
    ProcessingSession,
    RunOutcome,
    SessionStatus,
    utcnow,
)
from categorizer.oracle.protocol import Classifier

log = get_logger(__name__)

DEFAULT_INTER_CHUNK_DELAY = 0.1
WORD_NOT_FOUND = "word not found"


class CancellationToken:
    """Cooperative stop signal observed between chunks and between items."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class _RunContext:
    session: ProcessingSession
    driver_id: str | None
    languages: list[LanguageRef]
    language_names: list[str]
    categories: list[str]
    words: dict[int, WordRef]
    window: LatencyWindow = field(default_factory=LatencyWindow)


@dataclass
class _ChunkOutcome:
    results: list[ProcessingResult]
    interrupted: bool = False


class JobEngine:
    """Runs processing sessions against a classifier.

    Args:
        gateway: Open (or lazily opening) persistence gateway
        classifier: Oracle used for every word
        inter_chunk_delay: Seconds slept between chunks to spare the oracle
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        classifier: Classifier,
        *,
        inter_chunk_delay: float = DEFAULT_INTER_CHUNK_DELAY,
        store: SessionStore | None = None,
        reference: ReferenceRepository | None = None,
    ) -> None:
        self.gateway = gateway
        self.classifier = classifier
        self.inter_chunk_delay = inter_chunk_delay
        self.store = store or SessionStore(gateway)
        self.reference = reference or ReferenceRepository(gateway)

    # ── Public API ───────────────────────────────────────────────────

    async def create_session(
        self,
        word_ids: Sequence[int],
        config: ProcessingConfig,
        session_id: str | None = None,
    ) -> ProcessingSession:
        """Create a ``pending`` session over ``word_ids`` in the given order."""
        return await self.store.create(word_ids, config, session_id=session_id)

    async def process_words(
        self,
        session_id: str,
        cancel: CancellationToken | None = None,
        sink: EventSink | None = None,
    ) -> RunOutcome:
        """Run (or resume) a session until it completes, pauses or is cancelled.

        Raises:
            SessionNotFoundError, AlreadyCompletedError, SessionBusyError:
                the session cannot be claimed; nothing is changed
            Exception: anything fatal during the run, after the session
                has been marked ``failed``
        """
        session = await self.store.claim(session_id)
        driver_id = session.driver_id
        async with LogContext(session_id=session_id):
            log.info(
                "engine.started",
                mode=session.mode.value,
                model=session.model,
                total_words=session.total_words,
                processed_words=session.processed_words,
                current_chunk=session.current_chunk,
            )
            try:
                outcome = await self._run(session, cancel, sink)
            except asyncio.CancelledError:
                # Driver task torn down: leave the session resumable
                await self._settle_paused(session_id, driver_id)
                raise
            except Exception as exc:
                await self._settle_failed(session_id, driver_id, exc)
                raise
            finally:
                await self._release(session_id, driver_id)
            log.info("engine.finished", outcome=outcome.value)
            return outcome

    # ── Run loop ─────────────────────────────────────────────────────

    async def _run(
        self,
        session: ProcessingSession,
        cancel: CancellationToken | None,
        sink: EventSink | None,
    ) -> RunOutcome:
        categories = await self.reference.categories()
        if not categories:
            raise ValidationError("No categories found in database")
        languages = await self.reference.languages()

        word_ids = session.word_ids
        start = resume_index(word_ids, session.last_processed_word_id)
        done = await self.store.processed_word_ids(session.id)
        plans = plan_chunks(word_ids, session.chunk_size, start_index=start, done=done)
        pending_ids = [word_id for plan in plans for word_id in plan.pending]

        ctx = _RunContext(
            session=session,
            driver_id=session.driver_id,
            languages=languages,
            language_names=[language.name for language in languages],
            categories=categories,
            words=await self.reference.words_by_ids(pending_ids),
        )
        log.debug("engine.plan", start_index=start, already_done=len(done), chunks=len(plans))

        for position, plan in enumerate(plans):
            stop = await self._check_stop(ctx, cancel, sink)
            if stop is not None:
                return stop
            if not plan.pending:
                continue

            await self.store.mark_chunk_started(
                session.id, plan.index, ctx.session.processed_words, max_retries=session.max_retries
            )
            outcome = await self._dispatch(ctx, plan, cancel, sink)
            ctx.session = await self._record(ctx, plan, outcome)

            if outcome.interrupted:
                return await self._pause_for_token(ctx, cancel, sink)

            await self._emit(
                sink,
                ChunkCompleteEvent(
                    session_id=session.id,
                    chunk_index=plan.index + 1,
                    total_chunks=ctx.session.total_chunks,
                    processed_words=ctx.session.processed_words,
                    total_words=ctx.session.total_words,
                    stats=build_stats(ctx.session, ctx.window),
                ),
            )
            log.info(
                "engine.chunk_complete",
                chunk=plan.index + 1,
                total_chunks=ctx.session.total_chunks,
                processed_words=ctx.session.processed_words,
                successful_words=ctx.session.successful_words,
                failed_words=ctx.session.failed_words,
            )

            if position < len(plans) - 1 and self.inter_chunk_delay > 0:
                await asyncio.sleep(self.inter_chunk_delay)

        final = await self.store.mark_completed(session.id, driver_id=ctx.driver_id)
        ctx.session = final
        if final.status == SessionStatus.FAILED:
            # Cancelled while the last chunk was in flight
            await self._emit(sink, StatusEvent(session_id=session.id, status=final.status.value, message=final.error))
            return RunOutcome.CANCELLED
        await self._emit(sink, CompleteEvent(session_id=session.id, stats=build_stats(final, ctx.window)))
        return RunOutcome.COMPLETED

    async def _check_stop(
        self,
        ctx: _RunContext,
        cancel: CancellationToken | None,
        sink: EventSink | None,
    ) -> RunOutcome | None:
        """Observe the token and the stored status before dispatching a chunk."""
        if cancel is not None and cancel.is_cancelled:
            return await self._pause_for_token(ctx, cancel, sink)

        current = await self.store.require(ctx.session.id)
        if current.driver_id != ctx.driver_id:
            # Heartbeat went stale and another driver took over
            log.warning("engine.lease_lost", holder=current.driver_id)
            return RunOutcome.PAUSED
        if current.status == SessionStatus.PAUSED:
            log.info("engine.paused_externally")
            await self._emit(sink, StatusEvent(session_id=current.id, status=current.status.value, message="Paused"))
            return RunOutcome.PAUSED
        if current.status == SessionStatus.FAILED:
            log.info("engine.cancelled", error=current.error)
            await self._emit(sink, StatusEvent(session_id=current.id, status=current.status.value, message=current.error))
            return RunOutcome.CANCELLED
        return None

    async def _pause_for_token(
        self,
        ctx: _RunContext,
        cancel: CancellationToken | None,
        sink: EventSink | None,
    ) -> RunOutcome:
        paused = await self.store.mark_paused(ctx.session.id, driver_id=ctx.driver_id)
        ctx.session = paused
        reason = cancel.reason if cancel is not None else None
        log.info("engine.stopped_by_token", reason=reason, status=paused.status.value)
        await self._emit(
            sink,
            StatusEvent(session_id=paused.id, status=paused.status.value, message=reason, stats=build_stats(paused, ctx.window)),
        )
        if paused.status == SessionStatus.FAILED:
            return RunOutcome.CANCELLED
        return RunOutcome.PAUSED

    # ── Dispatch ─────────────────────────────────────────────────────

    async def _dispatch(
        self,
        ctx: _RunContext,
        plan: ChunkPlan,
        cancel: CancellationToken | None,
        sink: EventSink | None,
    ) -> _ChunkOutcome:
        if ctx.session.mode == ProcessingMode.CONCURRENT:
            return await self._dispatch_concurrent(ctx, plan, sink)
        return await self._dispatch_sequential(ctx, plan, cancel, sink)

    async def _dispatch_sequential(
        self,
        ctx: _RunContext,
        plan: ChunkPlan,
        cancel: CancellationToken | None,
        sink: EventSink | None,
    ) -> _ChunkOutcome:
        results: list[ProcessingResult] = []
        for word_id in plan.pending:
            if results and cancel is not None and cancel.is_cancelled:
                return _ChunkOutcome(results=results, interrupted=True)
            result = await self._process_item(ctx, word_id)
            results.append(result)
            await self._emit(
                sink,
                ResultEvent(
                    session_id=ctx.session.id,
                    result=result,
                    processed_words=ctx.session.processed_words + len(results),
                    total_words=ctx.session.total_words,
                ),
            )
        return _ChunkOutcome(results=results)

    async def _dispatch_concurrent(
        self,
        ctx: _RunContext,
        plan: ChunkPlan,
        sink: EventSink | None,
    ) -> _ChunkOutcome:
        batch = AsyncBatchExecutor(max_concurrency=ctx.session.chunk_size)
        for word_id in plan.pending:
            batch.add(str(word_id), self._process_item, {"ctx": ctx, "word_id": word_id})
        outcome = await batch.run_all()

        fatal = next((item.error for item in outcome.items if item.error is not None), None)
        if fatal is not None:
            raise fatal

        results = [item.result for item in outcome.items]
        for count, result in enumerate(results, start=1):
            await self._emit(
                sink,
                ResultEvent(
                    session_id=ctx.session.id,
                    result=result,
                    processed_words=ctx.session.processed_words + count,
                    total_words=ctx.session.total_words,
                ),
            )
        return _ChunkOutcome(results=results)

    async def _process_item(self, ctx: _RunContext, word_id: int) -> ProcessingResult:
        """Classify, match, upsert and record one word.

        Oracle and per-word storage failures become a failed result.
        Exhausted storage retries and ledger write failures propagate.
        """
        session = ctx.session
        word = ctx.words.get(word_id)
        started = time.perf_counter()

        if word is None:
            result = ProcessingResult(
                session_id=session.id,
                word_id=word_id,
                original_word="",
                success=False,
                error=WORD_NOT_FOUND,
            )
        else:
            try:
                answer = await self.classifier.classify(
                    word.word,
                    ctx.language_names,
                    ctx.categories,
                    model=session.model,
                    language_prompt=session.language_prompt,
                    category_prompt=session.category_prompt,
                )
                match = match_classification(answer.language, answer.category, ctx.languages, ctx.categories)
                await self.gateway.upsert_classified_word(
                    word.word,
                    match.language.id if match.language is not None else None,
                    answer.translation,
                    match.category,
                    source_word_id=word.id,
                    max_retries=session.max_retries,
                )
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                ctx.window.add(elapsed_ms)
                tokens = estimate_tokens(word.word, answer.translation)
                result = ProcessingResult(
                    session_id=session.id,
                    word_id=word_id,
                    original_word=word.word,
                    success=True,
                    detected_language=match.language.name if match.language is not None else answer.language,
                    english_translation=answer.translation,
                    assigned_category=match.category,
                    processing_time=elapsed_ms,
                    tokens_used=tokens,
                    cost=calculate_cost(tokens, session.model),
                    language_matched=match.language_matched,
                    category_matched=match.category_matched,
                )
            except MaxRetriesExceededError:
                raise
            except Exception as exc:
                log.warning("engine.item_failed", word_id=word_id, word=word.word, error=str(exc))
                result = ProcessingResult(
                    session_id=session.id,
                    word_id=word_id,
                    original_word=word.word,
                    success=False,
                    error=str(exc) or type(exc).__name__,
                    processing_time=int((time.perf_counter() - started) * 1000),
                )

        result.processed_at = utcnow()
        return await self.store.add_result(result, max_retries=session.max_retries)

    async def _record(self, ctx: _RunContext, plan: ChunkPlan, outcome: _ChunkOutcome) -> ProcessingSession:
        results = outcome.results
        successful = sum(1 for r in results if r.success)
        if outcome.interrupted:
            current_chunk = plan.index
            last_word_id = results[-1].word_id
        else:
            current_chunk = plan.index + 1
            last_word_id = plan.word_ids[-1]
        return await self.store.record_progress(
            ctx.session.id,
            successful=successful,
            failed=len(results) - successful,
            tokens=sum(r.tokens_used for r in results),
            cost=sum(r.cost for r in results),
            current_chunk=current_chunk,
            last_word_id=last_word_id,
            max_retries=ctx.session.max_retries,
        )

    # ── Settlement ───────────────────────────────────────────────────

    async def _settle_failed(self, session_id: str, driver_id: str | None, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        log.error("engine.failed", error=message, error_type=type(exc).__name__)
        try:
            await self.store.mark_failed(session_id, message, driver_id=driver_id)
        except Exception as mark_exc:
            log.error("engine.mark_failed_error", error=str(mark_exc))

    async def _settle_paused(self, session_id: str, driver_id: str | None) -> None:
        try:
            await self.store.mark_paused(session_id, driver_id=driver_id)
        except Exception as mark_exc:
            log.error("engine.mark_paused_error", error=str(mark_exc))

    async def _release(self, session_id: str, driver_id: str | None) -> None:
        if driver_id is None:
            return
        try:
            await self.store.release(session_id, driver_id)
        except Exception as release_exc:
            log.error("engine.release_error", error=str(release_exc))

    @staticmethod
    async def _emit(sink: EventSink | None, event: JobEvent) -> None:
        if sink is not None:
            await sink(event)
