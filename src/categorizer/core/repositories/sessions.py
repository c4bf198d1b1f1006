"""
Job session store: CRUD over ``processing_sessions`` and its result ledger.

Every status change is a compare-and-set ``UPDATE ... WHERE status IN (...)``
so two callers can never both win a transition; the row count tells the
loser what happened.

Counters move only through :meth:`SessionStore.record_progress` (atomic
``col = col + n``) or are rebuilt from the ledger when a run claims the
session, so ``processed = successful + failed`` holds at every boundary.

One driver at a time: a claim takes a lease (``driver_id`` plus
``heartbeat_at``) that only that driver releases, when it settles the run.
A pause or cancel changes the status but leaves the lease alone, so a resume
is refused until the interrupted driver has acknowledged the stop. A lease
whose heartbeat is older than ``lease_timeout`` belongs to a dead driver and
may be taken over.

Tags:
    repository, sessions, ledger, compare-and-set
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Sequence

from sqlalchemy import and_, case, delete, func, or_, select, true, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from categorizer.core.errors import (
    AlreadyCompletedError,
    ConstraintError,
    InvalidTransitionError,
    SessionBusyError,
    SessionNotFoundError,
    ValidationError,
)
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.logging import get_logger
from categorizer.core.orm.tables import ProcessingResultTable, ProcessingSessionTable
from categorizer.core.repositories._helpers import PageSlice
from categorizer.execution.models import (
    CANCELLED_MESSAGE,
    CONTROL_ALLOWED_FROM,
    ProcessingConfig,
    ProcessingResult,
    ProcessingSession,
    SessionStatus,
    generate_session_id,
    utcnow,
    validate_control,
)

log = get_logger(__name__)

DRIVER_LEASE_SECONDS = 300.0

S = ProcessingSessionTable
R = ProcessingResultTable


def _load(session: Session, session_id: str) -> ProcessingSession | None:
    row = session.get(S, session_id, populate_existing=True)
    return ProcessingSession.from_row(row) if row is not None else None


def _require(session: Session, session_id: str) -> ProcessingSession:
    loaded = _load(session, session_id)
    if loaded is None:
        raise SessionNotFoundError(session_id)
    return loaded


def _statuses(statuses: Sequence[SessionStatus] | frozenset[SessionStatus]) -> list[str]:
    return [status.value for status in statuses]


# A failed session is resumable unless the user cancelled it
_CLAIMABLE = or_(
    S.status.in_(_statuses([SessionStatus.PENDING, SessionStatus.PAUSED])),
    and_(
        S.status == SessionStatus.FAILED.value,
        or_(S.error.is_(None), S.error != CANCELLED_MESSAGE),
    ),
)


def _owned(driver_id: str | None):
    """Rows leased to ``driver_id``; ``None`` matches any row."""
    return S.driver_id == driver_id if driver_id is not None else true()


def _release(session: Session, session_id: str, driver_id: str | None) -> None:
    session.execute(
        update(S)
        .where(S.id == session_id, _owned(driver_id))
        .values(driver_id=None, heartbeat_at=None)
        .execution_options(synchronize_session=False)
    )


def _heartbeat(session: Session, session_id: str) -> None:
    session.execute(
        update(S)
        .where(S.id == session_id, S.driver_id.is_not(None))
        .values(heartbeat_at=utcnow())
        .execution_options(synchronize_session=False)
    )


class SessionStore:
    """Durable job state, accessed through the persistence gateway.

    Args:
        gateway: Persistence gateway every query runs through
        lease_timeout: Seconds without a heartbeat after which a driver's
            lease is considered abandoned
    """

    def __init__(self, gateway: PersistenceGateway, *, lease_timeout: float = DRIVER_LEASE_SECONDS) -> None:
        self.gateway = gateway
        self.lease_timeout = lease_timeout

    def _lease_free(self):
        stale = utcnow() - timedelta(seconds=self.lease_timeout)
        return or_(S.driver_id.is_(None), S.heartbeat_at.is_(None), S.heartbeat_at < stale)

    def lease_held(self, session: ProcessingSession) -> bool:
        """Whether a live driver still owns ``session``."""
        return session.lease_held(self.lease_timeout)

    # ── Create / read ────────────────────────────────────────────────

    async def create(
        self,
        word_ids: Sequence[int],
        config: ProcessingConfig,
        session_id: str | None = None,
    ) -> ProcessingSession:
        """Persist a ``pending`` session whose word order is frozen forever."""
        ids = [int(word_id) for word_id in word_ids]
        if not ids:
            raise ValidationError("word_ids must not be empty")
        if len(set(ids)) != len(ids):
            # Keep first occurrence so the frozen order stays meaningful
            ids = list(dict.fromkeys(ids))

        new_id = session_id or generate_session_id()
        total_chunks = -(-len(ids) // config.chunk_size)

        def write(session: Session) -> ProcessingSession:
            row = S(
                id=new_id,
                status=SessionStatus.PENDING.value,
                total_words=len(ids),
                total_chunks=total_chunks,
                chunk_size=config.chunk_size,
                mode=config.mode.value,
                model=config.model,
                max_retries=config.max_retries,
                language_prompt=config.language_prompt,
                category_prompt=config.category_prompt,
                resume_data=ids,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return ProcessingSession.from_row(row)

        try:
            created = await self.gateway.run(write)
        except sa_exc.IntegrityError as exc:
            raise ConstraintError(f"Session already exists: {new_id}", cause=exc) from exc
        log.info(
            "store.session_created",
            session_id=created.id,
            total_words=created.total_words,
            total_chunks=created.total_chunks,
            mode=created.mode.value,
        )
        return created

    async def get(self, session_id: str) -> ProcessingSession | None:
        return await self.gateway.run(lambda session: _load(session, session_id))

    async def require(self, session_id: str) -> ProcessingSession:
        return await self.gateway.run(lambda session: _require(session, session_id))

    async def list_sessions(
        self,
        *,
        status: SessionStatus | None = None,
        page: PageSlice = PageSlice(),
    ) -> tuple[list[tuple[ProcessingSession, int]], int]:
        """List sessions newest first.  Returns ``([(session, result_count)], total)``."""

        def query(session: Session) -> tuple[list[tuple[ProcessingSession, int]], int]:
            where = S.status == status.value if status is not None else true()
            total = session.scalar(select(func.count()).select_from(S).where(where)) or 0
            result_count = (
                select(func.count(R.id)).where(R.session_id == S.id).correlate(S).scalar_subquery()
            )
            rows = session.execute(
                select(S, result_count)
                .where(where)
                .order_by(S.created_at.desc(), S.id)
                .limit(page.limit)
                .offset(page.offset)
            ).all()
            return [(ProcessingSession.from_row(row), count or 0) for row, count in rows], total

        return await self.gateway.run(query)

    async def latest_results(self, session_id: str, limit: int = 50) -> list[ProcessingResult]:
        def query(session: Session) -> list[ProcessingResult]:
            rows = session.scalars(
                select(R)
                .where(R.session_id == session_id)
                .order_by(R.processed_at.desc(), R.id.desc())
                .limit(limit)
            )
            return [ProcessingResult.from_row(row) for row in rows]

        return await self.gateway.run(query)

    async def results(self, session_id: str) -> list[ProcessingResult]:
        def query(session: Session) -> list[ProcessingResult]:
            rows = session.scalars(select(R).where(R.session_id == session_id).order_by(R.id))
            return [ProcessingResult.from_row(row) for row in rows]

        return await self.gateway.run(query)

    async def processed_word_ids(self, session_id: str) -> set[int]:
        """Word ids that already own a result in this session's ledger."""
        return await self.gateway.run(
            lambda session: set(session.scalars(select(R.word_id).where(R.session_id == session_id)))
        )

    # ── Engine transitions ───────────────────────────────────────────

    async def claim(self, session_id: str) -> ProcessingSession:
        """Atomically move a session to ``processing`` for one driver.

        Counters are rebuilt from the ledger in the same transaction so a run
        that crashed mid-chunk resumes with consistent accounting. The
        returned session carries the new ``driver_id``; the caller passes it
        back when it settles the run.

        Raises:
            SessionNotFoundError: no such session
            AlreadyCompletedError: the session already completed
            SessionBusyError: another driver holds the session, including a
                paused driver that has not reached its next stop check yet
            InvalidTransitionError: the session was cancelled by the user
        """
        driver_id = uuid.uuid4().hex

        def write(session: Session) -> ProcessingSession:
            now = utcnow()
            claimed = session.execute(
                update(S)
                .where(
                    S.id == session_id,
                    # A processing row with a free lease was left by a dead driver
                    or_(_CLAIMABLE, S.status == SessionStatus.PROCESSING.value),
                    self._lease_free(),
                )
                .values(
                    status=SessionStatus.PROCESSING.value,
                    started_at=func.coalesce(S.started_at, now),
                    completed_at=None,
                    error=None,
                    driver_id=driver_id,
                    heartbeat_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                current = _load(session, session_id)
                if current is None:
                    raise SessionNotFoundError(session_id)
                if current.status == SessionStatus.COMPLETED:
                    raise AlreadyCompletedError(session_id)
                if current.is_cancelled:
                    raise InvalidTransitionError("cancelled", "resume", session_id=session_id)
                if current.status == SessionStatus.PROCESSING or current.driver_id is not None:
                    raise SessionBusyError(session_id)
                raise InvalidTransitionError(current.status.value, "resume", session_id=session_id)

            totals = session.execute(
                select(
                    func.count(R.id),
                    func.coalesce(func.sum(case((R.success.is_(True), 1), else_=0)), 0),
                    func.coalesce(func.sum(R.tokens_used), 0),
                    func.coalesce(func.sum(R.cost), 0.0),
                ).where(R.session_id == session_id)
            ).one()
            processed, successful, tokens, cost = totals
            session.execute(
                update(S)
                .where(S.id == session_id)
                .values(
                    processed_words=processed,
                    successful_words=successful,
                    failed_words=processed - successful,
                    total_tokens_used=tokens,
                    estimated_cost=float(cost),
                )
                .execution_options(synchronize_session=False)
            )
            return _require(session, session_id)

        claimed = await self.gateway.run(write)
        log.info(
            "store.session_claimed",
            session_id=session_id,
            processed_words=claimed.processed_words,
            current_chunk=claimed.current_chunk,
        )
        return claimed

    async def mark_chunk_started(
        self, session_id: str, chunk_index: int, processed_words: int, *, max_retries: int | None = None
    ) -> None:
        """Checkpoint the chunk cursor before its work is dispatched."""

        def write(session: Session) -> None:
            session.execute(
                update(S)
                .where(S.id == session_id)
                .values(current_chunk=chunk_index, processed_words=processed_words, heartbeat_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        await self.gateway.run(write, max_retries=max_retries)

    async def record_progress(
        self,
        session_id: str,
        *,
        successful: int,
        failed: int,
        tokens: int,
        cost: float,
        current_chunk: int,
        last_word_id: int | None,
        max_retries: int | None = None,
    ) -> ProcessingSession:
        """Atomically add a chunk's outcome to the counters and move the cursor."""

        def write(session: Session) -> ProcessingSession:
            values: dict[str, Any] = {
                "successful_words": S.successful_words + successful,
                "failed_words": S.failed_words + failed,
                "processed_words": S.processed_words + successful + failed,
                "total_tokens_used": S.total_tokens_used + tokens,
                "estimated_cost": S.estimated_cost + cost,
                "current_chunk": current_chunk,
                "last_processed_at": utcnow(),
                "heartbeat_at": utcnow(),
            }
            if last_word_id is not None:
                values["last_processed_word_id"] = last_word_id
            session.execute(
                update(S).where(S.id == session_id).values(**values).execution_options(synchronize_session=False)
            )
            return _require(session, session_id)

        return await self.gateway.run(write, max_retries=max_retries)

    async def add_result(self, result: ProcessingResult, *, max_retries: int | None = None) -> ProcessingResult:
        """Append one entry to the ledger."""

        def write(session: Session) -> ProcessingResult:
            row = R(
                session_id=result.session_id,
                word_id=result.word_id,
                original_word=result.original_word,
                detected_language=result.detected_language,
                english_translation=result.english_translation,
                assigned_category=result.assigned_category,
                success=result.success,
                error=result.error,
                processing_time=result.processing_time,
                tokens_used=result.tokens_used,
                cost=result.cost,
                processed_at=result.processed_at or utcnow(),
            )
            session.add(row)
            session.flush()
            _heartbeat(session, result.session_id)
            stored = ProcessingResult.from_row(row)
            stored.language_matched = result.language_matched
            stored.category_matched = result.category_matched
            return stored

        return await self.gateway.run(write, max_retries=max_retries)

    # The settle transitions below also release the caller's lease. Passing
    # ``driver_id=None`` settles whoever holds the session.

    async def mark_completed(self, session_id: str, *, driver_id: str | None = None) -> ProcessingSession:
        def write(session: Session) -> ProcessingSession:
            session.execute(
                update(S)
                .where(
                    S.id == session_id,
                    S.status.in_(_statuses([SessionStatus.PROCESSING, SessionStatus.PAUSED])),
                    _owned(driver_id),
                )
                .values(status=SessionStatus.COMPLETED.value, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            _release(session, session_id, driver_id)
            return _require(session, session_id)

        return await self.gateway.run(write)

    async def mark_paused(self, session_id: str, *, driver_id: str | None = None) -> ProcessingSession:
        """Move a ``processing`` session to ``paused``; other statuses are kept."""

        def write(session: Session) -> ProcessingSession:
            session.execute(
                update(S)
                .where(S.id == session_id, S.status == SessionStatus.PROCESSING.value, _owned(driver_id))
                .values(status=SessionStatus.PAUSED.value)
                .execution_options(synchronize_session=False)
            )
            _release(session, session_id, driver_id)
            return _require(session, session_id)

        return await self.gateway.run(write)

    async def mark_failed(self, session_id: str, message: str, *, driver_id: str | None = None) -> ProcessingSession:
        """Record an unrecoverable engine failure and bump ``retry_count``.

        Only a ``processing`` session is failed: a cancel or pause that landed
        while the run was going down keeps its status and message.
        """

        def write(session: Session) -> ProcessingSession:
            session.execute(
                update(S)
                .where(S.id == session_id, S.status == SessionStatus.PROCESSING.value, _owned(driver_id))
                .values(
                    status=SessionStatus.FAILED.value,
                    error=message,
                    retry_count=S.retry_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            _release(session, session_id, driver_id)
            return _require(session, session_id)

        return await self.gateway.run(write)

    async def release(self, session_id: str, driver_id: str) -> None:
        """Drop ``driver_id``'s lease without touching the status."""
        await self.gateway.run(lambda session: _release(session, session_id, driver_id))

    # ── Control operations ───────────────────────────────────────────

    def _guarded_update(self, session_id: str, action: str, values: dict[str, Any], *, idle: bool = False):
        """Build a compare-and-set write for ``action``.

        With ``idle`` the row must also be free of a live driver lease.
        """
        allowed = CONTROL_ALLOWED_FROM[action]

        def write(session: Session) -> ProcessingSession:
            current = _require(session, session_id)
            validate_control(action, current.status, session_id)
            changed = session.execute(
                update(S)
                .where(S.id == session_id, S.status.in_(_statuses(allowed)), self._lease_free() if idle else true())
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if changed.rowcount == 0:
                # Lost a race with another transition
                latest = _require(session, session_id)
                if latest.status in allowed:
                    # A paused or cancelled driver has not let go yet
                    raise SessionBusyError(session_id)
                raise InvalidTransitionError(latest.status.value, action, session_id=session_id)
            if action == "reset":
                session.execute(delete(R).where(R.session_id == session_id))
            return _require(session, session_id)

        return write

    async def pause(self, session_id: str) -> ProcessingSession:
        paused = await self.gateway.run(
            self._guarded_update(session_id, "pause", {"status": SessionStatus.PAUSED.value})
        )
        log.info("store.session_paused", session_id=session_id)
        return paused

    async def cancel(self, session_id: str) -> ProcessingSession:
        cancelled = await self.gateway.run(
            self._guarded_update(
                session_id,
                "cancel",
                {
                    "status": SessionStatus.FAILED.value,
                    "error": CANCELLED_MESSAGE,
                    "completed_at": utcnow(),
                },
            )
        )
        log.info("store.session_cancelled", session_id=session_id)
        return cancelled

    async def reset(self, session_id: str) -> ProcessingSession:
        """Zero counters, clear cursor and timestamps, delete the ledger."""
        reset = await self.gateway.run(
            self._guarded_update(
                session_id,
                "reset",
                {
                    "status": SessionStatus.PENDING.value,
                    "processed_words": 0,
                    "successful_words": 0,
                    "failed_words": 0,
                    "current_chunk": 0,
                    "total_tokens_used": 0,
                    "estimated_cost": 0.0,
                    "started_at": None,
                    "completed_at": None,
                    "last_processed_at": None,
                    "last_processed_word_id": None,
                    "error": None,
                    "retry_count": 0,
                    "driver_id": None,
                    "heartbeat_at": None,
                },
                idle=True,
            )
        )
        log.info("store.session_reset", session_id=session_id)
        return reset

    async def delete(self, session_id: str) -> None:
        """Delete a session and, by cascade, its results."""

        def write(session: Session) -> None:
            current = _require(session, session_id)
            validate_control("delete", current.status, session_id)
            deleted = session.execute(
                delete(S).where(
                    S.id == session_id,
                    S.status.in_(_statuses(CONTROL_ALLOWED_FROM["delete"])),
                    self._lease_free(),
                )
            )
            if deleted.rowcount == 0:
                latest = _require(session, session_id)
                if latest.status in CONTROL_ALLOWED_FROM["delete"]:
                    raise SessionBusyError(session_id)
                raise InvalidTransitionError(latest.status.value, "delete", session_id=session_id)
            # SQLite only cascades with PRAGMA foreign_keys=ON
            session.execute(delete(R).where(R.session_id == session_id))

        await self.gateway.run(write)
        log.info("store.session_deleted", session_id=session_id)
