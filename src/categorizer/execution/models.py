"""Job domain models.

Defines the data structures the engine, store, API and CLI share:

- SessionStatus: lifecycle of a processing session, with transition rules
- ProcessingConfig: the config snapshot frozen onto a session
- ProcessingSession: one job run, mirrored from ``processing_sessions``
- ProcessingResult: one classified word, mirrored from ``processing_results``
- ProcessingStats: live counters plus ETA/rate/cost
- RunOutcome: how a ``process_words`` call ended
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from categorizer.core.errors import InvalidTransitionError, ValidationError
from categorizer.core.orm.base import as_utc

MAX_CHUNK_SIZE = 50
CANCELLED_MESSAGE = "Cancelled by user"

_BASE36 = string.digits + string.ascii_lowercase


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """``session_<epoch-ms>_<9 random base36 chars>``."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def clamp_chunk_size(chunk_size: int) -> int:
    return max(1, min(int(chunk_size), MAX_CHUNK_SIZE))


class SessionStatus(str, Enum):
    """Status of a processing session.

    Valid transition graph::

        PENDING    → PROCESSING | FAILED (cancel)
        PROCESSING → COMPLETED | FAILED | PAUSED
        PAUSED     → PROCESSING | FAILED (cancel) | PENDING (reset)
        FAILED     → PROCESSING (resume) | PENDING (reset)
        COMPLETED  → PENDING (reset)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses a start/resume may claim the session from
STARTABLE_STATUSES = frozenset({SessionStatus.PENDING, SessionStatus.PAUSED, SessionStatus.FAILED})

# Control action → statuses it is legal from
CONTROL_ALLOWED_FROM: dict[str, frozenset[SessionStatus]] = {
    "pause": frozenset({SessionStatus.PROCESSING}),
    "cancel": frozenset({SessionStatus.PROCESSING, SessionStatus.PAUSED, SessionStatus.PENDING}),
    "reset": frozenset(set(SessionStatus) - {SessionStatus.PROCESSING}),
    "delete": frozenset(set(SessionStatus) - {SessionStatus.PROCESSING}),
}


def validate_control(action: str, current: SessionStatus, session_id: str | None = None) -> None:
    """Raise :class:`InvalidTransitionError` if ``action`` is illegal from ``current``.

    Example:
        >>> validate_control("pause", SessionStatus.PENDING)
        Traceback (most recent call last):
        ...
        categorizer.core.errors.InvalidTransitionError: Cannot pause a session in status 'pending'
    """
    if current not in CONTROL_ALLOWED_FROM[action]:
        raise InvalidTransitionError(current.value, action, session_id=session_id)


class ProcessingMode(str, Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"

    @classmethod
    def parse(cls, value: str | ProcessingMode) -> ProcessingMode:
        """Accept the legacy names ``batch`` and ``parallel`` as well."""
        if isinstance(value, ProcessingMode):
            return value
        aliases = {"batch": cls.SEQUENTIAL, "parallel": cls.CONCURRENT}
        key = str(value).strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError as exc:
            raise ValidationError(f"Unknown processing mode: {value!r}") from exc


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


@dataclass
class ProcessingConfig:
    """Config snapshot frozen onto a session at creation."""

    mode: ProcessingMode = ProcessingMode.SEQUENTIAL
    model: str = "gpt-4o-mini"
    chunk_size: int = 10
    max_retries: int = 3
    language_prompt: str | None = None
    category_prompt: str | None = None

    def __post_init__(self) -> None:
        self.mode = ProcessingMode.parse(self.mode)
        self.chunk_size = clamp_chunk_size(self.chunk_size)
        if self.max_retries < 0:
            raise ValidationError("max_retries must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "model": self.model,
            "chunkSize": self.chunk_size,
            "maxRetries": self.max_retries,
            "languagePrompt": self.language_prompt,
            "categoryPrompt": self.category_prompt,
        }


@dataclass
class ProcessingSession:
    """One job run."""

    id: str
    status: SessionStatus = SessionStatus.PENDING
    total_words: int = 0
    processed_words: int = 0
    successful_words: int = 0
    failed_words: int = 0
    current_chunk: int = 0
    total_chunks: int = 0
    total_tokens_used: int = 0
    estimated_cost: float = 0.0
    mode: ProcessingMode = ProcessingMode.SEQUENTIAL
    model: str = "gpt-4o-mini"
    chunk_size: int = 10
    max_retries: int = 3
    language_prompt: str | None = None
    category_prompt: str | None = None
    last_processed_word_id: int | None = None
    resume_data: list[int] = field(default_factory=list)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_processed_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    driver_id: str | None = None
    heartbeat_at: datetime | None = None

    @property
    def config(self) -> ProcessingConfig:
        return ProcessingConfig(
            mode=self.mode,
            model=self.model,
            chunk_size=self.chunk_size,
            max_retries=self.max_retries,
            language_prompt=self.language_prompt,
            category_prompt=self.category_prompt,
        )

    @property
    def word_ids(self) -> list[int]:
        return [int(word_id) for word_id in self.resume_data]

    @property
    def is_cancelled(self) -> bool:
        return self.status == SessionStatus.FAILED and self.error == CANCELLED_MESSAGE

    @property
    def can_resume(self) -> bool:
        return self.status in STARTABLE_STATUSES and not self.is_cancelled

    def lease_held(self, timeout: float, now: datetime | None = None) -> bool:
        """True while a driver owns the session and heartbeated within ``timeout`` seconds."""
        if self.driver_id is None or self.heartbeat_at is None:
            return False
        return (now or utcnow()) - self.heartbeat_at < timedelta(seconds=timeout)

    @classmethod
    def from_row(cls, row: Any) -> ProcessingSession:
        return cls(
            id=row.id,
            status=SessionStatus(row.status),
            total_words=row.total_words,
            processed_words=row.processed_words,
            successful_words=row.successful_words,
            failed_words=row.failed_words,
            current_chunk=row.current_chunk,
            total_chunks=row.total_chunks,
            total_tokens_used=row.total_tokens_used,
            estimated_cost=row.estimated_cost,
            mode=ProcessingMode.parse(row.mode),
            model=row.model,
            chunk_size=row.chunk_size,
            max_retries=row.max_retries,
            language_prompt=row.language_prompt,
            category_prompt=row.category_prompt,
            last_processed_word_id=row.last_processed_word_id,
            resume_data=list(row.resume_data or []),
            created_at=as_utc(row.created_at),
            started_at=as_utc(row.started_at),
            completed_at=as_utc(row.completed_at),
            last_processed_at=as_utc(row.last_processed_at),
            error=row.error,
            retry_count=row.retry_count,
            driver_id=row.driver_id,
            heartbeat_at=as_utc(row.heartbeat_at),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["mode"] = self.mode.value
        for key in ("created_at", "started_at", "completed_at", "last_processed_at", "heartbeat_at"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


@dataclass
class ProcessingResult:
    """One classified word in a session's append-only ledger."""

    session_id: str
    word_id: int
    original_word: str
    success: bool
    detected_language: str | None = None
    english_translation: str | None = None
    assigned_category: str | None = None
    error: str | None = None
    processing_time: int = 0
    tokens_used: int = 0
    cost: float = 0.0
    processed_at: datetime | None = None
    id: int | None = None
    # Match outcome; not persisted
    language_matched: bool = False
    category_matched: bool = False

    @classmethod
    def from_row(cls, row: Any) -> ProcessingResult:
        return cls(
            id=row.id,
            session_id=row.session_id,
            word_id=row.word_id,
            original_word=row.original_word,
            success=bool(row.success),
            detected_language=row.detected_language,
            english_translation=row.english_translation,
            assigned_category=row.assigned_category,
            error=row.error,
            processing_time=row.processing_time,
            tokens_used=row.tokens_used,
            cost=row.cost,
            processed_at=as_utc(row.processed_at),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["processed_at"] = self.processed_at.isoformat() if self.processed_at else None
        return data


@dataclass
class ProcessingStats:
    """Counters plus derived ETA/rate/cost, as carried by progress events."""

    total_words: int = 0
    processed_words: int = 0
    successful_words: int = 0
    failed_words: int = 0
    current_chunk: int = 0
    total_chunks: int = 0
    estimated_time_remaining: int = 0
    average_processing_time: float = 0.0
    total_cost: float = 0.0
    total_tokens: int = 0
    processing_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalWords": self.total_words,
            "processedWords": self.processed_words,
            "successfulWords": self.successful_words,
            "failedWords": self.failed_words,
            "currentChunk": self.current_chunk,
            "totalChunks": self.total_chunks,
            "estimatedTimeRemaining": self.estimated_time_remaining,
            "averageProcessingTime": round(self.average_processing_time, 2),
            "totalCost": self.total_cost,
            "totalTokens": self.total_tokens,
            "processingRate": round(self.processing_rate, 2),
        }
