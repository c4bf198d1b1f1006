"""Job events: a closed tagged union, one variant per event kind.

ARCHITECTURE
────────────
::

    JobEvent = StartedEvent | StatusEvent | ResultEvent
             | ChunkCompleteEvent | CompleteEvent | ErrorEvent

    wire form (one JSON object per SSE ``data:`` line)
      { "type": "chunk_complete",
        "sessionId": "session_...",
        "data": { ...camelCase payload... },
        "timestamp": "2026-01-01T00:00:00+00:00" }

A stream carries exactly one ``started`` first and exactly one terminal
event (``complete`` or ``error``) last.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, ClassVar, Union

from categorizer.execution.models import ProcessingResult, ProcessingStats, utcnow


@dataclass(frozen=True)
class _Event:
    type: ClassVar[str]
    session_id: str

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "sessionId": self.session_id,
            "data": self.payload(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StartedEvent(_Event):
    type: ClassVar[str] = "started"
    stats: ProcessingStats = field(default_factory=ProcessingStats)
    config: dict[str, Any] = field(default_factory=dict)
    resumed_from: dict[str, int] | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"stats": self.stats.to_dict(), "config": self.config}
        if self.resumed_from is not None:
            data["resumedFrom"] = self.resumed_from
        return data


@dataclass(frozen=True)
class StatusEvent(_Event):
    type: ClassVar[str] = "status"
    status: str = ""
    message: str | None = None
    stats: ProcessingStats | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        if self.message is not None:
            data["message"] = self.message
        if self.stats is not None:
            data["stats"] = self.stats.to_dict()
        return data


@dataclass(frozen=True)
class ResultEvent(_Event):
    type: ClassVar[str] = "result"
    result: ProcessingResult
    processed_words: int = 0
    total_words: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        r = self.result
        return {
            "wordId": r.word_id,
            "originalWord": r.original_word,
            "detectedLanguage": r.detected_language,
            "englishTranslation": r.english_translation,
            "assignedCategory": r.assigned_category,
            "success": r.success,
            "error": r.error,
            "processingTime": r.processing_time,
            "tokensUsed": r.tokens_used,
            "cost": r.cost,
            "languageMatched": r.language_matched,
            "categoryMatched": r.category_matched,
            "processedWords": self.processed_words,
            "totalWords": self.total_words,
        }


@dataclass(frozen=True)
class ChunkCompleteEvent(_Event):
    type: ClassVar[str] = "chunk_complete"
    chunk_index: int = 0
    total_chunks: int = 0
    processed_words: int = 0
    total_words: int = 0
    stats: ProcessingStats = field(default_factory=ProcessingStats)
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        return {
            # 1-based for display
            "chunkIndex": self.chunk_index,
            "totalChunks": self.total_chunks,
            "processedWords": self.processed_words,
            "totalWords": self.total_words,
            "stats": self.stats.to_dict(),
        }


@dataclass(frozen=True)
class CompleteEvent(_Event):
    type: ClassVar[str] = "complete"
    stats: ProcessingStats = field(default_factory=ProcessingStats)
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        return {"stats": self.stats.to_dict()}


@dataclass(frozen=True)
class ErrorEvent(_Event):
    type: ClassVar[str] = "error"
    message: str = ""
    can_resume: bool = True
    status: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message, "canResume": self.can_resume}
        if self.status is not None:
            data["status"] = self.status
        return data


JobEvent = Union[
    StartedEvent,
    StatusEvent,
    ResultEvent,
    ChunkCompleteEvent,
    CompleteEvent,
    ErrorEvent,
]

EVENT_TYPES: frozenset[str] = frozenset(
    cls.type for cls in (StartedEvent, StatusEvent, ResultEvent, ChunkCompleteEvent, CompleteEvent, ErrorEvent)
)
TERMINAL_TYPES: frozenset[str] = frozenset({CompleteEvent.type, ErrorEvent.type})

EventSink = Callable[[JobEvent], Awaitable[None]]


def is_terminal(event: JobEvent) -> bool:
    return event.type in TERMINAL_TYPES
