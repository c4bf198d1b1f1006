"""
API schemas: request bodies, response envelopes and RFC 7807 errors.

REST bodies are snake_case; request bodies also accept the camelCase names
used on the SSE wire (``chunkSize``, ``wordIds``...).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from categorizer.execution.models import (
    ProcessingConfig,
    ProcessingMode,
    ProcessingResult,
    ProcessingSession,
)

# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error Codes:
        - ``NOT_FOUND`` (404): Session does not exist
        - ``VALIDATION_FAILED`` (400): Invalid input data
        - ``CONFLICT`` (409): Session busy or already exists
        - ``INVALID_STATE`` (409): Control action illegal in current status
        - ``ALREADY_COMPLETE`` (409): Session already completed
        - ``UNAVAILABLE`` (503): Storage retries exhausted
        - ``INTERNAL`` (500): Unexpected server error
    """

    type: str = Field(default="about:blank", description="Error type URI")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(default="", description="Human-readable explanation of the error")
    instance: str = Field(default="", description="URI of the failing request")
    code: str | None = Field(default=None, description="Machine-readable error code")


class PageMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


# ── Requests ─────────────────────────────────────────────────────────────


class ProcessingRequest(BaseModel):
    """Body of ``POST /processing`` and ``POST /sessions``.

    Omitted ``word_ids`` means "every word without a category yet".
    Omitted ``model`` / ``chunk_size`` / ``max_retries`` fall back to settings.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    word_ids: list[int] | None = Field(default=None, description="Words to classify, in processing order")
    session_id: str | None = Field(default=None, description="Caller-chosen session id")
    mode: str = Field(default=ProcessingMode.SEQUENTIAL.value, description="'sequential' or 'concurrent'")
    model: str | None = None
    chunk_size: int | None = Field(default=None, ge=1, description="Words per chunk, clamped to 50")
    max_retries: int | None = Field(default=None, ge=0)
    language_prompt: str | None = None
    category_prompt: str | None = None

    def to_config(self, *, default_model: str, default_chunk_size: int, default_max_retries: int) -> ProcessingConfig:
        return ProcessingConfig(
            mode=ProcessingMode.parse(self.mode),
            model=self.model or default_model,
            chunk_size=self.chunk_size or default_chunk_size,
            max_retries=self.max_retries if self.max_retries is not None else default_max_retries,
            language_prompt=self.language_prompt,
            category_prompt=self.category_prompt,
        )


# ── Responses ────────────────────────────────────────────────────────────


class SessionSchema(BaseModel):
    id: str
    status: str
    total_words: int
    processed_words: int
    successful_words: int
    failed_words: int
    current_chunk: int
    total_chunks: int
    total_tokens_used: int
    estimated_cost: float
    mode: str
    model: str
    chunk_size: int
    max_retries: int
    language_prompt: str | None = None
    category_prompt: str | None = None
    last_processed_word_id: int | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    last_processed_at: str | None = None
    error: str | None = None
    retry_count: int = 0
    can_resume: bool = False

    @classmethod
    def from_session(cls, session: ProcessingSession) -> SessionSchema:
        data = session.to_dict()
        data.pop("resume_data", None)
        return cls(**data, can_resume=session.can_resume)


class SessionListItem(SessionSchema):
    result_count: int = 0


class SessionListResponse(BaseModel):
    sessions: list[SessionListItem]
    page: PageMeta


class ResultSchema(BaseModel):
    id: int | None = None
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
    processed_at: str | None = None

    @classmethod
    def from_result(cls, result: ProcessingResult) -> ResultSchema:
        data = result.to_dict()
        data.pop("language_matched", None)
        data.pop("category_matched", None)
        return cls(**data)


class SessionSummary(BaseModel):
    """Derived figures: rates in percent, duration in milliseconds."""

    success_rate: float
    failure_rate: float
    completion_rate: float
    average_cost_per_word: float
    processing_duration: int


class SessionDetailResponse(BaseModel):
    session: SessionSchema
    results: list[ResultSchema]
    stats: SessionSummary


class DeleteResponse(BaseModel):
    deleted: bool = True
    session_id: str


class AnalyticsResponse(BaseModel):
    session_id: str
    summary: dict[str, Any]
    performance: dict[str, Any]
    cost: dict[str, Any]
    breakdowns: dict[str, dict[str, int]]


class DatabaseHealthResponse(BaseModel):
    status: str
    database: str
    counts: dict[str, int] = Field(default_factory=dict)
    error: str | None = None
