"""ETA, throughput and cost estimation.

Token counts are *estimated* from character lengths (about four characters
per token plus a fixed prompt overhead) and split 70/30 between input and
output. Costs derived from them are approximations for progress display,
not billing data.
"""

from __future__ import annotations

import math
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from categorizer.execution.models import ProcessingResult, ProcessingSession, ProcessingStats, utcnow

LATENCY_WINDOW = 100
PROMPT_OVERHEAD_TOKENS = 50
INPUT_SHARE = 0.7
OUTPUT_SHARE = 0.3


@dataclass(frozen=True)
class ModelPrice:
    input_price_per_1k: float
    output_price_per_1k: float


DEFAULT_PRICED_MODEL = "gpt-4o-mini"

PRICING: dict[str, ModelPrice] = {
    "gpt-4o-mini": ModelPrice(0.00015, 0.0006),
    "gpt-4o": ModelPrice(0.005, 0.015),
    "gpt-4": ModelPrice(0.03, 0.06),
    "gpt-3.5-turbo": ModelPrice(0.0015, 0.002),
}


def estimate_tokens(original_word: str, translation: str | None) -> int:
    """Estimated tokens for one two-step classification call."""
    return (
        math.ceil(len(original_word) / 4)
        + math.ceil(len(translation or "") / 4)
        + PROMPT_OVERHEAD_TOKENS
    )


def calculate_cost(tokens: int, model: str) -> float:
    """Estimated USD cost; unknown models are priced as gpt-4o-mini."""
    price = PRICING.get(model, PRICING[DEFAULT_PRICED_MODEL])
    input_tokens = round(tokens * INPUT_SHARE)
    output_tokens = round(tokens * OUTPUT_SHARE)
    return (
        input_tokens / 1000 * price.input_price_per_1k
        + output_tokens / 1000 * price.output_price_per_1k
    )


class LatencyWindow:
    """Moving window of the last ``size`` per-item latencies in ms."""

    def __init__(self, size: int = LATENCY_WINDOW) -> None:
        self._samples: deque[float] = deque(maxlen=size)

    def add(self, latency_ms: float) -> None:
        self._samples.append(latency_ms)

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def average(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)

    def eta_seconds(self, total: int, processed: int) -> int:
        """Seconds left; 0 with no samples, never negative."""
        if not self._samples:
            return 0
        remaining = max(0, total - processed)
        return round(remaining * self.average / 1000)


def processing_rate(processed: int, started_at: datetime | None, now: datetime | None = None) -> float:
    """Words per minute since ``started_at``; 0 if not started."""
    if started_at is None or processed <= 0:
        return 0.0
    elapsed_minutes = ((now or utcnow()) - started_at).total_seconds() / 60
    if elapsed_minutes <= 0:
        return 0.0
    return processed / elapsed_minutes


def build_stats(
    session: ProcessingSession,
    window: LatencyWindow | None = None,
    *,
    now: datetime | None = None,
) -> ProcessingStats:
    window = window or LatencyWindow()
    return ProcessingStats(
        total_words=session.total_words,
        processed_words=session.processed_words,
        successful_words=session.successful_words,
        failed_words=session.failed_words,
        current_chunk=session.current_chunk,
        total_chunks=session.total_chunks,
        estimated_time_remaining=window.eta_seconds(session.total_words, session.processed_words),
        average_processing_time=window.average,
        total_cost=session.estimated_cost,
        total_tokens=session.total_tokens_used,
        processing_rate=processing_rate(session.processed_words, session.started_at, now),
    )


def session_summary(session: ProcessingSession, *, now: datetime | None = None) -> dict[str, Any]:
    """Derived status figures: rates in percent, duration in ms."""
    processed = session.processed_words
    success_rate = session.successful_words / processed * 100 if processed else 0.0
    failure_rate = session.failed_words / processed * 100 if processed else 0.0
    completion_rate = processed / session.total_words * 100 if session.total_words else 0.0
    average_cost = session.estimated_cost / processed if processed else 0.0

    duration_ms = 0
    if session.started_at is not None:
        end = session.completed_at or now or utcnow()
        duration_ms = max(0, int((end - session.started_at).total_seconds() * 1000))

    return {
        "success_rate": round(success_rate, 2),
        "failure_rate": round(failure_rate, 2),
        "completion_rate": round(completion_rate, 2),
        "average_cost_per_word": average_cost,
        "processing_duration": duration_ms,
    }


def error_type(message: str | None) -> str:
    """Bucket a failure message: timeout, rate_limit, api_error or other."""
    text = (message or "").lower()
    if "timeout" in text:
        return "timeout"
    if "rate" in text:
        return "rate_limit"
    if "api" in text:
        return "api_error"
    return "other"


def build_analytics(session: ProcessingSession, results: list[ProcessingResult]) -> dict[str, Any]:
    """Per-session breakdowns computed from the full result ledger."""
    languages: Counter[str] = Counter(r.detected_language for r in results if r.detected_language)
    categories: Counter[str] = Counter(r.assigned_category for r in results if r.assigned_category)
    errors: Counter[str] = Counter(error_type(r.error) for r in results if not r.success and r.error)

    times = [r.processing_time for r in results]
    total_cost = sum(r.cost for r in results)
    total_tokens = sum(r.tokens_used for r in results)

    rate = 0.0
    if session.started_at is not None and session.last_processed_at is not None:
        rate = processing_rate(session.processed_words, session.started_at, session.last_processed_at)

    summary = session_summary(session)
    return {
        "session_id": session.id,
        "summary": {
            "total_words": session.total_words,
            "processed_words": session.processed_words,
            "successful_words": session.successful_words,
            "failed_words": session.failed_words,
            "success_rate": summary["success_rate"],
            "completion_rate": summary["completion_rate"],
        },
        "performance": {
            "average_processing_time": sum(times) / len(times) if times else 0.0,
            "min_processing_time": min(times) if times else 0,
            "max_processing_time": max(times) if times else 0,
            "processing_rate": round(rate, 2),
        },
        "cost": {
            "total_cost": total_cost,
            "average_cost_per_word": total_cost / len(results) if results else 0.0,
            "total_tokens_used": total_tokens,
            "model": session.model,
        },
        "breakdowns": {
            "languages": dict(languages),
            "categories": dict(categories),
            "errors": dict(errors),
        },
    }
