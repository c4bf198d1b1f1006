"""Async batch executor: semaphore-bounded fan-out of one chunk's items.

ARCHITECTURE
────────────
::

    AsyncBatchExecutor(max_concurrency=chunk_size)   (hard cap 50)
      ├── .add(name, coroutine_fn, params)  ─ enqueue work item
      ├── .run_all()                        ─ asyncio.gather + Semaphore
      └── AsyncBatchResult                  ─ items in insertion order

An item whose handler raises is marked ``failed``; its siblings keep
running. The engine's handlers already convert oracle failures to failed
results, so a ``failed`` item here means something below the isolation
boundary broke.

Example::

    batch = AsyncBatchExecutor(max_concurrency=10)
    for word_id in chunk:
        batch.add(str(word_id), classify_one, {"word_id": word_id})
    result = await batch.run_all()
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from categorizer.core.logging import get_logger

logger = get_logger(__name__)

MAX_CONCURRENCY = 50


@dataclass
class AsyncBatchItem:
    """A single item in an async batch."""

    name: str
    handler: Callable[..., Coroutine[Any, Any, Any]]
    params: dict[str, Any] = field(default_factory=dict)
    status: str = "pending"
    result: Any = None
    error: BaseException | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class AsyncBatchResult:
    """Aggregate result of running an async batch."""

    batch_id: str
    items: list[AsyncBatchItem]
    started_at: datetime
    completed_at: datetime

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status == "failed")

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


class AsyncBatchExecutor:
    """Run queued coroutines concurrently, at most ``max_concurrency`` at a time.

    Parameters
    ----------
    max_concurrency : int
        Simultaneous coroutines, clamped to ``1..50``.
    """

    def __init__(self, max_concurrency: int = 10) -> None:
        self._max_concurrency = max(1, min(max_concurrency, MAX_CONCURRENCY))
        self._items: list[AsyncBatchItem] = []
        self._batch_id = str(uuid.uuid4())

    def add(
        self,
        name: str,
        handler: Callable[..., Coroutine[Any, Any, Any]],
        params: dict[str, Any] | None = None,
    ) -> AsyncBatchExecutor:
        """Queue ``handler(**params)``; returns ``self`` for chaining."""
        self._items.append(AsyncBatchItem(name=name, handler=handler, params=params or {}))
        return self

    async def run_all(self) -> AsyncBatchResult:
        sem = asyncio.Semaphore(self._max_concurrency)
        started_at = datetime.now(UTC)

        logger.debug(
            "async_batch.start",
            batch_id=self._batch_id,
            items=len(self._items),
            max_concurrency=self._max_concurrency,
        )

        async def _run_one(item: AsyncBatchItem) -> AsyncBatchItem:
            async with sem:
                item.started_at = datetime.now(UTC)
                item.status = "running"
                try:
                    item.result = await item.handler(**item.params)
                    item.status = "completed"
                except Exception as e:
                    item.status = "failed"
                    item.error = e
                    logger.warning(
                        "async_batch.item_failed",
                        batch_id=self._batch_id,
                        name=item.name,
                        error=str(e),
                    )
                item.completed_at = datetime.now(UTC)
                return item

        await asyncio.gather(*[_run_one(item) for item in self._items])

        result = AsyncBatchResult(
            batch_id=self._batch_id,
            items=self._items,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )
        logger.debug(
            "async_batch.complete",
            batch_id=self._batch_id,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_seconds=result.duration_seconds,
        )
        return result

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency
