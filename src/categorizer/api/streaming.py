"""
SSE transport: runs one engine drive and frames its events for the client.

Stream states::

    idle → started → {result | chunk_complete | status}* → (complete | error)

Exactly one ``started`` opens the stream and exactly one terminal event
closes it. The engine runs in its own task feeding a queue, so a slow or
vanished client never blocks persistence. When the client goes away the
cancellation token is set; the engine finishes in-flight work, stops before
the next chunk (or next word in sequential mode) and leaves the session
``paused``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from categorizer.core.errors import AlreadyCompletedError, InvalidTransitionError
from categorizer.core.logging import get_logger
from categorizer.execution.engine import CancellationToken, JobEngine
from categorizer.execution.events import ErrorEvent, JobEvent, StartedEvent, is_terminal
from categorizer.execution.metrics import build_stats
from categorizer.execution.models import CANCELLED_MESSAGE, ProcessingSession, RunOutcome

log = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_SECONDS = 15.0
PAUSED_MESSAGE = "Processing paused"

# Drives outlive their response when the client disconnects
_drives: set[asyncio.Task] = set()


def sse_frame(event: JobEvent) -> str:
    return f"data: {json.dumps(event.to_dict())}\n\n"


def _started_event(session: ProcessingSession, resumed: bool) -> StartedEvent:
    resumed_from = None
    if resumed:
        resumed_from = {"chunk": session.current_chunk, "processedWords": session.processed_words}
    return StartedEvent(
        session_id=session.id,
        stats=build_stats(session),
        config=session.config.to_dict(),
        resumed_from=resumed_from,
    )


def _outcome_event(session_id: str, outcome: RunOutcome) -> ErrorEvent | None:
    if outcome == RunOutcome.PAUSED:
        return ErrorEvent(session_id=session_id, message=PAUSED_MESSAGE, can_resume=True, status="paused")
    if outcome == RunOutcome.CANCELLED:
        return ErrorEvent(session_id=session_id, message=CANCELLED_MESSAGE, can_resume=False, status="failed")
    # COMPLETED already emitted its ``complete`` event
    return None


async def stream_session(
    engine: JobEngine,
    session: ProcessingSession,
    *,
    resumed: bool = False,
    heartbeat: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for one run of ``session``."""
    queue: asyncio.Queue[JobEvent | None] = asyncio.Queue()
    token = CancellationToken()

    async def sink(event: JobEvent) -> None:
        await queue.put(event)

    async def drive() -> None:
        try:
            outcome = await engine.process_words(session.id, token, sink)
        except (AlreadyCompletedError, InvalidTransitionError) as exc:
            await queue.put(ErrorEvent(session_id=session.id, message=str(exc), can_resume=False))
        except Exception as exc:
            log.warning("stream.drive_failed", session_id=session.id, error=str(exc))
            await queue.put(ErrorEvent(session_id=session.id, message=str(exc) or type(exc).__name__))
        else:
            terminal = _outcome_event(session.id, outcome)
            if terminal is not None:
                await queue.put(terminal)
        finally:
            await queue.put(None)

    yield sse_frame(_started_event(session, resumed))

    task = asyncio.create_task(drive())
    _drives.add(task)
    task.add_done_callback(_drives.discard)

    closed = False
    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
                continue
            if event is None:
                break
            if closed:
                # Only one terminal event per stream
                continue
            yield sse_frame(event)
            closed = is_terminal(event)
    finally:
        if not task.done():
            log.info("stream.client_disconnected", session_id=session.id)
            token.cancel("client disconnected")
