"""
Processing router: start or resume a job and stream its events over SSE.

Endpoints:
    POST /processing                     Create a session and run it (SSE)
    POST /processing/{session_id}/resume Continue a non-completed session (SSE)

Both responses are ``text/event-stream``; each ``data:`` line is one JSON
event ``{type, sessionId, data, timestamp}``. Requests that cannot start at
all (bad body, unknown or completed session) are rejected with a problem
response before the stream opens.
"""

from __future__ import annotations

from fastapi import APIRouter, Path
from fastapi.responses import StreamingResponse

from categorizer.api.deps import Engine, Settings
from categorizer.api.schemas import ProcessingRequest
from categorizer.api.streaming import SSE_HEADERS, stream_session
from categorizer.core.errors import AlreadyCompletedError, InvalidTransitionError, SessionBusyError
from categorizer.execution.models import SessionStatus

router = APIRouter(prefix="/processing")


@router.post("", response_class=StreamingResponse)
async def start_processing(body: ProcessingRequest, engine: Engine, settings: Settings):
    """Create a session over ``word_ids`` (or all uncategorised words) and run it."""
    config = body.to_config(
        default_model=settings.default_model,
        default_chunk_size=settings.default_chunk_size,
        default_max_retries=settings.max_retries,
    )
    word_ids = body.word_ids
    if word_ids is None:
        word_ids = await engine.reference.unprocessed_word_ids()
    session = await engine.create_session(word_ids, config, session_id=body.session_id)
    return StreamingResponse(
        stream_session(engine, session),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/{session_id}/resume", response_class=StreamingResponse)
async def resume_processing(engine: Engine, session_id: str = Path(description="Session to resume")):
    """Resume from the session's cursor with its original config snapshot."""
    session = await engine.store.require(session_id)
    if session.status == SessionStatus.COMPLETED:
        raise AlreadyCompletedError(session_id)
    if engine.store.lease_held(session):
        # Still processing, or paused with its driver finishing the chunk
        raise SessionBusyError(session_id)
    if session.is_cancelled:
        raise InvalidTransitionError("cancelled", "resume", session_id=session_id)
    return StreamingResponse(
        stream_session(engine, session, resumed=True),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
