"""
Sessions router: inspect and control processing sessions.

Endpoints:
    GET    /sessions                       List sessions (status filter, limit/offset)
    POST   /sessions                       Create a session without running it
    GET    /sessions/{session_id}          Session, latest results and derived stats
    POST   /sessions/{session_id}/pause    Pause a processing session
    POST   /sessions/{session_id}/cancel   Cancel (status failed, not resumable)
    POST   /sessions/{session_id}/reset    Back to pending, results deleted
    DELETE /sessions/{session_id}          Delete a non-processing session
    GET    /sessions/{session_id}/analytics Breakdowns over the result ledger

Control misuse (e.g. pausing a pending session) is a 409 and changes nothing.
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from categorizer.api.deps import Page, Reference, Settings, Store
from categorizer.api.schemas import (
    AnalyticsResponse,
    DeleteResponse,
    PageMeta,
    ProcessingRequest,
    ResultSchema,
    SessionDetailResponse,
    SessionListItem,
    SessionListResponse,
    SessionSchema,
    SessionSummary,
)
from categorizer.execution.metrics import build_analytics, session_summary
from categorizer.execution.models import SessionStatus

router = APIRouter(prefix="/sessions")


@router.get("", response_model=SessionListResponse)
async def list_sessions(store: Store, page: Page, status: SessionStatus | None = Query(None)):
    """List sessions, newest first."""
    rows, total = await store.list_sessions(status=status, page=page)
    items = [
        SessionListItem(**SessionSchema.from_session(session).model_dump(), result_count=count)
        for session, count in rows
    ]
    return SessionListResponse(
        sessions=items,
        page=PageMeta(total=total, limit=page.limit, offset=page.offset, has_more=page.has_more(total)),
    )


@router.post("", response_model=SessionSchema, status_code=201)
async def create_session(body: ProcessingRequest, store: Store, reference: Reference, settings: Settings):
    config = body.to_config(
        default_model=settings.default_model,
        default_chunk_size=settings.default_chunk_size,
        default_max_retries=settings.max_retries,
    )
    word_ids = body.word_ids
    if word_ids is None:
        word_ids = await reference.unprocessed_word_ids()
    session = await store.create(word_ids, config, session_id=body.session_id)
    return SessionSchema.from_session(session)


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: str,
    store: Store,
    settings: Settings,
    limit: int | None = Query(None, ge=1, le=1000, description="Latest results to include"),
):
    session = await store.require(session_id)
    results = await store.latest_results(session_id, limit or settings.results_page_size)
    return SessionDetailResponse(
        session=SessionSchema.from_session(session),
        results=[ResultSchema.from_result(r) for r in results],
        stats=SessionSummary(**session_summary(session)),
    )


@router.post("/{session_id}/pause", response_model=SessionSchema)
async def pause_session(session_id: str, store: Store):
    return SessionSchema.from_session(await store.pause(session_id))


@router.post("/{session_id}/cancel", response_model=SessionSchema)
async def cancel_session(session_id: str, store: Store):
    return SessionSchema.from_session(await store.cancel(session_id))


@router.post("/{session_id}/reset", response_model=SessionSchema)
async def reset_session(session_id: str, store: Store):
    return SessionSchema.from_session(await store.reset(session_id))


@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(session_id: str, store: Store):
    await store.delete(session_id)
    return DeleteResponse(session_id=session_id)


@router.get("/{session_id}/analytics", response_model=AnalyticsResponse)
async def session_analytics(session_id: str, store: Store):
    session = await store.require(session_id)
    results = await store.results(session_id)
    return AnalyticsResponse(**build_analytics(session, results))
