"""
FastAPI dependency injection: shared singletons and per-request factories.

The gateway and classifier are built once by the app lifespan and parked on
``app.state``; routers reach them through the aliases at the bottom::

    from categorizer.api.deps import Engine, Store

    @router.get("/sessions/{session_id}")
    async def get_session(session_id: str, store: Store):
        ...
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Query, Request

from categorizer.api.settings import ApiSettings
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.repositories import PageSlice, ReferenceRepository, SessionStore
from categorizer.execution.engine import JobEngine

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> ApiSettings:
    """Cached settings, loaded once per process."""
    return ApiSettings()


# ── App-state singletons ─────────────────────────────────────────────────


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.gateway


def get_engine(request: Request) -> JobEngine:
    return request.app.state.engine


def get_store(engine: Annotated[JobEngine, Depends(get_engine)]) -> SessionStore:
    return engine.store


def get_reference(engine: Annotated[JobEngine, Depends(get_engine)]) -> ReferenceRepository:
    return engine.reference


# ── Pagination parameters (per-request) ─────────────────────────────────


def get_page(
    limit: int = Query(20, ge=1, le=500, description="Items per page"),
    offset: int = Query(0, ge=0, description="Items to skip"),
) -> PageSlice:
    return PageSlice(limit=limit, offset=offset)


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[ApiSettings, Depends(get_settings)]
Gateway = Annotated[PersistenceGateway, Depends(get_gateway)]
Engine = Annotated[JobEngine, Depends(get_engine)]
Store = Annotated[SessionStore, Depends(get_store)]
Reference = Annotated[ReferenceRepository, Depends(get_reference)]
Page = Annotated[PageSlice, Depends(get_page)]
