"""
Health router.

Endpoints:
    GET /health            Liveness
    GET /health/database   Connectivity check plus reference data counts
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from categorizer.api.deps import Gateway, Reference, Settings
from categorizer.api.schemas import DatabaseHealthResponse
from categorizer.core.logging import get_logger

router = APIRouter(prefix="/health")
log = get_logger(__name__)


@router.get("")
async def liveness(settings: Settings) -> dict[str, str]:
    return {"status": "ok", "version": settings.api_version}


@router.get("/database", response_model=DatabaseHealthResponse)
async def database_health(gateway: Gateway, reference: Reference):
    """Ping the store and count words, languages and categories."""
    try:
        await gateway.ping()
        counts = await reference.counts()
    except Exception as exc:
        log.warning("health.database_unreachable", error=str(exc))
        body = DatabaseHealthResponse(status="unhealthy", database="disconnected", error=str(exc))
        return JSONResponse(status_code=503, content=body.model_dump())
    return DatabaseHealthResponse(status="healthy", database="connected", counts=counts)
