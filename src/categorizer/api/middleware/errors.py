"""
Error-handling middleware: maps categorizer errors to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from categorizer.api.schemas import ProblemDetail
from categorizer.core.errors import CategorizerError
from categorizer.core.logging import get_logger

log = get_logger(__name__)

# ── Error code → HTTP status mapping ─────────────────────────────────────

ERROR_CODE_TO_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INVALID_STATE": 409,
    "ALREADY_COMPLETE": 409,
    "VALIDATION_FAILED": 400,
    "TRANSIENT": 503,
    "UNAVAILABLE": 503,
    "ORACLE_FAILED": 502,
    "CONFIG": 500,
    "INTERNAL": 500,
}

TITLES: dict[int, str] = {
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def status_for_error_code(code: str) -> int:
    """Resolve an error code to HTTP status, defaulting to 500."""
    return ERROR_CODE_TO_STATUS.get(code, 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    code: str | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance, code=code)
    return JSONResponse(
        status_code=status,
        content=body.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


async def categorizer_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map a :class:`CategorizerError` onto its status via ``exc.code``."""
    assert isinstance(exc, CategorizerError)
    status = status_for_error_code(exc.code)
    if status >= 500:
        log.error("api.error", path=request.url.path, **exc.to_dict())
    else:
        log.info("api.rejected", path=request.url.path, code=exc.code, message=exc.message)
    return problem_response(
        status=status,
        title=TITLES.get(status, "Error"),
        detail=exc.message,
        instance=str(request.url.path),
        code=exc.code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: 500 with ProblemDetail."""
    log.exception("api.unhandled", path=request.url.path, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url.path),
        code="INTERNAL",
    )
