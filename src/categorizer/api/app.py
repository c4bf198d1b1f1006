"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers and the lifespan
that owns the process-wide gateway, classifier and engine.

Manifesto:
    The app factory is the single composition root. The gateway is
    constructed here and injected everywhere else; nothing reaches for a
    global database client.

Tags:
    api, app-factory, composition-root, FastAPI
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from categorizer.api.deps import get_settings
from categorizer.api.middleware.errors import categorizer_error_handler, unhandled_exception_handler
from categorizer.api.middleware.request_id import RequestIDMiddleware
from categorizer.api.settings import ApiSettings
from categorizer.core.errors import CategorizerError
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.logging import get_logger
from categorizer.execution.engine import JobEngine
from categorizer.oracle.openai import OpenAIClassifier
from categorizer.oracle.protocol import Classifier

log = get_logger("categorizer.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the gateway, ensure the schema, build the engine; close on shutdown."""
    settings: ApiSettings = app.state.settings
    log.info("api.starting", version=app.version)

    gateway = app.state.gateway or PersistenceGateway(
        settings.database_url,
        max_retries=settings.max_retries,
        initial_delay=settings.retry_initial_delay,
    )
    await gateway.open()
    await gateway.create_schema()

    classifier = app.state.classifier
    owned_classifier = None
    if classifier is None:
        owned_classifier = OpenAIClassifier(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout,
        )
        classifier = owned_classifier

    app.state.gateway = gateway
    app.state.engine = JobEngine(gateway, classifier, inter_chunk_delay=settings.inter_chunk_delay)

    try:
        yield
    finally:
        if owned_classifier is not None:
            await owned_classifier.aclose()
        await gateway.close()
        log.info("api.stopped")


def create_app(
    *,
    settings: ApiSettings | None = None,
    gateway: PersistenceGateway | None = None,
    classifier: Classifier | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : ApiSettings | None
        Override settings (tests). When ``None`` the cached singleton from
        :func:`get_settings` is used.
    gateway, classifier
        Pre-built collaborators (tests). When ``None`` they are built from
        settings at startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.state.gateway = gateway
    app.state.classifier = classifier
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(CategorizerError, categorizer_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from categorizer.api.routers import health, processing, sessions

    prefix = settings.api_prefix
    app.include_router(health.router, prefix=prefix, tags=["health"])
    app.include_router(processing.router, prefix=prefix, tags=["processing"])
    app.include_router(sessions.router, prefix=prefix, tags=["sessions"])

    return app
