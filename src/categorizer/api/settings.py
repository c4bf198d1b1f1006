"""
API-specific settings.

Extends :class:`~categorizer.core.settings.CategorizerSettings` with the
knobs that govern the HTTP transport (bind address, prefix, CORS). Values
come from ``CATEGORIZER_`` environment variables or a ``.env`` file.
"""

from __future__ import annotations

from pydantic import Field

from categorizer.core.settings import CategorizerSettings


class ApiSettings(CategorizerSettings):
    """Settings for the categorizer REST API."""

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")
    debug: bool = Field(default=False, description="Expose exception text in 500 responses")

    # ── API ──────────────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all endpoints")
    api_title: str = Field(default="categorizer API", description="OpenAPI title")
    api_version: str = Field(default="0.4.0", description="OpenAPI version string")

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")
