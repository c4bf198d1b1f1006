"""Environment-driven settings for the categorizer.

Every knob the engine, gateway and oracle read lives on
``CategorizerSettings`` and can be overridden with a ``CATEGORIZER_``
prefixed environment variable or a ``.env`` file.

Examples:
    >>> CategorizerSettings(default_chunk_size=25).default_chunk_size
    25

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CategorizerSettings(BaseSettings):
    """Settings shared by the engine, CLI and API.

    Fields
    ──────
    database_url          : SQLAlchemy URL of the relational store
    log_level / log_json  : structlog configuration
    default_model         : Oracle model used when a job does not name one
    default_chunk_size    : Words per chunk (clamped to 1..50)
    max_retries           : Storage retries after the first attempt
    retry_initial_delay   : First backoff delay in seconds, doubled per retry
    inter_chunk_delay     : Throttle between chunks in seconds
    results_page_size     : Latest results returned with a session status
    openai_*              : OpenAI-compatible chat completion endpoint
    """

    model_config = SettingsConfigDict(
        env_prefix="CATEGORIZER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///categorizer.db",
        description="SQLAlchemy-style connection URL",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Engine ───────────────────────────────────────────────────
    default_model: str = "gpt-4o-mini"
    default_chunk_size: int = Field(default=10, ge=1, le=50)
    max_retries: int = Field(default=3, ge=0)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    inter_chunk_delay: float = Field(default=0.1, ge=0)
    results_page_size: int = Field(default=50, ge=1)

    # ── Oracle ───────────────────────────────────────────────────
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: str | None = None
    openai_timeout: float = 30.0
