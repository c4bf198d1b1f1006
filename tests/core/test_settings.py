"""Tests for CategorizerSettings and ApiSettings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from categorizer.api.settings import ApiSettings
from categorizer.core.settings import CategorizerSettings


class TestCategorizerSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CATEGORIZER_DATABASE_URL", raising=False)
        settings = CategorizerSettings(_env_file=None)
        assert settings.database_url == "sqlite:///categorizer.db"
        assert settings.default_chunk_size == 10
        assert settings.max_retries == 3
        assert settings.inter_chunk_delay == 0.1
        assert settings.openai_api_key is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CATEGORIZER_DATABASE_URL", "sqlite:///other.db")
        monkeypatch.setenv("CATEGORIZER_DEFAULT_CHUNK_SIZE", "25")
        monkeypatch.setenv("CATEGORIZER_OPENAI_API_KEY", "sk-env")
        settings = CategorizerSettings(_env_file=None)
        assert settings.database_url == "sqlite:///other.db"
        assert settings.default_chunk_size == 25
        assert settings.openai_api_key == "sk-env"

    @pytest.mark.parametrize("field,value", [("default_chunk_size", 0), ("default_chunk_size", 51), ("max_retries", -1)])
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            CategorizerSettings(_env_file=None, **{field: value})


class TestApiSettings:
    def test_inherits_core_settings(self, monkeypatch):
        monkeypatch.setenv("CATEGORIZER_INTER_CHUNK_DELAY", "0")
        settings = ApiSettings(_env_file=None)
        assert settings.inter_chunk_delay == 0
        assert settings.api_prefix == "/api/v1"
        assert settings.port == 8000
