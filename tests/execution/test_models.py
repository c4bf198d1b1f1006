"""Tests for job domain models and transition rules."""

from __future__ import annotations

import re

import pytest

from categorizer.core.errors import InvalidTransitionError, ValidationError
from categorizer.execution.models import (
    CANCELLED_MESSAGE,
    ProcessingConfig,
    ProcessingMode,
    ProcessingSession,
    SessionStatus,
    generate_session_id,
    validate_control,
)


class TestSessionId:
    def test_format(self):
        assert re.fullmatch(r"session_\d{13}_[0-9a-z]{9}", generate_session_id())

    def test_unique(self):
        assert len({generate_session_id() for _ in range(200)}) == 200


class TestProcessingMode:
    @pytest.mark.parametrize(
        "value,mode",
        [
            ("sequential", ProcessingMode.SEQUENTIAL),
            ("batch", ProcessingMode.SEQUENTIAL),
            ("Concurrent", ProcessingMode.CONCURRENT),
            ("parallel", ProcessingMode.CONCURRENT),
        ],
    )
    def test_parse(self, value, mode):
        assert ProcessingMode.parse(value) == mode

    def test_unknown(self):
        with pytest.raises(ValidationError):
            ProcessingMode.parse("turbo")


class TestProcessingConfig:
    @pytest.mark.parametrize("size,expected", [(0, 1), (-3, 1), (10, 10), (50, 50), (51, 50)])
    def test_chunk_size_clamped(self, size, expected):
        assert ProcessingConfig(chunk_size=size).chunk_size == expected

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            ProcessingConfig(max_retries=-1)

    def test_to_dict_camel_case(self):
        data = ProcessingConfig(mode="parallel", chunk_size=5).to_dict()
        assert data["mode"] == "concurrent"
        assert data["chunkSize"] == 5
        assert data["maxRetries"] == 3


class TestTransitions:
    @pytest.mark.parametrize(
        "action,status",
        [
            ("pause", SessionStatus.PROCESSING),
            ("cancel", SessionStatus.PENDING),
            ("cancel", SessionStatus.PAUSED),
            ("cancel", SessionStatus.PROCESSING),
            ("reset", SessionStatus.COMPLETED),
            ("reset", SessionStatus.FAILED),
            ("delete", SessionStatus.PAUSED),
        ],
    )
    def test_allowed(self, action, status):
        validate_control(action, status)

    @pytest.mark.parametrize(
        "action,status",
        [
            ("pause", SessionStatus.PENDING),
            ("pause", SessionStatus.PAUSED),
            ("cancel", SessionStatus.COMPLETED),
            ("cancel", SessionStatus.FAILED),
            ("reset", SessionStatus.PROCESSING),
            ("delete", SessionStatus.PROCESSING),
        ],
    )
    def test_rejected(self, action, status):
        with pytest.raises(InvalidTransitionError):
            validate_control(action, status)


class TestSession:
    def test_cancelled_cannot_resume(self):
        session = ProcessingSession(id="s", status=SessionStatus.FAILED, error=CANCELLED_MESSAGE)
        assert session.is_cancelled
        assert not session.can_resume

    def test_crashed_can_resume(self):
        session = ProcessingSession(id="s", status=SessionStatus.FAILED, error="disk full")
        assert session.can_resume

    def test_to_dict_snake_case_iso_dates(self):
        data = ProcessingSession(id="s").to_dict()
        assert data["status"] == "pending"
        assert data["started_at"] is None
        assert "resume_data" in data
