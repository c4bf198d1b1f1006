"""Tests for the job event union and its wire form."""

from __future__ import annotations

import pytest

from categorizer.execution.events import (
    EVENT_TYPES,
    ChunkCompleteEvent,
    CompleteEvent,
    ErrorEvent,
    ResultEvent,
    StartedEvent,
    StatusEvent,
    is_terminal,
)
from categorizer.execution.models import ProcessingResult, ProcessingStats


class TestWireForm:
    def test_envelope(self):
        data = CompleteEvent(session_id="s1", stats=ProcessingStats(total_words=5, processed_words=5)).to_dict()
        assert set(data) == {"type", "sessionId", "data", "timestamp"}
        assert data["type"] == "complete"
        assert data["sessionId"] == "s1"
        assert data["data"]["stats"]["processedWords"] == 5

    def test_started_with_resume_context(self):
        event = StartedEvent(session_id="s", config={"chunkSize": 3}, resumed_from={"chunk": 2, "processedWords": 6})
        data = event.to_dict()["data"]
        assert data["config"] == {"chunkSize": 3}
        assert data["resumedFrom"] == {"chunk": 2, "processedWords": 6}

    def test_started_fresh_has_no_resume_context(self):
        assert "resumedFrom" not in StartedEvent(session_id="s").to_dict()["data"]

    def test_result_payload_is_camel_case(self):
        result = ProcessingResult(
            session_id="s",
            word_id=7,
            original_word="hola",
            success=True,
            detected_language="Spanish",
            english_translation="hello",
            assigned_category=None,
            language_matched=True,
        )
        data = ResultEvent(session_id="s", result=result, processed_words=1, total_words=4).to_dict()["data"]
        assert data["wordId"] == 7
        assert data["originalWord"] == "hola"
        assert data["englishTranslation"] == "hello"
        assert data["languageMatched"] is True
        assert data["categoryMatched"] is False
        assert data["processedWords"] == 1

    def test_result_event_requires_a_result(self):
        with pytest.raises(TypeError):
            ResultEvent(session_id="s")

    def test_chunk_complete_is_one_based(self):
        data = ChunkCompleteEvent(session_id="s", chunk_index=1, total_chunks=2).to_dict()["data"]
        assert data["chunkIndex"] == 1
        assert data["totalChunks"] == 2

    def test_error_payload(self):
        data = ErrorEvent(session_id="s", message="Cancelled by user", can_resume=False).to_dict()["data"]
        assert data == {"message": "Cancelled by user", "canResume": False}

    def test_status_payload_omits_empty_fields(self):
        assert StatusEvent(session_id="s", status="paused").to_dict()["data"] == {"status": "paused"}


class TestUnion:
    def test_closed_set_of_types(self):
        assert EVENT_TYPES == {"started", "status", "result", "chunk_complete", "complete", "error"}

    def test_terminal(self):
        assert is_terminal(CompleteEvent(session_id="s"))
        assert is_terminal(ErrorEvent(session_id="s"))
        assert not is_terminal(StatusEvent(session_id="s"))
        assert not is_terminal(StartedEvent(session_id="s"))
