"""Tests for the categorizer REST + SSE API.

Every test runs the real app factory against a temporary SQLite database
seeded with English/Spanish and three categories; the oracle is a
:class:`StaticClassifier`.
"""

from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from categorizer.api import create_app
from categorizer.api.settings import ApiSettings
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.repositories import ReferenceRepository, SessionStore
from categorizer.oracle.mock import StaticClassifier

PREFIX = "/api/v1"
CATEGORIES = ["Animals", "Colors", "Food"]


def _seed(db_url: str, words: list[str]) -> list[int]:
    async def seed() -> list[int]:
        async with PersistenceGateway(db_url) as gateway:
            await gateway.create_schema()
            reference = ReferenceRepository(gateway)
            await reference.add_language("English", "en", 1)
            await reference.add_language("Spanish", "es", 2)
            await reference.add_categories(CATEGORIES)
            return await reference.add_words(words)

    return asyncio.run(seed())


def _pause_mid_run(db_url: str, session_id: str) -> None:
    """Leave ``session_id`` paused while its driver still holds the lease."""

    async def hold() -> None:
        async with PersistenceGateway(db_url) as gateway:
            store = SessionStore(gateway)
            await store.claim(session_id)
            await store.pause(session_id)

    asyncio.run(hold())


def _events(response) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]


@pytest.fixture
def word_ids(db_url) -> list[int]:
    return _seed(db_url, ["perro", "gato", "rojo", "pan", "agua"])


@pytest.fixture
def classifier() -> StaticClassifier:
    return StaticClassifier(language="Spanish", category="Animals")


@pytest.fixture
def client(db_url, word_ids, classifier):
    settings = ApiSettings(database_url=db_url, inter_chunk_delay=0, retry_initial_delay=0.01)
    app = create_app(settings=settings, classifier=classifier)
    with TestClient(app) as c:
        yield c


def _create(client, **body) -> dict:
    resp = client.post(f"{PREFIX}/sessions", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health ───────────────────────────────────────────────────


class TestHealth:
    def test_liveness(self, client):
        resp = client.get(f"{PREFIX}/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_database(self, client):
        resp = client.get(f"{PREFIX}/health/database")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["counts"]["categories"] == 3

    def test_database_down(self, client, monkeypatch):
        async def broken_ping():
            raise RuntimeError("connection refused")

        monkeypatch.setattr(client.app.state.gateway, "ping", broken_ping)
        resp = client.get(f"{PREFIX}/health/database")
        assert resp.status_code == 503
        assert resp.json()["database"] == "disconnected"

    def test_request_id_echoed(self, client):
        resp = client.get(f"{PREFIX}/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


# ── Processing stream ────────────────────────────────────────


class TestProcessingStream:
    def test_stream_runs_to_completion(self, client, word_ids):
        resp = client.post(f"{PREFIX}/processing", json={"wordIds": word_ids, "chunkSize": 2})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        events = _events(resp)
        types = [e["type"] for e in events]
        assert types[0] == "started"
        assert types[-1] == "complete"
        assert types.count("result") == 5
        assert types.count("chunk_complete") == 3
        assert [e["data"]["chunkIndex"] for e in events if e["type"] == "chunk_complete"] == [1, 2, 3]
        assert events[0]["data"]["config"]["chunkSize"] == 2
        assert "resumedFrom" not in events[0]["data"]

        session_id = events[0]["sessionId"]
        assert all(e["sessionId"] == session_id for e in events)
        final = events[-1]["data"]["stats"]
        assert final["processedWords"] == final["totalWords"] == 5

        detail = client.get(f"{PREFIX}/sessions/{session_id}").json()
        assert detail["session"]["status"] == "completed"

    def test_result_payload(self, client, word_ids):
        events = _events(client.post(f"{PREFIX}/processing", json={"wordIds": word_ids[:1]}))
        (result,) = [e["data"] for e in events if e["type"] == "result"]
        assert result["originalWord"] == "perro"
        assert result["detectedLanguage"] == "Spanish"
        assert result["assignedCategory"] == "Animals"
        assert result["success"] is True

    def test_defaults_to_uncategorised_words(self, client):
        events = _events(client.post(f"{PREFIX}/processing", json={}))
        assert events[-1]["type"] == "complete"
        assert events[-1]["data"]["stats"]["totalWords"] == 5

    def test_empty_word_list_rejected(self, client):
        resp = client.post(f"{PREFIX}/processing", json={"wordIds": []})
        assert resp.status_code == 400
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["code"] == "VALIDATION_FAILED"

    def test_unknown_mode_rejected(self, client, word_ids):
        resp = client.post(f"{PREFIX}/processing", json={"wordIds": word_ids, "mode": "turbo"})
        assert resp.status_code == 400

    def test_parallel_alias(self, client, word_ids):
        events = _events(client.post(f"{PREFIX}/processing", json={"wordIds": word_ids, "mode": "parallel"}))
        assert events[0]["data"]["config"]["mode"] == "concurrent"
        assert events[-1]["type"] == "complete"

    def test_duplicate_session_id(self, client, word_ids):
        _create(client, wordIds=word_ids, sessionId="session_fixed")
        resp = client.post(f"{PREFIX}/processing", json={"wordIds": word_ids, "sessionId": "session_fixed"})
        assert resp.status_code == 409


# ── Resume ───────────────────────────────────────────────────


class TestResume:
    def test_resume_pending_session(self, client, word_ids):
        created = _create(client, wordIds=word_ids, chunkSize=3)

        events = _events(client.post(f"{PREFIX}/processing/{created['id']}/resume"))

        assert events[0]["type"] == "started"
        assert events[0]["data"]["resumedFrom"] == {"chunk": 0, "processedWords": 0}
        assert events[-1]["type"] == "complete"

    def test_resume_completed_rejected(self, client, word_ids):
        events = _events(client.post(f"{PREFIX}/processing", json={"wordIds": word_ids}))
        session_id = events[0]["sessionId"]

        resp = client.post(f"{PREFIX}/processing/{session_id}/resume")
        assert resp.status_code == 409
        assert resp.json()["code"] == "ALREADY_COMPLETE"

    def test_resume_cancelled_rejected(self, client, word_ids):
        created = _create(client, wordIds=word_ids)
        client.post(f"{PREFIX}/sessions/{created['id']}/cancel")

        resp = client.post(f"{PREFIX}/processing/{created['id']}/resume")
        assert resp.status_code == 409
        assert resp.json()["code"] == "INVALID_STATE"

    def test_resume_waits_for_paused_driver(self, client, db_url, word_ids):
        created = _create(client, wordIds=word_ids)
        _pause_mid_run(db_url, created["id"])

        resp = client.post(f"{PREFIX}/processing/{created['id']}/resume")
        assert resp.status_code == 409
        assert resp.json()["code"] == "CONFLICT"

        reset = client.post(f"{PREFIX}/sessions/{created['id']}/reset")
        assert reset.status_code == 409
        detail = client.get(f"{PREFIX}/sessions/{created['id']}").json()
        assert detail["session"]["status"] == "paused"

    def test_resume_unknown_session(self, client):
        resp = client.post(f"{PREFIX}/processing/session_nope/resume")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"


# ── Session CRUD and control ─────────────────────────────────


class TestSessions:
    def test_create_session(self, client, word_ids):
        created = _create(client, wordIds=[word_ids[0], word_ids[0], word_ids[1]], chunkSize=1)
        assert created["status"] == "pending"
        assert created["total_words"] == 2
        assert created["total_chunks"] == 2
        assert created["can_resume"] is True
        assert "resume_data" not in created

    def test_chunk_size_clamped(self, client, word_ids):
        assert _create(client, wordIds=word_ids, chunkSize=500)["chunk_size"] == 50

    def test_list_and_filter(self, client, word_ids):
        _create(client, wordIds=word_ids)
        second = _create(client, wordIds=word_ids)
        client.post(f"{PREFIX}/sessions/{second['id']}/cancel")

        everything = client.get(f"{PREFIX}/sessions").json()
        assert everything["page"]["total"] == 2
        failed = client.get(f"{PREFIX}/sessions", params={"status": "failed"}).json()
        assert [s["id"] for s in failed["sessions"]] == [second["id"]]

    def test_list_pagination(self, client, word_ids):
        for _ in range(3):
            _create(client, wordIds=word_ids)
        page = client.get(f"{PREFIX}/sessions", params={"limit": 2, "offset": 0}).json()
        assert len(page["sessions"]) == 2
        assert page["page"]["has_more"] is True

    def test_get_session_detail(self, client, word_ids):
        events = _events(client.post(f"{PREFIX}/processing", json={"wordIds": word_ids}))
        session_id = events[0]["sessionId"]

        detail = client.get(f"{PREFIX}/sessions/{session_id}", params={"limit": 2}).json()
        assert detail["session"]["processed_words"] == 5
        assert len(detail["results"]) == 2
        assert detail["stats"]["success_rate"] == 100.0
        assert detail["stats"]["completion_rate"] == 100.0

    def test_get_unknown_session(self, client):
        resp = client.get(f"{PREFIX}/sessions/session_nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["title"] == "Not Found"
        assert body["instance"] == f"{PREFIX}/sessions/session_nope"

    def test_pause_pending_is_conflict(self, client, word_ids):
        created = _create(client, wordIds=word_ids)
        resp = client.post(f"{PREFIX}/sessions/{created['id']}/pause")
        assert resp.status_code == 409
        assert resp.json()["code"] == "INVALID_STATE"
        assert client.get(f"{PREFIX}/sessions/{created['id']}").json()["session"]["status"] == "pending"

    def test_cancel(self, client, word_ids):
        created = _create(client, wordIds=word_ids)
        cancelled = client.post(f"{PREFIX}/sessions/{created['id']}/cancel").json()
        assert cancelled["status"] == "failed"
        assert cancelled["error"] == "Cancelled by user"
        assert cancelled["can_resume"] is False

    def test_reset_completed(self, client, word_ids):
        events = _events(client.post(f"{PREFIX}/processing", json={"wordIds": word_ids}))
        session_id = events[0]["sessionId"]

        reset = client.post(f"{PREFIX}/sessions/{session_id}/reset").json()
        assert reset["status"] == "pending"
        assert reset["processed_words"] == 0
        assert reset["last_processed_word_id"] is None
        assert client.get(f"{PREFIX}/sessions/{session_id}").json()["results"] == []

    def test_delete(self, client, word_ids):
        created = _create(client, wordIds=word_ids)
        resp = client.delete(f"{PREFIX}/sessions/{created['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"deleted": True, "session_id": created["id"]}
        assert client.get(f"{PREFIX}/sessions/{created['id']}").status_code == 404

    def test_analytics(self, client, word_ids):
        events = _events(client.post(f"{PREFIX}/processing", json={"wordIds": word_ids}))
        session_id = events[0]["sessionId"]

        data = client.get(f"{PREFIX}/sessions/{session_id}/analytics").json()
        assert data["summary"]["processed_words"] == 5
        assert data["breakdowns"]["languages"] == {"Spanish": 5}
        assert data["breakdowns"]["categories"] == {"Animals": 5}
        assert data["cost"]["total_tokens_used"] > 0


# ── Error handling ───────────────────────────────────────────


class TestErrors:
    def test_unexpected_error_is_problem_detail(self, db_url, word_ids, classifier, monkeypatch):
        settings = ApiSettings(database_url=db_url, inter_chunk_delay=0)
        app = create_app(settings=settings, classifier=classifier)
        with TestClient(app, raise_server_exceptions=False) as c:

            async def explode(**kwargs):
                raise RuntimeError("secret internals")

            monkeypatch.setattr(c.app.state.engine.store, "list_sessions", explode)
            resp = c.get(f"{PREFIX}/sessions")

        assert resp.status_code == 500
        body = resp.json()
        assert body["code"] == "INTERNAL"
        assert "secret" not in body["detail"]
