"""Tests for backoff strategies and the gateway retry loop."""

from __future__ import annotations

import time

import pytest
from sqlalchemy import exc as sa_exc

from categorizer.core.errors import MaxRetriesExceededError, ValidationError
from categorizer.core.gateway import PersistenceGateway
from categorizer.core.retry import ExponentialBackoff, NoRetry


class TestExponentialBackoff:
    def test_doubles(self):
        backoff = ExponentialBackoff(base_delay=0.5)
        assert [backoff.next_delay(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]

    def test_capped(self):
        backoff = ExponentialBackoff(base_delay=10, max_delay=15)
        assert backoff.next_delay(3) == 15

    def test_jitter_stays_in_range(self):
        backoff = ExponentialBackoff(base_delay=1.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 0.75 <= backoff.next_delay(0) <= 1.25

    def test_should_retry(self):
        backoff = ExponentialBackoff(max_retries=2)
        assert backoff.should_retry(0)
        assert backoff.should_retry(1)
        assert not backoff.should_retry(2)

    def test_no_retry(self):
        assert not NoRetry().should_retry(0)
        assert NoRetry().next_delay(0) == 0.0


class _Flaky:
    """Operation failing ``failures`` times with ``error`` before succeeding."""

    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def _locked() -> sa_exc.OperationalError:
    orig = Exception("database is locked")
    orig.sqlite_errorname = "SQLITE_BUSY"
    return sa_exc.OperationalError("UPDATE", {}, orig)


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_two_retryable_failures_then_success(self):
        gateway = PersistenceGateway("sqlite://")
        op = _Flaky(2, _locked())

        started = time.monotonic()
        result = await gateway.with_retry(op, max_retries=3, initial_delay=0.05)
        elapsed = time.monotonic() - started

        assert result == "ok"
        assert op.calls == 3
        # 0.05 + 0.10
        assert elapsed >= 0.15

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        gateway = PersistenceGateway("sqlite://")
        op = _Flaky(5, ValidationError("bad input"))

        with pytest.raises(ValidationError):
            await gateway.with_retry(op, max_retries=3, initial_delay=0.01)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_exhaustion_chains_last_failure(self):
        gateway = PersistenceGateway("sqlite://")
        error = ConnectionResetError("reset by peer")
        op = _Flaky(10, error)

        with pytest.raises(MaxRetriesExceededError) as info:
            await gateway.with_retry(op, max_retries=2, initial_delay=0.001)
        assert op.calls == 3
        assert info.value.attempts == 3
        assert info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        gateway = PersistenceGateway("sqlite://")
        op = _Flaky(1, TimeoutError())

        with pytest.raises(MaxRetriesExceededError):
            await gateway.with_retry(op, max_retries=0, initial_delay=0.001)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_connection_exhaustion_forces_reconnect(self, monkeypatch):
        gateway = PersistenceGateway("sqlite://")
        reconnects = []

        async def fake_reconnect():
            reconnects.append(True)

        monkeypatch.setattr(gateway, "_reconnect", fake_reconnect)
        op = _Flaky(1, sa_exc.TimeoutError("QueuePool limit of size 5 overflow 10 reached"))

        assert await gateway.with_retry(op, max_retries=1, initial_delay=0.001) == "ok"
        assert reconnects == [True]

    @pytest.mark.asyncio
    async def test_plain_busy_does_not_reconnect(self, monkeypatch):
        gateway = PersistenceGateway("sqlite://")
        reconnects = []

        async def fake_reconnect():
            reconnects.append(True)

        monkeypatch.setattr(gateway, "_reconnect", fake_reconnect)
        assert await gateway.with_retry(_Flaky(1, _locked()), max_retries=1, initial_delay=0.001) == "ok"
        assert reconnects == []
