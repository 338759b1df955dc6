"""Unit tests for the circuit breaker."""

import asyncio
import logging

import pytest

from imgrouter.core.circuit_breaker import CircuitBreaker, CircuitState
from imgrouter.utils.exceptions import (
    CircuitOpenError,
    ContentModeratedError,
    ServerError,
    ValidationError,
)


async def _ok():
    return "ok"


async def _fail():
    raise ServerError("boom")


def _breaker(clock, threshold=3, reset_timeout=30.0):
    return CircuitBreaker("p1", failure_threshold=threshold, reset_timeout=reset_timeout, clock=clock)


async def _trip(breaker, times):
    for _ in range(times):
        with pytest.raises(ServerError):
            await breaker.call(_fail)


@pytest.mark.unit
@pytest.mark.asyncio
class TestCircuitBreakerTransitions:
    async def test_starts_closed(self, clock):
        b = _breaker(clock)
        assert b.state is CircuitState.CLOSED
        assert await b.call(_ok) == "ok"

    async def test_opens_after_threshold_consecutive_failures(self, clock):
        b = _breaker(clock, threshold=3)
        await _trip(b, 2)
        assert b.state is CircuitState.CLOSED
        await _trip(b, 1)
        assert b.state is CircuitState.OPEN
        assert b.failure_count == 3

    async def test_success_resets_consecutive_count(self, clock):
        b = _breaker(clock, threshold=3)
        await _trip(b, 2)
        await b.call(_ok)
        await _trip(b, 2)
        assert b.state is CircuitState.CLOSED

    async def test_open_rejects_without_running(self, clock):
        b = _breaker(clock, threshold=1)
        await _trip(b, 1)
        ran = False

        async def op():
            nonlocal ran
            ran = True

        with pytest.raises(CircuitOpenError) as exc_info:
            await b.call(op)
        assert ran is False
        assert exc_info.value.breaker == "p1"

    async def test_reports_half_open_after_reset_timeout(self, clock):
        b = _breaker(clock, threshold=1, reset_timeout=30.0)
        await _trip(b, 1)
        clock.advance(29.9)
        assert b.state is CircuitState.OPEN
        clock.advance(0.1)
        assert b.state is CircuitState.HALF_OPEN

    async def test_half_open_success_closes(self, clock):
        b = _breaker(clock, threshold=1)
        await _trip(b, 1)
        clock.advance(30)
        assert await b.call(_ok) == "ok"
        assert b.state is CircuitState.CLOSED
        assert b.failure_count == 0

    async def test_half_open_failure_reopens(self, clock):
        b = _breaker(clock, threshold=3)
        await _trip(b, 3)
        clock.advance(30)
        await _trip(b, 1)
        assert b.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await b.call(_ok)

    async def test_half_open_admits_single_trial(self, clock):
        b = _breaker(clock, threshold=1)
        await _trip(b, 1)
        clock.advance(30)
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "trial"

        trial = asyncio.create_task(b.call(slow))
        await asyncio.sleep(0)
        with pytest.raises(CircuitOpenError):
            await b.call(_ok)
        gate.set()
        assert await trial == "trial"
        assert b.state is CircuitState.CLOSED

    async def test_cancelled_trial_releases_slot(self, clock):
        b = _breaker(clock, threshold=1)
        await _trip(b, 1)
        clock.advance(30)

        async def hang():
            await asyncio.Event().wait()

        trial = asyncio.create_task(b.call(hang))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial
        assert await b.call(_ok) == "ok"


@pytest.mark.unit
@pytest.mark.asyncio
class TestCircuitBreakerExclusions:
    async def test_validation_error_not_counted(self, clock):
        b = _breaker(clock, threshold=1)

        async def invalid():
            raise ValidationError("bad")

        with pytest.raises(ValidationError):
            await b.call(invalid)
        assert b.state is CircuitState.CLOSED
        assert b.failure_count == 0

    async def test_moderation_not_counted(self, clock):
        b = _breaker(clock, threshold=1)

        async def moderated():
            raise ContentModeratedError("blocked")

        with pytest.raises(ContentModeratedError):
            await b.call(moderated)
        assert b.state is CircuitState.CLOSED

    async def test_excluded_error_keeps_failure_count(self, clock):
        b = _breaker(clock, threshold=3)
        await _trip(b, 2)

        async def moderated():
            raise ContentModeratedError("blocked")

        with pytest.raises(ContentModeratedError):
            await b.call(moderated)
        assert b.failure_count == 2
        await _trip(b, 1)
        assert b.state is CircuitState.OPEN

    async def test_excluded_error_leaves_half_open_trial_available(self, clock):
        b = _breaker(clock, threshold=1)
        await _trip(b, 1)
        clock.advance(30)

        async def invalid():
            raise ValidationError("bad")

        with pytest.raises(ValidationError):
            await b.call(invalid)
        assert b.state is CircuitState.HALF_OPEN
        assert b.failure_count == 1
        assert await b.call(_ok) == "ok"
        assert b.state is CircuitState.CLOSED


@pytest.mark.unit
@pytest.mark.asyncio
class TestCircuitBreakerMisc:
    async def test_reset_closes(self, clock):
        b = _breaker(clock, threshold=1)
        await _trip(b, 1)
        b.reset()
        assert b.snapshot().state is CircuitState.CLOSED
        assert b.snapshot().failure_count == 0
        assert b.snapshot().last_failure_time is None

    async def test_state_change_is_logged(self, clock, caplog):
        b = _breaker(clock, threshold=1)
        with caplog.at_level(logging.INFO, logger="imgrouter"):
            await _trip(b, 1)
        events = [r for r in caplog.records if getattr(r, "event", None) == "circuit_state_change"]
        assert len(events) == 1
        assert events[0].fields["old_state"] is CircuitState.CLOSED
        assert events[0].fields["new_state"] is CircuitState.OPEN
        assert events[0].levelno == logging.WARNING

    async def test_passes_arguments(self, clock):
        b = _breaker(clock)

        async def add(a, b, *, c):
            return a + b + c

        assert await b.call(add, 1, 2, c=3) == 6
