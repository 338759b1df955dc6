"""Unit tests for the retry/timeout executor."""

import asyncio
import logging

import pytest

from imgrouter.core.config import ProviderSettings
from imgrouter.core.retry import RetryExecutor, RetryPolicy, is_retryable
from imgrouter.utils.exceptions import (
    AuthenticationError,
    PollingTimeoutError,
    RequestTimeoutError,
    ServerError,
)


class Script:
    """Zero-argument coroutine factory that raises scripted errors before succeeding."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "done"


@pytest.mark.unit
class TestRetryPolicy:
    def test_backoff_doubles_and_caps(self):
        p = RetryPolicy(base_delay=1.0, max_delay=5.0)
        assert [p.backoff(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_from_settings(self):
        s = ProviderSettings(timeout=12.0, max_retries=4, base_delay=0.5, max_delay=3.0)
        p = RetryPolicy.from_settings(s)
        assert (p.max_attempts, p.timeout, p.base_delay, p.max_delay) == (4, 12.0, 0.5, 3.0)

    def test_is_retryable(self):
        assert is_retryable(ServerError("x")) is True
        assert is_retryable(AuthenticationError("x")) is False
        assert is_retryable(ValueError("x")) is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestRetryExecutor:
    async def test_success_first_try(self, sleep):
        op = Script()
        assert await RetryExecutor(RetryPolicy(), sleep=sleep).run(op) == "done"
        assert op.calls == 1
        assert sleep.calls == []

    async def test_retries_transient_then_succeeds(self, sleep):
        op = Script(ServerError("503"), ServerError("503"))
        executor = RetryExecutor(RetryPolicy(max_attempts=3, base_delay=1.0), sleep=sleep)
        assert await executor.run(op, "p.generate") == "done"
        assert op.calls == 3
        assert sleep.calls == [1.0, 2.0]

    async def test_gives_up_after_max_attempts(self, sleep):
        op = Script(ServerError("a"), ServerError("b"), ServerError("c"))
        executor = RetryExecutor(RetryPolicy(max_attempts=2), sleep=sleep)
        with pytest.raises(ServerError, match="b"):
            await executor.run(op)
        assert op.calls == 2
        assert len(sleep.calls) == 1

    async def test_non_retryable_propagates_immediately(self, sleep):
        op = Script(AuthenticationError("bad key"))
        with pytest.raises(AuthenticationError):
            await RetryExecutor(RetryPolicy(max_attempts=5), sleep=sleep).run(op)
        assert op.calls == 1
        assert sleep.calls == []

    async def test_polling_timeout_is_not_retried(self, sleep):
        op = Script(PollingTimeoutError("gave up"))
        with pytest.raises(PollingTimeoutError):
            await RetryExecutor(RetryPolicy(max_attempts=3), sleep=sleep).run(op)
        assert op.calls == 1

    async def test_attempt_deadline_raises_timeout(self, sleep):
        async def hang():
            await asyncio.sleep(10)

        executor = RetryExecutor(RetryPolicy(max_attempts=1, timeout=0.01), sleep=sleep)
        with pytest.raises(RequestTimeoutError, match="slow.op timed out"):
            await executor.run(hang, "slow.op")

    async def test_timeout_is_retried(self, sleep):
        calls = 0

        async def first_hangs():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(10)
            return "second"

        executor = RetryExecutor(RetryPolicy(max_attempts=2, timeout=0.01), sleep=sleep)
        assert await executor.run(first_hangs) == "second"
        assert calls == 2

    async def test_cancellation_propagates(self, sleep):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.Event().wait()

        executor = RetryExecutor(RetryPolicy(max_attempts=3, timeout=60), sleep=sleep)
        task = asyncio.create_task(executor.run(hang))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert sleep.calls == []

    async def test_failed_attempts_are_logged(self, sleep, caplog):
        op = Script(ServerError("503"))
        with caplog.at_level(logging.INFO, logger="imgrouter"):
            await RetryExecutor(RetryPolicy(max_attempts=2), sleep=sleep).run(op, "p.generate")
        events = [r for r in caplog.records if getattr(r, "event", None) == "attempt_failed"]
        assert len(events) == 1
        assert events[0].fields["operation"] == "p.generate"
        assert events[0].fields["attempt"] == "1/2"
        assert events[0].fields["retry_in"] == 1.0
