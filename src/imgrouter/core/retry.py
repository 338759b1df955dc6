"""
Retry and timeout execution for remote calls.

Every attempt runs under its own deadline (``asyncio.timeout``), so the timer
is released whether the operation finishes or is abandoned. Errors flagged
``retryable`` are replayed with exponential backoff; anything else propagates
immediately. Cancellation of the calling task is never swallowed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from imgrouter.core.config import ProviderSettings
from imgrouter.logging_config import get_logger, log_event
from imgrouter.utils.exceptions import ImgrouterError, RequestTimeoutError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Deadline and backoff for one kind of remote call."""

    max_attempts: int = 3
    timeout: float = 60.0  # seconds, per attempt
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_retries,
            timeout=settings.timeout,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
        )

    def backoff(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based): base * 2**(attempt-1), capped."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ImgrouterError) and error.retryable


class RetryExecutor:
    """Runs an async operation with a per-attempt deadline and bounded retries."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run_once(self, operation: Callable[[], Awaitable[T]], operation_name: str) -> T:
        """Run one attempt under the policy timeout; raises RequestTimeoutError on expiry."""
        timeout = self.policy.timeout
        try:
            async with asyncio.timeout(timeout):
                return await operation()
        except TimeoutError as e:
            raise RequestTimeoutError(
                f"{operation_name} timed out after {timeout:g} seconds"
            ) from e

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Run operation, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            operation_name: Label used in log events and timeout messages

        Returns:
            The operation's result

        Raises:
            The last error once attempts are exhausted, or the first
            non-retryable error.
        """
        attempts = max(1, self.policy.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await self.run_once(operation, operation_name)
            except Exception as e:
                retry = is_retryable(e) and attempt < attempts
                delay = self.policy.backoff(attempt) if retry else None
                log_event(
                    logger,
                    logging.INFO if retry else logging.WARNING,
                    "attempt_failed",
                    operation=operation_name,
                    attempt=f"{attempt}/{attempts}",
                    error=type(e).__name__,
                    detail=str(e) or None,
                    retry_in=delay,
                )
                if not retry:
                    raise
                await self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryExecutor", "RetryPolicy", "is_retryable"]
