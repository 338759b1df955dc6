"""
Per-provider circuit breaker.

closed --(failure_threshold consecutive failures)--> open
open --(reset_timeout elapsed since last failure)--> half-open
half-open --(trial succeeds)--> closed
half-open --(trial fails)--> open

While open, and while the single half-open trial is in flight, calls are
rejected with CircuitOpenError without running the operation. State is only
mutated synchronously between awaits, so no lock is needed under asyncio.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from imgrouter.logging_config import get_logger, log_event
from imgrouter.utils.exceptions import (
    CircuitOpenError,
    ContentModeratedError,
    RequestModeratedError,
    UnsupportedStyleError,
    ValidationError,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Errors that say nothing about the provider's health.
DEFAULT_EXCLUDED: tuple[type[BaseException], ...] = (
    ValidationError,
    UnsupportedStyleError,
    ContentModeratedError,
    RequestModeratedError,
)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class CircuitSnapshot:
    state: CircuitState
    failure_count: int
    last_failure_time: float | None


class CircuitBreaker:
    """Failure-rate gate for one provider."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        excluded: tuple[type[BaseException], ...] = DEFAULT_EXCLUDED,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.excluded = excluded
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state; an expired open circuit reports half-open."""
        if self._state is CircuitState.OPEN and self._reset_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(self.state, self._failure_count, self._last_failure_time)

    def _reset_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return self._clock() - self._last_failure_time >= self.reset_timeout

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        level = logging.WARNING if new_state is CircuitState.OPEN else logging.INFO
        log_event(
            logger,
            level,
            "circuit_state_change",
            breaker=self.name,
            old_state=old_state,
            new_state=new_state,
            failures=self._failure_count,
        )

    def _before_call(self) -> None:
        """Admit or reject a call, moving open -> half-open when the reset timeout passed."""
        if self._state is CircuitState.OPEN:
            if not self._reset_elapsed():
                raise CircuitOpenError(
                    f"Circuit breaker is open for {self.name}", breaker=self.name
                )
            self._transition(CircuitState.HALF_OPEN)
        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(
                    f"Circuit breaker for {self.name} is half-open with a trial in flight",
                    breaker=self.name,
                )
            self._trial_in_flight = True

    def record_success(self) -> None:
        self._trial_in_flight = False
        self._failure_count = 0
        self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self._trial_in_flight = False
        self._failure_count += 1
        self._last_failure_time = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _release_trial(self) -> None:
        self._trial_in_flight = False

    async def call(
        self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Run operation through the breaker.

        Raises:
            CircuitOpenError: if the circuit rejects the call (operation not run)
            Whatever operation raises; counted unless it is an excluded type
        """
        self._before_call()
        try:
            result = await operation(*args, **kwargs)
        except self.excluded:
            # Provider answered; the call says nothing about its health.
            self._release_trial()
            raise
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            # Cancelled: neither success nor failure.
            self._release_trial()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Force the breaker closed and clear its counters."""
        self._failure_count = 0
        self._last_failure_time = None
        self._trial_in_flight = False
        self._transition(CircuitState.CLOSED)
