"""
In-memory health caching for imgrouter.

This module caches each provider's last health verdict for a TTL so that
selection does not probe every provider on every request. Probes run through
the provider's circuit breaker and a short retry/timeout executor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from imgrouter.core.circuit_breaker import CircuitState
from imgrouter.core.models import HealthState, HealthStatus
from imgrouter.core.retry import RetryExecutor, RetryPolicy
from imgrouter.logging_config import get_logger, log_event
from imgrouter.utils.exceptions import CircuitOpenError, ImgrouterError

if TYPE_CHECKING:
    from imgrouter.core.providers.base import ImageGenerationProvider

logger = get_logger(__name__)

DEFAULT_TTL = 60.0
DEFAULT_PROBE_POLICY = RetryPolicy(max_attempts=2, timeout=10.0, base_delay=0.5, max_delay=2.0)


class ProbeFailedError(ImgrouterError):
    """A liveness probe answered but reported the provider unusable."""


@dataclass
class _Entry:
    status: HealthStatus
    checked_at: float


class HealthCache:
    """Per-provider health verdicts with a time-to-live."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        probe_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        executor: RetryExecutor | None = None,
    ) -> None:
        """
        Initialize an empty cache.

        Args:
            ttl: Seconds a verdict stays fresh
            probe_policy: Deadline and retries for each probe
            clock: Monotonic time source
            executor: Probe executor (built from probe_policy when omitted)
        """
        self.ttl = ttl
        self._clock = clock
        self._executor = executor or RetryExecutor(probe_policy or DEFAULT_PROBE_POLICY)
        self._entries: dict[str, _Entry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _fresh(self, name: str) -> HealthStatus | None:
        entry = self._entries.get(name)
        if entry is not None and self._clock() - entry.checked_at < self.ttl:
            return entry.status
        return None

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def get(self, provider: ImageGenerationProvider) -> HealthStatus:
        """
        Return provider's health, probing when the cached verdict is missing or stale.

        Concurrent misses for the same provider share one probe.

        Args:
            provider: The provider to check

        Returns:
            The cached HealthStatus (same object while fresh) or a new one
        """
        cached = self._fresh(provider.name)
        if cached is not None:
            logger.debug("Health cache hit provider=%s state=%s", provider.name, cached.state.value)
            return cached

        async with self._lock_for(provider.name):
            # Another task may have refreshed the entry while we waited.
            cached = self._fresh(provider.name)
            if cached is not None:
                return cached
            status = await self._probe(provider)
            self._entries[provider.name] = _Entry(status, self._clock())
            return status

    async def _probe(self, provider: ImageGenerationProvider) -> HealthStatus:
        if provider.breaker.state is CircuitState.OPEN:
            status = HealthStatus(HealthState.UNHEALTHY, "Circuit breaker is open")
            self._log(provider, status, probed=False)
            return status

        async def probe_once() -> bool:
            available = await provider.is_available()
            if not available:
                raise ProbeFailedError(f"{provider.name} reported unavailable")
            return available

        start = time.perf_counter()
        try:
            await provider.breaker.call(
                self._executor.run, probe_once, f"{provider.name}.is_available"
            )
        except CircuitOpenError as e:
            status = HealthStatus(HealthState.UNHEALTHY, str(e))
        except ProbeFailedError:
            status = HealthStatus(HealthState.UNHEALTHY, "Provider not available")
        except ImgrouterError as e:
            status = HealthStatus(HealthState.UNHEALTHY, str(e) or type(e).__name__)
        else:
            status = HealthStatus(HealthState.HEALTHY)
        self._log(provider, status, probed=True, elapsed=time.perf_counter() - start)
        return status

    def _log(
        self,
        provider: ImageGenerationProvider,
        status: HealthStatus,
        probed: bool,
        elapsed: float | None = None,
    ) -> None:
        log_event(
            logger,
            logging.INFO if status.is_healthy else logging.WARNING,
            "health_check",
            provider=provider.name,
            state=status.state,
            probed=probed,
            elapsed=elapsed,
            message=status.message,
        )

    def peek(self, provider_name: str) -> HealthStatus | None:
        """Return the cached verdict without probing, fresh or not."""
        entry = self._entries.get(provider_name)
        return entry.status if entry else None

    def invalidate(self, provider_name: str) -> None:
        """Drop provider_name's verdict so the next get() probes again."""
        if self._entries.pop(provider_name, None) is not None:
            logger.debug("Health cache invalidated provider=%s", provider_name)

    def clear(self) -> None:
        """Clear all cached verdicts."""
        self._entries.clear()

    def size(self) -> int:
        """
        Get the number of cached verdicts.

        Returns:
            Number of providers with a cached verdict
        """
        return len(self._entries)
