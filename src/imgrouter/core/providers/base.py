"""
Provider protocol for image generation.

Defines the interface every provider implements, plus the shared helpers
providers use to run one guarded generation: rate limiter, circuit breaker,
retry/timeout executor, then the provider's single-attempt coroutine. Remote
failures come back as failed GenerationResults; only contract violations
(unsupported style, invalid request) are raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from decimal import Decimal
from typing import Protocol

import httpx

from imgrouter.core.circuit_breaker import CircuitBreaker
from imgrouter.core.config import ProviderSettings
from imgrouter.core.models import CUSTOM_STYLE, GenerationRequest, GenerationResult, ProviderTier
from imgrouter.core.rate_limit import RateLimiter
from imgrouter.core.retry import RetryExecutor, RetryPolicy
from imgrouter.logging_config import get_logger, log_event, log_prompts
from imgrouter.utils.exceptions import (
    AuthenticationError,
    ContentModeratedError,
    ImgrouterError,
    InsufficientCreditsError,
    NetworkError,
    RateLimitedError,
    RemoteError,
    RequestTimeoutError,
    ServerError,
    UnsupportedStyleError,
    ValidationError,
)

logger = get_logger(__name__)

_RESPONSE_LOG_MAX = 500
_PROMPT_LOG_MAX = 50_000


class ImageGenerationProvider(Protocol):
    """Protocol for image generation providers.

    Providers wrap one remote service and expose a uniform capability set.
    Each owns its settings, circuit breaker, retry executor and rate limiter.
    """

    name: str
    model: str
    tier: ProviderTier
    settings: ProviderSettings
    breaker: CircuitBreaker
    executor: RetryExecutor
    rate_limiter: RateLimiter

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate an image for request.

        Never raises for remote failures; those come back as a failed result.
        Raises UnsupportedStyleError when the style is not supported.
        """
        ...

    async def is_available(self) -> bool:
        """Lightweight liveness probe. Must not mutate provider state."""
        ...

    def supported_styles(self) -> frozenset[str]:
        """Enumerated styles this provider handles ("custom" is implicit)."""
        ...

    def estimate_cost(self, request: GenerationRequest) -> Decimal:
        """Cost of one generation, from the static tier."""
        ...

    def build_prompt(
        self, style: str, custom_prompt: str | None = None, text_to_image: bool = False
    ) -> str:
        """Deterministic prompt for style and optional override."""
        ...


def supports_style(provider: ImageGenerationProvider, style: str) -> bool:
    """True if provider can render style; every provider accepts "custom"."""
    return style == CUSTOM_STYLE or style in provider.supported_styles()


def build_guards(
    name: str,
    settings: ProviderSettings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[CircuitBreaker, RetryExecutor, RateLimiter]:
    """Create the breaker, executor and limiter a provider owns."""
    breaker = CircuitBreaker(
        name,
        failure_threshold=settings.failure_threshold,
        reset_timeout=settings.reset_timeout,
        clock=clock,
    )
    executor = RetryExecutor(RetryPolicy.from_settings(settings), sleep=sleep)
    limiter = RateLimiter(settings.rate_limit_per_minute, clock=clock)
    return breaker, executor, limiter


@asynccontextmanager
async def open_client(
    client: httpx.AsyncClient | None, timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
        yield owned


@contextmanager
def translate_http_errors(provider: str, service: str) -> Iterator[None]:
    """Map httpx transport failures onto the imgrouter error taxonomy."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise RequestTimeoutError(f"{service} request timed out: {e}") from e
    except httpx.TransportError as e:
        raise NetworkError(
            f"Failed to connect to {service}. Please check your internet connection.",
            original_error=e,
        ) from e


def _snippet(response: httpx.Response) -> str:
    try:
        text = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return f"<{len(response.content)} bytes>"
    if len(text) > _RESPONSE_LOG_MAX:
        return text[:_RESPONSE_LOG_MAX] + f"... <truncated, {len(text)} chars total>"
    return text


def raise_for_status(response: httpx.Response, provider: str, service: str) -> None:
    """
    Raise the matching RemoteError subclass for a non-2xx response.

    401/403 -> AuthenticationError, 402 -> InsufficientCreditsError,
    429 -> RateLimitedError, 5xx -> ServerError, other 4xx -> RemoteError.
    """
    status = response.status_code
    if status < 400:
        return
    body = _snippet(response)
    kwargs = {"provider": provider, "status_code": status, "response": body}
    if status in (401, 403):
        raise AuthenticationError(
            f"Authentication failed. Please check your {service} API key.", **kwargs
        )
    if status == 402:
        raise InsufficientCreditsError(f"Insufficient credits in {service} account", **kwargs)
    if status == 429:
        raise RateLimitedError(
            "Rate limit exceeded. Please wait before making more requests.", **kwargs
        )
    if status >= 500:
        raise ServerError(f"{service} service error: {status}", **kwargs)
    raise RemoteError(f"{service} API error {status}: {body}", **kwargs)


def failure_result(
    provider: ImageGenerationProvider,
    error: ImgrouterError,
    processing_time: float = 0.0,
    prompt: str | None = None,
) -> GenerationResult:
    """Failed result for error; only content moderation carries a cost."""
    cost = error.cost if isinstance(error, ContentModeratedError) else Decimal("0")
    return GenerationResult(
        success=False,
        provider=provider.name,
        model=provider.model,
        cost=cost,
        processing_time=processing_time,
        error=str(error) or type(error).__name__,
        error_kind=error.kind,
        prompt_used=prompt,
        exception=error,
    )


def ensure_supported(provider: ImageGenerationProvider, request: GenerationRequest) -> None:
    if not supports_style(provider, request.style):
        raise UnsupportedStyleError(
            f"Style {request.style!r} is not supported by {provider.name}",
            style=request.style,
            provider=provider.name,
        )


async def run_generation(
    provider: ImageGenerationProvider,
    request: GenerationRequest,
    attempt: Callable[[], Awaitable[GenerationResult]],
    prompt: str,
) -> GenerationResult:
    """
    Run one guarded generation for provider.

    Args:
        provider: The provider doing the work
        request: The request being served
        attempt: Zero-argument coroutine factory performing one remote attempt;
            raises ImgrouterError subclasses on failure
        prompt: The prompt sent, recorded on the result

    Returns:
        A successful result from attempt, or a failed result encoding the error

    Raises:
        UnsupportedStyleError: If provider does not support request.style
        ValidationError: If attempt rejects the request as malformed
    """
    ensure_supported(provider, request)
    logger.info(
        "Generating image provider=%s model=%s style=%s text_to_image=%s",
        provider.name,
        provider.model,
        request.style,
        request.is_text_to_image,
    )
    if log_prompts():
        shown = prompt if len(prompt) <= _PROMPT_LOG_MAX else prompt[:_PROMPT_LOG_MAX] + "..."
        logger.info("Prompt (used): %s", shown)

    start = time.perf_counter()
    if not provider.rate_limiter.try_acquire():
        error = RateLimitedError(
            f"Local rate limit of {provider.rate_limiter.limit_per_minute}/min reached "
            f"for {provider.name}; retry in {provider.rate_limiter.retry_after():.0f}s",
            provider=provider.name,
        )
        log_event(logger, logging.WARNING, "rate_limited", provider=provider.name)
        return failure_result(provider, error, 0.0, prompt)

    try:
        result = await provider.breaker.call(
            provider.executor.run, attempt, f"{provider.name}.generate"
        )
    except (ValidationError, UnsupportedStyleError):
        raise
    except ImgrouterError as e:
        elapsed = time.perf_counter() - start
        return failure_result(provider, e, elapsed, prompt)

    result.processing_time = time.perf_counter() - start
    if result.prompt_used is None:
        result.prompt_used = prompt
    logger.info(
        "Generated in %.1fs provider=%s model=%s",
        result.processing_time,
        provider.name,
        result.model,
    )
    return result
