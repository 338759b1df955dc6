"""
Black Forest Labs FLUX.1 [schnell] provider.

Paid, submit-then-poll: a POST returns a request id and the result is
fetched from get_result until it reaches a terminal status.

Terminal statuses:
- Ready: success, charged
- Content Moderated: failure, still charged (the image was generated)
- Request Moderated: failure, not charged
Exhausting poll attempts fails with PollingTimeoutError and no charge.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

import httpx

from imgrouter.core.config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_MAX_ATTEMPTS,
    DEFAULT_PROVIDER_SETTINGS,
    PROVIDER_BFL,
    ProviderSettings,
)
from imgrouter.core.models import TIER_PREMIUM, GenerationRequest, GenerationResult, ProviderTier
from imgrouter.core.providers.base import (
    build_guards,
    ensure_supported,
    failure_result,
    open_client,
    raise_for_status,
    run_generation,
    translate_http_errors,
)
from imgrouter.core.styles import build_flux_prompt, known_styles
from imgrouter.logging_config import get_logger, log_event
from imgrouter.utils.exceptions import (
    AuthenticationError,
    ContentModeratedError,
    ImgrouterError,
    InvalidPayloadError,
    PollingTimeoutError,
    RemoteError,
    RequestModeratedError,
)
from imgrouter.utils.image import decode_base64_image, inspect_image

logger = get_logger(__name__)

SERVICE = "BFL"
BASE_URL = "https://api.bfl.ai/v1"

STATUS_READY = "Ready"
STATUS_PENDING = "Request Pending"
STATUS_CONTENT_MODERATED = "Content Moderated"
STATUS_REQUEST_MODERATED = "Request Moderated"

BFL_TIER = ProviderTier(
    name=TIER_PREMIUM,
    display_name="Premium (FLUX Schnell - Direct BFL)",
    cost_per_image=Decimal("0.003"),
    estimated_speed_seconds=20,
    priority=1,
    description="Direct Black Forest Labs FLUX.1 [schnell] - fastest FLUX generation",
)


class BFLProvider:
    """Image generation provider for the Black Forest Labs API."""

    name = PROVIDER_BFL
    model = "flux-schnell"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = BASE_URL,
        width: int = 1024,
        height: int = 1024,
        poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or DEFAULT_PROVIDER_SETTINGS[PROVIDER_BFL]
        self.tier = BFL_TIER
        self.breaker, self.executor, self.rate_limiter = build_guards(
            self.name, self.settings, sleep=sleep, clock=clock
        )
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._width = width
        self._height = height
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval = poll_interval
        self._sleep = sleep

    def supported_styles(self) -> frozenset[str]:
        return frozenset(known_styles())

    def estimate_cost(self, request: GenerationRequest) -> Decimal:
        return self.tier.cost_per_image

    def build_prompt(
        self, style: str, custom_prompt: str | None = None, text_to_image: bool = False
    ) -> str:
        return build_flux_prompt(style, custom_prompt)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-key": self.settings.api_key}

    async def _submit(self, client: httpx.AsyncClient, prompt: str) -> str:
        payload = {
            "prompt": prompt,
            "width": self._width,
            "height": self._height,
            "prompt_upsampling": False,
            "output_format": "jpeg",
        }
        logger.debug("API request url=%s/%s", self._base_url, self.model)
        with translate_http_errors(self.name, SERVICE):
            response = await client.post(
                f"{self._base_url}/{self.model}", json=payload, headers=self._headers()
            )
        raise_for_status(response, self.name, SERVICE)
        try:
            request_id = response.json().get("id")
        except ValueError as e:
            raise InvalidPayloadError(
                f"Failed to parse {SERVICE} submission response as JSON: {e}",
                provider=self.name,
                response=response.text[:500],
            ) from e
        if not request_id:
            raise InvalidPayloadError(
                f"{SERVICE} submission response has no request id",
                provider=self.name,
                response=response.text[:500],
            )
        logger.debug("Submitted provider=%s request_id=%s", self.name, request_id)
        return request_id

    async def _fetch_status(self, client: httpx.AsyncClient, request_id: str) -> dict[str, Any]:
        with translate_http_errors(self.name, SERVICE):
            response = await client.get(
                f"{self._base_url}/get_result",
                params={"id": request_id},
                headers={"x-key": self.settings.api_key},
            )
        raise_for_status(response, self.name, SERVICE)
        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(
                f"Failed to parse {SERVICE} poll response as JSON: {e}",
                provider=self.name,
                response=response.text[:500],
            ) from e
        if not isinstance(body, dict):
            raise RemoteError(f"Unexpected {SERVICE} poll response", provider=self.name)
        return body

    def _ready_result(self, body: dict[str, Any]) -> GenerationResult:
        sample = (body.get("result") or {}).get("sample")
        if not sample:
            raise InvalidPayloadError(
                "Result ready but no image data received", provider=self.name
            )
        result = GenerationResult(
            success=True,
            provider=self.name,
            model=self.model,
            cost=self.tier.cost_per_image,
        )
        if sample.startswith(("http://", "https://")):
            result.image_url = sample
            result.content_type = "image/jpeg"
        else:
            result.image_data = decode_base64_image(sample, provider=self.name)
            result.content_type = inspect_image(result.image_data, provider=self.name)
        return result

    async def _poll(self, client: httpx.AsyncClient, request_id: str) -> GenerationResult:
        """Poll until a terminal status; transient poll errors are retried in place."""
        last_error: ImgrouterError | None = None
        for attempt in range(1, self.poll_max_attempts + 1):
            try:
                body = await self._fetch_status(client, request_id)
            except ImgrouterError as e:
                if not e.retryable and type(e) is not RemoteError:
                    raise
                last_error = e
                log_event(
                    logger,
                    logging.DEBUG,
                    "poll_error",
                    provider=self.name,
                    attempt=f"{attempt}/{self.poll_max_attempts}",
                    error=type(e).__name__,
                )
            else:
                status = body.get("status")
                if status == STATUS_READY:
                    return self._ready_result(body)
                if status == STATUS_CONTENT_MODERATED:
                    raise ContentModeratedError(
                        f"Content was moderated by {SERVICE} safety filters",
                        provider=self.name,
                        cost=self.tier.cost_per_image,
                    )
                if status == STATUS_REQUEST_MODERATED:
                    raise RequestModeratedError(
                        f"Request was blocked by {SERVICE} safety filters", provider=self.name
                    )
                if status != STATUS_PENDING and body.get("error"):
                    last_error = RemoteError(str(body["error"]), provider=self.name)
                logger.debug(
                    "Poll provider=%s attempt=%d/%d status=%s",
                    self.name,
                    attempt,
                    self.poll_max_attempts,
                    status,
                )
            if attempt < self.poll_max_attempts:
                await self._sleep(self.poll_interval)
        raise PollingTimeoutError(
            f"Polling timeout after {self.poll_max_attempts} attempts"
        ) from last_error

    async def _attempt(self, prompt: str) -> GenerationResult:
        async with open_client(self._client, self.settings.timeout) as client:
            request_id = await self._submit(client, prompt)
            return await self._poll(client, request_id)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate an image via BFL, polling until the result is ready."""
        ensure_supported(self, request)
        prompt = self.build_prompt(request.style, request.custom_prompt)
        if not self.settings.api_key:
            return failure_result(
                self,
                AuthenticationError(f"{SERVICE} API key not configured", provider=self.name),
                prompt=prompt,
            )
        return await run_generation(self, request, lambda: self._attempt(prompt), prompt)

    async def is_available(self) -> bool:
        """Look up a bogus request id; anything but 401 means the key is accepted."""
        if not self.settings.api_key:
            return False
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.get(
                    f"{self._base_url}/get_result",
                    params={"id": "test"},
                    headers={"x-key": self.settings.api_key},
                )
        logger.debug("Health probe provider=%s status=%s", self.name, response.status_code)
        return response.status_code != 401
