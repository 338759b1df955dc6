"""
Replicate FLUX.1 [schnell] provider.

Paid and token-authenticated. Predictions are created with ``Prefer: wait``
so the API normally answers with the finished prediction; if it comes back
still running, the prediction's get URL is polled. The output is a URL to
the generated image.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

import httpx

from imgrouter.core.config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_MAX_ATTEMPTS,
    DEFAULT_PROVIDER_SETTINGS,
    PROVIDER_REPLICATE,
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
from imgrouter.logging_config import get_logger
from imgrouter.utils.exceptions import (
    AuthenticationError,
    ContentModeratedError,
    InvalidPayloadError,
    PollingTimeoutError,
    RemoteError,
)

logger = get_logger(__name__)

SERVICE = "Replicate"
BASE_URL = "https://api.replicate.com/v1"
MODEL_OWNER = "black-forest-labs"
MODEL_NAME = "flux-schnell"

_TERMINAL_FAILURES = ("failed", "canceled")

REPLICATE_TIER = ProviderTier(
    name=TIER_PREMIUM,
    display_name="Premium (FLUX Schnell via Replicate)",
    cost_per_image=Decimal("0.003"),
    estimated_speed_seconds=15,
    priority=2,
    description="Fast FLUX.1 [schnell] model hosted on Replicate",
)


class ReplicateProvider:
    """Image generation provider for Replicate-hosted FLUX."""

    name = PROVIDER_REPLICATE
    model = f"{MODEL_OWNER}/{MODEL_NAME}"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = BASE_URL,
        poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or DEFAULT_PROVIDER_SETTINGS[PROVIDER_REPLICATE]
        self.tier = REPLICATE_TIER
        self.breaker, self.executor, self.rate_limiter = build_guards(
            self.name, self.settings, sleep=sleep, clock=clock
        )
        self._client = client
        self._base_url = base_url.rstrip("/")
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
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, prompt: str, request: GenerationRequest) -> dict[str, Any]:
        model_input: dict[str, Any] = {
            "prompt": prompt,
            "go_fast": True,
            "megapixels": "1",
            "num_outputs": 1,
            "aspect_ratio": "1:1",
            "output_format": "png",
            "output_quality": 90,
            "num_inference_steps": 4,
        }
        if not request.is_text_to_image:
            model_input["image"] = request.source_url
            model_input["guidance_scale"] = 3.5
            model_input["strength"] = 0.8
        return {"input": model_input}

    def _parse_json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise InvalidPayloadError(
                f"Failed to parse {SERVICE} response as JSON: {e}",
                provider=self.name,
                response=response.text[:500],
            ) from e
        if not isinstance(body, dict):
            raise InvalidPayloadError(f"Unexpected {SERVICE} response", provider=self.name)
        return body

    def _output_url(self, prediction: dict[str, Any]) -> str:
        output = prediction.get("output")
        if isinstance(output, list) and output:
            output = output[0]
        if isinstance(output, str) and output:
            return output
        raise InvalidPayloadError(
            f"Invalid response format from {SERVICE}: {output!r}", provider=self.name
        )

    def _raise_for_prediction(self, prediction: dict[str, Any]) -> None:
        status = prediction.get("status")
        if status not in _TERMINAL_FAILURES:
            return
        error = str(prediction.get("error") or f"Prediction {status}")
        if "nsfw" in error.lower():
            # Replicate bills the run even when the safety checker blanks the output.
            raise ContentModeratedError(error, provider=self.name, cost=self.tier.cost_per_image)
        raise RemoteError(f"{SERVICE} prediction {status}: {error}", provider=self.name)

    async def _wait(self, client: httpx.AsyncClient, prediction: dict[str, Any]) -> dict[str, Any]:
        """Poll a still-running prediction until it reaches a terminal status."""
        get_url = (prediction.get("urls") or {}).get("get")
        if not get_url:
            raise InvalidPayloadError(
                f"{SERVICE} prediction is still running and has no poll URL", provider=self.name
            )
        for attempt in range(1, self.poll_max_attempts + 1):
            await self._sleep(self.poll_interval)
            with translate_http_errors(self.name, SERVICE):
                response = await client.get(get_url, headers=self._headers())
            raise_for_status(response, self.name, SERVICE)
            prediction = self._parse_json(response)
            status = prediction.get("status")
            logger.debug(
                "Poll provider=%s attempt=%d/%d status=%s",
                self.name,
                attempt,
                self.poll_max_attempts,
                status,
            )
            if status in ("succeeded", *_TERMINAL_FAILURES):
                return prediction
        raise PollingTimeoutError(f"Polling timeout after {self.poll_max_attempts} attempts")

    async def _attempt(self, prompt: str, request: GenerationRequest) -> GenerationResult:
        url = f"{self._base_url}/models/{MODEL_OWNER}/{MODEL_NAME}/predictions"
        headers = {**self._headers(), "Prefer": "wait"}
        logger.debug("API request url=%s", url)
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.post(
                    url, json=self._payload(prompt, request), headers=headers
                )
            raise_for_status(response, self.name, SERVICE)
            prediction = self._parse_json(response)
            if prediction.get("status") not in ("succeeded", *_TERMINAL_FAILURES):
                prediction = await self._wait(client, prediction)
        self._raise_for_prediction(prediction)
        return GenerationResult(
            success=True,
            provider=self.name,
            model=self.model,
            cost=self.tier.cost_per_image,
            image_url=self._output_url(prediction),
            content_type="image/png",
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate an image via Replicate."""
        ensure_supported(self, request)
        prompt = self.build_prompt(request.style, request.custom_prompt)
        if not self.settings.api_key:
            return failure_result(
                self,
                AuthenticationError(f"{SERVICE} API token not configured", provider=self.name),
                prompt=prompt,
            )
        return await run_generation(
            self, request, lambda: self._attempt(prompt, request), prompt
        )

    async def is_available(self) -> bool:
        """Fetch the model metadata; success means the token and model are usable."""
        if not self.settings.api_key:
            return False
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.get(
                    f"{self._base_url}/models/{MODEL_OWNER}/{MODEL_NAME}",
                    headers=self._headers(),
                )
        logger.debug("Health probe provider=%s status=%s", self.name, response.status_code)
        return response.is_success
