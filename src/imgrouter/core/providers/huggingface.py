"""
Hugging Face Inference API provider.

Free Stable Diffusion inference. The hosted model is unloaded when idle, so
the first request after a quiet period answers 503 while it loads; that maps
to a retryable ServerError. The response body is the image itself.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal

import httpx

from imgrouter.core.config import DEFAULT_PROVIDER_SETTINGS, PROVIDER_HUGGINGFACE, ProviderSettings
from imgrouter.core.models import TIER_FREE, GenerationRequest, GenerationResult, ProviderTier
from imgrouter.core.providers.base import (
    build_guards,
    open_client,
    raise_for_status,
    run_generation,
    translate_http_errors,
)
from imgrouter.core.styles import build_prompt, known_styles
from imgrouter.logging_config import get_logger
from imgrouter.utils.exceptions import ServerError
from imgrouter.utils.image import inspect_image

logger = get_logger(__name__)

SERVICE = "HuggingFace"
BASE_URL = "https://api-inference.huggingface.co/models"
DEFAULT_MODEL = "runwayml/stable-diffusion-v1-5"
NEGATIVE_PROMPT = "low quality, blurry, distorted"

HUGGINGFACE_TIER = ProviderTier(
    name=TIER_FREE,
    display_name="Free Tier (HuggingFace Stable Diffusion)",
    cost_per_image=Decimal("0"),
    estimated_speed_seconds=15,
    priority=0,
    description="Stable Diffusion via the HuggingFace Inference API; slow after idle periods",
)


class HuggingFaceProvider:
    """Image generation provider for the HuggingFace Inference API."""

    name = PROVIDER_HUGGINGFACE

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        model: str = DEFAULT_MODEL,
        base_url: str = BASE_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or DEFAULT_PROVIDER_SETTINGS[PROVIDER_HUGGINGFACE]
        self.model = model
        self.tier = HUGGINGFACE_TIER
        self.breaker, self.executor, self.rate_limiter = build_guards(
            self.name, self.settings, sleep=sleep, clock=clock
        )
        self._client = client
        self._url = f"{base_url.rstrip('/')}/{model}"

    def supported_styles(self) -> frozenset[str]:
        return frozenset(known_styles())

    def estimate_cost(self, request: GenerationRequest) -> Decimal:
        return self.tier.cost_per_image

    def build_prompt(
        self, style: str, custom_prompt: str | None = None, text_to_image: bool = False
    ) -> str:
        return build_prompt(style, custom_prompt, text_to_image)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _payload(self, prompt: str) -> dict:
        return {
            "inputs": prompt,
            "parameters": {
                "negative_prompt": NEGATIVE_PROMPT,
                "num_inference_steps": 25,
                "guidance_scale": 7.5,
                "width": 512,
                "height": 512,
            },
        }

    async def _attempt(self, prompt: str) -> GenerationResult:
        logger.debug("API request url=%s", self._url)
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.post(
                    self._url, json=self._payload(prompt), headers=self._headers()
                )
        logger.debug(
            "API response status=%s content_type=%s",
            response.status_code,
            response.headers.get("content-type", ""),
        )
        if response.status_code == 503:
            raise ServerError(
                "Model is loading, please try again in a few minutes",
                provider=self.name,
                status_code=503,
                response=response.text[:500],
            )
        raise_for_status(response, self.name, SERVICE)
        content_type = inspect_image(response.content, provider=self.name)
        return GenerationResult(
            success=True,
            provider=self.name,
            model=self.model,
            cost=self.tier.cost_per_image,
            image_data=response.content,
            content_type=content_type,
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate an image via the HuggingFace Inference API (text-to-image)."""
        # The hosted pipeline is text-to-image; the style prompt carries the look.
        prompt = self.build_prompt(request.style, request.custom_prompt, text_to_image=True)
        return await run_generation(self, request, lambda: self._attempt(prompt), prompt)

    async def is_available(self) -> bool:
        """The model endpoint exists (anything but 404) means the provider is usable."""
        headers = {}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.get(self._url, headers=headers)
        logger.debug("Health probe provider=%s status=%s", self.name, response.status_code)
        return response.status_code != 404
