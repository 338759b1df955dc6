"""
Pollinations.ai image provider.

Free, keyless (an optional key raises limits) and fast. Uses the Kontext
model for image-to-image when a source image URL is given and plain
text-to-image otherwise. The response body is the image itself.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal
from urllib.parse import quote

import httpx

from imgrouter.core.config import DEFAULT_PROVIDER_SETTINGS, PROVIDER_POLLINATIONS, ProviderSettings
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
from imgrouter.utils.image import inspect_image

logger = get_logger(__name__)

SERVICE = "Pollinations"
BASE_URL = "https://image.pollinations.ai/prompt"
USER_AGENT = "imgrouter/1.0"

PROMPT_ENHANCERS = (
    "high quality, detailed, 8k resolution, professional, masterpiece, "
    "NOT low quality, blurry, distorted, ugly, deformed"
)

POLLINATIONS_TIER = ProviderTier(
    name=TIER_FREE,
    display_name="Image-to-Image (Pollinations.ai)",
    cost_per_image=Decimal("0"),
    estimated_speed_seconds=10,
    priority=0,
    description="Image-to-image transformation via the Pollinations.ai Kontext model",
)


class PollinationsProvider:
    """Image generation provider for Pollinations.ai."""

    name = PROVIDER_POLLINATIONS
    model = "kontext"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = BASE_URL,
        width: int = 1024,
        height: int = 1024,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or DEFAULT_PROVIDER_SETTINGS[PROVIDER_POLLINATIONS]
        self.tier = POLLINATIONS_TIER
        self.breaker, self.executor, self.rate_limiter = build_guards(
            self.name, self.settings, sleep=sleep, clock=clock
        )
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._width = width
        self._height = height

    def supported_styles(self) -> frozenset[str]:
        return frozenset(known_styles())

    def estimate_cost(self, request: GenerationRequest) -> Decimal:
        return self.tier.cost_per_image

    def build_prompt(
        self, style: str, custom_prompt: str | None = None, text_to_image: bool = False
    ) -> str:
        return build_prompt(style, custom_prompt, text_to_image)

    def enhance_prompt(self, prompt: str) -> str:
        """Append the quality boosters Pollinations responds to."""
        return f"{prompt}, {PROMPT_ENHANCERS}"

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _url_and_params(
        self, prompt: str, request: GenerationRequest
    ) -> tuple[str, dict[str, str]]:
        params = {
            "width": str(self._width),
            "height": str(self._height),
            "model": self.model,
        }
        if not request.is_text_to_image:
            params["image"] = request.source_url
        return f"{self._base_url}/{quote(prompt, safe='')}", params

    async def _attempt(self, prompt: str, request: GenerationRequest) -> GenerationResult:
        url, params = self._url_and_params(prompt, request)
        logger.debug("API request url=%s params=%s", url, sorted(params))
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.get(url, params=params, headers=self._headers())
        logger.debug(
            "API response status=%s content_type=%s",
            response.status_code,
            response.headers.get("content-type", ""),
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
        """Generate an image via Pollinations.ai."""
        prompt = self.enhance_prompt(
            self.build_prompt(request.style, request.custom_prompt, request.is_text_to_image)
        )
        return await run_generation(
            self, request, lambda: self._attempt(prompt, request), prompt
        )

    async def is_available(self) -> bool:
        """Render a tiny test image; any 2xx means the service is up."""
        url = f"{self._base_url}/test"
        params = {"width": "64", "height": "64", "model": self.model}
        async with open_client(self._client, self.settings.timeout) as client:
            with translate_http_errors(self.name, SERVICE):
                response = await client.get(url, params=params, headers=self._headers())
        logger.debug("Health probe provider=%s status=%s", self.name, response.status_code)
        return response.is_success
