"""
Pytest configuration: default runs most tests; use --run-slow to include slow tests.

Shared fixtures: PNG bytes, fake clocks/sleeps, and a scriptable fake provider.
"""

import io
from collections.abc import Callable
from decimal import Decimal

import pytest
from PIL import Image

from imgrouter.core.config import ProviderSettings
from imgrouter.core.models import GenerationRequest, GenerationResult, ProviderTier
from imgrouter.core.providers.base import build_guards, run_generation
from imgrouter.core.styles import build_prompt, known_styles
from imgrouter.utils.exceptions import ImgrouterError


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (live Pollinations / BFL / Replicate calls). Default: skip them.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-slow", False):
        return
    skip_slow = pytest.mark.skip(reason="Slow test; run with --run-slow to include")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def make_png(size: tuple[int, int] = (8, 8), fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=(200, 100, 50)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_png(fmt="JPEG")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and returns immediately."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


def make_tier(
    name: str = "free",
    cost: str = "0",
    speed: float = 10,
    priority: int = 0,
    enabled: bool = True,
) -> ProviderTier:
    return ProviderTier(
        name=name,
        display_name=f"{name.title()} tier",
        cost_per_image=Decimal(cost),
        estimated_speed_seconds=speed,
        priority=priority,
        enabled=enabled,
    )


class FakeProvider:
    """
    In-process provider driven by a script.

    ``outcomes`` is consumed one item per remote attempt: bytes for success,
    an ImgrouterError to raise. The last item repeats once the list runs out.
    """

    def __init__(
        self,
        name: str,
        tier: ProviderTier | None = None,
        *,
        outcomes: list[bytes | ImgrouterError] | None = None,
        available: bool | Exception = True,
        styles: frozenset[str] | None = None,
        settings: ProviderSettings | None = None,
        sleep: Callable | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.name = name
        self.model = f"{name}-model"
        self.tier = tier or make_tier()
        self.settings = settings or ProviderSettings(
            timeout=5.0, max_retries=1, failure_threshold=3, reset_timeout=30.0
        )
        guard_kwargs = {}
        if sleep is not None:
            guard_kwargs["sleep"] = sleep
        if clock is not None:
            guard_kwargs["clock"] = clock
        self.breaker, self.executor, self.rate_limiter = build_guards(
            name, self.settings, **guard_kwargs
        )
        self.outcomes = list(outcomes or [b"\x89PNG fake"])
        self.available = available
        self._styles = styles
        self.generate_calls = 0
        self.remote_calls = 0
        self.probe_calls = 0

    def supported_styles(self) -> frozenset[str]:
        return self._styles if self._styles is not None else frozenset(known_styles())

    def estimate_cost(self, request: GenerationRequest) -> Decimal:
        return self.tier.cost_per_image

    def build_prompt(
        self, style: str, custom_prompt: str | None = None, text_to_image: bool = False
    ) -> str:
        return build_prompt(style, custom_prompt, text_to_image)

    async def _attempt(self) -> GenerationResult:
        self.remote_calls += 1
        index = min(self.remote_calls - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, ImgrouterError):
            raise outcome
        return GenerationResult(
            success=True,
            provider=self.name,
            model=self.model,
            cost=self.tier.cost_per_image,
            image_data=outcome,
            content_type="image/png",
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.generate_calls += 1
        prompt = self.build_prompt(request.style, request.custom_prompt, request.is_text_to_image)
        return await run_generation(self, request, self._attempt, prompt)

    async def is_available(self) -> bool:
        self.probe_calls += 1
        if isinstance(self.available, Exception):
            raise self.available
        return self.available


@pytest.fixture
def fake_provider() -> type[FakeProvider]:
    """The FakeProvider class; call it to build providers."""
    return FakeProvider


@pytest.fixture
def tier() -> Callable[..., ProviderTier]:
    return make_tier


@pytest.fixture
def request_factory() -> Callable[..., GenerationRequest]:
    def _make(
        style: str = "ghibli",
        source_url: str = "https://example.com/cat.jpg",
        session_id: str = "session-1",
        custom_prompt: str | None = None,
    ) -> GenerationRequest:
        return GenerationRequest(
            source_url=source_url,
            style=style,
            session_id=session_id,
            custom_prompt=custom_prompt,
        )

    return _make
