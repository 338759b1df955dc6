"""
Data model for provider orchestration.

Requests, results, tiers, health and selection records shared by providers,
the health cache and the provider manager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from imgrouter.utils.exceptions import ErrorKind, ImgrouterError

if TYPE_CHECKING:
    from imgrouter.core.providers.base import ImageGenerationProvider

CUSTOM_STYLE = "custom"

TIER_FREE = "free"
TIER_PREMIUM = "premium"
TIER_PRO = "pro"
KNOWN_TIERS = (TIER_FREE, TIER_PREMIUM, TIER_PRO)


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Convert a cost to Decimal without binary float artifacts (0.1 -> Decimal('0.1'))."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class GenerationRequest:
    """One image generation request.

    ``source_url`` is the public URL of the input image; an empty string means
    text-only generation. For ``style == "custom"`` the ``custom_prompt`` is
    the complete style description.
    """

    source_url: str
    style: str
    session_id: str
    custom_prompt: str | None = None

    @property
    def is_text_to_image(self) -> bool:
        return not self.source_url

    @property
    def is_custom(self) -> bool:
        return self.style == CUSTOM_STYLE


@dataclass
class GenerationResult:
    """Outcome of one generation attempt against one provider.

    Successful results carry ``image_url`` (remote reference), ``image_data``
    (raw bytes the caller persists) or both. Failed results carry ``error`` and
    ``error_kind``; their ``cost`` is zero unless the content was moderated
    after the remote service did the work.
    """

    success: bool
    provider: str
    model: str
    cost: Decimal = Decimal("0")
    processing_time: float = 0.0  # seconds
    image_url: str | None = None
    image_data: bytes | None = field(default=None, repr=False)
    content_type: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    prompt_used: str | None = field(default=None, repr=False)
    exception: ImgrouterError | None = field(default=None, repr=False, compare=False)

    def raise_for_error(self) -> None:
        """Raise the error behind a failed result; no-op on success."""
        if self.success:
            return
        if self.exception is not None:
            raise self.exception
        raise ImgrouterError(self.error or f"Generation failed on {self.provider}")


@dataclass(frozen=True)
class ProviderTier:
    """Static cost/speed/priority descriptor, fixed at provider construction."""

    name: str
    display_name: str
    cost_per_image: Decimal
    estimated_speed_seconds: float
    priority: int  # lower = preferred
    enabled: bool = True
    description: str = ""


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthStatus:
    """Last known liveness verdict for one provider."""

    state: HealthState
    message: str | None = None
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_healthy(self) -> bool:
        return self.state is HealthState.HEALTHY


@dataclass(frozen=True)
class GenerationOptions:
    """Per-request selection constraints. ``None`` fields fall back to config defaults."""

    preferred_tier: str | None = None
    max_cost: Decimal | float | None = None
    max_time_seconds: float | None = None
    fallback_enabled: bool | None = None


@dataclass(frozen=True)
class ScoredProvider:
    """A healthy provider with its computed selection score."""

    provider: ImageGenerationProvider
    score: float
    estimated_cost: Decimal
    estimated_time: float
    reason: str
    within_budget: bool


@dataclass(frozen=True)
class ProviderSelection:
    """Ephemeral selection decision for one request."""

    provider: ImageGenerationProvider
    reason: str
    estimated_cost: Decimal
    estimated_time: float
    score: float = 0.0

    @property
    def provider_name(self) -> str:
        return self.provider.name


@dataclass(frozen=True)
class CostEstimate:
    estimated_cost: Decimal
    provider: str
    tier: str


@dataclass(frozen=True)
class ProviderStatus:
    name: str
    status: HealthState
    tier: str
    supported_styles: tuple[str, ...]
    circuit: str
    message: str | None = None


@dataclass(frozen=True)
class SystemStatus:
    total_providers: int
    healthy_providers: int
    available_styles: tuple[str, ...]
    providers: tuple[ProviderStatus, ...]

    @property
    def overall(self) -> str:
        """'operational' when all healthy, 'degraded' when some, 'error' when none."""
        if self.total_providers and self.healthy_providers == self.total_providers:
            return "operational"
        if self.healthy_providers:
            return "degraded"
        return "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.overall,
            "total_providers": self.total_providers,
            "healthy_providers": self.healthy_providers,
            "available_styles": list(self.available_styles),
            "providers": [
                {
                    "name": p.name,
                    "status": p.status.value,
                    "tier": p.tier,
                    "supported_styles": list(p.supported_styles),
                    "circuit": p.circuit,
                    "message": p.message,
                }
                for p in self.providers
            ],
        }
