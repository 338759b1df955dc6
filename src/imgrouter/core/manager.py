"""
Provider selection and generation with fallback.

The ProviderManager owns an ordered set of providers and a HealthCache.
For each request it filters providers by style support, drops unhealthy
ones, scores the rest against the caller's constraints and tries them in
rank order until one succeeds.

Scoring (weights in ScoringWeights):
- tier: +100 when the provider's tier is the preferred one, otherwise
  max(0, 50 - 10 * tier distance)
- cost: +50 within max_cost, otherwise -(cost - max_cost) * 1000
- time: +30 within max_time, otherwise -(time - max_time) / 10
- priority: +100 - 10 * priority
The over-budget penalty dominates every other term. Ties keep registration
order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any

import httpx

from imgrouter.core.config import Config, get_config
from imgrouter.core.models import (
    KNOWN_TIERS,
    CostEstimate,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    HealthStatus,
    ProviderSelection,
    ProviderStatus,
    ScoredProvider,
    SystemStatus,
    to_decimal,
)
from imgrouter.core.providers import default_providers
from imgrouter.core.providers.base import ImageGenerationProvider, supports_style
from imgrouter.core.providers.registry import ProviderRegistry
from imgrouter.core.retry import RetryPolicy
from imgrouter.core.storage import ObjectStorage, persist_result
from imgrouter.core.styles import known_styles, validate_request
from imgrouter.logging_config import get_logger, log_event
from imgrouter.utils.cache import HealthCache
from imgrouter.utils.exceptions import (
    BudgetExceededError,
    ErrorKind,
    NoHealthyProvidersError,
    NoSuitableProviderError,
    UnsupportedStyleError,
    ValidationError,
)

logger = get_logger(__name__)

_MODERATION_KINDS = (ErrorKind.CONTENT_MODERATED, ErrorKind.REQUEST_MODERATED)


@dataclass(frozen=True)
class ScoringWeights:
    """Tunable constants of the selection score."""

    tier_match: float = 100.0
    tier_partial_base: float = 50.0
    tier_distance_step: float = 10.0
    within_budget: float = 50.0
    over_budget_factor: float = 1000.0
    within_time: float = 30.0
    over_time_divisor: float = 10.0
    priority_base: float = 100.0
    priority_step: float = 10.0
    tier_priorities: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({"free": 1, "premium": 2, "pro": 3})
    )
    unknown_tier_priority: int = 999

    def tier_priority(self, tier: str) -> int:
        return self.tier_priorities.get(tier, self.unknown_tier_priority)


@dataclass(frozen=True)
class _Constraints:
    preferred_tier: str
    max_cost: Decimal | None
    max_time_seconds: float
    fallback_enabled: bool


class ProviderManager:
    """Selects providers for requests and runs generation with fallback."""

    def __init__(
        self,
        providers: Iterable[ImageGenerationProvider] = (),
        *,
        config: Config | None = None,
        health_cache: HealthCache | None = None,
        storage: ObjectStorage | None = None,
        weights: ScoringWeights | None = None,
    ) -> None:
        """
        Args:
            providers: Providers in priority order (earlier wins ties)
            config: Defaults for unset GenerationOptions fields; Config() when omitted
            health_cache: Shared health cache; built from config when omitted
            storage: When set, successful image bytes are uploaded and image_url filled
            weights: Scoring constants
        """
        self.config = config or Config()
        self.health_cache = health_cache or HealthCache(
            ttl=self.config.health_cache_ttl,
            probe_policy=RetryPolicy(max_attempts=2, timeout=self.config.health_check_timeout),
        )
        self.storage = storage
        self.weights = weights or ScoringWeights()
        self._registry = ProviderRegistry()
        for provider in providers:
            self._registry.register(provider)
        if len(self._registry) == 0:
            logger.warning("Provider manager initialized with no providers")
        else:
            logger.info(
                "Provider manager initialized with %d provider(s): %s",
                len(self._registry),
                ", ".join(self._registry.provider_ids()),
            )

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        client: httpx.AsyncClient | None = None,
        storage: ObjectStorage | None = None,
    ) -> ProviderManager:
        """
        Build a manager with the built-in providers enabled by config.

        Raises:
            ConfigurationError: If config fails validation
        """
        config = config or get_config()
        config.validate()
        return cls(default_providers(config, client), config=config, storage=storage)

    # Provider set

    @property
    def providers(self) -> list[ImageGenerationProvider]:
        return self._registry.providers()

    def get_provider(self, name: str) -> ImageGenerationProvider | None:
        return self._registry.get(name)

    def add_provider(self, provider: ImageGenerationProvider) -> None:
        """Register provider after the existing ones (replacing one with the same name)."""
        self._registry.register(provider)
        self.health_cache.invalidate(provider.name)
        logger.info("Added provider %s", provider.name)

    def remove_provider(self, name: str) -> bool:
        """Unregister a provider and drop its health entry. Returns whether it existed."""
        removed = self._registry.unregister(name) is not None
        self.health_cache.invalidate(name)
        if removed:
            logger.info("Removed provider %s", name)
        return removed

    def clear_health_cache(self) -> None:
        self.health_cache.clear()

    def available_providers(self) -> list[dict[str, Any]]:
        """Describe every registered provider (no health checks)."""
        return [
            {
                "name": p.name,
                "model": p.model,
                "tier": p.tier,
                "supported_styles": sorted(p.supported_styles()),
                "is_configured": True,
            }
            for p in self._registry.providers()
        ]

    # Selection

    def _constraints(self, options: GenerationOptions | None) -> _Constraints:
        options = options or GenerationOptions()
        max_cost = options.max_cost if options.max_cost is not None else self.config.default_max_cost
        if max_cost is not None:
            max_cost = to_decimal(max_cost)
            if max_cost < 0:
                raise ValidationError("max_cost must not be negative", field="max_cost")
        max_time = (
            options.max_time_seconds
            if options.max_time_seconds is not None
            else self.config.default_max_time_seconds
        )
        if max_time <= 0:
            raise ValidationError("max_time_seconds must be positive", field="max_time_seconds")
        preferred = options.preferred_tier or self.config.default_preferred_tier
        if preferred not in KNOWN_TIERS:
            logger.warning("Unknown preferred tier %r; no provider will match it", preferred)
        fallback = (
            options.fallback_enabled
            if options.fallback_enabled is not None
            else self.config.fallback_enabled
        )
        return _Constraints(preferred, max_cost, float(max_time), fallback)

    def score_provider(
        self,
        provider: ImageGenerationProvider,
        request: GenerationRequest,
        constraints: _Constraints,
    ) -> ScoredProvider:
        """Score one provider against constraints. Pure; no network access."""
        w = self.weights
        tier = provider.tier
        cost = provider.estimate_cost(request)
        est_time = float(tier.estimated_speed_seconds)
        score = 0.0
        reasons: list[str] = []

        if tier.name == constraints.preferred_tier:
            score += w.tier_match
            reasons.append(f"Preferred tier ({constraints.preferred_tier})")
        else:
            distance = abs(
                w.tier_priority(tier.name) - w.tier_priority(constraints.preferred_tier)
            )
            score += max(0.0, w.tier_partial_base - distance * w.tier_distance_step)

        within_budget = constraints.max_cost is None or cost <= constraints.max_cost
        if within_budget:
            score += w.within_budget
            if constraints.max_cost is not None:
                reasons.append(f"Within budget (${cost} <= ${constraints.max_cost})")
        else:
            score -= float(cost - constraints.max_cost) * w.over_budget_factor
            reasons.append(f"Over budget (${cost} > ${constraints.max_cost})")

        if est_time <= constraints.max_time_seconds:
            score += w.within_time
            reasons.append(f"Fast enough ({est_time:g}s <= {constraints.max_time_seconds:g}s)")
        else:
            score -= (est_time - constraints.max_time_seconds) / w.over_time_divisor
            reasons.append(f"Too slow ({est_time:g}s > {constraints.max_time_seconds:g}s)")

        score += w.priority_base - tier.priority * w.priority_step
        reasons.append(f"Priority: {tier.priority}")

        return ScoredProvider(
            provider=provider,
            score=score,
            estimated_cost=cost,
            estimated_time=est_time,
            reason=", ".join(reasons),
            within_budget=within_budget,
        )

    async def _healthy(
        self, candidates: list[ImageGenerationProvider]
    ) -> list[ImageGenerationProvider]:
        statuses = await asyncio.gather(*(self.health_cache.get(p) for p in candidates))
        healthy = []
        for provider, status in zip(candidates, statuses):
            if status.is_healthy:
                healthy.append(provider)
            else:
                logger.warning(
                    "Provider %s is %s: %s", provider.name, status.state.value, status.message
                )
        return healthy

    async def _rank(
        self, request: GenerationRequest, constraints: _Constraints
    ) -> list[ScoredProvider]:
        candidates = [
            p
            for p in self._registry.providers()
            if p.tier.enabled and supports_style(p, request.style)
        ]
        if not candidates:
            raise UnsupportedStyleError(
                f"No providers support style: {request.style}", style=request.style
            )

        healthy = await self._healthy(candidates)
        if not healthy:
            raise NoHealthyProvidersError("No healthy providers available")

        # sorted() is stable, so equal scores keep registration order.
        ranked = sorted(
            (self.score_provider(p, request, constraints) for p in healthy),
            key=lambda s: s.score,
            reverse=True,
        )

        if constraints.max_cost is not None:
            ranked = [s for s in ranked if s.within_budget]
            if not ranked:
                raise BudgetExceededError(
                    f"No healthy provider can serve this request within "
                    f"max_cost ${constraints.max_cost}",
                    max_cost=constraints.max_cost,
                )

        if not constraints.fallback_enabled and ranked[0].score <= 0:
            raise NoSuitableProviderError("No suitable provider found within constraints")
        return ranked

    async def rank_providers(
        self, request: GenerationRequest, options: GenerationOptions | None = None
    ) -> list[ScoredProvider]:
        """
        Rank the healthy providers able to serve request, best first.

        Raises:
            ValidationError: If the request or options are invalid
            UnsupportedStyleError: If no registered provider supports the style
            NoHealthyProvidersError: If none of those providers is healthy
            BudgetExceededError: If max_cost is set and every healthy provider exceeds it
            NoSuitableProviderError: If fallback is disabled and the best score is <= 0
        """
        request = validate_request(request)
        return await self._rank(request, self._constraints(options))

    async def select_provider(
        self, request: GenerationRequest, options: GenerationOptions | None = None
    ) -> ProviderSelection:
        """Pick the best provider for request. Raises like rank_providers()."""
        best = (await self.rank_providers(request, options))[0]
        selection = ProviderSelection(
            provider=best.provider,
            reason=best.reason,
            estimated_cost=best.estimated_cost,
            estimated_time=best.estimated_time,
            score=best.score,
        )
        self._log_selection(request, selection)
        return selection

    def _log_selection(self, request: GenerationRequest, selection: ProviderSelection) -> None:
        log_event(
            logger,
            logging.INFO,
            "provider_selected",
            session=request.session_id,
            style=request.style,
            provider=selection.provider_name,
            score=selection.score,
            cost=selection.estimated_cost,
            time=selection.estimated_time,
            reason=selection.reason,
        )

    async def estimate_cost(
        self, request: GenerationRequest, options: GenerationOptions | None = None
    ) -> CostEstimate:
        """Cost of serving request with the provider that would be selected."""
        selection = await self.select_provider(request, options)
        return CostEstimate(
            estimated_cost=selection.estimated_cost,
            provider=selection.provider_name,
            tier=selection.provider.tier.name,
        )

    # Generation

    async def _persist(self, request: GenerationRequest, result: GenerationResult) -> None:
        """Upload result bytes; a storage failure is logged and leaves image_url unset."""
        assert self.storage is not None
        try:
            await persist_result(self.storage, request, result)
        except Exception as e:
            # The provider already succeeded (and charged); keep the result and its bytes.
            log_event(
                logger,
                logging.ERROR,
                "storage_failed",
                session=request.session_id,
                provider=result.provider,
                cost=result.cost,
                error=type(e).__name__,
                detail=str(e) or None,
            )

    async def generate_image(
        self, request: GenerationRequest, options: GenerationOptions | None = None
    ) -> GenerationResult:
        """
        Generate an image with the best provider, falling back down the ranking.

        Args:
            request: The generation request
            options: Selection constraints; unset fields use config defaults

        Returns:
            The first successful result, or the last failed result when every
            attempted provider failed

        Raises:
            ValidationError, UnsupportedStyleError, NoHealthyProvidersError and
            its subclasses: as for rank_providers(), before any generation
        """
        request = validate_request(request)
        constraints = self._constraints(options)
        ranked = await self._rank(request, constraints)
        best = ranked[0]
        self._log_selection(
            request,
            ProviderSelection(
                best.provider, best.reason, best.estimated_cost, best.estimated_time, best.score
            ),
        )

        attempts = ranked if constraints.fallback_enabled else ranked[:1]
        result: GenerationResult | None = None
        for index, scored in enumerate(attempts, start=1):
            provider = scored.provider
            result = await provider.generate(request)
            log_event(
                logger,
                logging.INFO if result.success else logging.WARNING,
                "generation_attempt",
                session=request.session_id,
                provider=provider.name,
                attempt=f"{index}/{len(attempts)}",
                success=result.success,
                cost=result.cost,
                elapsed=result.processing_time,
                error_kind=result.error_kind,
                error=result.error,
            )
            if result.success:
                if self.storage is not None:
                    await self._persist(request, result)
                return result
            if result.error_kind not in _MODERATION_KINDS:
                self.health_cache.invalidate(provider.name)

        assert result is not None
        return result

    # Status

    async def get_provider_health(
        self, provider: ImageGenerationProvider | str
    ) -> HealthStatus:
        """
        Health of one provider, from cache when fresh.

        Raises:
            ValidationError: If provider is a name that is not registered
        """
        if isinstance(provider, str):
            found = self._registry.get(provider)
            if found is None:
                raise ValidationError(f"Unknown provider: {provider!r}", field="provider")
            provider = found
        return await self.health_cache.get(provider)

    async def get_system_status(self) -> SystemStatus:
        """Health of every registered provider and the styles currently servable."""
        providers = self._registry.providers()
        statuses = await asyncio.gather(*(self.health_cache.get(p) for p in providers))
        healthy_styles: set[str] = set()
        entries = []
        for provider, status in zip(providers, statuses):
            if status.is_healthy:
                healthy_styles.update(provider.supported_styles())
            entries.append(
                ProviderStatus(
                    name=provider.name,
                    status=status.state,
                    tier=provider.tier.display_name,
                    supported_styles=tuple(
                        s for s in known_styles() if s in provider.supported_styles()
                    ),
                    circuit=provider.breaker.state.value,
                    message=status.message,
                )
            )
        return SystemStatus(
            total_providers=len(providers),
            healthy_providers=sum(1 for s in statuses if s.is_healthy),
            available_styles=tuple(s for s in known_styles() if s in healthy_styles),
            providers=tuple(entries),
        )
