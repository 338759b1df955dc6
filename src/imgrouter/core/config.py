"""
Configuration management for imgrouter.

This module handles provider API keys, per-provider timeout/retry/circuit
settings, health-cache TTL and default selection constraints.
"""

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

from imgrouter.core.models import KNOWN_TIERS, TIER_FREE
from imgrouter.logging_config import get_logger
from imgrouter.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

# Load environment variables from .env file
load_dotenv()

PROVIDER_POLLINATIONS = "pollinations"
PROVIDER_HUGGINGFACE = "huggingface-img2img"
PROVIDER_BFL = "bfl-flux-schnell"
PROVIDER_REPLICATE = "replicate-flux-schnell"
KNOWN_PROVIDERS = (
    PROVIDER_POLLINATIONS,
    PROVIDER_HUGGINGFACE,
    PROVIDER_BFL,
    PROVIDER_REPLICATE,
)
# Submit-then-poll providers: the attempt timeout must cover the whole poll budget.
POLLING_PROVIDERS = (PROVIDER_BFL, PROVIDER_REPLICATE)

DEFAULT_HEALTH_CACHE_TTL = 60.0
DEFAULT_MAX_TIME_SECONDS = 300.0
DEFAULT_POLL_MAX_ATTEMPTS = 60
DEFAULT_POLL_INTERVAL = 5.0


@dataclass(frozen=True)
class ProviderSettings:
    """Runtime settings for one provider (the api_key is excluded from repr)."""

    timeout: float = 60.0  # seconds, per attempt
    max_retries: int = 3  # total attempts, including the first
    base_delay: float = 1.0
    max_delay: float = 10.0
    rate_limit_per_minute: int | None = None
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    api_key: str = field(default="", repr=False)


# Free / cold-start providers tolerate more failures and stay open longer than
# paid synchronous ones.
DEFAULT_PROVIDER_SETTINGS: dict[str, ProviderSettings] = {
    PROVIDER_POLLINATIONS: ProviderSettings(
        timeout=60.0, max_retries=3, rate_limit_per_minute=60,
        failure_threshold=5, reset_timeout=60.0,
    ),
    PROVIDER_HUGGINGFACE: ProviderSettings(
        timeout=120.0, max_retries=3, rate_limit_per_minute=30,
        failure_threshold=5, reset_timeout=180.0,
    ),
    PROVIDER_BFL: ProviderSettings(
        timeout=360.0, max_retries=2, rate_limit_per_minute=10,
        failure_threshold=3, reset_timeout=300.0,
    ),
    PROVIDER_REPLICATE: ProviderSettings(
        timeout=360.0, max_retries=3, rate_limit_per_minute=10,
        failure_threshold=3, reset_timeout=60.0,
    ),
}

_API_KEY_ENV: dict[str, tuple[str, ...]] = {
    PROVIDER_POLLINATIONS: ("POLLINATIONS_API_KEY",),
    PROVIDER_HUGGINGFACE: ("HUGGING_FACE_API_KEY", "HF_TOKEN"),
    PROVIDER_BFL: ("BFL_API_KEY", "BLACK_FOREST_LABS_API_KEY"),
    PROVIDER_REPLICATE: ("REPLICATE_API_TOKEN",),
}


def _env_prefix(provider: str) -> str:
    """IMGROUTER_<ID>_ with the provider id upper-cased and dashes replaced."""
    return "IMGROUTER_" + provider.upper().replace("-", "_") + "_"


def _float_env(name: str, default: float | None) -> float | None:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    try:
        return float(val)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {val!r}.") from e


def _int_env(name: str, default: int | None) -> int | None:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    try:
        return int(val)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {val!r}.") from e


def _bool_env(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Configuration for the provider orchestration core."""

    provider_settings: dict[str, ProviderSettings] = field(
        default_factory=lambda: dict(DEFAULT_PROVIDER_SETTINGS)
    )

    # Health cache
    health_cache_ttl: float = DEFAULT_HEALTH_CACHE_TTL
    health_check_timeout: float = 10.0

    # Default selection constraints (GenerationOptions fields left as None use these)
    default_preferred_tier: str = TIER_FREE
    default_max_cost: Decimal | None = None  # None = unconstrained
    default_max_time_seconds: float = DEFAULT_MAX_TIME_SECONDS
    fallback_enabled: bool = True

    # Submit-then-poll providers
    poll_max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS
    poll_interval: float = DEFAULT_POLL_INTERVAL

    # Output size requested from providers
    image_width: int = 1024
    image_height: int = 1024

    _validated: bool = field(default=False, repr=False)

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create a Config instance from environment variables.

        Environment variables:
            POLLINATIONS_API_KEY, HUGGING_FACE_API_KEY, BFL_API_KEY
            (or BLACK_FOREST_LABS_API_KEY), REPLICATE_API_TOKEN: provider credentials
            IMGROUTER_<PROVIDER>_TIMEOUT / _MAX_RETRIES / _RATE_LIMIT /
            _FAILURE_THRESHOLD / _RESET_TIMEOUT: per-provider overrides
            (e.g. IMGROUTER_BFL_FLUX_SCHNELL_TIMEOUT)
            IMGROUTER_HEALTH_CACHE_TTL: health cache TTL in seconds (default 60)
            IMGROUTER_DEFAULT_TIER: preferred tier (default free)
            IMGROUTER_MAX_COST: default max cost per image (default unconstrained)
            IMGROUTER_MAX_TIME: default max time in seconds (default 300)
            IMGROUTER_FALLBACK: enable fallback (default true)

        Returns:
            Config instance populated from environment

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        settings: dict[str, ProviderSettings] = {}
        for provider, defaults in DEFAULT_PROVIDER_SETTINGS.items():
            prefix = _env_prefix(provider)
            api_key = next(
                (os.getenv(name, "") for name in _API_KEY_ENV[provider] if os.getenv(name)),
                "",
            )
            settings[provider] = replace(
                defaults,
                timeout=_float_env(prefix + "TIMEOUT", defaults.timeout),
                max_retries=_int_env(prefix + "MAX_RETRIES", defaults.max_retries),
                rate_limit_per_minute=_int_env(
                    prefix + "RATE_LIMIT", defaults.rate_limit_per_minute
                ),
                failure_threshold=_int_env(
                    prefix + "FAILURE_THRESHOLD", defaults.failure_threshold
                ),
                reset_timeout=_float_env(prefix + "RESET_TIMEOUT", defaults.reset_timeout),
                api_key=api_key,
            )

        max_cost_raw = os.getenv("IMGROUTER_MAX_COST", "").strip()
        try:
            max_cost = Decimal(max_cost_raw) if max_cost_raw else None
        except InvalidOperation as e:
            raise ConfigurationError(
                f"IMGROUTER_MAX_COST must be a decimal, got {max_cost_raw!r}."
            ) from e

        return cls(
            provider_settings=settings,
            health_cache_ttl=_float_env("IMGROUTER_HEALTH_CACHE_TTL", DEFAULT_HEALTH_CACHE_TTL),
            default_preferred_tier=os.getenv("IMGROUTER_DEFAULT_TIER", TIER_FREE).strip()
            or TIER_FREE,
            default_max_cost=max_cost,
            default_max_time_seconds=_float_env("IMGROUTER_MAX_TIME", DEFAULT_MAX_TIME_SECONDS),
            fallback_enabled=_bool_env("IMGROUTER_FALLBACK", True),
        )

    def settings_for(self, provider: str) -> ProviderSettings:
        """Return settings for provider, falling back to generic defaults for unknown ids."""
        return self.provider_settings.get(provider) or ProviderSettings()

    def api_key_for(self, provider: str) -> str:
        return self.settings_for(provider).api_key

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        logger.debug("Validating config")

        if self.health_cache_ttl <= 0:
            raise ConfigurationError(
                f"health_cache_ttl must be positive, got {self.health_cache_ttl}."
            )
        if self.default_preferred_tier not in KNOWN_TIERS:
            raise ConfigurationError(
                f"Unknown default_preferred_tier: {self.default_preferred_tier!r}. "
                f"Must be one of: {', '.join(KNOWN_TIERS)}."
            )
        if self.default_max_cost is not None and self.default_max_cost < 0:
            raise ConfigurationError(
                f"default_max_cost must not be negative, got {self.default_max_cost}."
            )
        if self.default_max_time_seconds <= 0:
            raise ConfigurationError(
                f"default_max_time_seconds must be positive, got {self.default_max_time_seconds}."
            )
        if self.poll_max_attempts <= 0 or self.poll_interval < 0:
            raise ConfigurationError(
                "poll_max_attempts must be positive and poll_interval non-negative."
            )
        poll_budget = self.poll_max_attempts * self.poll_interval
        for provider, s in self.provider_settings.items():
            if s.timeout <= 0:
                raise ConfigurationError(f"{provider}: timeout must be positive, got {s.timeout}.")
            if s.max_retries < 1:
                raise ConfigurationError(
                    f"{provider}: max_retries must be at least 1, got {s.max_retries}."
                )
            if s.failure_threshold < 1:
                raise ConfigurationError(
                    f"{provider}: failure_threshold must be at least 1, got {s.failure_threshold}."
                )
            if s.reset_timeout < 0:
                raise ConfigurationError(
                    f"{provider}: reset_timeout must not be negative, got {s.reset_timeout}."
                )
            if s.rate_limit_per_minute is not None and s.rate_limit_per_minute < 1:
                raise ConfigurationError(
                    f"{provider}: rate_limit_per_minute must be at least 1 when set."
                )
            if provider in POLLING_PROVIDERS and s.timeout < poll_budget:
                raise ConfigurationError(
                    f"{provider}: timeout ({s.timeout}s) must cover the poll budget "
                    f"({self.poll_max_attempts} x {self.poll_interval}s = {poll_budget}s)."
                )

        self._validated = True

    def is_valid(self) -> bool:
        """
        Check if configuration has been validated.

        Returns:
            True if validate() has been called successfully
        """
        return self._validated

    def set_api_key(self, provider: str, api_key: str) -> None:
        """
        Set the API key for one provider.

        Raises:
            ConfigurationError: If the provider is unknown or the key is empty
        """
        if provider not in KNOWN_PROVIDERS:
            raise ConfigurationError(f"Unknown provider: {provider!r}.")
        if not api_key:
            raise ConfigurationError("API key cannot be empty")
        self.provider_settings[provider] = replace(self.settings_for(provider), api_key=api_key)
        self._validated = False  # Need to revalidate


# Global configuration instance
_global_config: Config | None = None


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        The global Config instance
    """
    global _global_config
    if _global_config is None:
        _global_config = Config.from_env()
    return _global_config


def set_config(config: Config) -> None:
    """
    Set the global configuration instance.

    Args:
        config: The Config instance to use globally
    """
    global _global_config
    _global_config = config
