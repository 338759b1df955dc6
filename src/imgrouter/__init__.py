"""
imgrouter - image generation provider orchestration

A Python package that routes image generation requests across interchangeable
remote providers (Pollinations, HuggingFace, Black Forest Labs, Replicate),
choosing by cost, speed and health, and falling back when a provider fails.

Library usage:
- Build a ProviderManager explicitly and keep it for the process lifetime:
  ProviderManager.from_config(config, client=httpx.AsyncClient()) registers the
  built-in providers enabled by config; ProviderManager([...]) takes your own.
- Configuration comes from Config.from_env() (reads .env via python-dotenv) or
  is constructed directly; get_config() / set_config() hold a shared instance.
- Health verdicts are cached per manager for health_cache_ttl seconds; use
  manager.clear_health_cache() to force fresh probes.
- Logging: control verbosity with set_verbosity(0|1|2) or configure_logging(verbose_level, quiet);
  IMGROUTER_VERBOSITY env (0/1/2) is read when the CLI runs.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("imgrouter")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source in development)
    __version__ = "0.0.0.dev"

from imgrouter.core.circuit_breaker import CircuitBreaker, CircuitSnapshot, CircuitState
from imgrouter.core.config import Config, ProviderSettings, get_config, set_config
from imgrouter.core.manager import ProviderManager, ScoringWeights
from imgrouter.core.models import (
    CUSTOM_STYLE,
    CostEstimate,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    HealthState,
    HealthStatus,
    ProviderSelection,
    ProviderStatus,
    ProviderTier,
    ScoredProvider,
    SystemStatus,
)
from imgrouter.core.providers import ImageGenerationProvider, create_provider
from imgrouter.core.retry import RetryExecutor, RetryPolicy
from imgrouter.core.storage import InMemoryStorage, ObjectStorage, persist_result
from imgrouter.core.styles import build_prompt, known_styles, validate_request
from imgrouter.logging_config import configure_logging, set_verbosity
from imgrouter.utils.cache import HealthCache
from imgrouter.utils.exceptions import (
    AuthenticationError,
    BudgetExceededError,
    CancellationError,
    CircuitOpenError,
    ConfigurationError,
    ContentModeratedError,
    ErrorKind,
    ImgrouterError,
    InsufficientCreditsError,
    InvalidPayloadError,
    NetworkError,
    NoHealthyProvidersError,
    NoSuitableProviderError,
    PollingTimeoutError,
    RateLimitedError,
    RemoteError,
    RequestModeratedError,
    RequestTimeoutError,
    ServerError,
    UnsupportedStyleError,
    ValidationError,
)

__all__ = [
    "AuthenticationError",
    "BudgetExceededError",
    "CUSTOM_STYLE",
    "CancellationError",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitSnapshot",
    "CircuitState",
    "Config",
    "ConfigurationError",
    "ContentModeratedError",
    "CostEstimate",
    "ErrorKind",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "HealthCache",
    "HealthState",
    "HealthStatus",
    "ImageGenerationProvider",
    "ImgrouterError",
    "InMemoryStorage",
    "InsufficientCreditsError",
    "InvalidPayloadError",
    "NetworkError",
    "NoHealthyProvidersError",
    "NoSuitableProviderError",
    "ObjectStorage",
    "PollingTimeoutError",
    "ProviderManager",
    "ProviderSelection",
    "ProviderSettings",
    "ProviderStatus",
    "ProviderTier",
    "RateLimitedError",
    "RemoteError",
    "RequestModeratedError",
    "RequestTimeoutError",
    "RetryExecutor",
    "RetryPolicy",
    "ScoredProvider",
    "ScoringWeights",
    "ServerError",
    "SystemStatus",
    "UnsupportedStyleError",
    "ValidationError",
    "build_prompt",
    "configure_logging",
    "create_provider",
    "get_config",
    "known_styles",
    "persist_result",
    "set_config",
    "set_verbosity",
    "validate_request",
]
