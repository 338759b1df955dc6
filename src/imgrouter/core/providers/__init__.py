"""
Image generation providers: protocol, registry, and built-in implementations.

Built-in providers are imported lazily in create_provider() so importing the
protocol does not pull in every provider module.
"""

import httpx

from imgrouter.core.config import (
    KNOWN_PROVIDERS,
    PROVIDER_BFL,
    PROVIDER_HUGGINGFACE,
    PROVIDER_POLLINATIONS,
    PROVIDER_REPLICATE,
    Config,
)
from imgrouter.core.providers.base import ImageGenerationProvider as ImageGenerationProvider
from imgrouter.core.providers.base import supports_style as supports_style
from imgrouter.core.providers.registry import ProviderRegistry as ProviderRegistry
from imgrouter.utils.exceptions import ConfigurationError


def create_provider(
    provider_id: str, config: Config, client: httpx.AsyncClient | None = None
) -> ImageGenerationProvider:
    """
    Build a built-in provider from config.

    Raises:
        ConfigurationError: If provider_id is not a built-in provider
    """
    settings = config.settings_for(provider_id)
    if provider_id == PROVIDER_POLLINATIONS:
        from imgrouter.core.providers.pollinations import PollinationsProvider

        return PollinationsProvider(
            settings, client=client, width=config.image_width, height=config.image_height
        )
    if provider_id == PROVIDER_HUGGINGFACE:
        from imgrouter.core.providers.huggingface import HuggingFaceProvider

        return HuggingFaceProvider(settings, client=client)
    if provider_id == PROVIDER_BFL:
        from imgrouter.core.providers.bfl import BFLProvider

        return BFLProvider(
            settings,
            client=client,
            width=config.image_width,
            height=config.image_height,
            poll_max_attempts=config.poll_max_attempts,
            poll_interval=config.poll_interval,
        )
    if provider_id == PROVIDER_REPLICATE:
        from imgrouter.core.providers.replicate import ReplicateProvider

        return ReplicateProvider(
            settings,
            client=client,
            poll_max_attempts=config.poll_max_attempts,
            poll_interval=config.poll_interval,
        )
    raise ConfigurationError(
        f"Unknown provider: {provider_id!r}. Must be one of: {', '.join(KNOWN_PROVIDERS)}."
    )


def default_providers(
    config: Config, client: httpx.AsyncClient | None = None
) -> list[ImageGenerationProvider]:
    """
    Built-in providers in priority order.

    The keyless free providers are always included; the paid ones only when
    their key or token is configured.
    """
    providers = [
        create_provider(PROVIDER_POLLINATIONS, config, client),
        create_provider(PROVIDER_HUGGINGFACE, config, client),
    ]
    for provider_id in (PROVIDER_BFL, PROVIDER_REPLICATE):
        if config.api_key_for(provider_id):
            providers.append(create_provider(provider_id, config, client))
    return providers
