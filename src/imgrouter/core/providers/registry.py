"""
Ordered registry of provider instances.

Registration order is significant: the manager breaks score ties in favour
of the provider registered first.
"""

from imgrouter.core.providers.base import ImageGenerationProvider


class ProviderRegistry:
    """Registry mapping provider name to an ImageGenerationProvider, in registration order."""

    def __init__(self) -> None:
        self._impls: dict[str, ImageGenerationProvider] = {}

    def register(self, impl: ImageGenerationProvider) -> None:
        """Register a provider under its name. Re-registering a name replaces it in place."""
        self._impls[impl.name] = impl

    def unregister(self, provider_id: str) -> ImageGenerationProvider | None:
        """Remove and return the provider, or None if unknown."""
        return self._impls.pop(provider_id, None)

    def get(self, provider_id: str) -> ImageGenerationProvider | None:
        """Return the registered provider for provider_id, or None if unknown."""
        return self._impls.get(provider_id)

    def provider_ids(self) -> list[str]:
        """Return registered provider ids in registration order."""
        return list(self._impls.keys())

    def providers(self) -> list[ImageGenerationProvider]:
        return list(self._impls.values())

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._impls

    def __len__(self) -> int:
        return len(self._impls)
