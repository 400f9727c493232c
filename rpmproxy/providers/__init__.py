"""
Provider variants and the registry that maps provider ids to them.

The registry is built from Settings and handed to whichever component needs
provider lookup; there is no module-level provider table.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Optional

from rpmproxy.core.config import Settings
from rpmproxy.domain.errors import ConfigError
from rpmproxy.providers.base import Provider
from rpmproxy.providers.cursor import CursorProvider

PROVIDER_FACTORIES: Dict[str, Callable[[Settings], Provider]] = {
    "cursor": lambda settings: CursorProvider(timeout=settings.fetch_timeout_seconds),
}


class ProviderRegistry:
    def __init__(self, providers: Optional[List[Provider]] = None):
        self._providers: Dict[str, Provider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: Provider) -> None:
        if provider.provider_id in self._providers:
            raise ConfigError(f"Provider {provider.provider_id} registered twice")
        self._providers[provider.provider_id] = provider

    def get(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    registry = ProviderRegistry()
    for provider_id in settings.providers:
        factory = PROVIDER_FACTORIES.get(provider_id)
        if factory is None:
            raise ConfigError(f"Unknown provider: {provider_id}")
        registry.register(factory(settings))
    return registry


__all__ = [
    "CursorProvider",
    "Provider",
    "ProviderRegistry",
    "build_provider_registry",
]
