from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from fastapi import Request

from rpmproxy.core.config import Settings
from rpmproxy.data.metadata_store import MetadataStore
from rpmproxy.data.version_ledger import VersionLedger
from rpmproxy.domain.errors import NotFound
from rpmproxy.providers import ProviderRegistry, build_provider_registry
from rpmproxy.providers.base import Provider
from rpmproxy.services.extractor import ArtifactMetadataExtractor
from rpmproxy.storage.kv_store import JsonFileKeyValueStore, KeyValueStore


@dataclass
class AppContext:
    """
    Everything a request handler or discovery cycle needs, built once per
    application from Settings.
    """

    settings: Settings
    store: KeyValueStore
    registry: ProviderRegistry
    extractor: ArtifactMetadataExtractor
    transport: Optional[httpx.AsyncBaseTransport] = None
    ledger: VersionLedger = field(init=False)
    _metadata_stores: Dict[str, MetadataStore] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.ledger = VersionLedger(self.store)

    def metadata_store(self, provider_id: str) -> MetadataStore:
        if provider_id not in self._metadata_stores:
            self._metadata_stores[provider_id] = MetadataStore(self.store, provider_id, self.extractor)
        return self._metadata_stores[provider_id]

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.settings.fetch_timeout_seconds,
            transport=self.transport,
        )


def build_context(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    registry: Optional[ProviderRegistry] = None,
    extractor: Optional[ArtifactMetadataExtractor] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppContext:
    if store is None:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        store = JsonFileKeyValueStore(settings.data_dir)
    if registry is None:
        registry = build_provider_registry(settings)
    if extractor is None:
        extractor = ArtifactMetadataExtractor(
            header_fetch_bytes=settings.header_fetch_bytes,
            fetch_timeout=settings.fetch_timeout_seconds,
            extraction_timeout=settings.extraction_timeout_seconds,
            transport=transport,
        )
    return AppContext(
        settings=settings,
        store=store,
        registry=registry,
        extractor=extractor,
        transport=transport,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_provider(provider_id: str, request: Request) -> Provider:
    provider = get_context(request).registry.get(provider_id)
    if provider is None:
        raise NotFound(f"Provider not found: {provider_id}")
    return provider
