"""
Keyed storage of extracted package metadata.

One ArtifactMetadata record per release, stored under
`{provider}:metadata:{version}-{release}`.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional, Sequence

from pydantic import ValidationError

from rpmproxy.domain.models import METADATA_SCHEMA_VERSION, ArtifactMetadata, ReleaseRef
from rpmproxy.services.extractor import ArtifactMetadataExtractor
from rpmproxy.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


def metadata_key(provider_id: str, version: str, release: str) -> str:
    return f"{provider_id}:metadata:{version}-{release}"


class MetadataStore:
    def __init__(
        self,
        store: KeyValueStore,
        provider_id: str,
        extractor: Optional[ArtifactMetadataExtractor] = None,
    ):
        self.store = store
        self.provider_id = provider_id
        self.extractor = extractor

    def _key(self, version: str, release: str) -> str:
        return metadata_key(self.provider_id, version, release)

    async def has(self, version: str, release: str) -> bool:
        # Same rules as get(): unreadable or newer-schema records count as absent.
        return await self.get(version, release) is not None

    async def get(self, version: str, release: str) -> Optional[ArtifactMetadata]:
        """
        Load one record, or None if it is absent or unreadable.

        Records from a newer schema or with an invalid shape are treated as
        missing so they get re-extracted rather than served half-understood.
        """
        key = self._key(version, release)
        raw = await self.store.get(key)
        if raw is None:
            return None

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable metadata at {key}: {e}")
            return None

        schema_version = data.get("schema_version", METADATA_SCHEMA_VERSION) if isinstance(data, dict) else None
        if schema_version != METADATA_SCHEMA_VERSION:
            logger.warning(f"Ignoring metadata at {key} with schema version {schema_version}")
            return None

        try:
            return ArtifactMetadata.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid metadata at {key}: {e}")
            return None

    async def put(self, version: str, release: str, metadata: ArtifactMetadata) -> None:
        data = metadata.model_dump_json(by_alias=True)
        await self.store.put(self._key(version, release), data.encode("utf-8"))

    async def delete(self, version: str, release: str) -> None:
        await self.store.delete(self._key(version, release))

    async def get_many(self, releases: Sequence[ReleaseRef]) -> List[ArtifactMetadata]:
        """
        Load metadata for several releases concurrently, keeping input order.

        Releases whose metadata has not been extracted yet are left out.
        """
        results = await asyncio.gather(*(self.get(r.version, r.release) for r in releases))
        return [m for m in results if m is not None]

    async def extract_and_store(self, version: str, release: str, url: str, filename: str) -> ArtifactMetadata:
        """
        Run the extractor for one release and persist the result.

        Nothing is written if extraction fails.
        """
        if self.extractor is None:
            raise RuntimeError("MetadataStore has no extractor configured")

        logger.info(f"Extracting metadata for {self.provider_id}:{version}-{release}...")
        metadata = await self.extractor.extract(url, filename)
        await self.put(version, release, metadata)
        logger.info(f"Stored metadata for {self.provider_id}:{version}-{release}")
        return metadata
