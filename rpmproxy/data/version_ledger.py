"""
Per-provider ledger of discovered releases.

Each provider owns one `VersionIndex` document stored under
`{provider}:version-index`. Releases are recorded at most once (by their
`version-release` identity key) and kept newest first.

Recording is a plain read-modify-write of the whole document. Two callers
racing on the same provider can both see a release as new and both write;
the last write wins. Discovery runs a few times a day per provider, so this
is accepted rather than guarded with a lock.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from pydantic import ValidationError

from rpmproxy.domain.errors import ProviderFetchFailed, StorageUnavailable
from rpmproxy.domain.models import LatestRelease, ReleaseDescriptor, VersionIndex, utcnow
from rpmproxy.storage.kv_store import KeyValueStore

if TYPE_CHECKING:
    from rpmproxy.providers.base import Provider

logger = logging.getLogger(__name__)


def version_index_key(provider_id: str) -> str:
    return f"{provider_id}:version-index"


class VersionLedger:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get_ledger(self, provider_id: str) -> VersionIndex:
        """
        Return the stored ledger, or an empty one if nothing was recorded yet.
        """
        raw = await self.store.get(version_index_key(provider_id))
        if raw is None:
            return VersionIndex()
        try:
            return VersionIndex.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Corrupt version index for {provider_id}: {e}")
            raise StorageUnavailable(f"Corrupt version index for {provider_id}") from e

    async def save_ledger(self, provider_id: str, index: VersionIndex) -> None:
        data = index.model_dump_json(by_alias=True)
        await self.store.put(version_index_key(provider_id), data.encode("utf-8"))

    async def record_if_new(self, provider_id: str, candidate: LatestRelease) -> bool:
        """
        Prepend `candidate` to the ledger unless its identity key is present.

        The discovery time is stamped here, once, and shared with the
        ledger's `updated` field.

        Returns True when the release was recorded, False when it was already
        known (in which case nothing is written).
        """
        index = await self.get_ledger(provider_id)
        key = candidate.identity_key

        if index.contains(key):
            logger.debug(f"Version {key} already recorded for {provider_id}")
            return False

        now = utcnow()
        entry = ReleaseDescriptor(
            version=candidate.version,
            release=candidate.release,
            download_url=candidate.download_url,
            filename=candidate.filename,
            discovered_at=now,
        )
        index.versions.insert(0, entry)
        index.updated = now

        await self.save_ledger(provider_id, index)
        logger.info(f"Recorded new version {key} for {provider_id}")
        return True

    async def check_and_update(self, provider: "Provider") -> bool:
        """
        Ask the provider for its latest release and record it if new.

        A provider failure leaves the ledger untouched.
        """
        try:
            latest = await provider.fetch_latest_version()
        except ProviderFetchFailed:
            raise
        except Exception as e:
            raise ProviderFetchFailed(f"{provider.provider_id}: {e}") from e

        return await self.record_if_new(provider.provider_id, latest)

    async def latest(self, provider_id: str) -> Optional[ReleaseDescriptor]:
        index = await self.get_ledger(provider_id)
        return index.latest

    async def all(self, provider_id: str) -> List[ReleaseDescriptor]:
        index = await self.get_ledger(provider_id)
        return index.versions

    async def find_by_filename(self, provider_id: str, filename: str) -> Optional[ReleaseDescriptor]:
        for version in await self.all(provider_id):
            if version.filename == filename:
                return version
        return None
