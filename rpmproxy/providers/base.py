"""
Provider contract for upstream release discovery.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from rpmproxy.domain.models import LatestRelease, RepoConfig


class Provider(ABC):
    """
    One upstream source of RPM releases.

    `provider_id` is used in URLs, storage keys and the .repo section name.
    """

    provider_id: str = ""

    @abstractmethod
    def repo_config(self) -> RepoConfig:
        """Repository identity published for this provider."""
        pass

    @abstractmethod
    async def fetch_latest_version(self) -> LatestRelease:
        """
        Look up the newest release upstream.

        Raises ProviderFetchFailed if the upstream API cannot be reached or
        answers with something unexpected.
        """
        pass
