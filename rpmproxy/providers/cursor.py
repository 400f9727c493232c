"""
Cursor IDE provider.
"""
from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from rpmproxy.domain.errors import ProviderFetchFailed
from rpmproxy.domain.models import LatestRelease, RepoConfig
from rpmproxy.providers.base import Provider

logger = logging.getLogger(__name__)

CURSOR_API_URL = "https://www.cursor.com/api/download?platform=linux-x64&releaseTrack=latest"
CURSOR_RPM_URL = "https://api2.cursor.sh/updates/download/golden/linux-x64-rpm/cursor/{major_minor}"
RPM_URL_PATTERN = re.compile(r"cursor-(\d+\.\d+\.\d+)\.el8")
RELEASE_LENGTH = 10


class CursorProvider(Provider):
    provider_id = "cursor"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self._transport = transport
        self._timeout = timeout

    def repo_config(self) -> RepoConfig:
        return RepoConfig(
            name="cursor",
            display_name="Cursor IDE Repository",
            description="Cursor IDE RPM packages",
        )

    async def fetch_latest_version(self) -> LatestRelease:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.get(
                    CURSOR_API_URL,
                    headers={"User-Agent": "RPM-Repo-Proxy", "Cache-Control": "no-cache"},
                )
                response.raise_for_status()
                data = response.json()

                version = str(data["version"])
                commit_sha = str(data["commitSha"])

                # The RPM endpoint is keyed by major.minor and redirects to the
                # concrete file; the redirect target is the download URL.
                major_minor = ".".join(version.split(".")[:2])
                rpm_response = await client.head(
                    CURSOR_RPM_URL.format(major_minor=major_minor),
                    follow_redirects=False,
                )
        except httpx.HTTPError as e:
            raise ProviderFetchFailed(f"Cursor API request failed: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderFetchFailed(f"Unexpected Cursor API response: {e}") from e

        rpm_url = rpm_response.headers.get("location")
        if not rpm_url:
            raise ProviderFetchFailed("Failed to get RPM URL from redirect")

        if not RPM_URL_PATTERN.search(rpm_url):
            raise ProviderFetchFailed(f"Failed to extract version from RPM URL {rpm_url}")

        # The RPM URL carries no build number, so the commit hash stands in for it.
        release = commit_sha[:RELEASE_LENGTH]
        logger.debug(f"Cursor latest: {version}-{release} at {rpm_url}")

        return LatestRelease(
            version=version,
            release=release,
            download_url=rpm_url,
            filename=f"cursor-{version}-{release}.el8.x86_64.rpm",
        )
