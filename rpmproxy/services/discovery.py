"""
Scheduled release discovery and metadata backfill.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from rpmproxy.data.metadata_store import MetadataStore
from rpmproxy.data.version_ledger import VersionLedger
from rpmproxy.domain.errors import RpmProxyError
from rpmproxy.providers.base import Provider

if TYPE_CHECKING:
    from rpmproxy.core.dependencies import AppContext

logger = logging.getLogger(__name__)


def last_check_key(provider_id: str) -> str:
    return f"{provider_id}:last-version-check"


@dataclass
class DiscoveryResult:
    provider_id: str
    new_release: bool = False
    extracted: List[str] = field(default_factory=list)
    error: Optional[str] = None


async def run_discovery_cycle(
    provider: Provider,
    ledger: VersionLedger,
    metadata_store: MetadataStore,
    max_extractions: int = 1,
) -> DiscoveryResult:
    """
    One discovery cycle for a provider:
    - record the provider's latest release if it is new and extract its metadata
    - otherwise backfill metadata for recorded releases that lack it
    - stamp `{provider}:last-version-check`

    At most `max_extractions` RPMs are extracted per cycle. Errors are logged
    and reported in the result; they never propagate to the caller.
    """
    provider_id = provider.provider_id
    result = DiscoveryResult(provider_id=provider_id)
    logger.info(f"Running scheduled version check for provider: {provider_id}")

    try:
        result.new_release = await ledger.check_and_update(provider)

        if result.new_release:
            latest = await ledger.latest(provider_id)
            if latest and max_extractions > 0:
                await metadata_store.extract_and_store(
                    latest.version, latest.release, latest.download_url, latest.filename
                )
                result.extracted.append(latest.identity_key)
        else:
            logger.info(f"No new version for {provider_id}")

            for version in await ledger.all(provider_id):
                if len(result.extracted) >= max_extractions:
                    break
                if await metadata_store.has(version.version, version.release):
                    continue

                logger.info(f"Missing metadata for {provider_id}:{version.identity_key}, extracting...")
                await metadata_store.extract_and_store(
                    version.version, version.release, version.download_url, version.filename
                )
                result.extracted.append(version.identity_key)

        await ledger.store.put(
            last_check_key(provider_id), str(int(time.time() * 1000)).encode("utf-8")
        )
    except RpmProxyError as e:
        logger.error(f"Error in scheduled handler for {provider_id}: {e}")
        result.error = str(e)

    return result


async def run_all_providers(context: "AppContext") -> List[DiscoveryResult]:
    results = []
    for provider in context.registry:
        results.append(
            await run_discovery_cycle(
                provider,
                context.ledger,
                context.metadata_store(provider.provider_id),
                context.settings.max_extractions_per_run,
            )
        )
    return results


async def periodic_discovery_loop(context: "AppContext") -> None:
    """
    Run a discovery cycle for every provider, then sleep for the configured
    check interval.
    """
    interval = context.settings.check_interval_seconds
    while True:
        try:
            await run_all_providers(context)
        except Exception as e:
            logger.error(f"Error in discovery loop: {e}", exc_info=True)
        await asyncio.sleep(interval)
