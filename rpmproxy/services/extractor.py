"""
Extract package metadata from a remote RPM without holding it in memory.

Two facts are needed for every release: the structural metadata stored in
the RPM header (a small region at the start of the file) and a SHA-256
checksum over the *entire* file. RPMs can be hundreds of megabytes while the
process runs under a tight memory ceiling.

Independent fetches instead of a shared stream:
    Teeing one download to a header parser and a hasher makes the stream
    buffer whatever the slower consumer has not read yet. The parser is done
    after a few megabytes while the hasher needs every byte, so the backlog
    can grow to the size of the whole file. Instead the extractor issues two
    independent requests against the same URL, concurrently:

    * a range request for the first `header_fetch_bytes` bytes, parsed as the
      RPM header;
    * a full request whose body is fed chunk by chunk into a hash object.

    Both are started together and awaited together, so wall-clock cost is
    the slower of the two. If either fails the other is cancelled and no
    metadata is produced.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import List, Optional, Tuple

import httpx

from rpmproxy.domain.errors import ChecksumIncomplete, FetchFailed, ParseFailed, RpmProxyError
from rpmproxy.domain.models import (
    ArtifactMetadata,
    Checksum,
    Dependency,
    HeaderDigests,
    PackageSize,
)
from rpmproxy.services import rpm_header
from rpmproxy.services.rpm_header import RpmPackageHeader, parse_rpm_header

logger = logging.getLogger(__name__)

DEFAULT_HEADER_FETCH_BYTES = 5 * 1024 * 1024

# RPMSENSE comparison bits live in the low nibble of the flags value.
COMPARISON_MASK = 0x0F
FLAG_NAMES = {
    2: "LT",
    4: "GT",
    8: "EQ",
    10: "LE",  # LT | EQ
    12: "GE",  # GT | EQ
}


def comparison_flag(flags: int) -> Optional[str]:
    """Map an RPM dependency flags value to EQ/LT/LE/GT/GE, or None."""
    if not flags:
        return None
    return FLAG_NAMES.get(flags & COMPARISON_MASK)


def build_dependencies(requires: List[Tuple[str, str, int]]) -> List[Dependency]:
    """
    Turn (name, version, flags) triples into Dependency records.

    A flag is only attached when the dependency has a non-empty version.
    """
    dependencies = []
    for name, version, flags in requires:
        if version:
            dependencies.append(Dependency(name=name, version=version, flags=comparison_flag(flags)))
        else:
            dependencies.append(Dependency(name=name))
    return dependencies


def header_digests(pkg: RpmPackageHeader) -> HeaderDigests:
    md5 = pkg.signature.tags.get(rpm_header.SIGTAG_MD5)
    return HeaderDigests(
        md5=md5.hex() if isinstance(md5, bytes) else None,
        sha1=pkg.signature.get_string(rpm_header.SIGTAG_SHA1) or None,
        sha256=pkg.signature.get_string(rpm_header.SIGTAG_SHA256) or None,
        signed_size=pkg.signed_size,
    )


class ArtifactMetadataExtractor:
    """
    Produces ArtifactMetadata for one RPM URL.

    The httpx transport can be injected for tests; by default a regular
    network transport is used.
    """

    def __init__(
        self,
        header_fetch_bytes: int = DEFAULT_HEADER_FETCH_BYTES,
        fetch_timeout: float = 60.0,
        extraction_timeout: float = 600.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.header_fetch_bytes = header_fetch_bytes
        self.fetch_timeout = fetch_timeout
        self.extraction_timeout = extraction_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.fetch_timeout,
            transport=self._transport,
            headers={"Accept-Encoding": "identity"},
        )

    async def extract(self, url: str, filename: str) -> ArtifactMetadata:
        """
        Fetch header and checksum concurrently and combine them.

        Raises FetchFailed, ParseFailed or ChecksumIncomplete. Nothing is
        returned unless both halves succeed.
        """
        logger.info(f"Extracting metadata for {filename} from {url}")
        try:
            return await asyncio.wait_for(
                self._extract(url, filename), timeout=self.extraction_timeout
            )
        except asyncio.TimeoutError as e:
            raise FetchFailed(
                f"Extraction of {filename} exceeded {self.extraction_timeout}s"
            ) from e

    async def _extract(self, url: str, filename: str) -> ArtifactMetadata:
        async with self._client() as client:
            header_task = asyncio.create_task(self.fetch_header(client, url))
            hash_task = asyncio.create_task(self.fetch_checksum(client, url))
            tasks = [header_task, hash_task]
            try:
                pkg, (checksum, package_size) = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        logger.debug(f"Parsed {pkg.name}-{pkg.version}-{pkg.release}.{pkg.arch}, sha256 {checksum}")

        signed_size = pkg.signed_size
        if signed_size is not None and pkg.header_start + signed_size != package_size:
            logger.warning(
                f"{filename}: signature records {pkg.header_start + signed_size} bytes "
                f"but origin sent {package_size}"
            )

        return ArtifactMetadata(
            name=pkg.name,
            version=pkg.version,
            release=pkg.release,
            arch=pkg.arch,
            summary=pkg.header.get_string(rpm_header.TAG_SUMMARY),
            description=pkg.header.get_string(rpm_header.TAG_DESCRIPTION),
            vendor=pkg.header.get_string(rpm_header.TAG_VENDOR),
            license=pkg.header.get_string(rpm_header.TAG_LICENSE),
            packager=pkg.header.get_string(rpm_header.TAG_PACKAGER),
            buildhost=pkg.header.get_string(rpm_header.TAG_BUILDHOST),
            homepage=pkg.header.get_string(rpm_header.TAG_URL),
            os=pkg.header.get_string(rpm_header.TAG_OS),
            platform=pkg.header.get_string(rpm_header.TAG_PLATFORM),
            filename=filename,
            url=url,
            size=PackageSize(package=package_size, installed=pkg.installed_size),
            checksum=Checksum(algorithm="sha256", value=checksum),
            build_time=pkg.build_time,
            dependencies=build_dependencies(pkg.requires()),
            digest=header_digests(pkg),
        )

    async def fetch_header(self, client: httpx.AsyncClient, url: str) -> RpmPackageHeader:
        """
        Download at most `header_fetch_bytes` leading bytes and parse them.

        The origin must honour the range request; a full 200 response means
        it does not, and the download is abandoned.
        """
        limit = self.header_fetch_bytes
        buf = bytearray()
        try:
            async with client.stream("GET", url, headers={"Range": f"bytes=0-{limit - 1}"}) as response:
                if response.status_code != 206:
                    raise FetchFailed(
                        f"Failed to fetch RPM headers: status {response.status_code} "
                        f"(expected 206 Partial Content)"
                    )
                async for chunk in response.aiter_bytes():
                    buf.extend(chunk[: limit - len(buf)])
                    if len(buf) >= limit:
                        break
        except httpx.HTTPError as e:
            raise FetchFailed(f"Failed to fetch RPM headers from {url}: {e}") from e

        logger.debug(f"Fetched {len(buf)} header bytes from {url}")
        return parse_rpm_header(bytes(buf))

    async def fetch_checksum(self, client: httpx.AsyncClient, url: str) -> Tuple[str, int]:
        """
        Stream the whole file into SHA-256.

        Returns the hex digest and the package size. The size is the declared
        Content-Length, falling back to the byte count when the origin sends
        none.
        """
        hasher = hashlib.sha256()
        received = 0
        try:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchFailed(f"Failed to fetch RPM: status {response.status_code}")

                declared = response.headers.get("content-length")
                try:
                    async for chunk in response.aiter_bytes():
                        hasher.update(chunk)
                        received += len(chunk)
                except httpx.TimeoutException:
                    raise
                except httpx.HTTPError as e:
                    raise ChecksumIncomplete(
                        f"Stream for {url} ended after {received} bytes: {e}"
                    ) from e
        except RpmProxyError:
            raise
        except httpx.HTTPError as e:
            raise FetchFailed(f"Failed to fetch RPM from {url}: {e}") from e

        if declared is None:
            return hasher.hexdigest(), received

        package_size = int(declared)
        if received != package_size:
            raise ChecksumIncomplete(
                f"Stream for {url} ended after {received} of {package_size} bytes"
            )
        return hasher.hexdigest(), package_size
