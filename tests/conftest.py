"""Test fixtures for rpmproxy."""

from __future__ import annotations

import struct
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import pytest

from rpmproxy.domain.models import (
    ArtifactMetadata,
    Checksum,
    Dependency,
    LatestRelease,
    PackageSize,
    RepoConfig,
)
from rpmproxy.providers.base import Provider
from rpmproxy.services import rpm_header
from rpmproxy.storage.kv_store import InMemoryKeyValueStore

Entry = Tuple[int, int, bytes, int]

_ALIGNMENT = {
    rpm_header.TYPE_INT16: 2,
    rpm_header.TYPE_INT32: 4,
    rpm_header.TYPE_INT64: 8,
}


def _string(tag: int, value: str) -> Entry:
    return (tag, rpm_header.TYPE_STRING, value.encode() + b"\x00", 1)


def _i18n(tag: int, value: str) -> Entry:
    return (tag, rpm_header.TYPE_I18NSTRING, value.encode() + b"\x00", 1)


def _string_array(tag: int, values: Sequence[str]) -> Entry:
    return (tag, rpm_header.TYPE_STRING_ARRAY, b"".join(v.encode() + b"\x00" for v in values), len(values))


def _int32(tag: int, values: Sequence[int]) -> Entry:
    return (tag, rpm_header.TYPE_INT32, struct.pack(f">{len(values)}I", *values), len(values))


def _bin(tag: int, value: bytes) -> Entry:
    return (tag, rpm_header.TYPE_BIN, value, len(value))


def header_structure(entries: List[Entry]) -> bytes:
    index = b""
    store = bytearray()
    for tag, data_type, data, count in entries:
        align = _ALIGNMENT.get(data_type, 1)
        while len(store) % align:
            store.append(0)
        index += struct.pack(">iiii", tag, data_type, len(store), count)
        store += data
    preamble = rpm_header.HEADER_MAGIC + b"\x01" + b"\x00" * 4 + struct.pack(">II", len(entries), len(store))
    return preamble + index + bytes(store)


def build_rpm(
    name: str = "cursor",
    version: str = "1.7.28",
    release: str = "abc1234567",
    arch: str = "x86_64",
    build_time: int = 1759287435,
    installed_size: int = 123456,
    requires: Optional[List[Tuple[str, str, int]]] = None,
    payload: bytes = b"payload-bytes " * 4096,
    summary: str = "Cursor is an AI-first coding environment.",
) -> bytes:
    """Assemble a minimal but structurally valid RPM file."""
    if requires is None:
        requires = [
            ("rpmlib(CompressedFileNames)", "3.0.4-1", 0x1000000 | 10),
            ("libc.so.6()(64bit)", "", 0x4000),
            ("glibc", "2.28", 12),
            ("xdg-utils", "", 0),
        ]

    header = header_structure([
        _string(rpm_header.TAG_NAME, name),
        _string(rpm_header.TAG_VERSION, version),
        _string(rpm_header.TAG_RELEASE, release),
        _i18n(rpm_header.TAG_SUMMARY, summary),
        _i18n(rpm_header.TAG_DESCRIPTION, "Cursor IDE <editor> & tools"),
        _int32(rpm_header.TAG_BUILDTIME, [build_time]),
        _string(rpm_header.TAG_BUILDHOST, "builder.example.com"),
        _int32(rpm_header.TAG_SIZE, [installed_size]),
        _string(rpm_header.TAG_VENDOR, "Anysphere"),
        _string(rpm_header.TAG_LICENSE, "Proprietary"),
        _string(rpm_header.TAG_PACKAGER, "Cursor Team <support@cursor.com>"),
        _string(rpm_header.TAG_URL, "https://cursor.com"),
        _string(rpm_header.TAG_OS, "linux"),
        _string(rpm_header.TAG_ARCH, arch),
        _int32(rpm_header.TAG_REQUIREFLAGS, [r[2] for r in requires]),
        _string_array(rpm_header.TAG_REQUIRENAME, [r[0] for r in requires]),
        _string_array(rpm_header.TAG_REQUIREVERSION, [r[1] for r in requires]),
        _string(rpm_header.TAG_PLATFORM, "x86_64-redhat-linux-gnu"),
    ])

    signature = header_structure([
        _string(rpm_header.SIGTAG_SHA1, "da39a3ee5e6b4b0d3255bfef95601890afd80709"),
        _int32(rpm_header.SIGTAG_SIZE, [len(header) + len(payload)]),
        _bin(rpm_header.SIGTAG_MD5, bytes(range(16))),
    ])
    padding = b"\x00" * ((8 - len(signature) % 8) % 8)
    lead = rpm_header.LEAD_MAGIC + b"\x00" * (rpm_header.LEAD_SIZE - 4)
    return lead + signature + padding + header + payload


def origin_transport(
    files: Dict[str, bytes],
    *,
    range_supported: bool = True,
    requests: Optional[List[httpx.Request]] = None,
) -> httpx.MockTransport:
    """A fake artifact origin serving `files` keyed by URL."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        content = files.get(str(request.url))
        if content is None:
            return httpx.Response(404)

        byte_range = request.headers.get("range")
        if byte_range and range_supported:
            start, end = byte_range.removeprefix("bytes=").split("-")
            chunk = content[int(start): int(end) + 1]
            return httpx.Response(
                206,
                content=chunk,
                headers={"Content-Range": f"bytes {start}-{int(start) + len(chunk) - 1}/{len(content)}"},
            )
        return httpx.Response(200, content=content)

    return httpx.MockTransport(handler)


def make_metadata(
    version: str = "1.0.0",
    release: str = "aaa",
    build_time: int = 1700000000,
    checksum: str = "a" * 64,
    dependencies: Optional[List[Dependency]] = None,
    **overrides,
) -> ArtifactMetadata:
    values = dict(
        name="cursor",
        version=version,
        release=release,
        arch="x86_64",
        summary="Cursor IDE",
        description="AI code editor",
        vendor="Anysphere",
        license="Proprietary",
        packager="Cursor Team",
        filename=f"cursor-{version}-{release}.el8.x86_64.rpm",
        url=f"https://downloads.example.com/cursor-{version}.rpm",
        size=PackageSize(package=1000, installed=5000),
        checksum=Checksum(algorithm="sha256", value=checksum),
        build_time=datetime.fromtimestamp(build_time, tz=timezone.utc),
        dependencies=dependencies or [],
    )
    values.update(overrides)
    return ArtifactMetadata(**values)


class StaticProvider(Provider):
    """Provider returning a scripted sequence of releases."""

    provider_id = "static"

    def __init__(self, releases: Optional[List[LatestRelease]] = None, error: Optional[Exception] = None):
        self.releases = list(releases or [])
        self.error = error
        self.calls = 0

    def repo_config(self) -> RepoConfig:
        return RepoConfig(name="static", display_name="Static Test Repository", description="Test packages")

    async def fetch_latest_version(self) -> LatestRelease:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.releases[min(self.calls, len(self.releases)) - 1]


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def make_rpm() -> Callable[..., bytes]:
    return build_rpm


@pytest.fixture
def rpm_bytes() -> bytes:
    return build_rpm()


@pytest.fixture
def origin() -> Callable[..., httpx.MockTransport]:
    return origin_transport


@pytest.fixture
def metadata_factory() -> Callable[..., ArtifactMetadata]:
    return make_metadata


@pytest.fixture
def provider_factory() -> Callable[..., StaticProvider]:
    return StaticProvider
