"""
Pydantic models for the RPM repository proxy.

This module defines the data that flows through the metadata pipeline:
- Release references and descriptors recorded in the per-provider ledger
- The version index document persisted for each provider
- Extracted RPM package metadata and its dependency records
- Provider repository configuration

Persisted models keep the on-disk JSON field names through aliases, so
`model_dump_json(by_alias=True)` produces exactly the stored layout.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


METADATA_SCHEMA_VERSION = 1

ComparisonFlag = Literal["EQ", "LT", "LE", "GT", "GE"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Release Models
# ---------------------------------------------------------------------------


class ReleaseRef(BaseModel):
    """
    The (version, release) pair that identifies one published artifact.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(description="Dotted numeric upstream version, e.g. '1.7.28'.")
    release: str = Field(description="Opaque short release identifier, e.g. a truncated commit hash.")

    @property
    def identity_key(self) -> str:
        """Key used for ledger membership and metadata storage: 'version-release'."""
        return f"{self.version}-{self.release}"


class LatestRelease(ReleaseRef):
    """
    Release information reported by a provider's upstream API.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    download_url: str = Field(alias="url", description="Origin URL the RPM is downloaded from.")
    filename: str = Field(description="RPM filename served to package managers.")


class ReleaseDescriptor(LatestRelease):
    """
    A discovered release as recorded in the ledger.

    Persisted inside `{provider}:version-index` as
    `{version, release, url, filename, added}`.
    """

    discovered_at: datetime = Field(
        default_factory=utcnow,
        alias="added",
        description="When this release was first recorded.",
    )

    @field_validator("discovered_at")
    @classmethod
    def _discovered_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class VersionIndex(BaseModel):
    """
    The per-provider ledger of discovered releases, newest first.

    Insertion order is the ordering: new releases are prepended and the list
    is never re-sorted by version number.
    """

    model_config = ConfigDict(populate_by_name=True)

    versions: List[ReleaseDescriptor] = Field(
        default_factory=list,
        description="Recorded releases, newest first.",
    )
    updated: Optional[datetime] = Field(
        default=None,
        description="When a release was last recorded, or None for an empty ledger.",
    )

    def contains(self, identity_key: str) -> bool:
        return any(v.identity_key == identity_key for v in self.versions)

    @property
    def latest(self) -> Optional[ReleaseDescriptor]:
        return self.versions[0] if self.versions else None


# ---------------------------------------------------------------------------
# Package Metadata Models
# ---------------------------------------------------------------------------


class Dependency(BaseModel):
    """
    One `Requires` entry of an RPM.

    A comparison flag is only meaningful together with a version, so a
    dependency without a version never carries flags.
    """

    name: str
    version: Optional[str] = None
    flags: Optional[ComparisonFlag] = None

    @model_validator(mode="after")
    def _flags_need_version(self) -> "Dependency":
        if self.flags is not None and not self.version:
            raise ValueError("dependency flags require a version")
        return self


class Checksum(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    algorithm: str = Field(default="sha256", alias="type")
    value: str = Field(description="Lowercase hex digest over the full artifact content.")


class PackageSize(BaseModel):
    package: int = Field(description="Transferred RPM size in bytes (origin Content-Length).")
    installed: int = Field(description="Installed size in bytes from the RPM header.")


class HeaderDigests(BaseModel):
    """
    Integrity values recorded inside the RPM signature header.

    Used for cross-validation only; the published checksum is always the
    SHA-256 computed over the downloaded file.
    """

    md5: Optional[str] = None
    sha1: Optional[str] = None
    sha256: Optional[str] = None
    signed_size: Optional[int] = Field(
        default=None,
        description="Header + payload size recorded in the signature header.",
    )


class ArtifactMetadata(BaseModel):
    """
    Metadata extracted from one RPM release.

    Persisted at `{provider}:metadata:{version}-{release}`. Unknown fields are
    ignored on read; records written by a newer schema are rejected by the
    metadata store.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    schema_version: int = Field(default=METADATA_SCHEMA_VERSION)

    name: str
    version: str
    release: str
    arch: str
    summary: str = ""
    description: str = ""
    vendor: str = ""
    license: str = ""
    packager: str = ""
    buildhost: str = ""
    homepage: str = Field(default="", description="Upstream project URL from the RPM header.")
    os: str = ""
    platform: str = ""

    filename: str
    url: str = Field(default="", description="Origin URL the metadata was extracted from.")
    size: PackageSize
    checksum: Checksum
    build_time: datetime = Field(alias="buildTime")

    dependencies: List[Dependency] = Field(default_factory=list)
    digest: HeaderDigests = Field(default_factory=HeaderDigests)

    @field_validator("build_time")
    @classmethod
    def _build_time_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def build_timestamp(self) -> int:
        """Build time as whole seconds since the epoch."""
        return int(self.build_time.timestamp())


# ---------------------------------------------------------------------------
# Provider Models
# ---------------------------------------------------------------------------


class RepoConfig(BaseModel):
    """
    Repository identity published for one provider.
    """

    name: str = Field(description="Repository id used in URLs, storage keys and the .repo section.")
    display_name: str = Field(description="Human-friendly repository name.")
    description: str = Field(default="", description="Short description shown on index pages.")
