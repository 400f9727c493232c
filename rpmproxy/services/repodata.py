"""
Render YUM/DNF repository metadata (repodata) from extracted package metadata.

The four documents are regenerated on every request, so the output must be a
pure function of the package list: every timestamp comes from the newest
package's build time (the first entry, as the ledger keeps newest first) and
gzip output is written with a fixed mtime. Requesting the index twice for an
unchanged package set yields byte-identical documents.
"""
from __future__ import annotations

import gzip
import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rpmproxy.domain.models import ArtifactMetadata

NS_COMMON = "http://linux.duke.edu/metadata/common"
NS_RPM = "http://linux.duke.edu/metadata/rpm"
NS_FILELISTS = "http://linux.duke.edu/metadata/filelists"
NS_OTHER = "http://linux.duke.edu/metadata/other"
NS_REPO = "http://linux.duke.edu/metadata/repo"

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def escape_xml(value: Optional[object]) -> str:
    """Escape text for element content and double-quoted attributes."""
    if value is None:
        return ""
    text = str(value)
    for char, entity in _XML_ESCAPES:
        text = text.replace(char, entity)
    return text


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def gzip_bytes(data: bytes) -> bytes:
    # mtime=0 and no filename keep the gzip header stable across runs.
    return gzip.compress(data, compresslevel=9, mtime=0)


REPODATA_DOCUMENTS = ("repomd.xml", "primary.xml.gz", "filelists.xml.gz", "other.xml.gz")


@dataclass(frozen=True)
class RepoDocument:
    """One compressed repodata document with both checksums and sizes."""

    xml: bytes
    gz: bytes
    checksum: str
    open_checksum: str
    size: int
    open_size: int

    @classmethod
    def from_xml(cls, xml: str) -> "RepoDocument":
        raw = xml.encode("utf-8")
        gz = gzip_bytes(raw)
        return cls(
            xml=raw,
            gz=gz,
            checksum=sha256_hex(gz),
            open_checksum=sha256_hex(raw),
            size=len(gz),
            open_size=len(raw),
        )


@dataclass(frozen=True)
class RepositoryIndexBundle:
    revision: int
    repomd: bytes
    primary: RepoDocument
    filelists: RepoDocument
    other: RepoDocument

    def files(self) -> Dict[str, Tuple[bytes, str]]:
        """Served file name -> (content, media type)."""
        return {
            "repomd.xml": (self.repomd, "application/xml"),
            "primary.xml.gz": (self.primary.gz, "application/x-gzip"),
            "filelists.xml.gz": (self.filelists.gz, "application/x-gzip"),
            "other.xml.gz": (self.other.gz, "application/x-gzip"),
        }


# ---------------------------------------------------------------------------
# Document renderers
# ---------------------------------------------------------------------------


def _version_element(pkg: ArtifactMetadata) -> str:
    return f'<version epoch="0" ver="{escape_xml(pkg.version)}" rel="{escape_xml(pkg.release)}"/>'


def _provides_entry(name: str, pkg: ArtifactMetadata) -> str:
    return (
        f'        <rpm:entry name="{escape_xml(name)}" flags="EQ" epoch="0" '
        f'ver="{escape_xml(pkg.version)}" rel="{escape_xml(pkg.release)}"/>\n'
    )


def render_primary(packages: Sequence[ArtifactMetadata], timestamp: int) -> str:
    parts: List[str] = [
        XML_DECLARATION,
        f'<metadata xmlns="{NS_COMMON}" xmlns:rpm="{NS_RPM}" packages="{len(packages)}">\n',
    ]

    for pkg in packages:
        parts.append('  <package type="rpm">\n')
        parts.append(f"    <name>{escape_xml(pkg.name)}</name>\n")
        parts.append(f"    <arch>{escape_xml(pkg.arch)}</arch>\n")
        parts.append(f"    {_version_element(pkg)}\n")
        parts.append(
            f'    <checksum type="{escape_xml(pkg.checksum.algorithm)}" pkgid="YES">'
            f"{escape_xml(pkg.checksum.value)}</checksum>\n"
        )
        parts.append(f"    <summary>{escape_xml(pkg.summary)}</summary>\n")
        parts.append(f"    <description>{escape_xml(pkg.description)}</description>\n")
        parts.append(f"    <packager>{escape_xml(pkg.packager)}</packager>\n")
        parts.append(f"    <url>{escape_xml(pkg.homepage)}</url>\n")
        parts.append(f'    <time file="{timestamp}" build="{pkg.build_timestamp}"/>\n')
        parts.append(
            f'    <size package="{pkg.size.package}" installed="{pkg.size.installed}" archive="0"/>\n'
        )
        parts.append(f'    <location href="{escape_xml(pkg.filename)}"/>\n')

        parts.append("    <format>\n")
        parts.append(f"      <rpm:license>{escape_xml(pkg.license)}</rpm:license>\n")
        parts.append(f"      <rpm:vendor>{escape_xml(pkg.vendor)}</rpm:vendor>\n")
        parts.append(f"      <rpm:buildhost>{escape_xml(pkg.buildhost)}</rpm:buildhost>\n")
        parts.append('      <rpm:header-range start="0" end="0"/>\n')

        parts.append("      <rpm:provides>\n")
        parts.append(_provides_entry(pkg.name, pkg))
        parts.append(_provides_entry(f"{pkg.name}({pkg.arch})", pkg))
        parts.append("      </rpm:provides>\n")

        if pkg.dependencies:
            parts.append("      <rpm:requires>\n")
            for dep in pkg.dependencies:
                flags = f' flags="{escape_xml(dep.flags)}"' if dep.flags else ""
                version = f' ver="{escape_xml(dep.version)}"' if dep.version else ""
                parts.append(f'        <rpm:entry name="{escape_xml(dep.name)}"{flags}{version}/>\n')
            parts.append("      </rpm:requires>\n")

        parts.append("    </format>\n")
        parts.append("  </package>\n")

    parts.append("</metadata>\n")
    return "".join(parts)


def _render_package_stubs(root: str, namespace: str, packages: Sequence[ArtifactMetadata]) -> str:
    parts: List[str] = [
        XML_DECLARATION,
        f'<{root} xmlns="{namespace}" packages="{len(packages)}">\n',
    ]
    for pkg in packages:
        parts.append(
            f'  <package pkgid="{escape_xml(pkg.checksum.value)}" '
            f'name="{escape_xml(pkg.name)}" arch="{escape_xml(pkg.arch)}">\n'
        )
        parts.append(f"    {_version_element(pkg)}\n")
        parts.append("  </package>\n")
    parts.append(f"</{root}>\n")
    return "".join(parts)


def render_filelists(packages: Sequence[ArtifactMetadata]) -> str:
    # File lists are omitted; clients fall back to primary for resolution.
    return _render_package_stubs("filelists", NS_FILELISTS, packages)


def render_other(packages: Sequence[ArtifactMetadata]) -> str:
    return _render_package_stubs("otherdata", NS_OTHER, packages)


def render_repomd(timestamp: int, documents: Sequence[Tuple[str, RepoDocument]]) -> str:
    parts: List[str] = [
        XML_DECLARATION,
        f'<repomd xmlns="{NS_REPO}" xmlns:rpm="{NS_RPM}">\n',
        f"  <revision>{timestamp}</revision>\n",
    ]
    for data_type, doc in documents:
        parts.append(f'  <data type="{data_type}">\n')
        parts.append(f'    <checksum type="sha256">{doc.checksum}</checksum>\n')
        parts.append(f'    <open-checksum type="sha256">{doc.open_checksum}</open-checksum>\n')
        parts.append(f'    <location href="repodata/{data_type}.xml.gz"/>\n')
        parts.append(f"    <timestamp>{timestamp}</timestamp>\n")
        parts.append(f"    <size>{doc.size}</size>\n")
        parts.append(f"    <open-size>{doc.open_size}</open-size>\n")
        parts.append("  </data>\n")
    parts.append("</repomd>\n")
    return "".join(parts)


def generate_repo_metadata(packages: Sequence[ArtifactMetadata]) -> RepositoryIndexBundle:
    """
    Build all four repodata documents for `packages` (newest first).

    The revision is the newest package's build time, or 0 for an empty list.
    """
    timestamp = packages[0].build_timestamp if packages else 0

    primary = RepoDocument.from_xml(render_primary(packages, timestamp))
    filelists = RepoDocument.from_xml(render_filelists(packages))
    other = RepoDocument.from_xml(render_other(packages))

    repomd = render_repomd(
        timestamp,
        [("primary", primary), ("filelists", filelists), ("other", other)],
    )

    return RepositoryIndexBundle(
        revision=timestamp,
        repomd=repomd.encode("utf-8"),
        primary=primary,
        filelists=filelists,
        other=other,
    )
