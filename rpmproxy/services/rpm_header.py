"""
Read the lead, signature header and main header of an RPM file.

Only the leading region of the file is needed: the 96-byte lead, the
signature header (padded to an 8-byte boundary) and the main header. The
payload that follows is never touched, so a partial download of the first
few megabytes is enough to parse any real-world package.

Header structure layout:
    magic (3 bytes) | version (1) | reserved (4) | index count (4) | store size (4)
    index entries: tag (4) | type (4) | offset (4) | count (4)
    data store
All integers are big-endian.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from rpmproxy.domain.errors import ParseFailed

LEAD_SIZE = 96
LEAD_MAGIC = b"\xed\xab\xee\xdb"
HEADER_MAGIC = b"\x8e\xad\xe8"

_PREAMBLE = struct.Struct(">3sB4xII")
_INDEX_ENTRY = struct.Struct(">iiii")

# Data types
TYPE_NULL = 0
TYPE_CHAR = 1
TYPE_INT8 = 2
TYPE_INT16 = 3
TYPE_INT32 = 4
TYPE_INT64 = 5
TYPE_STRING = 6
TYPE_BIN = 7
TYPE_STRING_ARRAY = 8
TYPE_I18NSTRING = 9

_INT_FORMATS = {
    TYPE_INT8: "B",
    TYPE_INT16: "H",
    TYPE_INT32: "I",
    TYPE_INT64: "Q",
}

# Main header tags
TAG_NAME = 1000
TAG_VERSION = 1001
TAG_RELEASE = 1002
TAG_SUMMARY = 1004
TAG_DESCRIPTION = 1005
TAG_BUILDTIME = 1006
TAG_BUILDHOST = 1007
TAG_SIZE = 1009
TAG_VENDOR = 1011
TAG_LICENSE = 1014
TAG_PACKAGER = 1015
TAG_URL = 1020
TAG_OS = 1021
TAG_ARCH = 1022
TAG_REQUIREFLAGS = 1048
TAG_REQUIRENAME = 1049
TAG_REQUIREVERSION = 1050
TAG_PLATFORM = 1132
TAG_LONGSIZE = 5009

# Signature header tags
SIGTAG_SHA1 = 269
SIGTAG_SHA256 = 273
SIGTAG_SIZE = 1000
SIGTAG_MD5 = 1004
SIGTAG_LONGSIZE = 270


@dataclass
class RpmHeader:
    """
    Tags of one header structure, decoded to Python values.

    Strings decode to `str`, string arrays to `list[str]`, integer types to
    `list[int]` and binary blobs to `bytes`.
    """

    tags: Dict[int, Any] = field(default_factory=dict)
    length: int = 0

    def get_string(self, tag: int, default: str = "") -> str:
        value = self.tags.get(tag)
        if value is None:
            return default
        if isinstance(value, list):
            return value[0] if value else default
        return value

    def get_int(self, tag: int) -> Optional[int]:
        value = self.tags.get(tag)
        if isinstance(value, list) and value and isinstance(value[0], int):
            return value[0]
        return None

    def get_list(self, tag: int) -> List[Any]:
        value = self.tags.get(tag)
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]


@dataclass
class RpmPackageHeader:
    signature: RpmHeader
    header: RpmHeader
    # Offset of the main header from the start of the file.
    header_start: int = 0

    @property
    def name(self) -> str:
        return self.header.get_string(TAG_NAME)

    @property
    def version(self) -> str:
        return self.header.get_string(TAG_VERSION)

    @property
    def release(self) -> str:
        return self.header.get_string(TAG_RELEASE)

    @property
    def arch(self) -> str:
        return self.header.get_string(TAG_ARCH)

    @property
    def installed_size(self) -> int:
        size = self.header.get_int(TAG_LONGSIZE)
        if size is None:
            size = self.header.get_int(TAG_SIZE)
        return size or 0

    @property
    def build_time(self) -> datetime:
        seconds = self.header.get_int(TAG_BUILDTIME) or 0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    @property
    def signed_size(self) -> Optional[int]:
        """Size of main header plus payload, as recorded by the signature."""
        size = self.signature.get_int(SIGTAG_LONGSIZE)
        if size is None:
            size = self.signature.get_int(SIGTAG_SIZE)
        return size

    def requires(self) -> List[Tuple[str, str, int]]:
        """(name, version, flags) triples in header order."""
        names = self.header.get_list(TAG_REQUIRENAME)
        versions = self.header.get_list(TAG_REQUIREVERSION)
        flags = self.header.get_list(TAG_REQUIREFLAGS)
        result = []
        for i, name in enumerate(names):
            version = versions[i] if i < len(versions) else ""
            flag = flags[i] if i < len(flags) else 0
            result.append((name, version, flag))
        return result


def _decode_strings(store: bytes, offset: int, count: int) -> List[str]:
    values = []
    pos = offset
    for _ in range(count):
        end = store.find(b"\x00", pos)
        if end < 0:
            raise ParseFailed("Unterminated string in header data store")
        values.append(store[pos:end].decode("utf-8", errors="replace"))
        pos = end + 1
    return values


def _decode_value(store: bytes, data_type: int, offset: int, count: int) -> Any:
    if offset < 0 or offset > len(store):
        raise ParseFailed(f"Header entry offset {offset} outside data store")

    if data_type == TYPE_STRING:
        return _decode_strings(store, offset, 1)[0]
    if data_type in (TYPE_STRING_ARRAY, TYPE_I18NSTRING):
        return _decode_strings(store, offset, count)
    if data_type in (TYPE_BIN, TYPE_CHAR):
        end = offset + count
        if end > len(store):
            raise ParseFailed("Binary header entry runs past data store")
        return store[offset:end]
    if data_type in _INT_FORMATS:
        fmt = f">{count}{_INT_FORMATS[data_type]}"
        size = struct.calcsize(fmt)
        if offset + size > len(store):
            raise ParseFailed("Integer header entry runs past data store")
        return list(struct.unpack_from(fmt, store, offset))
    return None


def parse_header_structure(data: bytes, start: int) -> RpmHeader:
    """Parse one header structure beginning at `start`."""
    end_of_preamble = start + _PREAMBLE.size
    if len(data) < end_of_preamble:
        raise ParseFailed("Header region truncated before header preamble")

    magic, _version, index_count, store_size = _PREAMBLE.unpack_from(data, start)
    if magic != HEADER_MAGIC:
        raise ParseFailed(f"Bad header magic at offset {start}")

    store_start = end_of_preamble + index_count * _INDEX_ENTRY.size
    store_end = store_start + store_size
    if len(data) < store_end:
        raise ParseFailed(
            f"Header region truncated: need {store_end} bytes, have {len(data)}"
        )

    store = data[store_start:store_end]
    header = RpmHeader(length=store_end - start)
    for i in range(index_count):
        tag, data_type, offset, count = _INDEX_ENTRY.unpack_from(
            data, end_of_preamble + i * _INDEX_ENTRY.size
        )
        value = _decode_value(store, data_type, offset, count)
        if value is not None:
            header.tags[tag] = value
    return header


def parse_rpm_header(data: bytes) -> RpmPackageHeader:
    """
    Parse the lead, signature and main header from the start of an RPM file.

    Raises ParseFailed if the bytes do not look like an RPM or if the header
    region is cut off before the main header ends.
    """
    if len(data) < LEAD_SIZE or data[:4] != LEAD_MAGIC:
        raise ParseFailed("Not an RPM file (bad lead magic)")

    signature = parse_header_structure(data, LEAD_SIZE)

    # The signature header is padded to an 8-byte boundary.
    header_start = LEAD_SIZE + signature.length
    header_start += (8 - header_start % 8) % 8

    header = parse_header_structure(data, header_start)
    package = RpmPackageHeader(signature=signature, header=header, header_start=header_start)

    if not package.name or not package.version:
        raise ParseFailed("RPM header has no name or version")
    return package
