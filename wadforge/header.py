from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .constants import (
    WAD_MAGIC,
    V1_TOC_OFFSET,
    V2_TOC_OFFSET,
    V3_TOC_OFFSET,
    V1_ENTRY_SIZE,
    V2_ENTRY_SIZE,
    V3_ENTRY_SIZE,
    V2_ECDSA_SIZE,
    V3_SIGNATURE_SIZE,
)
from .errors import MalformedHeader


_PREFIX_STRUCT = struct.Struct("<2sBB")
# v1: toc_offset u16, entry_size u16, entry_count u32
_V1_STRUCT = struct.Struct("<HHI")
# v2: ecdsa_len u8, ecdsa[83], checksum u64, toc_offset u16, entry_size u16, entry_count u32
_V2_STRUCT = struct.Struct("<B83sQHHI")
# v3: signature[256], checksum u64, entry_count u32
_V3_STRUCT = struct.Struct("<256sQI")

_TOC_OFFSETS = {1: V1_TOC_OFFSET, 2: V2_TOC_OFFSET, 3: V3_TOC_OFFSET}
_ENTRY_SIZES = {1: V1_ENTRY_SIZE, 2: V2_ENTRY_SIZE, 3: V3_ENTRY_SIZE}


@dataclass
class Header:
    version_major: int
    version_minor: int
    entry_count: int
    checksum: Optional[int] = None
    signature: Optional[bytes] = None

    @property
    def version(self):
        return (self.version_major, self.version_minor)

    @property
    def toc_offset(self) -> int:
        return _TOC_OFFSETS[self.version_major]

    @property
    def entry_size(self) -> int:
        return _ENTRY_SIZES[self.version_major]

    def pack(self) -> bytes:
        return pack_header(self)


def header_size(major: int) -> int:
    try:
        return _TOC_OFFSETS[major]
    except KeyError:
        raise MalformedHeader(f"unsupported archive major version {major}") from None


def read_header(f: BinaryIO) -> Header:
    raw = f.read(_PREFIX_STRUCT.size)
    if len(raw) != _PREFIX_STRUCT.size:
        raise MalformedHeader("Header too short")
    magic, major, minor = _PREFIX_STRUCT.unpack(raw)
    if magic != WAD_MAGIC:
        raise MalformedHeader(f"Bad archive magic {magic!r}")
    if major not in _TOC_OFFSETS:
        raise MalformedHeader(f"unsupported archive version {major}.{minor}")
    body_struct = {1: _V1_STRUCT, 2: _V2_STRUCT, 3: _V3_STRUCT}[major]
    body = f.read(body_struct.size)
    if len(body) != body_struct.size:
        raise MalformedHeader(f"v{major} header truncated")
    if major == 1:
        toc_offset, entry_size, count = _V1_STRUCT.unpack(body)
        _check_layout(major, toc_offset, entry_size)
        return Header(major, minor, count)
    if major == 2:
        ecdsa_len, ecdsa, checksum, toc_offset, entry_size, count = _V2_STRUCT.unpack(body)
        _check_layout(major, toc_offset, entry_size)
        if ecdsa_len > V2_ECDSA_SIZE:
            raise MalformedHeader(f"v2 signature length {ecdsa_len} exceeds {V2_ECDSA_SIZE}")
        return Header(major, minor, count, checksum=checksum, signature=ecdsa[:ecdsa_len])
    signature, checksum, count = _V3_STRUCT.unpack(body)
    return Header(major, minor, count, checksum=checksum, signature=signature)


def pack_header(h: Header) -> bytes:
    prefix = _PREFIX_STRUCT.pack(WAD_MAGIC, h.version_major, h.version_minor)
    if h.version_major == 1:
        return prefix + _V1_STRUCT.pack(V1_TOC_OFFSET, V1_ENTRY_SIZE, h.entry_count)
    if h.version_major == 2:
        sig = h.signature or b""
        if len(sig) > V2_ECDSA_SIZE:
            raise ValueError(f"v2 signature must be at most {V2_ECDSA_SIZE} bytes")
        return prefix + _V2_STRUCT.pack(
            len(sig), sig.ljust(V2_ECDSA_SIZE, b"\x00"), h.checksum or 0, V2_TOC_OFFSET, V2_ENTRY_SIZE, h.entry_count
        )
    if h.version_major == 3:
        sig = h.signature or b"\x00" * V3_SIGNATURE_SIZE
        if len(sig) != V3_SIGNATURE_SIZE:
            raise ValueError(f"v3 signature must be {V3_SIGNATURE_SIZE} bytes")
        return prefix + _V3_STRUCT.pack(sig, h.checksum or 0, h.entry_count)
    raise ValueError(f"cannot write archive version {h.version_major}.{h.version_minor}")


def _check_layout(major: int, toc_offset: int, entry_size: int) -> None:
    if toc_offset != _TOC_OFFSETS[major]:
        raise MalformedHeader(f"v{major} toc offset {toc_offset} != {_TOC_OFFSETS[major]}")
    if entry_size != _ENTRY_SIZES[major]:
        raise MalformedHeader(f"v{major} entry size {entry_size} != {_ENTRY_SIZES[major]}")
