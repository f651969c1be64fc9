from __future__ import annotations

import struct
from dataclasses import dataclass, replace
from typing import Optional

from .codec import as_kind
from .constants import CompressionKind, MAX_U32, MAX_U24, V3_U24_FRAME_MINOR


# Table rows, little endian
#  v1   (24): path_hash u64, data_offset u32, compressed u32, uncompressed u32, kind u8, pad[3]
#  v2   (24): ..., kind u8, duplicate u8, subchunk_index u16
#  v3.0 (32): ..., (frame_count<<4 | kind) u8, duplicate u8, start_frame u16, checksum u64
#  v3.4 (32): ..., (frame_count<<4 | kind) u8, start_frame u24, checksum u64
_V1_ROW = struct.Struct("<QIIIB3x")
_V2_ROW = struct.Struct("<QIIIBBH")
_V3_ROW = struct.Struct("<QIIIBBHQ")
_V3_4_ROW = struct.Struct("<QIIIB3sQ")


@dataclass(frozen=True)
class ChunkEntry:
    path_hash: int
    data_offset: int
    compressed_size: int
    uncompressed_size: int
    compression: int
    is_duplicate: bool = False
    frame_count: int = 0
    start_frame: int = 0
    checksum: Optional[int] = None

    @property
    def kind(self) -> CompressionKind:
        """The entry's codec; raises ``UnsupportedCompression`` for unknown wire values."""
        return as_kind(self.compression, self.path_hash)

    @property
    def is_satellite(self) -> bool:
        return self.compression == CompressionKind.SATELLITE

    @property
    def data_end(self) -> int:
        return self.data_offset + self.compressed_size

    def with_layout(self, data_offset: int, compressed_size: int, checksum: Optional[int]) -> "ChunkEntry":
        return replace(self, data_offset=data_offset, compressed_size=compressed_size, checksum=checksum)


def row_struct(major: int, minor: int) -> struct.Struct:
    if major == 1:
        return _V1_ROW
    if major == 2:
        return _V2_ROW
    if major == 3:
        return _V3_4_ROW if minor >= V3_U24_FRAME_MINOR else _V3_ROW
    raise ValueError(f"no table row layout for version {major}.{minor}")


def has_checksum(major: int) -> bool:
    return major >= 3


def unpack_entry(raw: bytes, major: int, minor: int) -> ChunkEntry:
    rs = row_struct(major, minor)
    if rs is _V1_ROW:
        h, off, csize, usize, kind = rs.unpack(raw)
        return ChunkEntry(h, off, csize, usize, kind)
    if rs is _V2_ROW:
        h, off, csize, usize, kind, dup, subchunk = rs.unpack(raw)
        return ChunkEntry(h, off, csize, usize, kind, is_duplicate=dup == 1, start_frame=subchunk)
    if rs is _V3_ROW:
        h, off, csize, usize, type_frames, dup, start, checksum = rs.unpack(raw)
        return ChunkEntry(
            h, off, csize, usize, type_frames & 0xF,
            is_duplicate=dup == 1, frame_count=type_frames >> 4, start_frame=start, checksum=checksum,
        )
    h, off, csize, usize, type_frames, start24, checksum = rs.unpack(raw)
    return ChunkEntry(
        h, off, csize, usize, type_frames & 0xF,
        frame_count=type_frames >> 4, start_frame=read_u24_frame(start24), checksum=checksum,
    )


def pack_entry(e: ChunkEntry, major: int, minor: int) -> bytes:
    rs = row_struct(major, minor)
    for name in ("data_offset", "compressed_size", "uncompressed_size"):
        if not 0 <= getattr(e, name) <= MAX_U32:
            raise ValueError(f"{name} of chunk {e.path_hash:016x} does not fit in 32 bits")
    if rs is _V1_ROW:
        return rs.pack(e.path_hash, e.data_offset, e.compressed_size, e.uncompressed_size, e.compression)
    if rs is _V2_ROW:
        return rs.pack(
            e.path_hash, e.data_offset, e.compressed_size, e.uncompressed_size,
            e.compression, 1 if e.is_duplicate else 0, _limit(e.start_frame, 0xFFFF, "start_frame"),
        )
    if not 0 <= e.frame_count <= 0xF:
        raise ValueError(f"frame_count {e.frame_count} does not fit in 4 bits")
    if not 0 <= e.compression <= 0xF:
        raise ValueError(f"compression {e.compression} does not fit in 4 bits")
    type_frames = (e.frame_count << 4) | e.compression
    checksum = e.checksum or 0
    if rs is _V3_ROW:
        return rs.pack(
            e.path_hash, e.data_offset, e.compressed_size, e.uncompressed_size,
            type_frames, 1 if e.is_duplicate else 0, _limit(e.start_frame, 0xFFFF, "start_frame"), checksum,
        )
    return rs.pack(
        e.path_hash, e.data_offset, e.compressed_size, e.uncompressed_size,
        type_frames, write_u24_frame(e.start_frame), checksum,
    )


def read_u24_frame(raw: bytes) -> int:
    # Stored as (high, low, middle)
    hi, lo, mid = raw[0], raw[1], raw[2]
    return (hi << 16) | (mid << 8) | lo


def write_u24_frame(value: int) -> bytes:
    value = _limit(value, MAX_U24, "start_frame")
    return bytes([(value >> 16) & 0xFF, value & 0xFF, (value >> 8) & 0xFF])


def _limit(value: int, maximum: int, name: str) -> int:
    if not 0 <= value <= maximum:
        raise ValueError(f"{name} {value} out of range")
    return value
