from __future__ import annotations

import gzip
import io
import zlib
from typing import List, Optional, Tuple

import zstandard

from .constants import (
    CompressionKind,
    DEFAULT_GZIP_LEVEL,
    DEFAULT_MULTI_FRAME_SIZE,
    DEFAULT_ZSTD_LEVEL,
    ZSTD_MAGIC,
)
from .errors import DecompressionFailure, UnsupportedCompression


def as_kind(value: int, path_hash: Optional[int] = None) -> CompressionKind:
    try:
        return CompressionKind(value)
    except ValueError:
        raise UnsupportedCompression(value, path_hash) from None


class Codec:
    """Compression dispatch over the closed set of chunk codecs."""

    def __init__(self, kind: int, level: Optional[int] = None, frame_size: int = DEFAULT_MULTI_FRAME_SIZE):
        self.kind = as_kind(kind)
        self.level = level
        self.frame_size = frame_size

    def compress(self, data: bytes) -> Tuple[bytes, int]:
        """Compress ``data``; returns ``(payload, frame_count)``."""
        if self.kind == CompressionKind.NONE:
            return bytes(data), 0
        if self.kind == CompressionKind.GZIP:
            level = self.level if self.level is not None else DEFAULT_GZIP_LEVEL
            return gzip.compress(data, compresslevel=level, mtime=0), 0
        if self.kind == CompressionKind.ZSTD:
            return self._zstd().compress(data), 0
        if self.kind == CompressionKind.ZSTD_MULTI:
            return self._compress_frames(data)
        # Satellite payloads live outside the archive
        raise UnsupportedCompression(int(self.kind))

    def decompress(self, data: bytes, uncompressed_size: int, path_hash: Optional[int] = None) -> bytes:
        if self.kind == CompressionKind.NONE:
            out = bytes(data)
        elif self.kind == CompressionKind.GZIP:
            out = _gunzip(data, uncompressed_size, path_hash)
        elif self.kind == CompressionKind.ZSTD:
            out = _unzstd(data, uncompressed_size, path_hash)
        elif self.kind == CompressionKind.ZSTD_MULTI:
            out = _unzstd_multi(data, uncompressed_size, path_hash)
        else:
            raise UnsupportedCompression(int(self.kind), path_hash)
        if len(out) != uncompressed_size:
            raise DecompressionFailure(
                f"{self.kind} chunk decoded to {len(out)} bytes, expected {uncompressed_size}", path_hash
            )
        return out

    # internals
    def _zstd(self) -> zstandard.ZstdCompressor:
        level = self.level if self.level is not None else DEFAULT_ZSTD_LEVEL
        return zstandard.ZstdCompressor(level=level, write_content_size=True)

    def _compress_frames(self, data: bytes) -> Tuple[bytes, int]:
        if not data:
            return self._zstd().compress(b""), 1
        c = self._zstd()
        frames: List[bytes] = []
        for start in range(0, len(data), self.frame_size):
            frames.append(c.compress(data[start : start + self.frame_size]))
        return b"".join(frames), len(frames)


def _gunzip(data: bytes, uncompressed_size: int, path_hash: Optional[int]) -> bytes:
    out = bytearray()
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(data), mode="rb") as gz:
            # Read one byte past the declared size so oversize streams are caught
            while len(out) <= uncompressed_size:
                piece = gz.read(min(1 << 16, uncompressed_size + 1 - len(out)))
                if not piece:
                    break
                out += piece
    except (OSError, EOFError, zlib.error) as exc:
        raise DecompressionFailure(f"gzip inflate failed: {exc}", path_hash) from exc
    return bytes(out)


def _unzstd(data: bytes, uncompressed_size: int, path_hash: Optional[int]) -> bytes:
    view = memoryview(data)
    out, consumed = _zstd_frame(zstandard.ZstdDecompressor(), view, path_hash)
    if consumed != len(view):
        raise DecompressionFailure(
            f"{len(view) - consumed} trailing bytes after single zstd frame", path_hash
        )
    return out


def _unzstd_multi(data: bytes, uncompressed_size: int, path_hash: Optional[int]) -> bytes:
    """Decode a span of raw prefix bytes followed by consecutive zstd frames."""
    view = memoryview(data)
    first = view.tobytes().find(ZSTD_MAGIC)
    if first < 0:
        return bytes(view)
    out = bytearray(view[:first])
    pos = first
    d = zstandard.ZstdDecompressor()
    while pos < len(view) and len(out) <= uncompressed_size:
        frame, consumed = _zstd_frame(d, view[pos:], path_hash)
        out += frame
        pos += consumed
    return bytes(out)


def _zstd_frame(d: zstandard.ZstdDecompressor, view: memoryview, path_hash: Optional[int]) -> Tuple[bytes, int]:
    """Decode exactly one frame from the front of ``view``; returns ``(data, bytes_consumed)``."""
    try:
        dobj = d.decompressobj()
        out = dobj.decompress(view)
    except zstandard.ZstdError as exc:
        raise DecompressionFailure(f"zstd decompression failed: {exc}", path_hash) from exc
    if not dobj.eof:
        raise DecompressionFailure("truncated zstd frame", path_hash)
    consumed = len(view) - len(dobj.unused_data)
    if consumed <= 0:
        raise DecompressionFailure("zstd frame made no progress", path_hash)
    return out, consumed
