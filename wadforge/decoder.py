from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

from .codec import Codec, as_kind
from .constants import CompressionKind
from .errors import DecompressionFailure, IoError, OutOfBounds, UnsupportedCompression
from .hashutil import ChecksumFn, resolve_checksum
from .toc import ChunkEntry


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodedChunk:
    data: bytes
    entry: ChunkEntry


@dataclass(frozen=True)
class SatelliteRef:
    """Points at chunk data stored outside this archive. Resolving it is up to the caller."""

    path_hash: int
    entry: ChunkEntry


def source_length(source: BinaryIO) -> int:
    try:
        pos = source.tell()
        end = source.seek(0, io.SEEK_END)
        source.seek(pos)
    except OSError as exc:
        raise IoError(f"failed to measure source: {exc}") from exc
    return end


def decompress_raw(data: bytes, compression: int, uncompressed_size: int, path_hash: Optional[int] = None) -> bytes:
    """Decompress a chunk's compressed span that was read elsewhere.

    Lets a pipeline read spans sequentially through one :class:`Decoder` and
    decompress them on other threads.
    """
    kind = as_kind(compression, path_hash)
    if kind == CompressionKind.SATELLITE:
        raise UnsupportedCompression(int(kind), path_hash)
    if kind == CompressionKind.NONE and len(data) != uncompressed_size:
        raise DecompressionFailure(
            f"stored chunk is {len(data)} bytes but declares {uncompressed_size}", path_hash
        )
    return Codec(kind).decompress(data, uncompressed_size, path_hash)


class Decoder:
    """Exclusive decode handle bound to one seekable source.

    Every call seeks and reads through the shared cursor, so a ``Decoder`` must be
    driven from one thread at a time. Compressed spans are read into a scratch
    buffer that is reused across calls and only grows.
    """

    def __init__(
        self,
        source: BinaryIO,
        *,
        length: Optional[int] = None,
        checksum: Union[str, ChecksumFn, None] = None,
        verify_checksums: bool = False,
    ):
        self._source = source
        self._length = source_length(source) if length is None else length
        self._checksum = resolve_checksum(checksum) if verify_checksums else None
        self._scratch = bytearray()

    @property
    def source_length(self) -> int:
        return self._length

    @property
    def scratch_capacity(self) -> int:
        return len(self._scratch)

    def decode(self, entry: ChunkEntry) -> Union[DecodedChunk, SatelliteRef]:
        kind = entry.kind
        if kind == CompressionKind.SATELLITE:
            return SatelliteRef(entry.path_hash, entry)
        span = self._read_span(entry)
        if kind == CompressionKind.NONE and entry.compressed_size != entry.uncompressed_size:
            raise DecompressionFailure(
                f"stored chunk sizes differ ({entry.compressed_size} != {entry.uncompressed_size})",
                entry.path_hash,
            )
        data = Codec(kind).decompress(span, entry.uncompressed_size, entry.path_hash)
        log.debug("decoded %016x (%s, %d -> %d bytes)", entry.path_hash, kind, entry.compressed_size, len(data))
        return DecodedChunk(data, entry)

    def decode_bytes(self, entry: ChunkEntry) -> bytes:
        """Like :meth:`decode` but returns the bytes; satellite entries raise ``UnsupportedCompression``."""
        out = self.decode(entry)
        if isinstance(out, SatelliteRef):
            raise UnsupportedCompression(entry.compression, entry.path_hash)
        return out.data

    def decode_raw(self, entry: ChunkEntry) -> bytes:
        """The compressed span exactly as stored."""
        if entry.is_satellite:
            raise UnsupportedCompression(entry.compression, entry.path_hash)
        return bytes(self._read_span(entry))

    # internals
    def _read_span(self, entry: ChunkEntry) -> memoryview:
        off, size = entry.data_offset, entry.compressed_size
        if off < 0 or size < 0 or off + size > self._length:
            raise OutOfBounds(
                f"span [{off}, {off + size}) exceeds source length {self._length}", entry.path_hash
            )
        if len(self._scratch) < size:
            # Replace rather than resize; earlier views may still be alive
            self._scratch = bytearray(size)
        view = memoryview(self._scratch)[:size]
        try:
            self._source.seek(off)
            got = self._source.readinto(view)
        except OSError as exc:
            raise IoError(f"failed to read chunk {entry.path_hash:016x}: {exc}") from exc
        if got != size:
            raise OutOfBounds(f"short read: {got} of {size} bytes at offset {off}", entry.path_hash)
        if self._checksum is not None and entry.checksum:
            actual = self._checksum(view)
            if actual != entry.checksum:
                raise DecompressionFailure(
                    f"checksum mismatch: stored {entry.checksum:016x}, computed {actual:016x}", entry.path_hash
                )
        return view
