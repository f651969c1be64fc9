from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

from .codec import Codec, as_kind
from .constants import (
    CompressionKind,
    DEFAULT_CHECKSUM,
    DEFAULT_CODEC,
    DEFAULT_MULTI_FRAME_SIZE,
    SUPPORTED_MAJORS,
    VERSION_LATEST,
)
from .errors import DuplicateHash, IoError, UnsupportedCompression
from .hashutil import ChecksumFn, path_hash as hash_path, resolve_checksum, table_digest
from .header import Header, header_size, pack_header, read_header
from .table import ChunkTable
from .toc import ChunkEntry, has_checksum, pack_entry, row_struct


log = logging.getLogger(__name__)

_MAX_FRAME_COUNT = 0xF


@dataclass
class PendingEntry:
    path_hash: int
    data: bytes
    codec: CompressionKind


class Builder:
    """Accumulates chunks and writes them out as a complete archive.

    The table precedes the data but offsets are only known once each payload is
    compressed, so :meth:`build` reserves the table region, streams the payloads
    in ascending hash order and then fills in the table. Sinks that cannot seek
    get the data section buffered in memory instead.
    """

    def __init__(
        self,
        version: Tuple[int, int] = VERSION_LATEST,
        *,
        checksum: Union[str, ChecksumFn, None] = DEFAULT_CHECKSUM,
        level: Optional[int] = None,
        frame_size: int = DEFAULT_MULTI_FRAME_SIZE,
        signature: Optional[bytes] = None,
    ):
        major, minor = version
        if major not in SUPPORTED_MAJORS:
            raise ValueError(f"cannot write archive version {major}.{minor}")
        if frame_size <= 0:
            raise ValueError("frame_size must be positive")
        self.version = (major, minor)
        self.level = level
        self.frame_size = frame_size
        self.signature = signature
        self._checksum = resolve_checksum(checksum)
        self._pending: Dict[int, PendingEntry] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, path_hash: object) -> bool:
        return path_hash in self._pending

    def add(self, path_hash: int, data: bytes, codec: int = DEFAULT_CODEC, *, overwrite: bool = False) -> None:
        """Queue ``data`` under ``path_hash``.

        Raises ``DuplicateHash`` if the hash is already queued, unless ``overwrite`` is set.
        """
        if not 0 <= path_hash <= 0xFFFFFFFFFFFFFFFF:
            raise ValueError(f"path hash {path_hash} is not a 64-bit value")
        kind = as_kind(codec, path_hash)
        if kind == CompressionKind.SATELLITE:
            raise UnsupportedCompression(int(kind), path_hash)
        if path_hash in self._pending and not overwrite:
            raise DuplicateHash(path_hash)
        self._pending[path_hash] = PendingEntry(path_hash, bytes(data), kind)

    def add_path(self, path: str, data: bytes, codec: int = DEFAULT_CODEC, *, overwrite: bool = False) -> int:
        h = hash_path(path)
        self.add(h, data, codec, overwrite=overwrite)
        return h

    def overwrite(self, path_hash: int, data: bytes, codec: int = DEFAULT_CODEC) -> None:
        self.add(path_hash, data, codec, overwrite=True)

    def remove(self, path_hash: int) -> None:
        del self._pending[path_hash]

    def build(self, sink: BinaryIO) -> ChunkTable:
        """Write the archive to ``sink`` and return the table that was written.

        The queued entries are consumed.
        """
        major, minor = self.version
        pending = [self._pending[h] for h in sorted(self._pending)]
        table_start = header_size(major)
        data_start = table_start + row_struct(major, minor).size * len(pending)
        try:
            seekable = _is_seekable(sink)
            if seekable:
                base = sink.tell()
                # Reserve header and table; patched once offsets are known
                sink.write(b"\x00" * data_start)
                entries = self._write_data(sink, pending, data_start)
                end = sink.tell()
                sink.seek(base)
                table = self._write_table(sink, entries)
                sink.seek(end)
            else:
                buf = io.BytesIO()
                entries = self._write_data(buf, pending, data_start)
                table = self._write_table(sink, entries)
                sink.write(buf.getbuffer())
        except OSError as exc:
            raise IoError(f"failed to write archive: {exc}") from exc
        self._pending.clear()
        log.debug("built v%d.%d archive with %d entries (seekable=%s)", major, minor, len(entries), seekable)
        return table

    def build_to_path(self, path: str) -> ChunkTable:
        try:
            f = open(path, "wb")
        except OSError as exc:
            raise IoError(f"failed to create {path}: {exc}") from exc
        with f:
            return self.build(f)

    # internals
    def _write_data(self, out: BinaryIO, pending: List[PendingEntry], data_start: int) -> List[ChunkEntry]:
        major, _minor = self.version
        checksum = self._checksum
        entries: List[ChunkEntry] = []
        offset = data_start
        for p in pending:
            payload, frames = self._codec_for(p).compress(p.data)
            out.write(payload)
            entries.append(
                ChunkEntry(
                    path_hash=p.path_hash,
                    data_offset=offset,
                    compressed_size=len(payload),
                    uncompressed_size=len(p.data),
                    compression=int(p.codec),
                    frame_count=frames if major >= 3 else 0,
                    checksum=_row_checksum(major, checksum, payload),
                )
            )
            offset += len(payload)
        return entries

    def _write_table(self, out: BinaryIO, entries: List[ChunkEntry]) -> ChunkTable:
        major, minor = self.version
        rows = b"".join(pack_entry(e, major, minor) for e in entries)
        header = Header(major, minor, len(entries), signature=self.signature)
        if major >= 3:
            header.checksum = table_digest(major, minor, rows)
        elif major == 2:
            header.checksum = 0
        head = pack_header(header)
        out.write(head)
        out.write(rows)
        # Describe exactly what a reader will parse back from these bytes
        return ChunkTable(read_header(io.BytesIO(head)), entries)

    def _codec_for(self, p: PendingEntry) -> Codec:
        frame_size = self.frame_size
        if p.codec == CompressionKind.ZSTD_MULTI:
            # The row has four bits for the frame count
            frame_size = max(frame_size, -(-len(p.data) // _MAX_FRAME_COUNT))
        return Codec(p.codec, level=self.level, frame_size=frame_size)


def _row_checksum(major: int, checksum: Optional[ChecksumFn], payload: bytes) -> Optional[int]:
    # Rows with a checksum field store 0 when checksums are disabled
    if not has_checksum(major):
        return None
    return checksum(payload) if checksum is not None else 0


def _is_seekable(f: BinaryIO) -> bool:
    seekable = getattr(f, "seekable", None)
    if seekable is None:
        return False
    try:
        return bool(seekable())
    except (OSError, ValueError):
        return False
