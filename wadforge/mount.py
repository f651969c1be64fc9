from __future__ import annotations

import logging
from typing import BinaryIO, Optional, Tuple, Union

from .constants import DEFAULT_CHECKSUM, DEFAULT_DUPLICATE_POLICY
from .decoder import Decoder, DecodedChunk, SatelliteRef, source_length
from .errors import IoError, WadError
from .hashutil import ChecksumFn
from .table import ChunkTable, ChunkTableView
from .toc import ChunkEntry


log = logging.getLogger(__name__)


class Mount:
    """A read session over one seekable archive stream.

    The table is parsed once and never changes afterwards. Decoding goes through
    :meth:`decode`, which hands out the exclusive decoder together with a
    read-only table view.
    """

    def __init__(
        self,
        source: BinaryIO,
        table: ChunkTable,
        *,
        checksum: Union[str, ChecksumFn, None] = DEFAULT_CHECKSUM,
        verify_checksums: bool = False,
        owns_source: bool = False,
    ):
        self._source: Optional[BinaryIO] = source
        self._table = table
        self._owns_source = owns_source
        self._decoder = Decoder(
            source, length=source_length(source), checksum=checksum, verify_checksums=verify_checksums
        )

    @classmethod
    def mount(
        cls,
        source: BinaryIO,
        *,
        duplicates: str = DEFAULT_DUPLICATE_POLICY,
        verify_integrity: bool = False,
        checksum: Union[str, ChecksumFn, None] = DEFAULT_CHECKSUM,
        verify_checksums: bool = False,
    ) -> "Mount":
        table = ChunkTable.parse(source, duplicates=duplicates, verify_integrity=verify_integrity)
        log.debug("mounted v%d.%d archive with %d entries", table.version[0], table.version[1], len(table))
        return cls(source, table, checksum=checksum, verify_checksums=verify_checksums)

    @classmethod
    def open(cls, path: str, **kwargs) -> "Mount":
        """Mount the archive at ``path``; the file is closed by :meth:`close` or on ``with`` exit."""
        try:
            f = open(path, "rb")
        except OSError as exc:
            raise IoError(f"failed to open {path}: {exc}") from exc
        try:
            m = cls.mount(f, **kwargs)
        except (WadError, OSError, ValueError):
            # The handle never reaches the caller
            f.close()
            raise
        m._owns_source = True
        return m

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self._source is not None and self._owns_source:
            self._source.close()
        self._source = None

    def chunks(self) -> ChunkTable:
        return self._table

    def decode(self) -> Tuple[Decoder, ChunkTableView]:
        """Split into the exclusive decoder and a shareable table view."""
        self._check_open()
        return self._decoder, self._table.view()

    def into_parts(self) -> Tuple[BinaryIO, ChunkTable]:
        """Give up the session and return the raw source and the table."""
        self._check_open()
        src = self._source
        self._source = None
        return src, self._table

    def load_chunk_raw(self, entry: ChunkEntry) -> bytes:
        self._check_open()
        return self._decoder.decode_raw(entry)

    def load_chunk_decompressed(self, entry: ChunkEntry) -> Union[DecodedChunk, SatelliteRef]:
        self._check_open()
        return self._decoder.decode(entry)

    def read(self, path_hash: int) -> bytes:
        """Decode the chunk that ``lookup`` resolves for ``path_hash``."""
        entry = self._table.lookup(path_hash)
        if entry is None:
            raise KeyError(f"{path_hash:016x}")
        self._check_open()
        return self._decoder.decode_bytes(entry)

    def _check_open(self):
        if self._source is None:
            raise RuntimeError("Archive not open")
