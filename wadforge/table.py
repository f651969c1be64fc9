from __future__ import annotations

import io
from typing import BinaryIO, Dict, Iterator, List, Optional, Sequence, Tuple

from .constants import DEFAULT_DUPLICATE_POLICY, DUPLICATES_FIRST_WINS, DUPLICATES_LAST_WINS
from .errors import IoError, MalformedHeader, TruncatedTable
from .hashutil import table_digest
from .header import Header, pack_header, read_header
from .toc import ChunkEntry, pack_entry, row_struct, unpack_entry


class ChunkTable:
    """The archive's entry table: rows in on-disk order plus a path-hash index.

    Duplicate path hashes are legal on the wire (patch overlays). Every row is kept;
    :meth:`lookup` returns one row per hash, chosen by ``duplicates``
    (``"last"``: latest table-order row wins, ``"first"``: earliest wins).
    """

    def __init__(self, header: Header, rows: Sequence[ChunkEntry], duplicates: str = DEFAULT_DUPLICATE_POLICY):
        if duplicates not in (DUPLICATES_LAST_WINS, DUPLICATES_FIRST_WINS):
            raise ValueError(f"unknown duplicate policy: {duplicates!r}")
        self.header = header
        self.duplicate_policy = duplicates
        self._rows: Tuple[ChunkEntry, ...] = tuple(rows)
        self._index: Dict[int, int] = {}
        for i, e in enumerate(self._rows):
            if duplicates == DUPLICATES_FIRST_WINS and e.path_hash in self._index:
                continue
            self._index[e.path_hash] = i

    @classmethod
    def parse(
        cls,
        source: BinaryIO,
        *,
        duplicates: str = DEFAULT_DUPLICATE_POLICY,
        verify_integrity: bool = False,
    ) -> "ChunkTable":
        """Read the header and ``entry_count`` rows from the start of ``source``.

        Compression kinds are not validated here; an unknown kind only fails when
        that entry is decoded.
        """
        try:
            source.seek(0)
            header = read_header(source)
            rs = row_struct(header.version_major, header.version_minor)
            want = rs.size * header.entry_count
            pos = source.tell()
            remaining = source.seek(0, io.SEEK_END) - pos
            source.seek(pos)
            # The declared count is untrusted; size the read by what the source holds
            if want > remaining:
                raise TruncatedTable(
                    f"table declares {header.entry_count} entries but only {remaining // rs.size} fit in the source"
                )
            raw = source.read(want)
        except OSError as exc:
            raise IoError(f"failed to read archive table: {exc}") from exc
        if len(raw) != want:
            raise TruncatedTable(
                f"table declares {header.entry_count} entries but only {len(raw) // rs.size} are present"
            )
        if verify_integrity and header.version_major >= 3:
            digest = table_digest(header.version_major, header.version_minor, raw)
            if digest != header.checksum:
                raise MalformedHeader(f"table checksum mismatch: {header.checksum:016x} != {digest:016x}")
        rows = [
            unpack_entry(raw[off : off + rs.size], header.version_major, header.version_minor)
            for off in range(0, want, rs.size)
        ]
        return cls(header, rows, duplicates=duplicates)

    @property
    def version(self) -> Tuple[int, int]:
        return self.header.version

    def entries(self) -> Iterator[ChunkEntry]:
        """Rows in on-disk order. Each call starts a fresh pass."""
        return iter(self._rows)

    def __iter__(self) -> Iterator[ChunkEntry]:
        return self.entries()

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, path_hash: object) -> bool:
        return path_hash in self._index

    def lookup(self, path_hash: int) -> Optional[ChunkEntry]:
        i = self._index.get(path_hash)
        return None if i is None else self._rows[i]

    get = lookup

    def occurrences(self, path_hash: int) -> List[ChunkEntry]:
        return [e for e in self._rows if e.path_hash == path_hash]

    def duplicates(self) -> Dict[int, List[ChunkEntry]]:
        """Every hash that appears on more than one row, with all its rows in table order."""
        seen: Dict[int, List[ChunkEntry]] = {}
        for e in self._rows:
            seen.setdefault(e.path_hash, []).append(e)
        return {h: rows for h, rows in seen.items() if len(rows) > 1}

    def hashes(self) -> List[int]:
        """Unique path hashes in first-appearance order."""
        return list(dict.fromkeys(e.path_hash for e in self._rows))

    def serialize_rows(self, major: Optional[int] = None, minor: Optional[int] = None) -> bytes:
        major = self.header.version_major if major is None else major
        minor = self.header.version_minor if minor is None else minor
        return b"".join(pack_entry(e, major, minor) for e in self._rows)

    def serialize(self) -> bytes:
        """Header followed by the table rows, in this table's own version."""
        return pack_header(self.header) + self.serialize_rows()

    def view(self) -> "ChunkTableView":
        return ChunkTableView(self)


class ChunkTableView:
    """Read-only window on a :class:`ChunkTable`, safe to share across threads."""

    __slots__ = ("_table",)

    def __init__(self, table: ChunkTable):
        self._table = table

    @property
    def version(self) -> Tuple[int, int]:
        return self._table.version

    def entries(self) -> Iterator[ChunkEntry]:
        return self._table.entries()

    def __iter__(self) -> Iterator[ChunkEntry]:
        return self._table.entries()

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, path_hash: object) -> bool:
        return path_hash in self._table

    def lookup(self, path_hash: int) -> Optional[ChunkEntry]:
        return self._table.lookup(path_hash)
