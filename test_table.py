from __future__ import annotations

import io
import os
import struct
import tempfile
import unittest

from wadforge.builder import Builder
from wadforge.constants import CompressionKind
from wadforge.errors import MalformedHeader, TruncatedTable, UnsupportedCompression
from wadforge.hashutil import path_hash
from wadforge.header import Header, header_size, pack_header, read_header
from wadforge.mount import Mount
from wadforge.table import ChunkTable
from wadforge.toc import ChunkEntry, pack_entry, read_u24_frame, row_struct, unpack_entry, write_u24_frame


def _craft_archive(specs, version=(3, 4)):
    """Lay out ``(hash, stored_bytes, compression, uncompressed_size)`` rows by hand."""
    major, minor = version
    data_start = header_size(major) + row_struct(major, minor).size * len(specs)
    entries = []
    blob = b""
    off = data_start
    for h, stored, comp, usize in specs:
        entries.append(ChunkEntry(h, off, len(stored), usize, comp))
        blob += stored
        off += len(stored)
    head = pack_header(Header(major, minor, len(entries)))
    rows = [pack_entry(e, major, minor) for e in entries]
    # Expected entries as a reader sees them (e.g. checksum 0 on v3 rows)
    parsed = [unpack_entry(r, major, minor) for r in rows]
    return io.BytesIO(head + b"".join(rows) + blob), parsed


class HeaderTests(unittest.TestCase):
    def test_bad_magic(self):
        with self.assertRaises(MalformedHeader):
            ChunkTable.parse(io.BytesIO(b"XW\x03\x04" + b"\x00" * 300))

    def test_unsupported_major_versions(self):
        for major in (0, 4, 9):
            with self.subTest(major=major):
                with self.assertRaises(MalformedHeader):
                    ChunkTable.parse(io.BytesIO(b"RW" + bytes([major, 0]) + b"\x00" * 300))

    def test_short_header(self):
        with self.assertRaises(MalformedHeader):
            ChunkTable.parse(io.BytesIO(b"RW"))
        with self.assertRaises(MalformedHeader):
            ChunkTable.parse(io.BytesIO(b"RW\x03\x04" + b"\x00" * 10))

    def test_v1_layout_fields_are_checked(self):
        raw = b"RW\x01\x00" + struct.pack("<HHI", 12, 24, 0)
        self.assertEqual(len(ChunkTable.parse(io.BytesIO(raw))), 0)
        bad_offset = b"RW\x01\x00" + struct.pack("<HHI", 16, 24, 0)
        with self.assertRaises(MalformedHeader):
            ChunkTable.parse(io.BytesIO(bad_offset))
        bad_size = b"RW\x01\x00" + struct.pack("<HHI", 12, 32, 0)
        with self.assertRaises(MalformedHeader):
            ChunkTable.parse(io.BytesIO(bad_size))

    def test_header_sizes_match_toc_offsets(self):
        for major, expected in ((1, 12), (2, 104), (3, 272)):
            h = Header(major, 0, 7, checksum=0)
            packed = pack_header(h)
            self.assertEqual(len(packed), expected)
            self.assertEqual(h.toc_offset, expected)
            back = read_header(io.BytesIO(packed))
            self.assertEqual(back.entry_count, 7)
            self.assertEqual(back.version, (major, 0))

    def test_v2_signature_roundtrip(self):
        h = Header(2, 0, 1, checksum=0xABCDEF, signature=b"sig-bytes")
        back = read_header(io.BytesIO(pack_header(h)))
        self.assertEqual(back.signature, b"sig-bytes")
        self.assertEqual(back.checksum, 0xABCDEF)


class RowTests(unittest.TestCase):
    def test_u24_start_frame_byte_order(self):
        self.assertEqual(read_u24_frame(bytes([0x01, 0x03, 0x02])), 0x010203)
        self.assertEqual(write_u24_frame(0x010302), bytes([0x01, 0x02, 0x03]))

    def test_row_sizes(self):
        self.assertEqual(row_struct(1, 0).size, 24)
        self.assertEqual(row_struct(2, 0).size, 24)
        self.assertEqual(row_struct(3, 1).size, 32)
        self.assertEqual(row_struct(3, 4).size, 32)

    def test_v3_rows_keep_frame_count_and_flags(self):
        e = ChunkEntry(0x1234, 300, 10, 20, int(CompressionKind.ZSTD_MULTI), is_duplicate=True,
                       frame_count=3, start_frame=0x0201, checksum=0xFEEDFACECAFEBEEF)
        v31 = unpack_entry(pack_entry(e, 3, 1), 3, 1)
        self.assertEqual(v31, e)
        v34 = unpack_entry(pack_entry(e, 3, 4), 3, 4)
        # 3.4 rows have no duplicate flag
        self.assertFalse(v34.is_duplicate)
        self.assertEqual(v34.frame_count, 3)
        self.assertEqual(v34.start_frame, 0x0201)
        self.assertEqual(v34.checksum, e.checksum)

    def test_v1_rows_have_no_checksum(self):
        e = ChunkEntry(0x99, 40, 5, 5, int(CompressionKind.NONE))
        back = unpack_entry(pack_entry(e, 1, 0), 1, 0)
        self.assertIsNone(back.checksum)
        self.assertEqual(back.data_offset, 40)

    def test_oversized_fields_are_rejected(self):
        e = ChunkEntry(0x1, 1 << 32, 5, 5, 0)
        with self.assertRaises(ValueError):
            pack_entry(e, 3, 4)


class ChunkTableTests(unittest.TestCase):
    def test_zero_entry_archive(self):
        buf = io.BytesIO()
        Builder().build(buf)
        table = ChunkTable.parse(buf)
        self.assertEqual(len(table), 0)
        self.assertEqual(list(table.entries()), [])
        self.assertIsNone(table.lookup(0x1))

    def test_truncated_table(self):
        src, _entries = _craft_archive([(0x1, b"abc", 0, 3)])
        raw = src.getvalue()
        # Claim three rows while only one is present
        patched = raw[:268] + struct.pack("<I", 3) + raw[272 : 272 + 32]
        with self.assertRaises(TruncatedTable):
            ChunkTable.parse(io.BytesIO(patched))

    def test_huge_entry_count_on_disk_is_truncated_table(self):
        head = pack_header(Header(3, 4, 0xFFFFFFFF))
        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, "bogus.wad")
            with open(path, "wb") as fh:
                fh.write(head + b"\x00" * 64)
            with open(path, "rb") as fh:
                with self.assertRaises(TruncatedTable):
                    ChunkTable.parse(fh)
            with self.assertRaises(TruncatedTable):
                Mount.open(path)
        with self.assertRaises(TruncatedTable):
            ChunkTable.parse(io.BytesIO(head + b"\x00" * 64))

    def test_built_table_matches_parsed_table(self):
        for version in ((1, 0), (2, 0), (3, 1), (3, 4)):
            for checksum in ("xxh3_64", None):
                with self.subTest(version=version, checksum=checksum):
                    b = Builder(version, checksum=checksum)
                    b.add(0x2, b"second payload", CompressionKind.GZIP)
                    b.add(0x1, b"first payload", CompressionKind.NONE)
                    buf = io.BytesIO()
                    built = b.build(buf)
                    parsed = ChunkTable.parse(buf)
                    self.assertEqual(list(built.entries()), list(parsed.entries()))
                    self.assertEqual(built.header, parsed.header)

    def test_entries_are_restartable_and_in_disk_order(self):
        specs = [(0x30, b"c", 0, 1), (0x10, b"a", 0, 1), (0x20, b"b", 0, 1)]
        src, _entries = _craft_archive(specs)
        table = ChunkTable.parse(src)
        first = [e.path_hash for e in table.entries()]
        second = [e.path_hash for e in table.entries()]
        self.assertEqual(first, [0x30, 0x10, 0x20])
        self.assertEqual(first, second)
        self.assertIn(0x20, table)
        self.assertNotIn(0x40, table)

    def test_duplicate_hash_latest_occurrence_wins(self):
        specs = [(0x5, b"old", 0, 3), (0x6, b"x", 0, 1), (0x5, b"new", 0, 3)]
        src, entries = _craft_archive(specs, version=(3, 1))
        table = ChunkTable.parse(src)
        self.assertEqual(len(table), 3)
        self.assertEqual(table.lookup(0x5), entries[2])
        self.assertEqual(table.occurrences(0x5), [entries[0], entries[2]])
        self.assertEqual(list(table.duplicates()), [0x5])
        self.assertEqual(table.hashes(), [0x5, 0x6])

    def test_duplicate_hash_first_wins_when_configured(self):
        specs = [(0x5, b"old", 0, 3), (0x5, b"new", 0, 3)]
        src, entries = _craft_archive(specs)
        table = ChunkTable.parse(src, duplicates="first")
        self.assertEqual(table.lookup(0x5), entries[0])
        with self.assertRaises(ValueError):
            ChunkTable.parse(src, duplicates="middle")

    def test_unknown_compression_parses(self):
        src, _entries = _craft_archive([(0xAB, b"xyz", 7, 3)])
        table = ChunkTable.parse(src)
        entry = table.lookup(0xAB)
        self.assertEqual(entry.compression, 7)
        with self.assertRaises(UnsupportedCompression):
            entry.kind

    def test_integrity_digest(self):
        b = Builder()
        b.add(0x1, b"payload one", CompressionKind.NONE)
        b.add(0x2, b"payload two", CompressionKind.ZSTD)
        buf = io.BytesIO()
        b.build(buf)
        ChunkTable.parse(buf, verify_integrity=True)
        raw = bytearray(buf.getvalue())
        raw[272 + 12] ^= 0x01  # first row, compressed_size
        with self.assertRaises(MalformedHeader):
            ChunkTable.parse(io.BytesIO(bytes(raw)), verify_integrity=True)
        # Off by default
        ChunkTable.parse(io.BytesIO(bytes(raw)))

    def test_serialize_matches_built_prefix(self):
        b = Builder()
        b.add(0x2, b"b" * 64, CompressionKind.GZIP)
        b.add(0x1, b"a" * 64, CompressionKind.NONE)
        buf = io.BytesIO()
        table = b.build(buf)
        raw = buf.getvalue()
        ser = table.serialize()
        self.assertEqual(raw[: len(ser)], ser)

    def test_view_is_read_only_window(self):
        src, entries = _craft_archive([(0x1, b"a", 0, 1), (0x2, b"b", 0, 1)])
        view = ChunkTable.parse(src).view()
        self.assertEqual(len(view), 2)
        self.assertEqual(list(view), entries)
        self.assertEqual(view.lookup(0x2), entries[1])
        self.assertEqual(view.version, (3, 4))
        with self.assertRaises(AttributeError):
            view.extra = 1


class PathHashTests(unittest.TestCase):
    def test_empty_path_is_xxh64_seed_zero(self):
        self.assertEqual(path_hash(""), 0xEF46DB3751D8E999)

    def test_case_and_separator_insensitive(self):
        self.assertEqual(path_hash("Data/Characters/Annie.BIN"), path_hash("data/characters/annie.bin"))
        self.assertEqual(path_hash("data\\a.bin"), path_hash("data/a.bin"))


if __name__ == "__main__":
    unittest.main()
