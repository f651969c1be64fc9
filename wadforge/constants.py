from enum import IntEnum


# Magic and versions
WAD_MAGIC = b"RW"
VERSION_LATEST = (3, 4)
SUPPORTED_MAJORS = (1, 2, 3)

# Header layouts (little endian):
#  v1: magic[2] major u8 minor u8 toc_offset u16 entry_size u16 entry_count u32
#  v2: magic[2] major u8 minor u8 ecdsa_len u8 ecdsa[83] checksum u64
#      toc_offset u16 entry_size u16 entry_count u32
#  v3: magic[2] major u8 minor u8 signature[256] checksum u64 entry_count u32
V1_TOC_OFFSET = 12
V2_TOC_OFFSET = 104
V3_TOC_OFFSET = 272

V1_ENTRY_SIZE = 24
V2_ENTRY_SIZE = 24
V3_ENTRY_SIZE = 32

V2_ECDSA_SIZE = 83
V3_SIGNATURE_SIZE = 256

# First 3.x minor whose rows carry a 24-bit start frame and no duplicate flag
V3_U24_FRAME_MINOR = 4


class CompressionKind(IntEnum):
    """Wire values of the per-entry compression field (low nibble)."""

    NONE = 0
    GZIP = 1
    SATELLITE = 2
    ZSTD = 3
    ZSTD_MULTI = 4

    def __str__(self) -> str:
        return _KIND_NAMES[self]


_KIND_NAMES = {
    CompressionKind.NONE: "None",
    CompressionKind.GZIP: "GZip",
    CompressionKind.SATELLITE: "Satellite",
    CompressionKind.ZSTD: "Zstd",
    CompressionKind.ZSTD_MULTI: "ZstdMulti",
}

ZSTD_MAGIC = bytes([0x28, 0xB5, 0x2F, 0xFD])

# Codec defaults
DEFAULT_CODEC = CompressionKind.ZSTD
DEFAULT_ZSTD_LEVEL = 3
DEFAULT_GZIP_LEVEL = 6
DEFAULT_MULTI_FRAME_SIZE = 1_048_576  # 1 MiB per zstd frame

# Format limits
MAX_U32 = 0xFFFFFFFF
MAX_U24 = 0xFFFFFF

# Checksums
DEFAULT_CHECKSUM = "xxh3_64"

# Duplicate-hash resolution inside a parsed table
DUPLICATES_LAST_WINS = "last"
DUPLICATES_FIRST_WINS = "first"
DEFAULT_DUPLICATE_POLICY = DUPLICATES_LAST_WINS

# Extraction
HEX_NAME_LEN = 16
LTK_SUFFIX = "ltk"
DEFAULT_QUEUE_DEPTH = 32
DEFAULT_WRITER_THREADS = 4
