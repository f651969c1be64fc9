from __future__ import annotations

from typing import Callable, Dict, Optional, Union

import xxhash
from Cryptodome.Hash import SHA256


ChecksumFn = Callable[[bytes], int]


def path_hash(path: str) -> int:
    """Hash a logical archive path the way the format keys its chunks.

    Paths are lowercased and hashed with XXH64 (seed 0) over their UTF-8 bytes.
    Backslashes are folded to forward slashes first.
    """
    return xxhash.xxh64_intdigest(path.replace("\\", "/").lower().encode("utf-8"), seed=0)


def xxh3_64(data: bytes) -> int:
    return xxhash.xxh3_64_intdigest(data)


def sha256_64(data: bytes) -> int:
    # Little-endian view of the first 8 digest bytes
    return int.from_bytes(SHA256.new(data).digest()[:8], "little")


CHECKSUMS: Dict[str, ChecksumFn] = {
    "xxh3_64": xxh3_64,
    "sha256_64": sha256_64,
}


def resolve_checksum(strategy: Union[str, ChecksumFn, None]) -> Optional[ChecksumFn]:
    """Turn a checksum strategy name or callable into a callable.

    ``None`` disables checksums. Unknown names raise ``ValueError``.
    """
    if strategy is None:
        return None
    if callable(strategy):
        return strategy
    try:
        return CHECKSUMS[strategy]
    except KeyError:
        raise ValueError(f"unknown checksum strategy: {strategy!r}") from None


def table_digest(major: int, minor: int, rows: bytes) -> int:
    """Integrity digest over the version prefix and the serialized table rows."""
    h = xxhash.xxh3_64()
    h.update(bytes([0x52, 0x57, major, minor]))
    h.update(rows)
    return h.intdigest()
