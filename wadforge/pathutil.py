from __future__ import annotations

import os

from .constants import HEX_NAME_LEN


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    if not parts:
        raise ValueError("Path is empty")
    return "/".join(parts)


def hex_name(path_hash: int) -> str:
    return f"{path_hash:016x}"


def is_hex_chunk_path(path: str) -> bool:
    """True when the file name is a bare 16-digit hex hash, optionally with an extension.

    >>> is_hex_chunk_path("0123456789abcdef.bin")
    True
    >>> is_hex_chunk_path("assets/characters/annie.bin")
    False
    """
    name = os.path.basename(path.replace("\\", "/"))
    stem = name.split(".", 1)[0]
    if len(stem) != HEX_NAME_LEN:
        return False
    return all(c in "0123456789abcdefABCDEF" for c in stem)


def with_extension(name: str, ext: str) -> str:
    return f"{name}.{ext}" if ext else name
