"""Default file-kind sniffing for naming extracted chunks whose path is unknown."""

from __future__ import annotations

import struct
from enum import Enum
from typing import Callable, List, Tuple


class FileKind(Enum):
    ANIMATION = "anm"
    JPEG = "jpg"
    LIGHT_GRID = "lightgrid"
    LUA_OBJ = "luaobj"
    MAP_GEOMETRY = "mapgeo"
    PNG = "png"
    PRELOAD = "preload"
    PROPERTY_BIN = "bin"
    PROPERTY_BIN_OVERRIDE = "bin_override"
    STRING_TABLE = "stringtable"
    SIMPLE_SKIN = "skn"
    SKELETON = "skl"
    STATIC_MESH_ASCII = "sco"
    STATIC_MESH_BINARY = "scb"
    SVG = "svg"
    TEXTURE = "tex"
    TEXTURE_DDS = "dds"
    UNKNOWN = ""
    WORLD_GEOMETRY = "wgeo"
    WWISE_BANK = "bnk"
    WWISE_PACKAGE = "wpk"

    @property
    def extension(self) -> str:
        if self is FileKind.PROPERTY_BIN_OVERRIDE:
            return "bin"
        return self.value


def _u32(data: bytes, at: int) -> int:
    return struct.unpack_from("<I", data, at)[0]


# (min_length, predicate, kind), checked in order
_PATTERNS: List[Tuple[int, Callable[[bytes], bool], FileKind]] = [
    (8, lambda d: d[:8] == b"r3d2Mesh", FileKind.STATIC_MESH_BINARY),
    (8, lambda d: d[:8] == b"r3d2sklt", FileKind.SKELETON),
    (8, lambda d: d[:8] == b"r3d2ammd", FileKind.ANIMATION),
    (8, lambda d: d[:8] == b"r3d2canm", FileKind.ANIMATION),
    (8, lambda d: _u32(d, 4) == 1, FileKind.WWISE_PACKAGE),
    (4, lambda d: d[1:4] == b"PNG", FileKind.PNG),
    (4, lambda d: d[:4] == b"DDS ", FileKind.TEXTURE_DDS),
    (4, lambda d: d[:4] == b"\x33\x22\x11\x00", FileKind.SIMPLE_SKIN),
    (4, lambda d: d[:4] == b"PROP", FileKind.PROPERTY_BIN),
    (4, lambda d: d[:4] == b"BKHD", FileKind.WWISE_BANK),
    (4, lambda d: d[:4] == b"WGEO", FileKind.WORLD_GEOMETRY),
    (4, lambda d: d[:4] == b"OEGM", FileKind.MAP_GEOMETRY),
    (4, lambda d: d[:4] == b"[Obj", FileKind.STATIC_MESH_ASCII),
    (5, lambda d: d[1:5] == b"LuaQ", FileKind.LUA_OBJ),
    (7, lambda d: d[:7] == b"PreLoad", FileKind.PRELOAD),
    (4, lambda d: _u32(d, 0) == 3, FileKind.LIGHT_GRID),
    (3, lambda d: d[:3] == b"RST", FileKind.STRING_TABLE),
    (4, lambda d: d[:4] == b"PTCH", FileKind.PROPERTY_BIN_OVERRIDE),
    (3, lambda d: d[:3] == b"\xff\xd8\xff", FileKind.JPEG),
    (8, lambda d: _u32(d, 4) == 0x22FD4FC3, FileKind.SKELETON),
    (4, lambda d: d[:4] == b"TEX\x00", FileKind.TEXTURE),
    (4, lambda d: d[:4] == b"<svg", FileKind.SVG),
]


class MagicSniffer:
    """Identifies a payload by its leading magic bytes."""

    def identify(self, data: bytes) -> FileKind:
        head = bytes(data[:16])
        for min_len, match, kind in _PATTERNS:
            if len(head) >= min_len and match(head):
                return kind
        return FileKind.UNKNOWN

    def extension(self, data: bytes) -> str:
        return self.identify(data).extension
