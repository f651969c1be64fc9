from typing import Optional


class WadError(Exception):
    """Base class for archive engine errors."""


# Table/parse-time errors (terminal for the mount)
class MalformedHeader(WadError):
    pass


class TruncatedTable(WadError):
    pass


# Decode-time errors (per chunk)
class ChunkError(WadError):
    """An error tied to a single table entry."""

    def __init__(self, message: str, path_hash: Optional[int] = None):
        super().__init__(message)
        self.path_hash = path_hash

    def __str__(self) -> str:
        msg = super().__str__()
        if self.path_hash is None:
            return msg
        return f"{msg} (chunk {self.path_hash:016x})"


class OutOfBounds(ChunkError):
    pass


class UnsupportedCompression(ChunkError):
    def __init__(self, compression: int, path_hash: Optional[int] = None):
        super().__init__(f"unsupported compression kind: {compression}", path_hash)
        self.compression = compression


class DecompressionFailure(ChunkError):
    pass


# Builder
class DuplicateHash(WadError):
    def __init__(self, path_hash: int):
        super().__init__(f"chunk {path_hash:016x} already present; use overwrite to replace it")
        self.path_hash = path_hash


# Source/sink
class IoError(WadError):
    pass


# Extraction
class Cancelled(WadError):
    pass
