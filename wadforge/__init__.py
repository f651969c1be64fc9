"""
wadforge: reader, writer and extractor for chunk-indexed game asset archives.

Features:

- Version-aware table parsing (v1, v2, v3.0–3.3, v3.4) with an O(1) path-hash index
  and explicit duplicate-hash resolution for patch overlays.
- Decode dispatch over the closed codec set: stored, GZip, Zstd and multi-frame Zstd;
  satellite entries come back as references to external data.
- Deterministic archive building (entries ordered by hash) with pluggable per-entry
  checksums and a buffered fallback for sinks that cannot seek.
- Bulk extraction with hash-to-path resolution, magic-byte fallback naming, progress
  callbacks, fail-fast or collect failure policies and cooperative cancellation.

Chunk payloads are opaque bytes throughout. The on-disk layouts are documented in
wadforge.header and wadforge.toc.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "table",
    "decoder",
    "mount",
    "builder",
    "extractor",
]

# Programmatic API lives in wadforge.mount (Mount), wadforge.builder (Builder)
# and wadforge.extractor (Extractor, extract_all).
