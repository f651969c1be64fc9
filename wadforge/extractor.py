"""
Bulk extraction of archive chunks to a directory tree.

Entries are walked in table order and decoded through the single exclusive
:class:`~wadforge.decoder.Decoder`. Human-readable paths come from a
:class:`PathResolver`; entries it cannot name are written under their hex hash
with an extension guessed from the payload's magic bytes.

Failures are handled per run policy:

- ``FailurePolicy.FAIL_FAST`` stops at the first failing entry.
- ``FailurePolicy.COLLECT`` records the failure and carries on.

Either way the run ends with an :class:`ExtractionReport`; nothing is swallowed.
"""

from __future__ import annotations

import concurrent.futures as _fut
import errno
import logging
import os
import re
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Collection,
    Deque,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Pattern,
    Protocol,
    TextIO,
    Tuple,
    Union,
)

from .constants import DEFAULT_QUEUE_DEPTH, DEFAULT_WRITER_THREADS, LTK_SUFFIX
from .decoder import Decoder, SatelliteRef
from .errors import Cancelled, IoError, UnsupportedCompression, WadError
from .pathutil import hex_name, is_hex_chunk_path, norm_path, with_extension
from .sniff import MagicSniffer
from .toc import ChunkEntry


log = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]
PathFilter = Union[str, Pattern[str], Callable[[str], bool]]

# Errors recorded against an entry rather than aborting the process
_ENTRY_ERRORS = (WadError, OSError, ValueError)


class PathResolver(Protocol):
    def resolve(self, path_hash: int) -> Optional[str]:
        ...


class Sniffer(Protocol):
    def identify(self, data: bytes) -> Any:
        ...


class HexPathResolver:
    """Resolves nothing; every entry is named after its hash."""

    def resolve(self, path_hash: int) -> Optional[str]:
        return None


class MappingPathResolver:
    """Path resolver backed by a preloaded ``hash -> path`` mapping."""

    def __init__(self, paths: Optional[Mapping[int, str]] = None):
        self.paths: Dict[int, str] = dict(paths or {})

    @classmethod
    def from_hashtable(cls, source: Union[str, TextIO]) -> "MappingPathResolver":
        return cls(load_hashtable(source))

    def insert(self, path_hash: int, path: str) -> None:
        self.paths[path_hash] = path

    def resolve(self, path_hash: int) -> Optional[str]:
        return self.paths.get(path_hash)

    def __len__(self) -> int:
        return len(self.paths)


def load_hashtable(source: Union[str, TextIO]) -> Dict[int, str]:
    """Parse a hashtable of ``<hex hash> <path>`` lines.

    Blank lines and lines without a path are skipped. A hash that is not valid
    hex raises ``ValueError`` naming the line.
    """
    if isinstance(source, str):
        with open(source, "r", encoding="utf-8") as fh:
            return load_hashtable(fh)
    table: Dict[int, str] = {}
    for lineno, line in enumerate(source, 1):
        parts = line.strip().split(None, 1)
        if len(parts) < 2:
            continue
        try:
            h = int(parts[0], 16)
        except ValueError:
            raise ValueError(f"line {lineno}: invalid hash {parts[0]!r}") from None
        table[h] = parts[1].strip()
    return table


class FailurePolicy(Enum):
    FAIL_FAST = "fail_fast"
    COLLECT = "collect"


class RunState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED_FAST = "failed_fast"


class CancelToken:
    """Cooperative cancellation flag, checked between entries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ExtractionProgress:
    processed: int
    total: int
    current_path: str
    path_hash: int

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 0.0
        return self.processed / self.total


@dataclass
class ExtractionFailure:
    path_hash: int
    path: Optional[str]
    error: Exception

    def __str__(self) -> str:
        return f"{self.path or hex_name(self.path_hash)}: {self.error}"


@dataclass
class ExtractionReport:
    state: RunState = RunState.PENDING
    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failures: List[ExtractionFailure] = field(default_factory=list)
    extracted: List[str] = field(default_factory=list)
    progress: Optional[ExtractionProgress] = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.skipped + len(self.failures)

    @property
    def cancelled(self) -> bool:
        return self.state is RunState.CANCELLED

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETED and not self.failures

    def raise_for_state(self) -> None:
        """Raise ``Cancelled`` or the fail-fast error; no-op otherwise."""
        if self.state is RunState.CANCELLED:
            raise Cancelled(f"extraction cancelled after {self.processed} of {self.total} entries")
        if self.state is RunState.FAILED_FAST and self.failures:
            raise self.failures[0].error


@dataclass
class _Work:
    entry: ChunkEntry
    resolved: Optional[str]

    @property
    def display(self) -> str:
        return self.resolved or hex_name(self.entry.path_hash)


class Extractor:
    """Writes decoded chunks to disk under human-readable names.

    Args:
        resolver: maps path hashes to relative paths; defaults to :class:`HexPathResolver`.
        sniffer: identifies payload kinds for fallback extensions; defaults to :class:`MagicSniffer`.
        path_filter: regex (string or compiled) or predicate over the display path;
            entries that do not match are left out of the run entirely.
        kinds: if given, only payloads whose sniffed kind is in this collection are written.
    """

    def __init__(
        self,
        resolver: Optional[PathResolver] = None,
        *,
        sniffer: Optional[Sniffer] = None,
        path_filter: Optional[PathFilter] = None,
        kinds: Optional[Collection[Any]] = None,
    ):
        self.resolver = resolver if resolver is not None else HexPathResolver()
        self.sniffer = sniffer if sniffer is not None else MagicSniffer()
        self.path_filter = _compile_filter(path_filter)
        self.kinds = set(kinds) if kinds is not None else None

    def extract_all(
        self,
        decoder: Decoder,
        chunks: Iterable[ChunkEntry],
        output_root: str,
        on_progress: Optional[ProgressCallback] = None,
        policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        cancel: Optional[CancelToken] = None,
    ) -> ExtractionReport:
        """Extract every entry of ``chunks`` (in iteration order) below ``output_root``.

        ``on_progress(percent, path)`` is called after each successful write.
        """
        work = self._plan(chunks)
        report = ExtractionReport(state=RunState.RUNNING, total=len(work))
        os.makedirs(output_root, exist_ok=True)
        for item in work:
            if cancel is not None and cancel.cancelled:
                report.state = RunState.CANCELLED
                log.debug("extraction cancelled after %d of %d entries", report.processed, report.total)
                return report
            try:
                written = self.extract_chunk(decoder, item.entry, output_root, resolved=item.resolved)
            except _ENTRY_ERRORS as exc:
                if self._record_failure(report, item, exc, policy):
                    return report
                continue
            self._record_success(report, item, written, on_progress)
        report.state = RunState.COMPLETED
        return report

    def extract_all_parallel(
        self,
        decoder: Decoder,
        chunks: Iterable[ChunkEntry],
        output_root: str,
        on_progress: Optional[ProgressCallback] = None,
        policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        cancel: Optional[CancelToken] = None,
        *,
        writers: int = DEFAULT_WRITER_THREADS,
        queue_depth: int = DEFAULT_QUEUE_DEPTH,
    ) -> ExtractionReport:
        """Like :meth:`extract_all`, with file writes handed to a pool of writer threads.

        Decoding stays on the calling thread. At most ``queue_depth`` decoded
        payloads wait for a writer at any time; when the window is full the
        decode loop blocks on the oldest write. Outcomes (and progress
        callbacks) are recorded in table order.
        """
        if queue_depth < 1:
            raise ValueError("queue_depth must be at least 1")
        work = self._plan(chunks)
        report = ExtractionReport(state=RunState.RUNNING, total=len(work))
        os.makedirs(output_root, exist_ok=True)
        window: Deque[Tuple[_Work, Union[_fut.Future, BaseException]]] = deque()
        by_path: Dict[str, _fut.Future] = {}

        def settle_oldest() -> bool:
            item, outcome = window.popleft()
            if isinstance(outcome, BaseException):
                return self._record_failure(report, item, outcome, policy)
            try:
                written = outcome.result()
            except _ENTRY_ERRORS as exc:
                return self._record_failure(report, item, exc, policy)
            self._record_success(report, item, written, on_progress)
            return False

        with _fut.ThreadPoolExecutor(max_workers=max(1, writers), thread_name_prefix="wadforge-writer") as pool:
            for item in work:
                if cancel is not None and cancel.cancelled:
                    report.state = RunState.CANCELLED
                    break
                drain = False
                try:
                    data, rel = self._prepare(decoder, item, output_root)
                except _ENTRY_ERRORS as exc:
                    window.append((item, exc))
                    # Under fail-fast nothing after a failed decode may run
                    drain = policy is FailurePolicy.FAIL_FAST
                else:
                    if rel is None:
                        window.append((item, _done(None)))
                    else:
                        # Same destination: keep table order by waiting for the earlier write
                        earlier = by_path.get(rel)
                        if earlier is not None:
                            _fut.wait([earlier])
                        fut = pool.submit(self._write, output_root, rel, data, item.entry)
                        by_path[rel] = fut
                        window.append((item, fut))
                stop = False
                while window and (drain or len(window) >= queue_depth or _settled(window[0][1])):
                    if settle_oldest():
                        stop = True
                        break
                if stop:
                    break
            if report.state in (RunState.RUNNING, RunState.CANCELLED):
                # Payloads already handed to writers still count
                while window:
                    if settle_oldest():
                        break
            # Anything still queued after a stop is abandoned
            for _item, outcome in window:
                if isinstance(outcome, _fut.Future):
                    outcome.cancel()
        if report.state is RunState.RUNNING:
            report.state = RunState.COMPLETED
        return report

    def extract_chunk(
        self,
        decoder: Decoder,
        entry: ChunkEntry,
        output_root: str,
        *,
        resolved: Optional[str] = None,
    ) -> Optional[str]:
        """Decode and write one entry; returns the relative path written, or ``None`` if filtered out by kind."""
        item = _Work(entry, resolved if resolved is not None else self.resolver.resolve(entry.path_hash))
        data, rel = self._prepare(decoder, item, output_root)
        if rel is None:
            return None
        return self._write(output_root, rel, data, entry)

    # internals
    def _plan(self, chunks: Iterable[ChunkEntry]) -> List[_Work]:
        work: List[_Work] = []
        for entry in chunks:
            item = _Work(entry, self.resolver.resolve(entry.path_hash))
            if self.path_filter is not None and not self.path_filter(item.display):
                continue
            work.append(item)
        return work

    def _prepare(self, decoder: Decoder, item: _Work, output_root: str) -> Tuple[bytes, Optional[str]]:
        decoded = decoder.decode(item.entry)
        if isinstance(decoded, SatelliteRef):
            raise UnsupportedCompression(item.entry.compression, item.entry.path_hash)
        data = decoded.data
        if self.kinds is not None and self.sniffer.identify(data) not in self.kinds:
            return data, None
        return data, self._final_path(item, data, output_root)

    def _final_path(self, item: _Work, data: bytes, output_root: str) -> str:
        if item.resolved is None:
            return with_extension(hex_name(item.entry.path_hash), self._extension(data))
        rel = norm_path(item.resolved)
        head, name = os.path.split(rel)
        stem, ext = os.path.splitext(name)
        if is_hex_chunk_path(rel):
            if not ext:
                rel = with_extension(rel, self._extension(data))
            return rel
        # No extension, or the name is already taken by a directory
        if not ext or os.path.isdir(os.path.join(output_root, rel)):
            name = with_extension(f"{stem}.{LTK_SUFFIX}", self._extension(data))
            rel = f"{head}/{name}" if head else name
        return rel

    def _extension(self, data: bytes) -> str:
        kind = self.sniffer.identify(data)
        if isinstance(kind, str):
            return kind.lstrip(".")
        return getattr(kind, "extension", "") or ""

    def _write(self, output_root: str, rel: str, data: bytes, entry: ChunkEntry) -> str:
        full = os.path.join(output_root, *rel.split("/"))
        try:
            parent = os.path.dirname(full)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(full, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            if exc.errno != errno.ENAMETOOLONG:
                raise IoError(f"failed to write {rel}: {exc}") from exc
            # Fall back to the hash name at the output root
            rel = with_extension(hex_name(entry.path_hash), self._extension(data))
            log.debug("name too long for %016x; writing %s instead", entry.path_hash, rel)
            try:
                with open(os.path.join(output_root, rel), "wb") as fh:
                    fh.write(data)
            except OSError as exc2:
                raise IoError(f"failed to write {rel}: {exc2}") from exc2
        log.debug("wrote %s (%d bytes)", rel, len(data))
        return rel

    def _record_success(
        self,
        report: ExtractionReport,
        item: _Work,
        written: Optional[str],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        if written is None:
            report.skipped += 1
            return
        report.succeeded += 1
        report.extracted.append(written)
        report.progress = ExtractionProgress(report.processed, report.total, written, item.entry.path_hash)
        if on_progress is not None:
            on_progress(report.progress.percent, written)

    def _record_failure(
        self,
        report: ExtractionReport,
        item: _Work,
        exc: BaseException,
        policy: FailurePolicy,
    ) -> bool:
        """Record ``exc`` against ``item``; True when the run must stop."""
        report.failures.append(ExtractionFailure(item.entry.path_hash, item.resolved, exc))
        if policy is FailurePolicy.FAIL_FAST:
            report.state = RunState.FAILED_FAST
            log.debug("extraction stopped at %s: %s", item.display, exc)
            return True
        log.warning("failed to extract %s: %s", item.display, exc)
        return False


def extract_all(
    decoder: Decoder,
    chunks: Iterable[ChunkEntry],
    resolver: Optional[PathResolver],
    output_root: str,
    on_progress: Optional[ProgressCallback] = None,
    policy: FailurePolicy = FailurePolicy.FAIL_FAST,
    cancel: Optional[CancelToken] = None,
    **kwargs,
) -> ExtractionReport:
    """Function form of :meth:`Extractor.extract_all`; extra keyword arguments configure the :class:`Extractor`."""
    return Extractor(resolver, **kwargs).extract_all(decoder, chunks, output_root, on_progress, policy, cancel)


def _compile_filter(path_filter: Optional[PathFilter]) -> Optional[Callable[[str], bool]]:
    if path_filter is None:
        return None
    if isinstance(path_filter, str):
        path_filter = re.compile(path_filter)
    if isinstance(path_filter, re.Pattern):
        pattern = path_filter
        return lambda p: pattern.search(p) is not None
    if callable(path_filter):
        return path_filter
    raise TypeError("path_filter must be a regex or a callable")


def _done(value: Any) -> _fut.Future:
    f: _fut.Future = _fut.Future()
    f.set_result(value)
    return f


def _settled(outcome: Union[_fut.Future, BaseException]) -> bool:
    return isinstance(outcome, BaseException) or outcome.done()
