from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable

from vegh.cache import cached_digest, record_entry
from vegh.filters import PathFilter
from vegh.formats import HashAlgorithm
from vegh.hasher import StreamingHasher, hash_stream
from vegh.models import FileCacheEntry, VeghCache


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Candidate:
    path: Path
    relative_path: str
    size: int
    modified_time: int


@dataclass(slots=True)
class ScanResult:
    entries: list[FileCacheEntry]
    cache_hits: list[str]
    hashed_paths: list[str]

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.entries)


def discover_files(
    root: Path,
    path_filter: PathFilter | None = None,
    *,
    skip: set[Path] | None = None,
) -> tuple[list[Candidate], int]:
    """Walk ``root`` in sorted order; modification times are in nanoseconds."""
    root = root.resolve()
    path_filter = path_filter or PathFilter()
    skip = skip or set()
    candidates: list[Candidate] = []
    total_bytes = 0

    for file_path in sorted(root.rglob("*")):
        if file_path.is_symlink() or not file_path.is_file():
            continue
        if file_path.resolve() in skip:
            continue
        relative_path = file_path.relative_to(root).as_posix()
        if not path_filter.matches(relative_path):
            continue

        stat = file_path.stat()
        candidates.append(Candidate(file_path, relative_path, stat.st_size, stat.st_mtime_ns))
        total_bytes += stat.st_size

    logger.debug("Discovered %d file(s), %d bytes under %s", len(candidates), total_bytes, root)
    return candidates, total_bytes


class HashingReader:
    """File wrapper that hashes bytes as they are read.

    With ``algorithm=None`` it only forwards reads, which is how a cache hit
    passes through without paying for a digest.
    """

    def __init__(
        self,
        fh: BinaryIO,
        algorithm: HashAlgorithm | None,
        *,
        on_chunk: Callable[[int], None] | None = None,
    ) -> None:
        self._file = fh
        self._hasher = None if algorithm is None else StreamingHasher(algorithm)
        self._on_chunk = on_chunk

    def read(self, size: int = -1) -> bytes:
        data = self._file.read(size)
        if data:
            if self._hasher is not None:
                self._hasher.update(data)
            if self._on_chunk is not None:
                self._on_chunk(len(data))
        return data

    def digest(self) -> bytes | None:
        return None if self._hasher is None else self._hasher.finalize()


def fingerprint(
    candidate: Candidate,
    cache: VeghCache,
    algorithm: HashAlgorithm,
    *,
    on_chunk: Callable[[int], None] | None = None,
) -> tuple[FileCacheEntry, bool]:
    """Record ``candidate`` in ``cache``; return the entry and whether it was a cache hit."""
    digest = cached_digest(
        cache, candidate.relative_path, candidate.size, candidate.modified_time, algorithm
    )
    hit = digest is not None
    if not hit:
        with candidate.path.open("rb") as fh:
            digest = hash_stream(algorithm, fh, on_chunk=on_chunk)
    entry = record_entry(
        cache, candidate.relative_path, candidate.size, candidate.modified_time, digest, algorithm
    )
    return entry, hit


def scan_files(
    root: Path,
    cache: VeghCache,
    algorithm: HashAlgorithm,
    *,
    path_filter: PathFilter | None = None,
    on_chunk: Callable[[int], None] | None = None,
) -> ScanResult:
    candidates, _ = discover_files(root, path_filter)
    result = ScanResult(entries=[], cache_hits=[], hashed_paths=[])
    for candidate in candidates:
        entry, hit = fingerprint(candidate, cache, algorithm, on_chunk=on_chunk)
        result.entries.append(entry)
        (result.cache_hits if hit else result.hashed_paths).append(entry.path)
    return result
