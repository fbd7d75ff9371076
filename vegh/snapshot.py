"""Snapshot writer.

Walks a directory into a tar stream, hashing only files the cache does not
already know, then compresses the tar into a zstd body behind the header.
"""

from __future__ import annotations

import logging
import tarfile
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from vegh import __version__
from vegh.archive import add_file, build_archive
from vegh.cache import cached_digest, create_empty_cache, record_entry
from vegh.codec import DEFAULT_COMPRESSION_LEVEL, compress_archive, compress_stream
from vegh.filters import PathFilter, build_path_filter
from vegh.formats import CURRENT_FORMAT_VERSION, policy_for
from vegh.hasher import hash_stream
from vegh.header import encode_header
from vegh.models import SnapshotMetadata, VeghCache
from vegh.scanner import HashingReader, discover_files


logger = logging.getLogger(__name__)

NS_PER_SECOND = 1_000_000_000
_SPOOL_SIZE = 16 * 1024 * 1024


@dataclass(slots=True)
class SnapshotOptions:
    author: str = ""
    comment: str = ""
    format_version: int = CURRENT_FORMAT_VERSION
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()

    @property
    def path_filter(self) -> PathFilter:
        return build_path_filter(self.include_patterns, self.exclude_patterns)


@dataclass(slots=True)
class SnapshotResult:
    output: Path
    metadata: SnapshotMetadata
    digest: bytes
    total_bytes: int
    cache_hits: list[str] = field(default_factory=list)
    hashed_paths: list[str] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.cache_hits) + len(self.hashed_paths)


def build_metadata(
    author: str,
    comment: str,
    format_version: int = CURRENT_FORMAT_VERSION,
    *,
    timestamp: int | None = None,
) -> SnapshotMetadata:
    policy = policy_for(format_version)
    timestamp = int(time.time()) if timestamp is None else timestamp
    return SnapshotMetadata(
        author=author,
        comment=comment,
        format_version=policy.version,
        timestamp=timestamp,
        timestamp_human=datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(),
        tool_version=__version__,
        cache_schema=getattr(policy, "cache_schema", None),
    )


def build_snapshot_bytes(
    files: Iterable[tuple[str, bytes]],
    metadata: SnapshotMetadata,
    level: int = DEFAULT_COMPRESSION_LEVEL,
) -> bytes:
    """Assemble a whole container in memory from ``(path, content)`` pairs."""
    return encode_header(metadata) + compress_archive(build_archive(files), level)


def create_snapshot(
    root: Path,
    output: Path,
    options: SnapshotOptions | None = None,
    cache: VeghCache | None = None,
    *,
    on_chunk: Callable[[int], None] | None = None,
    on_start: Callable[[int], None] | None = None,
) -> SnapshotResult:
    """Write a snapshot of ``root`` to ``output`` and refresh ``cache``.

    ``on_start`` receives the total number of source bytes once the tree has
    been walked; ``on_chunk`` then receives each archived byte count.
    """
    options = options or SnapshotOptions()
    policy = policy_for(options.format_version)
    cache = cache if cache is not None else create_empty_cache()
    root = root.resolve()
    output = output.resolve()
    partial = output.with_name(output.name + ".part")

    candidates, total_bytes = discover_files(
        root, options.path_filter, skip={output, partial}
    )
    if on_start is not None:
        on_start(total_bytes)
    metadata = build_metadata(options.author, options.comment, options.format_version)
    result = SnapshotResult(output=output, metadata=metadata, digest=b"", total_bytes=total_bytes)

    with tempfile.SpooledTemporaryFile(max_size=_SPOOL_SIZE) as spool:
        with tarfile.open(fileobj=spool, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for candidate in candidates:
                digest = cached_digest(
                    cache,
                    candidate.relative_path,
                    candidate.size,
                    candidate.modified_time,
                    policy.hash_algorithm,
                )
                with candidate.path.open("rb") as fh:
                    reader = HashingReader(
                        fh,
                        policy.hash_algorithm if digest is None else None,
                        on_chunk=on_chunk,
                    )
                    add_file(
                        tar,
                        candidate.relative_path,
                        reader,
                        candidate.size,
                        mtime=candidate.modified_time // NS_PER_SECOND,
                    )
                if digest is None:
                    digest = reader.digest()
                    result.hashed_paths.append(candidate.relative_path)
                else:
                    result.cache_hits.append(candidate.relative_path)
                record_entry(
                    cache,
                    candidate.relative_path,
                    candidate.size,
                    candidate.modified_time,
                    digest,
                    policy.hash_algorithm,
                )

        archive_size = spool.tell()
        spool.seek(0)
        output.parent.mkdir(parents=True, exist_ok=True)
        try:
            with partial.open("wb") as out:
                out.write(encode_header(metadata))
                compress_stream(spool, out, size=archive_size, level=options.compression_level)
            partial.replace(output)
        finally:
            partial.unlink(missing_ok=True)

    cache.last_snapshot = metadata.timestamp
    with output.open("rb") as fh:
        result.digest = hash_stream(policy.hash_algorithm, fh)

    logger.info(
        "Wrote %s: %d file(s), %d hashed, %d from cache",
        output,
        result.file_count,
        len(result.hashed_paths),
        len(result.cache_hits),
    )
    return result
