from __future__ import annotations

import logging
from typing import BinaryIO, Callable

from vegh import __version__
from vegh.archive import drain, find_entry, iter_entries
from vegh.codec import open_body
from vegh.errors import CorruptContainerError, HashMismatchError, InvalidUsageError
from vegh.formats import CURRENT_FORMAT_VERSION, FormatPolicy
from vegh.hasher import StreamingHasher, hash_bytes
from vegh.header import FIXED_HEADER, Buffer, parse_fixed_header, read_header, read_metadata
from vegh.models import LibraryInfo, SnapEntry, SnapshotMetadata


logger = logging.getLogger(__name__)

CORE_VERSION = "0.3.0"
DEFAULT_STREAM_CHUNK_SIZE = 5 * 1024 * 1024
LIBRARY_FEATURES = (
    "streaming_hashing",
    "caching_schema_v2",
    "worker_offloading",
    "content_extraction",
)


def get_library_info() -> LibraryInfo:
    return LibraryInfo(
        version=__version__,
        core_version=CORE_VERSION,
        supported_format=CURRENT_FORMAT_VERSION,
        engine="Python (zstandard + blake3)",
        features=LIBRARY_FEATURES,
    )


def get_metadata(data: Buffer) -> SnapshotMetadata:
    return read_metadata(data)


def list_files(data: Buffer) -> list[SnapEntry]:
    with open_body(data) as stream:
        entries = list(iter_entries(stream))
        drain(stream)
    logger.debug("Listed %d archive entries", len(entries))
    return entries


def get_file_content(data: Buffer, path: str) -> bytes:
    with open_body(data) as stream:
        return find_entry(stream, path)


def _expected_digest(expected: str | bytes) -> bytes:
    if isinstance(expected, bytes):
        return expected
    try:
        return bytes.fromhex(expected.strip())
    except ValueError as exc:
        raise InvalidUsageError(f"Expected digest is not hex: {expected!r}") from exc


def compare_digest(actual: bytes, expected: str | bytes) -> None:
    wanted = _expected_digest(expected)
    if actual != wanted:
        raise HashMismatchError(wanted.hex(), actual.hex())


def container_digest(data: Buffer) -> bytes:
    """Digest the whole container with the algorithm its header selects."""
    policy = read_header(data).policy
    return hash_bytes(policy.hash_algorithm, data)


def verify_container(data: Buffer, expected: str | bytes) -> bytes:
    actual = container_digest(data)
    compare_digest(actual, expected)
    return actual


class IntegrityCheck:
    """Streaming whole-container digest.

    The hash algorithm depends on the header, so the first bytes are held
    back until the fixed header is complete; after that every chunk goes
    straight into the hasher.
    """

    def __init__(self) -> None:
        self._prefix = bytearray()
        self._policy: FormatPolicy | None = None
        self._hasher: StreamingHasher | None = None
        self._finalized = False

    @property
    def policy(self) -> FormatPolicy | None:
        return self._policy

    def update(self, chunk: bytes | bytearray | memoryview) -> None:
        if self._finalized:
            raise InvalidUsageError("update() called on a finalized integrity check")
        if self._hasher is not None:
            self._hasher.update(chunk)
            return

        self._prefix += chunk
        if len(self._prefix) < FIXED_HEADER.size:
            return
        self._policy, _ = parse_fixed_header(self._prefix)
        self._hasher = StreamingHasher(self._policy.hash_algorithm)
        prefix, self._prefix = self._prefix, bytearray()
        self._hasher.update(prefix)

    def finalize(self) -> bytes:
        if self._finalized:
            raise InvalidUsageError("finalize() called on a finalized integrity check")
        self._finalized = True
        if self._hasher is None:
            raise CorruptContainerError(
                f"Truncated header: need {FIXED_HEADER.size} bytes, got {len(self._prefix)}"
            )
        return self._hasher.finalize()


def check_integrity_stream(
    fh: BinaryIO,
    total_bytes: int,
    chunk_size: int = DEFAULT_STREAM_CHUNK_SIZE,
    *,
    on_progress: Callable[[float], None] | None = None,
    expected: str | bytes | None = None,
) -> bytes:
    """Hash a container read from ``fh`` in ``chunk_size`` pieces.

    ``on_progress`` receives ``consumed / total_bytes * 100`` after each
    chunk, clamped so it never decreases or exceeds 100.
    """
    if chunk_size <= 0:
        raise InvalidUsageError(f"chunk_size must be positive, got {chunk_size}")

    check = IntegrityCheck()
    consumed = 0
    last_progress = 0.0
    while True:
        chunk = fh.read(chunk_size)
        if not chunk:
            break
        check.update(chunk)
        consumed += len(chunk)
        if on_progress is not None:
            progress = consumed / total_bytes * 100 if total_bytes > 0 else 100.0
            last_progress = max(last_progress, min(progress, 100.0))
            on_progress(last_progress)

    digest = check.finalize()
    logger.debug("Hashed %d container bytes", consumed)
    if expected is not None:
        compare_digest(digest, expected)
    return digest
