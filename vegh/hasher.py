from __future__ import annotations

import hashlib
from typing import BinaryIO, Callable

from blake3 import blake3

from vegh.errors import InvalidUsageError
from vegh.formats import HashAlgorithm


DEFAULT_CHUNK_SIZE = 1024 * 1024
DIGEST_SIZE = 32


def _coerce(algorithm: HashAlgorithm | str) -> HashAlgorithm:
    try:
        return HashAlgorithm(algorithm)
    except ValueError as exc:
        raise InvalidUsageError(f"Unknown hash algorithm: {algorithm!r}") from exc


def _new_state(algorithm: HashAlgorithm):
    if algorithm is HashAlgorithm.SHA256:
        return hashlib.sha256()
    return blake3()


class StreamingHasher:
    """Incremental digest over caller-supplied chunks.

    Chunks must arrive in the byte order of the original data. ``finalize``
    consumes the hasher; any later call raises ``InvalidUsageError``.
    Dropping an unfinalized hasher has no side effects.
    """

    def __init__(self, algorithm: HashAlgorithm | str) -> None:
        self._algorithm = _coerce(algorithm)
        self._state = _new_state(self._algorithm)
        self._bytes_consumed = 0

    @property
    def algorithm(self) -> HashAlgorithm:
        return self._algorithm

    @property
    def bytes_consumed(self) -> int:
        return self._bytes_consumed

    @property
    def finalized(self) -> bool:
        return self._state is None

    def update(self, chunk: bytes | bytearray | memoryview) -> None:
        if self._state is None:
            raise InvalidUsageError("update() called on a finalized hasher")
        self._state.update(chunk)
        self._bytes_consumed += len(chunk)

    def finalize(self) -> bytes:
        if self._state is None:
            raise InvalidUsageError("finalize() called on a finalized hasher")
        state, self._state = self._state, None
        return state.digest()


def create(algorithm: HashAlgorithm | str) -> StreamingHasher:
    return StreamingHasher(algorithm)


def hash_bytes(algorithm: HashAlgorithm | str, data: bytes | bytearray | memoryview) -> bytes:
    state = _new_state(_coerce(algorithm))
    state.update(data)
    return state.digest()


def hash_stream(
    algorithm: HashAlgorithm | str,
    fh: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    on_chunk: Callable[[int], None] | None = None,
) -> bytes:
    hasher = StreamingHasher(algorithm)
    while True:
        chunk = fh.read(chunk_size)
        if not chunk:
            break
        hasher.update(chunk)
        if on_chunk is not None:
            on_chunk(len(chunk))
    return hasher.finalize()
