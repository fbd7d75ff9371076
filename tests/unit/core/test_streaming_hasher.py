from __future__ import annotations

import hashlib
import random

import pytest
from blake3 import blake3

from vegh.errors import InvalidUsageError
from vegh.formats import HashAlgorithm
from vegh.hasher import StreamingHasher, create, hash_bytes, hash_stream


ALGORITHMS = (HashAlgorithm.SHA256, HashAlgorithm.BLAKE3)
PAYLOAD = random.Random(7).randbytes(10_000)


def _splits(data: bytes) -> list[list[bytes]]:
    rng = random.Random(11)
    ragged: list[bytes] = []
    position = 0
    while position < len(data):
        step = rng.randint(0, 700)
        ragged.append(data[position:position + step])
        position += step
    return [
        [],
        [data],
        [data[i:i + 1] for i in range(len(data))],
        [b"", data[:10], b"", data[10:], b""],
        ragged,
    ]


@pytest.mark.parametrize("algorithm", ALGORITHMS)
def test_streaming_digest_equals_one_shot_for_every_split(algorithm: HashAlgorithm) -> None:
    for chunks in _splits(PAYLOAD):
        data = b"".join(chunks)
        hasher = create(algorithm)
        for chunk in chunks:
            hasher.update(chunk)
        assert hasher.finalize() == hash_bytes(algorithm, data)


def test_digests_match_reference_implementations() -> None:
    assert hash_bytes(HashAlgorithm.SHA256, PAYLOAD) == hashlib.sha256(PAYLOAD).digest()
    assert hash_bytes(HashAlgorithm.BLAKE3, PAYLOAD) == blake3(PAYLOAD).digest()
    assert hash_bytes("blake3", b"").hex() == (
        "af1349b9f5f9a1a6a0404dea36dcc9499bcb25c9adc112b7cc9a93cae41f3262"
    )
    assert len(hash_bytes(HashAlgorithm.SHA256, b"")) == 32


@pytest.mark.parametrize("algorithm", ALGORITHMS)
def test_finalized_hasher_rejects_further_use(algorithm: HashAlgorithm) -> None:
    hasher = StreamingHasher(algorithm)
    hasher.update(b"abc")
    hasher.finalize()

    assert hasher.finalized
    with pytest.raises(InvalidUsageError):
        hasher.update(b"more")
    with pytest.raises(InvalidUsageError):
        hasher.finalize()


def test_hasher_counts_bytes_and_rejects_unknown_algorithm() -> None:
    hasher = StreamingHasher("sha256")
    hasher.update(b"12345")
    hasher.update(memoryview(b"678"))
    assert hasher.bytes_consumed == 8
    assert hasher.finalize() == hashlib.sha256(b"12345678").digest()

    with pytest.raises(InvalidUsageError):
        StreamingHasher("md5")


def test_abandoned_hasher_does_not_affect_new_one() -> None:
    abandoned = create(HashAlgorithm.BLAKE3)
    abandoned.update(b"partial data")
    del abandoned

    fresh = create(HashAlgorithm.BLAKE3)
    fresh.update(b"hello")
    assert fresh.finalize() == blake3(b"hello").digest()


def test_hash_stream_reports_chunks(tmp_path) -> None:
    path = tmp_path / "data.bin"
    path.write_bytes(PAYLOAD)
    seen: list[int] = []

    with path.open("rb") as fh:
        digest = hash_stream(HashAlgorithm.SHA256, fh, chunk_size=4096, on_chunk=seen.append)

    assert digest == hashlib.sha256(PAYLOAD).digest()
    assert seen == [4096, 4096, len(PAYLOAD) - 8192]
