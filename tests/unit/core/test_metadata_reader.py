from __future__ import annotations

import io
import json
from dataclasses import replace

import pytest

from vegh.errors import CorruptContainerError, InvalidUsageError, UnsupportedFormatVersionError
from vegh.header import (
    FIXED_HEADER,
    MAGIC,
    encode_header,
    read_header,
    read_header_bytes,
    read_metadata,
)
from vegh.snapshot import build_metadata, build_snapshot_bytes


def _raw_header(version: int, payload: object) -> bytes:
    raw = json.dumps(payload).encode("utf-8")
    return FIXED_HEADER.pack(MAGIC, version, len(raw)) + raw


def test_reads_extended_metadata() -> None:
    metadata = build_metadata("alice", "first snapshot", 2, timestamp=1_700_000_000)
    data = build_snapshot_bytes([("a.txt", b"hello world")], metadata)

    result = read_metadata(data)

    assert result.author == "alice"
    assert result.comment == "first snapshot"
    assert result.format_version == 2
    assert result.timestamp == 1_700_000_000
    assert result.timestamp_human == "2023-11-14T22:13:20+00:00"
    assert result.cache_schema == 2


def test_legacy_layout_fills_absent_fields_with_empty_values() -> None:
    result = read_metadata(_raw_header(1, {}))

    assert result.author == ""
    assert result.comment == ""
    assert result.format_version == 1
    assert result.timestamp == 0
    assert result.timestamp_human is None
    assert result.cache_schema is None


def test_metadata_is_read_from_the_header_region_only() -> None:
    header = _raw_header(1, {"author": "bob", "comment": "c"})
    # The body is garbage; the header must still decode.
    result = read_header(header + b"\x00not-a-zstd-frame")

    assert result.metadata.author == "bob"
    assert result.body_offset == len(header)


def test_repeated_reads_are_identical_and_do_not_mutate_input() -> None:
    data = bytearray(build_snapshot_bytes([("x", b"1")], build_metadata("a", "b", 2, timestamp=5)))
    snapshot = bytes(data)

    first = read_metadata(data)
    second = read_metadata(data)

    assert first == second
    assert bytes(data) == snapshot


def test_version_99_is_unsupported() -> None:
    with pytest.raises(UnsupportedFormatVersionError):
        read_metadata(_raw_header(99, {"author": "x"}))
    with pytest.raises(UnsupportedFormatVersionError):
        read_metadata(FIXED_HEADER.pack(MAGIC, 99, 0xFFFFFFFF))


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"VEG",
        b"VEGH\x01\x00",
        b"ZIPS" + FIXED_HEADER.pack(MAGIC, 1, 0)[4:],
        FIXED_HEADER.pack(MAGIC, 1, 50) + b"{}",
        _raw_header(1, ["not", "an", "object"]),
        FIXED_HEADER.pack(MAGIC, 1, 3) + b"\xff\xfe{",
        _raw_header(1, {"author": 42}),
        _raw_header(2, {"author": "missing cache schema"}),
        _raw_header(2, {"author": "x", "cache_schema": 3}),
        _raw_header(2, {"author": "x", "cache_schema": "2"}),
        FIXED_HEADER.pack(MAGIC, 1, 200_000) + b"[" * 200_000,
    ],
)
def test_malformed_headers_are_corrupt(data: bytes) -> None:
    with pytest.raises(CorruptContainerError):
        read_metadata(data)


def test_encode_header_v1_omits_cache_schema() -> None:
    header = encode_header(build_metadata("a", "b", 1, timestamp=1))
    payload = json.loads(header[FIXED_HEADER.size:])

    assert "cache_schema" not in payload
    assert read_metadata(header).format_version == 1


def test_read_header_bytes_stops_at_body() -> None:
    data = build_snapshot_bytes([("a", b"payload")], build_metadata("a", "b", 2, timestamp=1))
    fh = io.BytesIO(data)

    prefix = read_header_bytes(fh)

    assert fh.tell() == len(prefix) == read_header(data).body_offset
    assert read_metadata(prefix) == read_metadata(data)


def test_encode_header_rejects_a_foreign_cache_schema() -> None:
    metadata = build_metadata("a", "b", 2, timestamp=1)

    with pytest.raises(InvalidUsageError):
        encode_header(replace(metadata, cache_schema=7))
