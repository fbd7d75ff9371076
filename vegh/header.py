"""Snapshot header codec.

Layout (little-endian)::

    magic            4 bytes   b"VEGH"
    format_version   uint16
    metadata_length  uint32
    metadata         UTF-8 JSON object, metadata_length bytes

The body starts right after the metadata. Nothing here touches the body,
so metadata can be read from a prefix of the container.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO

from vegh.errors import CorruptContainerError, InvalidUsageError
from vegh.formats import FormatPolicy, MetadataLayout, policy_for
from vegh.models import SnapshotMetadata


MAGIC = b"VEGH"
FIXED_HEADER = struct.Struct("<4sHI")
MAX_METADATA_LENGTH = 1024 * 1024

Buffer = bytes | bytearray | memoryview


@dataclass(slots=True, frozen=True)
class ContainerHeader:
    metadata: SnapshotMetadata
    policy: FormatPolicy
    body_offset: int


def parse_fixed_header(prefix: Buffer) -> tuple[FormatPolicy, int]:
    """Validate magic and version; return the policy and the metadata length."""
    if len(prefix) < FIXED_HEADER.size:
        raise CorruptContainerError(
            f"Truncated header: need {FIXED_HEADER.size} bytes, got {len(prefix)}"
        )
    magic, version, metadata_length = FIXED_HEADER.unpack_from(prefix, 0)
    if magic != MAGIC:
        raise CorruptContainerError(f"Bad magic {bytes(magic)!r}, not a Vegh snapshot")
    policy = policy_for(version)
    if metadata_length > MAX_METADATA_LENGTH:
        raise CorruptContainerError(f"Metadata length {metadata_length} exceeds limit")
    return policy, metadata_length


def _text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CorruptContainerError(f"Metadata field {key!r} must be a string")
    return value


def _integer(payload: dict[str, Any], key: str, default: int | None) -> int | None:
    value = payload.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise CorruptContainerError(f"Metadata field {key!r} must be an integer")
    return value


def _decode_metadata(raw: Buffer, policy: FormatPolicy) -> SnapshotMetadata:
    try:
        payload = json.loads(bytes(raw).decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        raise CorruptContainerError(f"Metadata is not valid UTF-8 JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CorruptContainerError("Metadata must be a JSON object")

    timestamp_human = payload.get("timestamp_human")
    if timestamp_human is not None and not isinstance(timestamp_human, str):
        raise CorruptContainerError("Metadata field 'timestamp_human' must be a string")

    cache_schema = None
    if policy.metadata_layout is MetadataLayout.EXTENDED:
        cache_schema = _integer(payload, "cache_schema", None)
        if cache_schema is None:
            raise CorruptContainerError(
                f"Format version {policy.version} header is missing the cache_schema marker"
            )
        if cache_schema != policy.cache_schema:
            raise CorruptContainerError(
                f"Format version {policy.version} expects cache_schema {policy.cache_schema}, "
                f"header has {cache_schema}"
            )

    return SnapshotMetadata(
        author=_text(payload, "author"),
        comment=_text(payload, "comment"),
        format_version=policy.version,
        timestamp=_integer(payload, "timestamp", 0) or 0,
        timestamp_human=timestamp_human,
        tool_version=_text(payload, "tool_version"),
        cache_schema=cache_schema,
    )


def read_header(data: Buffer) -> ContainerHeader:
    view = memoryview(data)
    policy, metadata_length = parse_fixed_header(view)
    body_offset = FIXED_HEADER.size + metadata_length
    if body_offset > len(view):
        raise CorruptContainerError(
            f"Header declares {metadata_length} metadata bytes but only "
            f"{len(view) - FIXED_HEADER.size} are present"
        )
    metadata = _decode_metadata(view[FIXED_HEADER.size:body_offset], policy)
    return ContainerHeader(metadata=metadata, policy=policy, body_offset=body_offset)


def read_metadata(data: Buffer) -> SnapshotMetadata:
    return read_header(data).metadata


def read_header_bytes(fh: BinaryIO) -> bytes:
    """Read exactly the header region from the start of ``fh``."""
    prefix = fh.read(FIXED_HEADER.size)
    _, metadata_length = parse_fixed_header(prefix)
    raw = fh.read(metadata_length)
    if len(raw) != metadata_length:
        raise CorruptContainerError(
            f"Header declares {metadata_length} metadata bytes but only {len(raw)} are present"
        )
    return prefix + raw


def encode_header(metadata: SnapshotMetadata) -> bytes:
    policy = policy_for(metadata.format_version)
    payload: dict[str, Any] = {
        "author": metadata.author,
        "comment": metadata.comment,
        "timestamp": metadata.timestamp,
        "tool_version": metadata.tool_version,
    }
    if metadata.timestamp_human is not None:
        payload["timestamp_human"] = metadata.timestamp_human
    if policy.metadata_layout is MetadataLayout.EXTENDED:
        if metadata.cache_schema not in (None, policy.cache_schema):
            raise InvalidUsageError(
                f"Format version {policy.version} writes cache_schema {policy.cache_schema}, "
                f"not {metadata.cache_schema}"
            )
        payload["cache_schema"] = policy.cache_schema

    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    if len(raw) > MAX_METADATA_LENGTH:
        raise InvalidUsageError(f"Metadata length {len(raw)} exceeds limit")
    return FIXED_HEADER.pack(MAGIC, policy.version, len(raw)) + raw
