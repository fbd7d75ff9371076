from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class SnapshotMetadata:
    author: str
    comment: str
    format_version: int
    timestamp: int = 0
    timestamp_human: str | None = None
    tool_version: str = ""
    cache_schema: int | None = None


@dataclass(slots=True, frozen=True)
class SnapEntry:
    path: str
    size: int
    offset: int
    is_file: bool = True


@dataclass(slots=True)
class FileCacheEntry:
    path: str
    size: int
    modified_time: int
    digest: bytes | None = None
    algorithm: str | None = None


@dataclass(slots=True)
class VeghCache:
    files: dict[str, FileCacheEntry] = field(default_factory=dict)
    last_snapshot: int = 0


@dataclass(slots=True, frozen=True)
class LibraryInfo:
    version: str
    core_version: str
    supported_format: int
    engine: str
    features: tuple[str, ...]
