"""Incremental cache: decide from size and mtime alone whether a file changed.

A hit means the recorded size and modification time both equal the observed
ones. Content is never re-hashed to decide; a file rewritten with the same
size inside the same mtime tick is reported as a hit.

Each digest is stored with the algorithm that produced it, and is only
reused for that algorithm.
"""

from __future__ import annotations

from typing import Any

from vegh.errors import InvalidUsageError
from vegh.formats import HashAlgorithm
from vegh.models import FileCacheEntry, VeghCache


def create_empty_cache() -> VeghCache:
    return VeghCache()


def _files_of(cache: VeghCache) -> dict[str, FileCacheEntry]:
    if not isinstance(cache, VeghCache) or not isinstance(cache.files, dict):
        raise InvalidUsageError(f"Expected a VeghCache, got {type(cache).__name__}")
    return cache.files


def _lookup(cache: VeghCache, path: str) -> FileCacheEntry | None:
    entry = _files_of(cache).get(path)
    if entry is not None and not isinstance(entry, FileCacheEntry):
        raise InvalidUsageError(f"Malformed cache entry for {path!r}")
    return entry


def check_hit(
    cache: VeghCache,
    path: str,
    observed_size: int,
    observed_modified_time: int,
) -> bool:
    entry = _lookup(cache, path)
    if entry is None:
        return False
    return entry.size == observed_size and entry.modified_time == observed_modified_time


def cached_digest(
    cache: VeghCache,
    path: str,
    observed_size: int,
    observed_modified_time: int,
    algorithm: HashAlgorithm | str | None = None,
) -> bytes | None:
    """Return the recorded digest on a hit, ``None`` on a miss or when none was recorded.

    With ``algorithm`` set, a digest made by a different algorithm counts as
    not recorded.
    """
    if not check_hit(cache, path, observed_size, observed_modified_time):
        return None
    entry = _lookup(cache, path)
    if entry is None or entry.digest is None:
        return None
    if algorithm is not None and entry.algorithm != _algorithm_name(algorithm):
        return None
    return entry.digest


def _algorithm_name(algorithm: HashAlgorithm | str) -> str:
    try:
        return HashAlgorithm(algorithm).value
    except ValueError as exc:
        raise InvalidUsageError(f"Unknown hash algorithm: {algorithm!r}") from exc


def record_entry(
    cache: VeghCache,
    path: str,
    size: int,
    modified_time: int,
    digest: bytes | None = None,
    algorithm: HashAlgorithm | str | None = None,
) -> FileCacheEntry:
    if size < 0:
        raise InvalidUsageError(f"File size must not be negative: {size}")
    entry = FileCacheEntry(
        path=path,
        size=size,
        modified_time=modified_time,
        digest=digest,
        algorithm=None if algorithm is None else _algorithm_name(algorithm),
    )
    _files_of(cache)[path] = entry
    return entry


def remove_entry(cache: VeghCache, path: str) -> bool:
    return _files_of(cache).pop(path, None) is not None


def cache_to_dict(cache: VeghCache) -> dict[str, Any]:
    return {
        "last_snapshot": cache.last_snapshot,
        "files": {
            path: {
                "size": entry.size,
                "modified": entry.modified_time,
                "digest": None if entry.digest is None else entry.digest.hex(),
                "algorithm": entry.algorithm,
            }
            for path, entry in sorted(_files_of(cache).items())
        },
    }


def _int_field(raw: dict[str, Any], key: str, path: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidUsageError(f"Cache entry {path!r} field {key!r} must be an integer")
    return value


def cache_from_dict(payload: Any) -> VeghCache:
    if not isinstance(payload, dict):
        raise InvalidUsageError("Cache payload must be a mapping")
    files = payload.get("files", {})
    if not isinstance(files, dict):
        raise InvalidUsageError("Cache payload 'files' must be a mapping")
    last_snapshot = payload.get("last_snapshot", 0)
    if isinstance(last_snapshot, bool) or not isinstance(last_snapshot, int):
        raise InvalidUsageError("Cache payload 'last_snapshot' must be an integer")

    cache = VeghCache(last_snapshot=last_snapshot)
    for path, raw in files.items():
        if not isinstance(path, str) or not isinstance(raw, dict):
            raise InvalidUsageError(f"Malformed cache entry for {path!r}")
        digest_hex = raw.get("digest")
        try:
            digest = None if digest_hex is None else bytes.fromhex(digest_hex)
        except (TypeError, ValueError) as exc:
            raise InvalidUsageError(f"Cache entry {path!r} has a malformed digest") from exc
        record_entry(
            cache,
            path,
            _int_field(raw, "size", path),
            _int_field(raw, "modified", path),
            digest,
            raw.get("algorithm"),
        )
    return cache
