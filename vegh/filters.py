from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from vegh.config import CACHE_DB_FILENAME, CONFIG_FILENAME


DEFAULT_EXCLUDES = (
    ".git/",
    "__pycache__/",
    CONFIG_FILENAME,
    CACHE_DB_FILENAME,
    "*.vegh",
    "*.vegh.part",
)


def _normalize_pattern(pattern: str) -> str:
    normalized = pattern.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _match_pattern(path: str, pattern: str) -> bool:
    if not pattern:
        return False
    # A trailing slash names a directory: match it and everything under it.
    if pattern.endswith("/"):
        prefix = pattern.rstrip("/")
        parts = PurePosixPath(path).parts
        return any(
            PurePosixPath(*parts[: index + 1]).match(prefix)
            for index in range(len(parts) - 1)
        )
    path_obj = PurePosixPath(path)
    return path_obj.match(pattern) or path_obj.match(f"**/{pattern}")


@dataclass(slots=True, frozen=True)
class PathFilter:
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = DEFAULT_EXCLUDES

    def matches(self, path: str) -> bool:
        if self.include_patterns and not any(
            _match_pattern(path, pattern) for pattern in self.include_patterns
        ):
            return False
        return not any(_match_pattern(path, pattern) for pattern in self.exclude_patterns)


def build_path_filter(
    include_patterns: list[str] | tuple[str, ...] | None = None,
    exclude_patterns: list[str] | tuple[str, ...] | None = None,
    *,
    default_excludes: bool = True,
) -> PathFilter:
    include = tuple(_normalize_pattern(p) for p in (include_patterns or ()) if p)
    exclude = tuple(_normalize_pattern(p) for p in (exclude_patterns or ()) if p)
    if default_excludes:
        exclude = DEFAULT_EXCLUDES + exclude
    return PathFilter(include_patterns=include, exclude_patterns=exclude)
