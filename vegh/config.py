from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from vegh.codec import DEFAULT_COMPRESSION_LEVEL
from vegh.formats import CURRENT_FORMAT_VERSION, policy_for
from vegh.reader import DEFAULT_STREAM_CHUNK_SIZE


CONFIG_FILENAME = ".veghrc.json"
CACHE_DB_FILENAME = ".vegh_cache.db"


@dataclass(slots=True)
class VeghConfig:
    author: str
    comment: str = ""
    format_version: int = CURRENT_FORMAT_VERSION
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    chunk_size: int = DEFAULT_STREAM_CHUNK_SIZE
    exclude: list[str] = field(default_factory=list)

    def cache_db_path(self, base_dir: Path | None = None) -> Path:
        return (base_dir or Path.cwd()).resolve() / CACHE_DB_FILENAME


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def default_author() -> str:
    for env_name in ("VEGH_AUTHOR", "USER", "USERNAME"):
        value = os.getenv(env_name, "").strip()
        if value:
            return value
    return ""


def _validate(config: VeghConfig) -> VeghConfig:
    policy_for(config.format_version)
    if not 1 <= config.compression_level <= 22:
        raise ValueError(f"compression_level must be between 1 and 22, got {config.compression_level}")
    if config.chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {config.chunk_size}")
    return config


def load_config(base_dir: Path | None = None) -> VeghConfig:
    """Read ``.veghrc.json``; a missing file yields defaults."""
    path = config_path(base_dir)
    if not path.exists():
        return VeghConfig(author=default_author())

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    try:
        config = VeghConfig(
            author=str(data.get("author") or default_author()),
            comment=str(data.get("comment", "")),
            format_version=int(data.get("format_version", CURRENT_FORMAT_VERSION)),
            compression_level=int(data.get("compression_level", DEFAULT_COMPRESSION_LEVEL)),
            chunk_size=int(data.get("chunk_size", DEFAULT_STREAM_CHUNK_SIZE)),
            exclude=[str(pattern) for pattern in data.get("exclude", [])],
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Config file {path} has an invalid value: {exc}") from exc
    return _validate(config)


def save_config(config: VeghConfig, base_dir: Path | None = None) -> Path:
    path = config_path(base_dir)
    payload = asdict(_validate(config))
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")
    return path
