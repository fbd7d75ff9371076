from __future__ import annotations

from pathlib import Path

import pytest

from vegh.config import CONFIG_FILENAME, VeghConfig, load_config, save_config
from vegh.errors import UnsupportedFormatVersionError
from vegh.filters import build_path_filter


def test_missing_config_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VEGH_AUTHOR", "env-author")

    config = load_config(tmp_path)

    assert config.author == "env-author"
    assert config.format_version == 2
    assert config.chunk_size == 5 * 1024 * 1024


def test_config_round_trip(tmp_path: Path) -> None:
    config = VeghConfig(author="a", comment="c", format_version=1, compression_level=9, exclude=["*.log"])

    save_config(config, tmp_path)

    assert load_config(tmp_path) == config


def test_invalid_config_values(tmp_path: Path) -> None:
    path = tmp_path / CONFIG_FILENAME

    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(tmp_path)

    path.write_text('{"author": "a", "format_version": 7}', encoding="utf-8")
    with pytest.raises(UnsupportedFormatVersionError):
        load_config(tmp_path)

    path.write_text('{"author": "a", "compression_level": 40}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(tmp_path)


def test_default_excludes_skip_vcs_and_vegh_state() -> None:
    path_filter = build_path_filter()

    assert path_filter.matches("src/main.py")
    assert not path_filter.matches(".git/HEAD")
    assert not path_filter.matches("pkg/__pycache__/mod.cpython-312.pyc")
    assert not path_filter.matches(".vegh_cache.db")
    assert not path_filter.matches("backups/old.vegh")


def test_include_and_exclude_patterns() -> None:
    path_filter = build_path_filter(["*.py", "docs/"], ["tests/*.py"], default_excludes=False)

    assert path_filter.matches("a.py")
    assert path_filter.matches("pkg/b.py")
    assert path_filter.matches("docs/guide/index.md")
    assert not path_filter.matches("README.md")
    assert not path_filter.matches("tests/test_a.py")
