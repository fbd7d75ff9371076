from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite

from vegh.cache import cached_digest, check_hit, create_empty_cache, record_entry
from vegh.cache_db import get_meta, load_cache, save_cache, set_meta


def test_cache_survives_save_and_load(tmp_path: Path) -> None:
    db_path = tmp_path / "state" / "cache.db"
    cache = create_empty_cache()
    cache.last_snapshot = 1_700_000_000
    record_entry(cache, "src/a.py", 120, 55, b"\x01" * 32, "blake3")
    record_entry(cache, "b.bin", 0, 7)

    asyncio.run(save_cache(db_path, cache))
    loaded = asyncio.run(load_cache(db_path))

    assert loaded == cache
    assert loaded.files["src/a.py"].algorithm == "blake3"
    assert check_hit(loaded, "src/a.py", 120, 55)


def test_save_replaces_previous_contents(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.db"
    first = create_empty_cache()
    record_entry(first, "old.txt", 1, 1)
    asyncio.run(save_cache(db_path, first))

    second = create_empty_cache()
    record_entry(second, "new.txt", 2, 2)
    asyncio.run(save_cache(db_path, second))

    assert list(asyncio.run(load_cache(db_path)).files) == ["new.txt"]


def test_missing_database_loads_empty(tmp_path: Path) -> None:
    loaded = asyncio.run(load_cache(tmp_path / "fresh.db"))

    assert loaded == create_empty_cache()


def test_meta_values(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.db"

    assert asyncio.run(get_meta(db_path, "k")) is None
    asyncio.run(set_meta(db_path, "k", "v1"))
    asyncio.run(set_meta(db_path, "k", "v2"))
    assert asyncio.run(get_meta(db_path, "k")) == "v2"


async def _write_legacy_db(db_path: Path) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            CREATE TABLE file_cache (
                path TEXT PRIMARY KEY,
                size INTEGER NOT NULL,
                modified_time INTEGER NOT NULL,
                digest BLOB
            )
            """
        )
        await db.execute(
            "INSERT INTO file_cache (path, size, modified_time, digest) VALUES (?, ?, ?, ?)",
            ("a.txt", 11, 5, b"\x02" * 32),
        )
        await db.commit()


def test_legacy_rows_load_without_algorithm(tmp_path: Path) -> None:
    db_path = tmp_path / "legacy.db"
    asyncio.run(_write_legacy_db(db_path))

    loaded = asyncio.run(load_cache(db_path))

    assert check_hit(loaded, "a.txt", 11, 5)
    assert loaded.files["a.txt"].algorithm is None
    assert cached_digest(loaded, "a.txt", 11, 5, "blake3") is None
