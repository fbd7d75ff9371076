from __future__ import annotations

from pathlib import Path

import aiosqlite

from vegh.models import FileCacheEntry, VeghCache


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS file_cache (
    path TEXT PRIMARY KEY,
    size INTEGER NOT NULL,
    modified_time INTEGER NOT NULL,
    digest BLOB,
    algorithm TEXT
);
"""

META_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cache_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

LAST_SNAPSHOT_KEY = "last_snapshot"


async def _ensure_algorithm_column(db: aiosqlite.Connection) -> None:
    # Older databases lack the column; their rows load with algorithm NULL.
    cursor = await db.execute("PRAGMA table_info(file_cache)")
    columns = {row[1] for row in await cursor.fetchall()}
    await cursor.close()
    if "algorithm" not in columns:
        await db.execute("ALTER TABLE file_cache ADD COLUMN algorithm TEXT")


async def ensure_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(SCHEMA_SQL)
        await db.execute(META_SCHEMA_SQL)
        await _ensure_algorithm_column(db)
        await db.commit()


async def load_cache(db_path: Path) -> VeghCache:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT path, size, modified_time, digest, algorithm FROM file_cache ORDER BY path"
        )
        rows = await cursor.fetchall()
        await cursor.close()

    files = {
        str(row["path"]): FileCacheEntry(
            path=str(row["path"]),
            size=int(row["size"]),
            modified_time=int(row["modified_time"]),
            digest=None if row["digest"] is None else bytes(row["digest"]),
            algorithm=row["algorithm"],
        )
        for row in rows
    }
    last_snapshot = await get_meta(db_path, LAST_SNAPSHOT_KEY)
    return VeghCache(files=files, last_snapshot=int(last_snapshot or 0))


async def save_cache(db_path: Path, cache: VeghCache) -> None:
    """Replace the stored cache with ``cache``; entries not in it are dropped."""
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM file_cache")
        if cache.files:
            await db.executemany(
                """
                INSERT INTO file_cache (path, size, modified_time, digest, algorithm)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (e.path, e.size, e.modified_time, e.digest, e.algorithm)
                    for e in cache.files.values()
                ],
            )
        await db.execute(
            "INSERT OR REPLACE INTO cache_meta (key, value) VALUES (?, ?)",
            (LAST_SNAPSHOT_KEY, str(cache.last_snapshot)),
        )
        await db.commit()


async def get_meta(db_path: Path, key: str) -> str | None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute(
            "SELECT value FROM cache_meta WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        await cursor.close()
    if row is None:
        return None
    return str(row[0])


async def set_meta(db_path: Path, key: str, value: str) -> None:
    await ensure_db(db_path)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT OR REPLACE INTO cache_meta (key, value) VALUES (?, ?)
            """,
            (key, value),
        )
        await db.commit()
