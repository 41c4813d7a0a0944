"""SQLite connection holder for the notes store.

One aiosqlite connection per process, opened by the app lifespan and handed
to request handlers through ``get_db()``.  The schema is versioned with
``PRAGMA user_version``: each entry in ``_MIGRATIONS`` runs once, in order.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from vinyl.config import get_settings

logger = logging.getLogger(__name__)

_db: aiosqlite.Connection | None = None

_MIGRATIONS: list[str] = [
    # 1: notes as small documents; reactions kept as JSON {emoji: {count, users}}
    """
    CREATE TABLE IF NOT EXISTS notes (
        id          TEXT    PRIMARY KEY,
        track_id    TEXT    NOT NULL,
        content     TEXT    NOT NULL CHECK(length(content) > 0),
        timestamp   TEXT    NOT NULL,
        is_shared   INTEGER NOT NULL DEFAULT 1,
        reactions   TEXT    NOT NULL DEFAULT '{}'
    );

    CREATE INDEX IF NOT EXISTS idx_notes_track_time
        ON notes(track_id, timestamp DESC);
    """,
]

SCHEMA_VERSION = len(_MIGRATIONS)


async def _migrate(db: aiosqlite.Connection) -> None:
    cursor = await db.execute("PRAGMA user_version")
    current = (await cursor.fetchone())[0]
    for version in range(current, SCHEMA_VERSION):
        await db.executescript(_MIGRATIONS[version])
        await db.execute(f"PRAGMA user_version = {version + 1}")
        logger.info("Applied notes schema migration %d", version + 1)
    await db.commit()


async def init_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open the database (default: ``settings.db_abs_path``) and bring the schema up to date."""
    global _db  # noqa: PLW0603
    if _db is not None:
        return _db

    db_path = path if path is not None else get_settings().db_abs_path
    db = await aiosqlite.connect(str(db_path))
    db.row_factory = aiosqlite.Row  # type: ignore[assignment]
    await db.execute("PRAGMA journal_mode = WAL")
    await _migrate(db)
    _db = db
    return _db


async def close_db() -> None:
    global _db  # noqa: PLW0603
    if _db is not None:
        await _db.close()
        _db = None


def get_db() -> aiosqlite.Connection:
    """The open connection; only valid between ``init_db()`` and ``close_db()``."""
    if _db is None:
        raise RuntimeError("Database not initialised — call init_db() first.")
    return _db
