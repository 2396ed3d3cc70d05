"""SQLite database: schema and connection helpers.

Usage
-----
Synchronous (catalog reads, sync status lookups):
    conn = db_connect(db_path)
    try:
        conn.execute(...)
        conn.commit()
    finally:
        conn.close()

Async (batch writer hot-path):
    async with aiosqlite.connect(db_path) as conn:
        await _pragma_setup_async(conn)
        await conn.execute(...)
        await conn.commit()
"""
from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

DB_NAME = "app.db"


# ---------------------------------------------------------------------------
# Low-level connection helpers
# ---------------------------------------------------------------------------

def db_connect(db_path: str) -> sqlite3.Connection:
    """Return a synchronous :class:`sqlite3.Connection` tuned for performance.

    *Always* called inside a ``try/finally`` or ``with`` block by callers.
    """
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA cache_size=-32768")   # 32 MB page cache
    return conn


async def _pragma_setup_async(conn) -> None:
    """Apply the same PRAGMAs for async aiosqlite connections."""
    conn.row_factory = sqlite3.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.execute("PRAGMA cache_size=-32768")
    await conn.execute("PRAGMA busy_timeout=30000")


# ---------------------------------------------------------------------------
# Schema – CREATE TABLE IF NOT EXISTS
# ---------------------------------------------------------------------------

_SCHEMA = """
-- ── Catalog ───────────────────────────────────────────────────────────────

-- 'id' is the composite "<source_id>:<category_id>"; the natural key is
-- (source_id, type, category_id) because panels reuse ids across types.
CREATE TABLE IF NOT EXISTS categories (
    source_id    TEXT NOT NULL,
    type         TEXT NOT NULL,
    category_id  TEXT NOT NULL,
    id           TEXT NOT NULL,
    name         TEXT,
    parent_id    TEXT,
    is_hidden    INTEGER NOT NULL DEFAULT 0,
    data         TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (source_id, type, category_id)
);

CREATE INDEX IF NOT EXISTS idx_categories_source_type
    ON categories (source_id, type);

-- One row per live channel / movie / series / EPG channel.
-- Promoted columns are denormalised for filtering; 'data' holds the full
-- upstream JSON blob.
CREATE TABLE IF NOT EXISTS playlist_items (
    source_id           TEXT NOT NULL,
    type                TEXT NOT NULL,
    item_id             TEXT NOT NULL,
    id                  TEXT NOT NULL,
    name                TEXT,
    category_id         TEXT,
    stream_icon         TEXT,
    stream_url          TEXT,
    container_extension TEXT,
    rating              TEXT,
    year                TEXT,
    added_at            TEXT,
    is_hidden           INTEGER NOT NULL DEFAULT 0,
    data                TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (source_id, type, item_id)
);

CREATE INDEX IF NOT EXISTS idx_items_source_type_cat
    ON playlist_items (source_id, type, category_id);

-- ── EPG ───────────────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS epg_programs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id   TEXT NOT NULL,
    channel_id  TEXT NOT NULL,
    start_time  INTEGER NOT NULL,
    end_time    INTEGER NOT NULL,
    title       TEXT,
    description TEXT,
    data        TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_epg_programs_source_time
    ON epg_programs (source_id, start_time, end_time);

-- ── Sync status ───────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS sync_status (
    source_id   TEXT NOT NULL,
    scope       TEXT NOT NULL DEFAULT 'all',
    last_sync   INTEGER,
    status      TEXT NOT NULL,
    error       TEXT,
    error_kind  TEXT,
    PRIMARY KEY (source_id, scope)
);
"""


def init_db(db_path: str) -> None:
    """Create all tables and indexes. Safe to call on every startup (idempotent)."""
    conn = db_connect(db_path)
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
        logger.info(f"Database initialised at {db_path}")
    finally:
        conn.close()
