"""Batch writer: chunked, transactional upserts of catalog and EPG rows.

Every chunk of ``BATCH_SIZE`` rows is one transaction, and the writer yields
to the event loop after each chunk so a large sync never starves the read
and proxy requests served by the same loop.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from typing import Iterable, Iterator, Optional, Sequence

import aiosqlite

from channelhub.database import _pragma_setup_async
from channelhub.errors import StorageError
from channelhub.models.catalog import Category, PlaylistItem, VisibilityChange, map_upstream_item
from channelhub.models.feeds import EpgChannel, EpgProgramme

logger = logging.getLogger(__name__)

BATCH_SIZE = 500

_UPSERT_CATEGORY = """
    INSERT INTO categories (source_id, type, category_id, id, name, parent_id, data)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (source_id, type, category_id) DO UPDATE SET
        name = excluded.name,
        parent_id = excluded.parent_id,
        data = excluded.data
"""

_UPSERT_ITEM = """
    INSERT INTO playlist_items (
        source_id, type, item_id, id, name, category_id, stream_icon,
        stream_url, container_extension, rating, year, added_at, data
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (source_id, type, item_id) DO UPDATE SET
        name = excluded.name,
        category_id = excluded.category_id,
        stream_icon = excluded.stream_icon,
        stream_url = excluded.stream_url,
        container_extension = excluded.container_extension,
        rating = excluded.rating,
        year = excluded.year,
        added_at = excluded.added_at,
        data = excluded.data
"""

_INSERT_PROGRAMME = """
    INSERT INTO epg_programs (source_id, channel_id, start_time, end_time, title, description, data)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""


def chunked(seq: Sequence, size: int = BATCH_SIZE) -> Iterator[Sequence]:
    for i in range(0, len(seq), size):
        yield seq[i:i + size]


def epoch_millis(dt) -> int:
    return int(dt.timestamp() * 1000)


def _item_row(item: PlaylistItem) -> tuple:
    return (
        item.source_id, item.type, item.item_id, item.composite_id, item.name,
        item.category_id, item.icon, item.stream_url, item.container_extension,
        item.rating, item.year, item.added_at, json.dumps(item.raw),
    )


def _programme_row(source_id: str, p: EpgProgramme) -> tuple:
    start = epoch_millis(p.start)
    # XMLTV allows an open-ended programme; store it as zero-length
    end = epoch_millis(p.stop) if p.stop is not None else start
    return (
        source_id, p.channel_id, start, end, p.title, p.description,
        json.dumps(p.model_dump(mode="json")),
    )


class BatchWriter:
    """Write side of the catalog store."""

    def __init__(self, db_path: str, batch_size: int = BATCH_SIZE):
        self.db_path = db_path
        self.batch_size = batch_size

    @asynccontextmanager
    async def _connect(self):
        try:
            async with aiosqlite.connect(self.db_path, timeout=30) as conn:
                await _pragma_setup_async(conn)
                yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    async def _write_chunks(self, sql: str, records: Sequence, to_row) -> tuple[int, int]:
        """Run *sql* over *records* chunk by chunk; returns (written, skipped)."""
        written = skipped = 0
        async with self._connect() as conn:
            for chunk in chunked(records, self.batch_size):
                rows = []
                for record in chunk:
                    row = to_row(record)
                    if row is None:
                        skipped += 1
                    else:
                        rows.append(row)
                if rows:
                    await conn.executemany(sql, rows)
                    await conn.commit()
                    written += len(rows)
                await asyncio.sleep(0)
        return written, skipped

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def save_categories(self, source_id: str, type: str, categories: Optional[list]) -> int:
        if not categories:
            return 0
        logger.info(f"[Sync] Saving {len(categories)} {type} categories for source {source_id}...")

        def to_row(raw) -> Optional[tuple]:
            if not isinstance(raw, dict):
                return None
            cat = Category.from_upstream(source_id, type, raw)
            if cat is None:
                return None
            return (
                cat.source_id, cat.type, cat.category_id, cat.composite_id,
                cat.name, cat.parent_id, json.dumps(raw),
            )

        written, skipped = await self._write_chunks(_UPSERT_CATEGORY, categories, to_row)
        if skipped:
            logger.warning(f"[Sync] Skipped {skipped} {type} categories without category_id")
        logger.info(f"[Sync] Saved {written} {type} categories")
        return written

    async def save_streams(self, source_id: str, type: str, items: Optional[list]) -> int:
        if not items:
            return 0
        logger.info(f"[Sync] Saving {len(items)} {type} items for source {source_id}...")

        def to_row(raw) -> Optional[tuple]:
            if not isinstance(raw, dict):
                return None
            item = map_upstream_item(source_id, type, raw)
            return _item_row(item) if item is not None else None

        written, skipped = await self._write_chunks(_UPSERT_ITEM, items, to_row)
        if skipped:
            logger.warning(f"[Sync] Skipped {skipped} {type} items without an id")
        logger.info(f"[Sync] Saved {written} {type} items")
        return written

    # ------------------------------------------------------------------
    # EPG
    # ------------------------------------------------------------------

    async def ingest_epg(
        self,
        source_id: str,
        channels: Sequence[EpgChannel],
        programmes: Sequence[EpgProgramme],
    ) -> dict:
        """Upsert EPG channels, then swap the source's programme set atomically.

        The delete and all inserts share one transaction. Readers on other
        connections keep seeing the previous set until the commit.
        """
        def channel_row(ch: EpgChannel) -> tuple:
            return _item_row(PlaylistItem(
                source_id=source_id,
                type="epg_channel",
                item_id=ch.id,
                name=ch.name,
                icon=ch.icon,
                raw=ch.model_dump(),
            ))

        channel_count, _ = await self._write_chunks(_UPSERT_ITEM, channels, channel_row)
        logger.info(f"[Sync] Saved {channel_count} EPG channels")

        async with self._connect() as conn:
            try:
                await conn.execute("BEGIN IMMEDIATE")
                cursor = await conn.execute("DELETE FROM epg_programs WHERE source_id = ?", (source_id,))
                removed = cursor.rowcount
                for chunk in chunked(programmes, self.batch_size):
                    await conn.executemany(_INSERT_PROGRAMME, [_programme_row(source_id, p) for p in chunk])
                    await asyncio.sleep(0)
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

        logger.info(f"[Sync] Replaced {removed} programmes with {len(programmes)} for source {source_id}")
        return {"channels": channel_count, "programmes": len(programmes), "removed": removed}

    # ------------------------------------------------------------------
    # Status / visibility
    # ------------------------------------------------------------------

    async def set_sync_status(
        self,
        source_id: str,
        status: str,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        scope: str = "all",
    ) -> None:
        async with self._connect() as conn:
            await conn.execute(
                """INSERT INTO sync_status (source_id, scope, last_sync, status, error, error_kind)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT (source_id, scope) DO UPDATE SET
                       last_sync = excluded.last_sync,
                       status = excluded.status,
                       error = excluded.error,
                       error_kind = excluded.error_kind""",
                (source_id, scope, int(time.time() * 1000), status, error, error_kind),
            )
            await conn.commit()

    async def set_hidden(self, source_id: str, changes: Iterable[VisibilityChange]) -> int:
        """Apply hide/show toggles; returns the number of rows changed."""
        category_rows, item_rows = [], []
        for change in changes:
            row = (int(change.hidden), source_id, change.type, change.id)
            (category_rows if change.kind == "category" else item_rows).append(row)

        changed = 0
        async with self._connect() as conn:
            if category_rows:
                cursor = await conn.executemany(
                    "UPDATE categories SET is_hidden = ? WHERE source_id = ? AND type = ? AND category_id = ?",
                    category_rows,
                )
                changed += max(cursor.rowcount, 0)
            if item_rows:
                cursor = await conn.executemany(
                    "UPDATE playlist_items SET is_hidden = ? WHERE source_id = ? AND type = ? AND item_id = ?",
                    item_rows,
                )
                changed += max(cursor.rowcount, 0)
            await conn.commit()
        return changed
