"""Catalog service: read side of the store (categories, items, EPG window, sync status)."""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from channelhub.database import db_connect
from channelhub.errors import StorageError
from channelhub.models.catalog import SyncStatus
from channelhub.models.feeds import UNCATEGORIZED

logger = logging.getLogger(__name__)

EPG_WINDOW_MS = 24 * 60 * 60 * 1000


def _load(data: Optional[str]) -> dict:
    try:
        value = json.loads(data or "{}")
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def iso_utc(epoch_ms: int) -> str:
    """Epoch millis to ``2026-01-01T00:00:00.000Z``."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _stream_view(row: sqlite3.Row, type: str) -> dict:
    """Upstream payload overlaid with the promoted columns.

    Identifier fields keep the upstream's own value (and JSON type) when the
    payload carries one.
    """
    data = _load(row["data"])
    item = dict(data)
    item.setdefault("stream_id", row["item_id"])
    if type == "series":
        item.setdefault("series_id", row["item_id"])
    item.setdefault("category_id", row["category_id"])
    item["name"] = row["name"]
    item["stream_icon"] = row["stream_icon"]
    item["cover"] = row["stream_icon"]
    for column, key in (
        ("added_at", "added"),
        ("rating", "rating"),
        ("container_extension", "container_extension"),
        ("year", "year"),
        ("stream_url", "stream_url"),
    ):
        if row[column] is not None:
            item[key] = row[column]
    return item


class CatalogService:
    """Synchronous sqlite3 reads; WAL mode lets them run while a sync writes."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    @contextmanager
    def _reading(self):
        try:
            conn = db_connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Categories / streams
    # ------------------------------------------------------------------

    def get_categories(self, source_id: str, type: str, include_hidden: bool = False) -> list[dict]:
        query = """
            SELECT category_id, name, parent_id, data
            FROM categories
            WHERE source_id = ? AND type = ?
        """
        if not include_hidden:
            query += " AND is_hidden = 0"
        query += " ORDER BY name ASC"

        with self._reading() as conn:
            rows = conn.execute(query, (source_id, type)).fetchall()

        categories = []
        for row in rows:
            data = _load(row["data"])
            categories.append({
                "category_id": data.get("category_id", row["category_id"]),
                "category_name": row["name"],
                "parent_id": data.get("parent_id", row["parent_id"]),
            })
        return categories

    def get_streams(
        self,
        source_id: str,
        type: str,
        category_id: Optional[str] = None,
        include_hidden: bool = False,
    ) -> list[dict]:
        query = """
            SELECT item_id, name, category_id, stream_icon, stream_url,
                   container_extension, rating, year, added_at, data
            FROM playlist_items
            WHERE source_id = ? AND type = ?
        """
        params: list = [source_id, type]
        if not include_hidden:
            query += " AND is_hidden = 0"
        if category_id:
            query += " AND category_id = ?"
            params.append(str(category_id))

        with self._reading() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_stream_view(row, type) for row in rows]

    def get_m3u(self, source_id: str, include_hidden: bool = False) -> dict:
        """Live items and groups in the playlist-viewer shape."""
        channels = []
        counts: dict[str, int] = {}
        for stream in self.get_streams(source_id, "live", include_hidden=include_hidden):
            group = stream.get("category_id") or UNCATEGORIZED
            counts[str(group)] = counts.get(str(group), 0) + 1
            channels.append({
                **stream,
                "id": stream["stream_id"],
                "groupTitle": group,
                "url": stream.get("stream_url") or stream.get("url"),
                "tvgLogo": stream.get("stream_icon"),
            })

        groups = [
            {
                "id": cat["category_id"],
                "name": cat["category_name"],
                "channelCount": counts.get(str(cat["category_id"]), 0),
            }
            for cat in self.get_categories(source_id, "live", include_hidden)
        ]
        return {"channels": channels, "groups": groups}

    # ------------------------------------------------------------------
    # EPG
    # ------------------------------------------------------------------

    def get_epg_window(self, source_id: str, now_ms: Optional[int] = None) -> dict:
        """Programmes overlapping now ±24 h plus the source's EPG channels."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        window_start = now_ms - EPG_WINDOW_MS
        window_end = now_ms + EPG_WINDOW_MS

        with self._reading() as conn:
            programme_rows = conn.execute(
                """SELECT channel_id, start_time, end_time, title, description
                   FROM epg_programs
                   WHERE source_id = ? AND end_time > ? AND start_time < ?
                   ORDER BY channel_id, start_time""",
                (source_id, window_start, window_end),
            ).fetchall()
            channel_rows = conn.execute(
                """SELECT item_id, name, stream_icon
                   FROM playlist_items
                   WHERE source_id = ? AND type = 'epg_channel'""",
                (source_id,),
            ).fetchall()

        programmes = [
            {
                "channelId": row["channel_id"],
                "start": iso_utc(row["start_time"]),
                "stop": iso_utc(row["end_time"]),
                "title": row["title"],
                "desc": row["description"],
            }
            for row in programme_rows
        ]

        if channel_rows:
            channels = [
                {"id": row["item_id"], "name": row["name"], "icon": row["stream_icon"]}
                for row in channel_rows
            ]
        else:
            # Feeds without <channel> elements: derive from programme ids
            seen = dict.fromkeys(p["channelId"] for p in programmes)
            channels = [{"id": channel_id, "name": channel_id} for channel_id in seen]

        return {"channels": channels, "programmes": programmes}

    # ------------------------------------------------------------------
    # Sync status
    # ------------------------------------------------------------------

    def get_sync_statuses(self) -> list[SyncStatus]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT source_id, scope, last_sync, status, error, error_kind FROM sync_status ORDER BY source_id"
            ).fetchall()
        return [self._status(row) for row in rows]

    def get_sync_status(self, source_id: str, scope: str = "all") -> Optional[SyncStatus]:
        with self._reading() as conn:
            row = conn.execute(
                """SELECT source_id, scope, last_sync, status, error, error_kind
                   FROM sync_status WHERE source_id = ? AND scope = ?""",
                (source_id, scope),
            ).fetchone()
        return self._status(row) if row else None

    @staticmethod
    def _status(row: sqlite3.Row) -> SyncStatus:
        return SyncStatus(
            source_id=row["source_id"],
            scope=row["scope"],
            last_sync_at=row["last_sync"],
            status=row["status"],
            error=row["error"],
            error_kind=row["error_kind"],
        )
