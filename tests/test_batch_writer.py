"""Tests for chunked persistence and the catalog read side."""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import aiosqlite
import pytest

from channelhub.database import db_connect
from channelhub.errors import StorageError
from channelhub.models.catalog import VisibilityChange
from channelhub.models.feeds import EpgChannel, EpgProgramme
from channelhub.services.batch_writer import BatchWriter, chunked, epoch_millis


def _count(db_path, table, **where):
    conn = db_connect(db_path)
    try:
        clause = " AND ".join(f"{k} = ?" for k in where) or "1 = 1"
        return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {clause}", tuple(where.values())).fetchone()[0]
    finally:
        conn.close()


@pytest.fixture()
def executemany_calls(monkeypatch):
    """Record the row count of every executemany issued by the writer."""
    calls = []
    original = aiosqlite.Connection.executemany

    async def spy(self, sql, parameters):
        parameters = list(parameters)
        calls.append(len(parameters))
        return await original(self, sql, parameters)

    monkeypatch.setattr(aiosqlite.Connection, "executemany", spy)
    return calls


# -------------------------------------------------------------------
# Chunking
# -------------------------------------------------------------------

def test_chunked():
    assert [len(c) for c in chunked(list(range(1200)), 500)] == [500, 500, 200]
    assert list(chunked([], 500)) == []


def test_1200_items_written_in_three_chunks(services, executemany_calls):
    items = [{"stream_id": i, "name": f"Channel {i}", "category_id": "1"} for i in range(1200)]

    written = asyncio.run(services.writer.save_streams("panel", "live", items))

    assert written == 1200
    assert executemany_calls == [500, 500, 200]
    assert _count(services.db_path, "playlist_items", source_id="panel", type="live") == 1200


def test_records_without_id_are_skipped(services):
    items = [{"stream_id": 1, "name": "A"}, {"name": "no id"}, "junk"]
    assert asyncio.run(services.writer.save_streams("panel", "live", items)) == 1


def test_empty_input_is_a_no_op(services):
    assert asyncio.run(services.writer.save_categories("panel", "live", None)) == 0
    assert asyncio.run(services.writer.save_streams("panel", "movie", [])) == 0


# -------------------------------------------------------------------
# Upsert semantics
# -------------------------------------------------------------------

def test_upsert_updates_in_place(services):
    writer = services.writer

    async def run():
        await writer.save_streams("panel", "live", [{"stream_id": 10, "name": "CNN"}])
        await writer.save_streams("panel", "live", [{"stream_id": 10, "name": "CNN HD"}])

    asyncio.run(run())
    streams = services.catalog.get_streams("panel", "live")
    assert [s["name"] for s in streams] == ["CNN HD"]


def test_same_upstream_id_across_types_and_sources(services):
    writer = services.writer

    async def run():
        await writer.save_categories("panel", "live", [{"category_id": "1", "category_name": "News"}])
        await writer.save_categories("panel", "movie", [{"category_id": "1", "category_name": "Action"}])
        await writer.save_categories("list", "live", [{"category_id": "1", "category_name": "Other"}])

    asyncio.run(run())
    assert _count(services.db_path, "categories") == 3
    assert services.catalog.get_categories("panel", "movie") == [
        {"category_id": "1", "category_name": "Action", "parent_id": None},
    ]


def test_identifiers_keep_upstream_types(services):
    writer = services.writer

    async def run():
        await writer.save_categories("panel", "series", [{"category_id": "5", "category_name": "Drama", "parent_id": 0}])
        await writer.save_streams("panel", "series", [{
            "series_id": 77, "name": "Show", "category_id": "5", "cover": "http://img.test/s.png",
            "releaseDate": "2020-01-01", "last_modified": "1700000000", "plot": "Kept verbatim",
        }])

    asyncio.run(run())
    [show] = services.catalog.get_streams("panel", "series", category_id="5")
    assert show["series_id"] == 77
    assert show["cover"] == "http://img.test/s.png"
    assert show["year"] == "2020-01-01"
    assert show["added"] == "1700000000"
    assert show["plot"] == "Kept verbatim"
    [category] = services.catalog.get_categories("panel", "series")
    assert category["parent_id"] == 0


def test_hidden_flag_survives_resync(services):
    writer = services.writer
    items = [{"stream_id": 1, "name": "A", "category_id": "1"}, {"stream_id": 2, "name": "B", "category_id": "1"}]

    async def run():
        await writer.save_streams("panel", "live", items)
        changed = await writer.set_hidden("panel", [VisibilityChange(kind="item", type="live", id="2")])
        await writer.save_streams("panel", "live", items)
        return changed

    assert asyncio.run(run()) == 1
    assert [s["name"] for s in services.catalog.get_streams("panel", "live")] == ["A"]
    assert len(services.catalog.get_streams("panel", "live", include_hidden=True)) == 2


# -------------------------------------------------------------------
# EPG
# -------------------------------------------------------------------

NOW = datetime.now(timezone.utc).replace(microsecond=0)


def _programmes(*titles, channel="cnn.us"):
    return [
        EpgProgramme(
            channel_id=channel,
            start=NOW + timedelta(hours=i),
            stop=NOW + timedelta(hours=i + 1),
            title=title,
        )
        for i, title in enumerate(titles)
    ]


def test_ingest_epg_is_idempotent(services):
    writer = services.writer
    channels = [EpgChannel(id="cnn.us", name="CNN")]

    async def run():
        await writer.ingest_epg("guide", channels, _programmes("A", "B"))
        first = services.catalog.get_epg_window("guide")
        await writer.ingest_epg("guide", channels, _programmes("A", "B"))
        return first, services.catalog.get_epg_window("guide")

    first, second = asyncio.run(run())
    assert first == second
    assert len(second["programmes"]) == 2
    assert _count(services.db_path, "playlist_items", source_id="guide", type="epg_channel") == 1


def test_ingest_epg_replaces_previous_set(services):
    writer = services.writer

    async def run():
        await writer.ingest_epg("guide", [], _programmes("Old 1", "Old 2", "Old 3"))
        return await writer.ingest_epg("guide", [], _programmes("New"))

    result = asyncio.run(run())
    assert result == {"channels": 0, "programmes": 1, "removed": 3}
    window = services.catalog.get_epg_window("guide")
    assert [p["title"] for p in window["programmes"]] == ["New"]


def test_ingest_epg_leaves_other_sources_alone(services):
    writer = services.writer

    async def run():
        await writer.ingest_epg("guide", [], _programmes("Mine"))
        await writer.ingest_epg("panel", [], _programmes("Theirs"))

    asyncio.run(run())
    assert _count(services.db_path, "epg_programs", source_id="guide") == 1


def test_programme_without_stop_is_zero_length(services):
    programme = EpgProgramme(channel_id="c", start=NOW, title="Open")
    asyncio.run(services.writer.ingest_epg("guide", [], [programme]))

    conn = db_connect(services.db_path)
    try:
        row = conn.execute("SELECT start_time, end_time FROM epg_programs").fetchone()
    finally:
        conn.close()
    assert row["start_time"] == row["end_time"] == epoch_millis(NOW)


def test_epg_window_bounds_and_fallback_channels(services):
    programmes = [
        EpgProgramme(channel_id="a", start=NOW - timedelta(hours=30), stop=NOW - timedelta(hours=25), title="Too old"),
        EpgProgramme(channel_id="a", start=NOW - timedelta(hours=1), stop=NOW + timedelta(hours=1), title="On now"),
        EpgProgramme(channel_id="b", start=NOW + timedelta(hours=23), stop=NOW + timedelta(hours=24), title="Tomorrow"),
        EpgProgramme(channel_id="b", start=NOW + timedelta(hours=25), stop=NOW + timedelta(hours=26), title="Too far"),
    ]
    asyncio.run(services.writer.ingest_epg("guide", [], programmes))

    window = services.catalog.get_epg_window("guide", now_ms=epoch_millis(NOW))
    assert [p["title"] for p in window["programmes"]] == ["On now", "Tomorrow"]
    assert window["channels"] == [{"id": "a", "name": "a"}, {"id": "b", "name": "b"}]
    on_now = window["programmes"][0]
    assert on_now["start"].endswith("Z")
    assert datetime.fromisoformat(on_now["start"].replace("Z", "+00:00")) == NOW - timedelta(hours=1)


# -------------------------------------------------------------------
# Status / errors
# -------------------------------------------------------------------

def test_sync_status_upsert(services):
    writer = services.writer

    async def run():
        await writer.set_sync_status("panel", "syncing")
        await writer.set_sync_status("panel", "error", "boom", "upstream")

    asyncio.run(run())
    [status] = services.catalog.get_sync_statuses()
    assert (status.status, status.error, status.error_kind) == ("error", "boom", "upstream")
    assert status.last_sync_at is not None


def test_database_errors_are_storage_errors(tmp_path):
    writer = BatchWriter(os.path.join(tmp_path, "missing", "app.db"))
    with pytest.raises(StorageError):
        asyncio.run(writer.set_sync_status("panel", "syncing"))


def test_missing_table_is_storage_error(tmp_path):
    writer = BatchWriter(os.path.join(tmp_path, "empty.db"))
    with pytest.raises(StorageError):
        asyncio.run(writer.save_streams("panel", "live", [{"stream_id": 1, "name": "A"}]))
