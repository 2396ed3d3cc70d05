"""Integration tests — hit actual FastAPI routes via Starlette TestClient."""

import asyncio
import os
from urllib.parse import unquote

import httpx
import pytest
from starlette.testclient import TestClient

from channelhub.database import DB_NAME
from channelhub.services.batch_writer import BatchWriter
from conftest import PANEL, XTREAM_SOURCE, install_panel, write_config


def _build_app(data_dir: str, transport: httpx.AsyncBaseTransport):
    """Build a fully-wired app pointing at *data_dir* with a fake network."""
    from channelhub.main import create_app

    return create_app(data_dir, transport=transport, background_sync=False)


@pytest.fixture()
def client(data_dir, upstream):
    app = _build_app(data_dir, upstream.transport)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def seeded(client, data_dir):
    """Catalog rows for the Xtream source, written the way a sync would."""
    writer = BatchWriter(os.path.join(data_dir, DB_NAME))

    async def run():
        await writer.save_categories("panel", "live", [
            {"category_id": "1", "category_name": "News", "parent_id": 0},
            {"category_id": "2", "category_name": "Sports", "parent_id": 0},
        ])
        await writer.save_streams("panel", "live", [
            {"stream_id": 10, "name": "CNN", "category_id": "1", "stream_icon": "http://img.test/cnn.png"},
            {"stream_id": 11, "name": "ESPN", "category_id": "2"},
        ])
        await writer.save_categories("panel", "movie", [{"category_id": "7", "category_name": "Action"}])
        await writer.save_streams("panel", "movie", [
            {"stream_id": 500, "name": "Movie", "category_id": "7", "container_extension": "mkv", "rating": "7.5"},
        ])

    asyncio.run(run())
    return client


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------

def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_json_has_utf8_charset(client):
    r = client.get("/health")
    assert "charset=utf-8" in r.headers["content-type"]


# -------------------------------------------------------------------
# Xtream API
# -------------------------------------------------------------------

def test_auth_is_cached(client, upstream):
    install_panel(upstream)

    first = client.get("/xtream/panel")
    second = client.get("/xtream/panel")

    assert first.status_code == 200
    assert second.json() == first.json()
    assert first.json()["user_info"]["username"] == "user"
    assert len(upstream.calls("/player_api.php")) == 1


def test_auth_unknown_source_is_404(client):
    r = client.get("/xtream/nope")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_auth_non_xtream_source_is_404(client):
    assert client.get("/xtream/list").status_code == 404


def test_auth_upstream_failure_is_502(client, upstream):
    upstream.add_json(PANEL + "/player_api.php", {}, status=500)
    r = client.get("/xtream/panel")
    assert r.status_code == 502
    assert r.json()["error"] == "upstream"


def test_live_categories(seeded):
    r = seeded.get("/xtream/panel/live_categories")
    assert r.status_code == 200
    assert [c["category_name"] for c in r.json()] == ["News", "Sports"]


def test_live_streams_filtered_by_category(seeded):
    r = seeded.get("/xtream/panel/live_streams", params={"category_id": "1"})
    [stream] = r.json()
    assert stream["stream_id"] == 10
    assert stream["name"] == "CNN"
    assert stream["category_id"] == "1"
    assert stream["stream_icon"] == "http://img.test/cnn.png"


def test_vod_endpoints(seeded):
    assert [c["category_id"] for c in seeded.get("/xtream/panel/vod_categories").json()] == ["7"]
    [movie] = seeded.get("/xtream/panel/vod_streams").json()
    assert movie["container_extension"] == "mkv"
    assert movie["rating"] == "7.5"


def test_series_endpoints_empty(seeded):
    assert seeded.get("/xtream/panel/series_categories").json() == []
    assert seeded.get("/xtream/panel/series").json() == []


def test_include_hidden(seeded):
    r = seeded.put("/catalog/panel/visibility", json=[
        {"kind": "category", "type": "live", "id": "2"},
        {"kind": "item", "type": "live", "id": "11"},
    ])
    assert r.status_code == 200
    assert r.json() == {"success": True, "updated": 2}

    assert [c["category_id"] for c in seeded.get("/xtream/panel/live_categories").json()] == ["1"]
    assert len(seeded.get("/xtream/panel/live_streams").json()) == 1
    hidden = seeded.get("/xtream/panel/live_streams", params={"includeHidden": "true"}).json()
    assert len(hidden) == 2


def test_series_info_requires_id(client):
    r = client.get("/xtream/panel/series_info")
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"


def test_vod_info_is_cached(client, upstream):
    upstream.add_json(PANEL + "/player_api.php", {"info": {"name": "Movie"}}, action="get_vod_info")

    assert client.get("/xtream/panel/vod_info", params={"vod_id": "500"}).json()["info"]["name"] == "Movie"
    client.get("/xtream/panel/vod_info", params={"vod_id": "500"})

    calls = upstream.calls("/player_api.php", "get_vod_info")
    assert len(calls) == 1
    assert calls[0].url.params["vod_id"] == "500"


def test_stream_url(client):
    r = client.get("/xtream/panel/stream/10/live")
    assert r.json() == {"url": "http://panel.test/live/user/pass/10.m3u8"}

    r = client.get("/xtream/panel/stream/500/movie", params={"container": "mkv"})
    assert r.json() == {"url": "http://panel.test/movie/user/pass/500.mkv"}


def test_stream_url_invalid_type(client):
    assert client.get("/xtream/panel/stream/10/radio").status_code == 400


# -------------------------------------------------------------------
# M3U / EPG
# -------------------------------------------------------------------

def test_m3u_view(seeded):
    data = seeded.get("/m3u/panel").json()
    cnn = next(c for c in data["channels"] if c["name"] == "CNN")
    assert cnn["id"] == 10
    assert cnn["groupTitle"] == "1"
    assert cnn["tvgLogo"] == "http://img.test/cnn.png"
    assert {"id": "1", "name": "News", "channelCount": 1} in data["groups"]


def test_epg_window_and_cache(client, upstream):
    from conftest import XMLTV

    upstream.add_body("http://guide.test/epg.xml", XMLTV)
    assert client.post("/sync/guide").json()["status"] == "success"

    r = client.get("/epg/guide")
    assert r.status_code == 200
    data = r.json()
    assert set(data) == {"channels", "programmes"}

    # Cached until refresh is requested
    client.app.state.cache_service.set("epg:guide:window", {"channels": [], "programmes": ["cached"]}, 3600)
    assert client.get("/epg/guide").json()["programmes"] == ["cached"]
    assert client.get("/epg/guide", params={"refresh": "1"}).json() == data


def test_epg_max_age_zero_disables_caching(client):
    client.get("/epg/guide", params={"maxAge": "0"})
    assert client.app.state.cache_service.get("epg:guide:window") is None


def test_delete_cache(client):
    cache = client.app.state.cache_service
    cache.set("xtream:panel:auth", {"x": 1}, 300)
    cache.set("epg:panel:window", {"x": 2}, 300)

    r = client.delete("/cache/panel")
    assert r.json() == {"success": True, "cleared": 2}
    assert cache.get("xtream:panel:auth") is None


# -------------------------------------------------------------------
# Sync / sources
# -------------------------------------------------------------------

def test_sync_source_endpoint(client, upstream):
    install_panel(upstream)

    r = client.post("/sync/panel")
    assert r.status_code == 200
    assert r.json()["status"] == "success"

    [stream] = client.get("/xtream/panel/live_streams").json()
    assert stream["stream_id"] == 10

    status = client.get("/sync/status").json()
    panel = next(s for s in status["sources"] if s["id"] == "panel")
    assert panel["status"] == "success"
    assert panel["syncing"] is False


def test_sync_source_already_running(client):
    client.app.state.sync_service.try_acquire("panel")
    assert client.post("/sync/panel").json() == {"status": "already_syncing"}


def test_sync_unknown_source_is_404(client):
    assert client.post("/sync/nope").status_code == 404


def test_sync_error_is_reported(client):
    # Nothing answers on the fake panel
    r = client.post("/sync/panel")
    assert r.json()["status"] == "error"
    assert r.json()["error_kind"] == "upstream"


def test_sources_hide_credentials(client):
    sources = client.get("/sources").json()
    assert sources[0] == {"id": "panel", "type": "xtream", "name": "Panel", "enabled": True}


def test_source_test_endpoint(client, upstream):
    install_panel(upstream)
    assert client.get("/sources/panel/test").json()["success"] is True
    assert client.get("/sources/nope/test").status_code == 404


# -------------------------------------------------------------------
# Stream / image proxy
# -------------------------------------------------------------------

def test_stream_requires_url(client):
    assert client.get("/stream").status_code == 400


def test_stream_manifest_is_rewritten(client, upstream):
    upstream.add_body("http://h/live.m3u8", b"#EXTM3U\nchunk1.ts\n")

    r = client.get("/stream", params={"url": "http://h/live.m3u8"})

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    lines = r.text.splitlines()
    assert lines[0] == "#EXTM3U"
    assert lines[1].startswith("http://testserver/stream?url=")
    assert unquote(lines[1].split("?url=", 1)[1]) == "http://h/chunk1.ts"


def test_stream_manifest_failure_falls_through_to_relay(client, upstream):
    upstream.add_body("http://h/live.m3u8", b"gone", status=410)
    r = client.get("/stream", params={"url": "http://h/live.m3u8"})
    assert r.status_code == 410


def test_stream_relays_segments(client, upstream):
    upstream.add_body("http://h/chunk1.ts", b"\x47" * 376, headers={"content-type": "video/mp2t"})
    r = client.get("/stream", params={"url": "http://h/chunk1.ts"})
    assert r.status_code == 200
    assert r.content == b"\x47" * 376
    assert r.headers["content-type"] == "video/mp2t"


def test_image_proxy_headers(client, upstream):
    upstream.add_body(
        "http://img.test/cnn.png",
        b"\x89PNG",
        headers={"content-type": "image/png", "access-control-allow-origin": "http://other.test"},
    )
    r = client.get("/image", params={"url": "http://img.test/cnn.png"})
    assert r.status_code == 200
    assert r.content == b"\x89PNG"
    assert r.headers["access-control-allow-origin"] == "*"
    assert r.headers["cache-control"] == "public, max-age=86400"


def test_image_non_http_redirects(client):
    r = client.get("/image", params={"url": "/static/logo.png"}, follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == "/static/logo.png"


def test_image_upstream_down_is_502(client, upstream):
    upstream.add_error("http://img.test/cnn.png", httpx.ConnectError)
    assert client.get("/image", params={"url": "http://img.test/cnn.png"}).status_code == 502


def test_config_without_sources(tmp_path, upstream, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    data_dir = write_config(tmp_path, [])
    with TestClient(_build_app(data_dir, upstream.transport)) as c:
        assert c.get("/sources").json() == []
        assert c.get("/xtream/" + XTREAM_SOURCE["id"]).status_code == 404


def test_clear_whole_cache(client):
    cache = client.app.state.cache_service
    cache.set("xtream:panel:auth", {"x": 1}, 300)
    cache.set("epg:guide:window", {"x": 2}, 300)

    assert client.delete("/cache").json() == {"success": True}
    assert cache.stats()["entries"] == 0
