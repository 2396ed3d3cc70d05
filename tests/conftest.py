"""Shared fixtures: temp data dir, scripted upstream, wired services."""

import json
import os
from types import SimpleNamespace

import httpx
import pytest

from channelhub.database import DB_NAME, init_db
from channelhub.services.batch_writer import BatchWriter
from channelhub.services.cache_service import CacheService
from channelhub.services.catalog_service import CatalogService
from channelhub.services.config_service import ConfigService
from channelhub.services.http_client import HttpClientService
from channelhub.services.sync_service import SyncService

PANEL = "http://panel.test"

XTREAM_SOURCE = {
    "id": "panel",
    "type": "xtream",
    "name": "Panel",
    "url": PANEL + "/",
    "username": "user",
    "password": "pass",
}
M3U_SOURCE = {"id": "list", "type": "m3u", "name": "Playlist", "url": "http://lists.test/tv.m3u"}
EPG_SOURCE = {"id": "guide", "type": "epg", "name": "Guide", "url": "http://guide.test/epg.xml"}

XMLTV = b"""<?xml version="1.0" encoding="UTF-8"?>
<tv generator-info-name="test">
  <channel id="cnn.us">
    <display-name>CNN</display-name>
    <icon src="http://img.test/cnn.png"/>
  </channel>
  <programme start="20260101100000 +0000" stop="20260101110000 +0000" channel="cnn.us">
    <title>Morning News</title>
    <desc>Headlines</desc>
  </programme>
  <programme start="20260101110000 +0000" stop="20260101120000 +0000" channel="cnn.us">
    <title>Weather</title>
  </programme>
</tv>
"""


class FakeUpstream:
    """Answers requests from a routing table and records every request.

    Routes are keyed by ``(host, path, action)``; ``action`` is the Xtream
    ``action`` query parameter (``None`` for plain URLs).
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def _key(self, url, action=None):
        url = httpx.URL(url)
        return (url.host, url.path, action)

    def add(self, url, factory, action=None):
        self.routes[self._key(url, action)] = factory

    def add_json(self, url, data, action=None, status=200):
        self.add(url, lambda request: httpx.Response(status, json=data), action)

    def add_body(self, url, content, status=200, headers=None, action=None):
        self.add(url, lambda request: httpx.Response(status, content=content, headers=headers), action)

    def add_error(self, url, exc_type, action=None):
        def raise_error(request):
            raise exc_type("boom", request=request)
        self.add(url, raise_error, action)

    def handler(self, request):
        self.requests.append(request)
        action = request.url.params.get("action")
        factory = self.routes.get((request.url.host, request.url.path, action))
        if factory is None:
            return httpx.Response(404, text="not found")
        return factory(request)

    def calls(self, path, action=None):
        return [
            r for r in self.requests
            if r.url.path == path and r.url.params.get("action") == action
        ]

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


def install_panel(upstream, base=PANEL):
    """A small Xtream panel: one News category with CNN, nothing else."""
    api = base + "/player_api.php"
    upstream.add_json(api, {"user_info": {"auth": 1, "username": "user"}, "server_info": {"url": "panel.test"}})
    upstream.add_json(api, [{"category_id": "1", "category_name": "News", "parent_id": 0}], action="get_live_categories")
    upstream.add_json(api, [{"stream_id": 10, "name": "CNN", "category_id": "1", "stream_icon": "http://img.test/cnn.png"}], action="get_live_streams")
    upstream.add_json(api, [], action="get_vod_categories")
    upstream.add_json(api, {}, action="get_vod_streams")
    upstream.add_body(api, b"null", action="get_series_categories")
    upstream.add_json(api, [], action="get_series")
    upstream.add_body(base + "/xmltv.php", XMLTV)


def write_config(path, sources, **options):
    config = {"sources": sources, "options": {"sync_interval": 0, **options}}
    (path / "config.json").write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def upstream():
    return FakeUpstream()


@pytest.fixture()
def data_dir(tmp_path, monkeypatch):
    """Temporary data directory with one source of each type."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    return write_config(tmp_path, [XTREAM_SOURCE, M3U_SOURCE, EPG_SOURCE])


@pytest.fixture()
def services(data_dir, upstream):
    db_path = os.path.join(data_dir, DB_NAME)
    init_db(db_path)
    cfg = ConfigService(data_dir)
    cfg.load()
    http = HttpClientService(transport=upstream.transport)
    cache = CacheService()
    writer = BatchWriter(db_path)
    catalog = CatalogService(db_path)
    sync = SyncService(cfg, http, writer, catalog, cache)
    return SimpleNamespace(
        db_path=db_path, cfg=cfg, http=http, cache=cache,
        writer=writer, catalog=catalog, sync=sync,
    )
