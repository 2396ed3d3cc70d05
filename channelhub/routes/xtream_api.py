"""Per-source Xtream-style read API backed by the local catalog."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from channelhub.dependencies import (
    get_cache_service,
    get_catalog_service,
    get_config_service,
    get_http_client,
    get_xtream_source,
)
from channelhub.errors import BadRequestError
from channelhub.models.config import Source
from channelhub.services.cache_service import AUTH_TTL, DETAIL_TTL, CacheService, cache_key
from channelhub.services.catalog_service import CatalogService
from channelhub.services.config_service import ConfigService
from channelhub.services.http_client import HttpClientService
from channelhub.services.xtream_client import XtreamClient

logger = logging.getLogger(__name__)
router = APIRouter(tags=["xtream"])


def _client(source: Source, http: HttpClientService, cfg: ConfigService) -> XtreamClient:
    return XtreamClient(source, http, timeout=cfg.options.upstream_timeout)


# ------------------------------------------------------------------
# Account (proxied, cached)
# ------------------------------------------------------------------


@router.get("/xtream/{source_id}")
async def xtream_auth(
    source: Source = Depends(get_xtream_source),
    cfg: ConfigService = Depends(get_config_service),
    http: HttpClientService = Depends(get_http_client),
    cache: CacheService = Depends(get_cache_service),
):
    key = cache_key("xtream", source.id, "auth")
    cached = cache.get(key)
    if cached is not None:
        return cached
    data = await _client(source, http, cfg).authenticate()
    cache.set(key, data, AUTH_TTL)
    return data


# ------------------------------------------------------------------
# Catalog (local store)
# ------------------------------------------------------------------


@router.get("/xtream/{source_id}/live_categories")
async def live_categories(
    source_id: str,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_categories(source_id, "live", include_hidden)


@router.get("/xtream/{source_id}/live_streams")
async def live_streams(
    source_id: str,
    category_id: Optional[str] = None,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_streams(source_id, "live", category_id, include_hidden)


@router.get("/xtream/{source_id}/vod_categories")
async def vod_categories(
    source_id: str,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_categories(source_id, "movie", include_hidden)


@router.get("/xtream/{source_id}/vod_streams")
async def vod_streams(
    source_id: str,
    category_id: Optional[str] = None,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_streams(source_id, "movie", category_id, include_hidden)


@router.get("/xtream/{source_id}/series_categories")
async def series_categories(
    source_id: str,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_categories(source_id, "series", include_hidden)


@router.get("/xtream/{source_id}/series")
async def series(
    source_id: str,
    category_id: Optional[str] = None,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_streams(source_id, "series", category_id, include_hidden)


# ------------------------------------------------------------------
# Details (proxied, cached)
# ------------------------------------------------------------------


@router.get("/xtream/{source_id}/series_info")
async def series_info(
    series_id: Optional[str] = None,
    source: Source = Depends(get_xtream_source),
    cfg: ConfigService = Depends(get_config_service),
    http: HttpClientService = Depends(get_http_client),
    cache: CacheService = Depends(get_cache_service),
):
    if not series_id:
        raise BadRequestError("series_id required")
    key = cache_key("xtream", source.id, "series_info", series_id)
    cached = cache.get(key)
    if cached is not None:
        return cached
    data = await _client(source, http, cfg).get_series_info(series_id)
    cache.set(key, data, DETAIL_TTL)
    return data


@router.get("/xtream/{source_id}/vod_info")
async def vod_info(
    vod_id: Optional[str] = None,
    source: Source = Depends(get_xtream_source),
    cfg: ConfigService = Depends(get_config_service),
    http: HttpClientService = Depends(get_http_client),
    cache: CacheService = Depends(get_cache_service),
):
    if not vod_id:
        raise BadRequestError("vod_id required")
    key = cache_key("xtream", source.id, "vod_info", vod_id)
    cached = cache.get(key)
    if cached is not None:
        return cached
    data = await _client(source, http, cfg).get_vod_info(vod_id)
    cache.set(key, data, DETAIL_TTL)
    return data


# ------------------------------------------------------------------
# Playback URL
# ------------------------------------------------------------------


@router.get("/xtream/{source_id}/stream/{stream_id}/{stream_type}")
async def stream_url(
    stream_id: str,
    stream_type: str,
    container: str = "m3u8",
    source: Source = Depends(get_xtream_source),
    cfg: ConfigService = Depends(get_config_service),
    http: HttpClientService = Depends(get_http_client),
):
    return {"url": _client(source, http, cfg).get_stream_url(stream_id, stream_type, container)}
