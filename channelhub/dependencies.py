"""FastAPI dependency injection — provides services via Depends()."""
from __future__ import annotations

from fastapi import Depends, Request

from channelhub.errors import NotFoundError
from channelhub.models.config import Source
from channelhub.services.batch_writer import BatchWriter
from channelhub.services.cache_service import CacheService
from channelhub.services.catalog_service import CatalogService
from channelhub.services.config_service import ConfigService
from channelhub.services.http_client import HttpClientService
from channelhub.services.sync_service import SyncService


def get_config_service(request: Request) -> ConfigService:
    return request.app.state.config_service


def get_http_client(request: Request) -> HttpClientService:
    return request.app.state.http_client


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.cache_service


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def get_batch_writer(request: Request) -> BatchWriter:
    return request.app.state.batch_writer


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_xtream_source(source_id: str, cfg: ConfigService = Depends(get_config_service)) -> Source:
    source = cfg.get_source_by_id(source_id)
    if source is None or source.type != "xtream":
        raise NotFoundError(f"Xtream source {source_id} not found")
    return source
