"""EPG window routes."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from channelhub.dependencies import get_cache_service, get_catalog_service, get_config_service
from channelhub.services.cache_service import CacheService, cache_key
from channelhub.services.catalog_service import CatalogService
from channelhub.services.config_service import ConfigService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["epg"])


@router.get("/epg/{source_id}")
async def epg_window(
    source_id: str,
    max_age: Optional[float] = Query(None, alias="maxAge", ge=0),
    refresh: bool = False,
    cfg: ConfigService = Depends(get_config_service),
    cache: CacheService = Depends(get_cache_service),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Programmes within ±24 h of now. ``maxAge`` is the cache lifetime in hours."""
    key = cache_key("epg", source_id, "window")
    if not refresh:
        cached = cache.get(key)
        if cached is not None:
            return cached

    data = catalog.get_epg_window(source_id)
    hours = cfg.options.epg_max_age_hours if max_age is None else max_age
    cache.set(key, data, hours * 3600)
    logger.debug(f"EPG window for {source_id}: {len(data['programmes'])} programmes")
    return data
