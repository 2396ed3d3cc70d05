"""Cache management API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from channelhub.dependencies import get_cache_service
from channelhub.services.cache_service import CacheService

router = APIRouter(tags=["cache"])


@router.get("/cache/stats")
async def cache_stats(cache: CacheService = Depends(get_cache_service)):
    return cache.stats()


@router.delete("/cache/{source_id}")
async def clear_source_cache(source_id: str, cache: CacheService = Depends(get_cache_service)):
    cleared = cache.clear_source(source_id)
    return {"success": True, "cleared": cleared}


@router.delete("/cache")
async def clear_cache(cache: CacheService = Depends(get_cache_service)):
    cache.clear()
    return {"success": True}
