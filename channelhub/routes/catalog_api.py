"""Catalog visibility routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from channelhub.dependencies import get_batch_writer, get_cache_service
from channelhub.models.catalog import VisibilityChange
from channelhub.services.batch_writer import BatchWriter
from channelhub.services.cache_service import CacheService

router = APIRouter(tags=["catalog"])


@router.put("/catalog/{source_id}/visibility")
async def set_visibility(
    source_id: str,
    changes: list[VisibilityChange],
    writer: BatchWriter = Depends(get_batch_writer),
    cache: CacheService = Depends(get_cache_service),
):
    updated = await writer.set_hidden(source_id, changes)
    cache.clear_source(source_id)
    return {"success": True, "updated": updated}
