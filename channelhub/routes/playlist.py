"""M3U playlist view of a source's live catalog."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from channelhub.dependencies import get_catalog_service
from channelhub.services.catalog_service import CatalogService

router = APIRouter(tags=["playlist"])


@router.get("/m3u/{source_id}")
async def m3u_playlist(
    source_id: str,
    include_hidden: bool = Query(False, alias="includeHidden"),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return catalog.get_m3u(source_id, include_hidden)
