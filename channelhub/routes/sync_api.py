"""Sync trigger and status routes."""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends

from channelhub.dependencies import get_catalog_service, get_config_service, get_sync_service
from channelhub.errors import NotFoundError
from channelhub.services.catalog_service import CatalogService
from channelhub.services.config_service import ConfigService
from channelhub.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["sync"])


@router.post("/sync")
async def trigger_sync_all(sync: SyncService = Depends(get_sync_service)):
    asyncio.create_task(sync.sync_all())
    return {"status": "started", "message": "Sync of all sources started"}


@router.post("/sync/{source_id}")
async def trigger_sync_source(
    source_id: str,
    cfg: ConfigService = Depends(get_config_service),
    sync: SyncService = Depends(get_sync_service),
):
    source = cfg.get_source_by_id(source_id)
    if source is None:
        raise NotFoundError(f"Source {source_id} not found")
    if sync.is_syncing(source_id):
        return {"status": "already_syncing"}
    if not source.enabled:
        return {"status": "disabled"}

    result = await sync.sync_source(source_id)
    if result is None:
        return {"status": "already_syncing"}
    return result.model_dump()


@router.get("/sync/status")
async def sync_status(
    cfg: ConfigService = Depends(get_config_service),
    sync: SyncService = Depends(get_sync_service),
    catalog: CatalogService = Depends(get_catalog_service),
):
    statuses = {s.source_id: s for s in catalog.get_sync_statuses()}
    sources = []
    for source in cfg.get_sources():
        status = statuses.get(source.id)
        sources.append({
            "id": source.id,
            "name": source.name,
            "type": source.type,
            "enabled": source.enabled,
            "syncing": sync.is_syncing(source.id),
            "last_sync_at": status.last_sync_at if status else None,
            "status": status.status if status else None,
            "error": status.error if status else None,
            "error_kind": status.error_kind if status else None,
        })
    return {"sources": sources, "active": sync.active_syncs}
