"""Source listing and connectivity test routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from channelhub.dependencies import get_config_service, get_sync_service
from channelhub.services.config_service import ConfigService
from channelhub.services.sync_service import SyncService

router = APIRouter(tags=["sources"])


@router.get("/sources")
async def list_sources(cfg: ConfigService = Depends(get_config_service)):
    # Credentials stay server-side
    return [
        source.model_dump(include={"id", "type", "name", "enabled"})
        for source in cfg.get_sources()
    ]


@router.get("/sources/{source_id}/test")
async def check_source(source_id: str, sync: SyncService = Depends(get_sync_service)):
    return await sync.test_source(source_id)
