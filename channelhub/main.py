import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request

from channelhub.database import DB_NAME, init_db
from channelhub.errors import ChannelHubError, channelhub_error_handler
from channelhub.routes import (
    cache_api,
    catalog_api,
    epg,
    health,
    playlist,
    source_api,
    stream_proxy,
    sync_api,
    xtream_api,
)
from channelhub.services.batch_writer import BatchWriter
from channelhub.services.cache_service import CacheService
from channelhub.services.catalog_service import CatalogService
from channelhub.services.config_service import ConfigService, resolve_data_dir
from channelhub.services.http_client import HttpClientService
from channelhub.services.sync_service import INITIAL_DELAY, SyncService

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

ROUTERS = (
    health,
    xtream_api,
    playlist,
    epg,
    cache_api,
    stream_proxy,
    sync_api,
    source_api,
    catalog_api,
)


def create_app(
    data_dir: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    background_sync: bool = True,
) -> FastAPI:
    """Build a fully-wired app. *transport* replaces the network in tests."""
    data_dir = data_dir or resolve_data_dir()
    os.makedirs(data_dir, exist_ok=True)
    db_path = os.path.join(data_dir, DB_NAME)

    cfg = ConfigService(data_dir)
    cfg.load()
    init_db(db_path)
    http = HttpClientService(transport=transport)
    cache = CacheService()
    writer = BatchWriter(db_path)
    catalog = CatalogService(db_path)
    sync = SyncService(cfg, http, writer, catalog, cache)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - handles startup and shutdown"""
        background_task = None
        if background_sync and cfg.sync_interval:
            delay = INITIAL_DELAY if cfg.options.sync_on_startup else cfg.sync_interval
            background_task = asyncio.create_task(sync.background_sync_loop(initial_delay=delay))
        logger.info(f"ChannelHub {APP_VERSION} started with {len(cfg.get_sources())} sources (data: {data_dir})")

        yield

        # Shutdown
        if background_task:
            background_task.cancel()
            try:
                await background_task
            except asyncio.CancelledError:
                pass

        await http.close()
        logger.info("Application shutdown complete")

    app = FastAPI(title="ChannelHub", version=APP_VERSION, lifespan=lifespan)

    # Attach state for DI
    app.state.config_service = cfg
    app.state.http_client = http
    app.state.cache_service = cache
    app.state.batch_writer = writer
    app.state.catalog_service = catalog
    app.state.sync_service = sync

    app.add_exception_handler(ChannelHubError, channelhub_error_handler)

    # Middleware to ensure UTF-8 charset in JSON responses
    @app.middleware("http")
    async def add_utf8_charset(request: Request, call_next):
        response = await call_next(request)
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type and "charset" not in content_type:
            response.headers["content-type"] = "application/json; charset=utf-8"
        return response

    for r in ROUTERS:
        app.include_router(r.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5000)
