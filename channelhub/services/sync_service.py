"""Sync service: pulls every configured source into the local catalog store.

Sources are synced one after another. A source never has more than one sync
in flight; a second request while one is running is a no-op. Failures are
recorded in the source's sync status and never abort the pass.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from channelhub.errors import ChannelHubError, NotFoundError
from channelhub.models.catalog import SyncStatus
from channelhub.models.config import Source
from channelhub.services.epg_parser import EpgStreamParser
from channelhub.services.m3u_parser import M3UStreamParser
from channelhub.services.xtream_client import XtreamClient

if TYPE_CHECKING:
    from channelhub.services.batch_writer import BatchWriter
    from channelhub.services.cache_service import CacheService
    from channelhub.services.catalog_service import CatalogService
    from channelhub.services.config_service import ConfigService
    from channelhub.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

INITIAL_DELAY = 10
ERROR_BACKOFF = 60

# (label, client method, kind stored in the catalog)
XTREAM_STEPS = (
    ("live categories", "get_live_categories", "live"),
    ("live streams", "get_live_streams", "live"),
    ("VOD categories", "get_vod_categories", "movie"),
    ("VOD streams", "get_vod_streams", "movie"),
    ("series categories", "get_series_categories", "series"),
    ("series", "get_series", "series"),
)


class SyncService:
    """Orchestrates per-source and global syncs."""

    def __init__(
        self,
        config_service: "ConfigService",
        http_client: "HttpClientService",
        writer: "BatchWriter",
        catalog: "CatalogService",
        cache: "CacheService",
    ):
        self.config_service = config_service
        self.http_client = http_client
        self.writer = writer
        self.catalog = catalog
        self.cache = cache
        self._active: set[str] = set()

    # ------------------------------------------------------------------
    # Active-sync guard
    # ------------------------------------------------------------------

    def try_acquire(self, source_id: str) -> bool:
        # No await between the check and the add
        if source_id in self._active:
            return False
        self._active.add(source_id)
        return True

    def release(self, source_id: str) -> None:
        self._active.discard(source_id)

    def is_syncing(self, source_id: str) -> bool:
        return source_id in self._active

    @property
    def active_syncs(self) -> list[str]:
        return sorted(self._active)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def sync_all(self) -> list[SyncStatus]:
        """Sync every enabled source sequentially."""
        sources = self.config_service.get_enabled_sources()
        logger.info(f"[Sync] Starting sync of {len(sources)} sources")
        started = time.time()

        results: list[SyncStatus] = []
        for source in sources:
            try:
                result = await self.sync_source(source.id)
            except Exception as e:
                # sync_source records its own failures; this only guards the loop
                logger.error(f"[Sync] Unexpected failure for source {source.id}: {e}")
                continue
            if result is not None:
                results.append(result)

        succeeded = sum(1 for r in results if r.status == "success")
        failed = sum(1 for r in results if r.status == "error")
        logger.info(
            f"[Sync] Sync pass finished in {time.time() - started:.1f}s: "
            f"{succeeded} succeeded, {failed} failed, {len(sources) - len(results)} skipped"
        )
        return results

    async def sync_source(self, source_id: str) -> Optional[SyncStatus]:
        """Sync one source. Returns ``None`` when skipped (already running or disabled)."""
        if not self.try_acquire(source_id):
            logger.info(f"[Sync] Source {source_id} is already syncing, skipping")
            return None

        try:
            source = self.config_service.get_source_by_id(source_id)
            if source is None:
                err = NotFoundError(f"Source {source_id} not found")
                await self.writer.set_sync_status(source_id, "error", err.message, err.kind)
                return self.catalog.get_sync_status(source_id)
            if not source.enabled:
                logger.info(f"[Sync] Source {source_id} is disabled, skipping")
                return None

            logger.info(f"[Sync] Syncing source {source.name} ({source.type}, {source_id})")
            await self.writer.set_sync_status(source_id, "syncing")
            started = time.time()

            try:
                if source.type == "xtream":
                    await self._sync_xtream(source)
                elif source.type == "m3u":
                    await self._sync_m3u(source)
                elif source.type == "epg":
                    await self._sync_epg(source.id, source.url)
                else:
                    raise ChannelHubError(f"Unsupported source type: {source.type}")
            except ChannelHubError as e:
                logger.error(f"[Sync] Source {source_id} failed ({e.kind}): {e.message}")
                await self._record_error(source_id, e.message, e.kind)
            except Exception as e:
                logger.exception(f"[Sync] Source {source_id} failed with an unexpected error")
                await self._record_error(source_id, str(e), "internal")
            else:
                await self.writer.set_sync_status(source_id, "success")
                self.cache.clear_source(source_id)
                logger.info(f"[Sync] Source {source_id} synced in {time.time() - started:.1f}s")

            return self.catalog.get_sync_status(source_id)
        except ChannelHubError as e:
            # Status bookkeeping itself failed (storage)
            logger.error(f"[Sync] Could not record sync status for {source_id}: {e.message}")
            return SyncStatus(source_id=source_id, status="error", error=e.message, error_kind=e.kind)
        finally:
            self.release(source_id)

    async def _record_error(self, source_id: str, message: str, kind: str) -> None:
        await self.writer.set_sync_status(source_id, "error", message, kind)

    # ------------------------------------------------------------------
    # Per-type routines
    # ------------------------------------------------------------------

    def _timeout(self) -> float:
        return self.config_service.options.upstream_timeout

    async def _sync_xtream(self, source: Source) -> None:
        client = XtreamClient(source, self.http_client, timeout=self._timeout())

        for label, method, kind in XTREAM_STEPS:
            logger.info(f"[Sync] Fetching {label}...")
            records = await getattr(client, method)()
            if method.endswith("categories"):
                await self.writer.save_categories(source.id, kind, records)
            else:
                await self.writer.save_streams(source.id, kind, records)

        # Guide data is optional for a panel
        try:
            await self._sync_epg(source.id, client.get_xmltv_url())
        except ChannelHubError as e:
            logger.warning(f"[Sync] EPG sync failed for source {source.id}: {e.message}")

    async def _sync_m3u(self, source: Source) -> None:
        parser = M3UStreamParser(self.http_client, timeout=self._timeout())
        playlist = await parser.fetch_and_parse(source.url)

        categories = [{"category_id": g.name, "category_name": g.name} for g in playlist.groups]
        await self.writer.save_categories(source.id, "live", categories)
        await self.writer.save_streams(source.id, "live", [ch.to_stream() for ch in playlist.channels])

    async def _sync_epg(self, source_id: str, url: str) -> None:
        logger.info(f"[Sync] Fetching EPG for source {source_id}...")
        parser = EpgStreamParser(self.http_client, timeout=self._timeout())
        feed = await parser.fetch_and_parse(url)
        await self.writer.ingest_epg(source_id, feed.channels, feed.programmes)

    # ------------------------------------------------------------------
    # Connectivity test
    # ------------------------------------------------------------------

    async def test_source(self, source_id: str) -> dict:
        source = self.config_service.get_source_by_id(source_id)
        if source is None:
            raise NotFoundError(f"Source {source_id} not found")
        if source.type != "xtream":
            return {"success": False, "error": f"Connection test is not supported for {source.type} sources"}

        client = XtreamClient(source, self.http_client, timeout=self._timeout())
        try:
            info = await client.authenticate()
        except ChannelHubError as e:
            return {"success": False, "error": e.message}
        return {"success": True, "user_info": info.get("user_info", {})}

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def background_sync_loop(self, initial_delay: float = INITIAL_DELAY):
        """Periodically sync all sources and purge expired cache entries."""
        logger.info("Background sync task started")

        await asyncio.sleep(initial_delay)

        while True:
            try:
                interval = self.config_service.sync_interval
                if interval == 0:
                    logger.info("Periodic sync disabled (sync_interval=0)")
                    break

                purged = self.cache.purge_expired()
                if purged:
                    logger.debug(f"Purged {purged} expired cache entries")

                await self.sync_all()

                logger.debug(f"Next sync in {interval} seconds")
                await asyncio.sleep(interval)

            except asyncio.CancelledError:
                logger.info("Background sync task cancelled")
                break
            except Exception as e:
                logger.error(f"Background sync error: {e}")
                await asyncio.sleep(ERROR_BACKOFF)
