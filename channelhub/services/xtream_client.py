"""Xtream Codes client: one player_api.php call per catalog/detail lookup."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlencode

import httpx

from channelhub.errors import BadRequestError, ParseError, UpstreamError

if TYPE_CHECKING:
    from channelhub.models.config import Source
    from channelhub.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

STREAM_TYPE_PATHS = {"live": "live", "movie": "movie", "series": "series"}


class XtreamClient:
    """Thin async wrapper around an Xtream panel's REST-over-query-string API.

    Holds no cache; the read API caches auth and detail responses itself.
    """

    def __init__(self, source: "Source", http_client: "HttpClientService", timeout: float = 60.0):
        self.source = source
        self.http_client = http_client
        self.timeout = timeout
        self.base_url = source.base_url
        self.api_url = f"{self.base_url}/player_api.php"

    @property
    def _credentials(self) -> dict:
        return {"username": self.source.username or "", "password": self.source.password or ""}

    async def _request(self, action: Optional[str] = None, **params) -> Any:
        query = dict(self._credentials)
        if action:
            query["action"] = action
        query.update(params)
        label = action or "authenticate"

        client = await self.http_client.get_client()
        start_time = time.time()
        try:
            response = await client.get(self.api_url, params=query, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Timeout calling {label} on '{self.source.name}'", url=self.api_url) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Error calling {label} on '{self.source.name}': {e}", url=self.api_url) from e

        elapsed = time.time() - start_time
        if not response.is_success:
            raise UpstreamError(
                f"{label} failed with HTTP {response.status_code}",
                status=response.status_code,
                url=self.api_url,
            )
        if not response.content.strip():
            # Some panels send an empty body for empty sets
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {label}: {e}") from e

        logger.debug(f"Fetched {label}: {len(data) if isinstance(data, list) else 'ok'} in {elapsed:.1f}s")
        return data

    async def _request_list(self, action: str) -> list:
        data = await self._request(action)
        if not data:
            return []
        if isinstance(data, list):
            return data
        # Some panels answer with an object keyed by id
        if isinstance(data, dict) and all(isinstance(v, dict) for v in data.values()):
            return list(data.values())
        raise ParseError(f"Unexpected payload for {action}: {type(data).__name__}")

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def authenticate(self) -> dict:
        """Fetch user/server info. Doubles as the connectivity and credential test."""
        data = await self._request()
        if not isinstance(data, dict):
            raise ParseError("Unexpected authentication payload")
        user_info = data.get("user_info") or {}
        if str(user_info.get("auth", "1")) == "0":
            raise UpstreamError(f"Credentials rejected by '{self.source.name}'", status=401, url=self.api_url)
        return data

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def get_live_categories(self) -> list:
        return await self._request_list("get_live_categories")

    async def get_live_streams(self) -> list:
        return await self._request_list("get_live_streams")

    async def get_vod_categories(self) -> list:
        return await self._request_list("get_vod_categories")

    async def get_vod_streams(self) -> list:
        return await self._request_list("get_vod_streams")

    async def get_series_categories(self) -> list:
        return await self._request_list("get_series_categories")

    async def get_series(self) -> list:
        return await self._request_list("get_series")

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    async def get_series_info(self, series_id) -> Any:
        return await self._request("get_series_info", series_id=series_id)

    async def get_vod_info(self, vod_id) -> Any:
        return await self._request("get_vod_info", vod_id=vod_id)

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def get_xmltv_url(self) -> str:
        return f"{self.base_url}/xmltv.php?{urlencode(self._credentials)}"

    def get_stream_url(self, stream_id, stream_type: str = "live", container: str = "m3u8") -> str:
        """Direct playback URL: ``base/{live|movie|series}/user/pass/{id}.{container}``."""
        type_path = STREAM_TYPE_PATHS.get(stream_type)
        if type_path is None:
            raise BadRequestError(f"Invalid stream type: {stream_type}")
        creds = self._credentials
        return f"{self.base_url}/{type_path}/{creds['username']}/{creds['password']}/{stream_id}.{container}"
