"""Error taxonomy shared by adapters, the batch writer, the sync orchestrator and the routes."""
from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class ChannelHubError(Exception):
    """Base class. ``kind`` is recorded in sync status, ``status_code`` is the HTTP mapping."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ChannelHubError):
    kind = "not_found"
    status_code = 404


class BadRequestError(ChannelHubError):
    kind = "bad_request"
    status_code = 400


class UpstreamError(ChannelHubError):
    """Network failure or non-2xx answer from a provider."""

    kind = "upstream"
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, url: str = ""):
        super().__init__(message)
        self.status = status
        self.url = url


class ParseError(ChannelHubError):
    """Malformed M3U / XMLTV / JSON content."""

    kind = "parse"
    status_code = 502


class StorageError(ChannelHubError):
    kind = "storage"
    status_code = 500


async def channelhub_error_handler(request: Request, exc: ChannelHubError) -> JSONResponse:
    return JSONResponse({"error": exc.kind, "details": exc.message}, status_code=exc.status_code)
