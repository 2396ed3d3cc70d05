"""Stream and image proxy routes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from channelhub.dependencies import get_http_client
from channelhub.errors import BadRequestError
from channelhub.services.http_client import HttpClientService
from channelhub.services.stream_service import is_http_url, proxy_image, proxy_stream

router = APIRouter(tags=["stream-proxy"])


@router.get("/stream")
async def stream(
    request: Request,
    url: Optional[str] = None,
    http: HttpClientService = Depends(get_http_client),
):
    if not url:
        raise BadRequestError("URL required")
    if not is_http_url(url):
        raise BadRequestError("Only http(s) URLs can be proxied")
    proxy_base = str(request.url_for("stream"))
    return await proxy_stream(url, request, http, proxy_base)


@router.get("/image")
async def image(
    request: Request,
    url: Optional[str] = None,
    http: HttpClientService = Depends(get_http_client),
):
    if not url:
        raise BadRequestError("URL required")
    return await proxy_image(url, request, http)
