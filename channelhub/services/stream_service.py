"""Stream service — HLS manifest rewriting and raw passthrough relay for media and images."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote, urljoin, urlsplit

import httpx
from fastapi import Request
from fastapi.responses import RedirectResponse, Response, StreamingResponse

from channelhub.services.http_client import HEADERS, redact_url

if TYPE_CHECKING:
    from channelhub.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

# Immediate passthrough: the player's own buffer is the only one in the chain.
RELAY_CHUNK_SIZE = 32 * 1024

MANIFEST_MEDIA_TYPE = "application/vnd.apple.mpegurl"
MANIFEST_TIMEOUT = httpx.Timeout(15.0)
# Live relays never time out on read
RELAY_TIMEOUT = httpx.Timeout(connect=10.0, read=None, write=10.0, pool=10.0)

IMAGE_CACHE_CONTROL = "public, max-age=86400"

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

_URI_ATTR_RE = re.compile(r'URI="([^"]*)"')


def is_http_url(url: str) -> bool:
    return urlsplit(url).scheme in ("http", "https")


def is_manifest_url(url: str) -> bool:
    return urlsplit(url).path.lower().endswith(".m3u8")


def proxied_url(target: str, manifest_url: str, proxy_base: str) -> str:
    """Route *target* (absolute or relative to *manifest_url*) through the proxy."""
    absolute = urljoin(manifest_url, target.strip())
    return f"{proxy_base}?url={quote(absolute, safe='')}"


def rewrite_manifest(content: str, manifest_url: str, proxy_base: str) -> str:
    """Point every segment, variant and key reference of an HLS manifest at the proxy."""
    lines = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            lines.append(line)
        elif stripped.startswith("#"):
            lines.append(_URI_ATTR_RE.sub(
                lambda m: f'URI="{proxied_url(m.group(1), manifest_url, proxy_base)}"',
                line,
            ))
        else:
            lines.append(proxied_url(stripped, manifest_url, proxy_base))
    rewritten = "\n".join(lines)
    if content.endswith("\n"):
        rewritten += "\n"
    return rewritten


async def fetch_manifest(url: str, http_client: "HttpClientService") -> Optional[tuple[str, str]]:
    """Return ``(text, final_url)`` or ``None`` if the manifest could not be fetched."""
    client = await http_client.get_client()
    try:
        response = await client.get(url, timeout=MANIFEST_TIMEOUT)
    except httpx.HTTPError as e:
        logger.warning(f"Manifest fetch failed for {redact_url(url)}: {e}")
        return None
    if not response.is_success:
        logger.warning(f"Manifest fetch for {redact_url(url)} returned HTTP {response.status_code}")
        return None
    return response.text, str(response.url)


async def relay(
    upstream_url: str,
    request: Request,
    http_client: "HttpClientService",
    override_headers: Optional[dict[str, str]] = None,
    drop_headers: frozenset[str] = frozenset(),
) -> Response:
    """Stream an upstream response to the client byte for byte.

    Status and headers are mirrored (minus hop-by-hop ones). Each relay owns
    its upstream client, so a client disconnect, which cancels the body
    generator, closes exactly that upstream connection.
    """
    upstream_headers = dict(HEADERS)
    if "range" in request.headers:
        upstream_headers["Range"] = request.headers["range"]

    client = http_client.new_client(timeout=RELAY_TIMEOUT)
    try:
        req = client.build_request("GET", upstream_url, headers=upstream_headers)
        upstream_response = await client.send(req, stream=True)
    except httpx.TimeoutException:
        await client.aclose()
        return Response(content="Upstream timeout", status_code=504)
    except httpx.HTTPError as e:
        await client.aclose()
        logger.warning(f"Relay to {redact_url(upstream_url)} failed: {e}")
        return Response(content="Upstream connection error", status_code=502)

    skip = HOP_BY_HOP_HEADERS | drop_headers
    response_headers = {
        name: value
        for name, value in upstream_response.headers.items()
        if name.lower() not in skip
    }
    if override_headers:
        response_headers.update(override_headers)

    async def generate():
        try:
            # Raw bytes: Content-Encoding and Content-Length are mirrored as-is
            async for chunk in upstream_response.aiter_raw(RELAY_CHUNK_SIZE):
                if chunk:
                    yield chunk
        except httpx.HTTPError as e:
            # Headers are already out; all that is left is to end the body
            logger.debug(f"Upstream read interrupted for {redact_url(upstream_url)}: {e}")
        finally:
            await upstream_response.aclose()
            await client.aclose()

    return StreamingResponse(
        generate(),
        status_code=upstream_response.status_code,
        headers=response_headers,
    )


async def proxy_stream(
    upstream_url: str,
    request: Request,
    http_client: "HttpClientService",
    proxy_base: str,
) -> Response:
    """Proxy a stream: rewrite HLS manifests, relay everything else.

    A manifest that cannot be fetched falls through to the raw relay so the
    client still sees the upstream status.
    """
    if is_manifest_url(upstream_url):
        manifest = await fetch_manifest(upstream_url, http_client)
        if manifest is not None:
            text, final_url = manifest
            return Response(
                content=rewrite_manifest(text, final_url, proxy_base),
                media_type=MANIFEST_MEDIA_TYPE,
                headers={"Cache-Control": "no-cache"},
            )
    return await relay(upstream_url, request, http_client)


async def proxy_image(url: str, request: Request, http_client: "HttpClientService") -> Response:
    """Relay an image with permissive CORS and a day of client caching."""
    if not is_http_url(url):
        # data: URIs and relative paths are left to the client
        return RedirectResponse(url, status_code=307)
    return await relay(
        url,
        request,
        http_client,
        override_headers={
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": IMAGE_CACHE_CONTROL,
        },
        drop_headers=frozenset({"access-control-allow-origin", "cache-control"}),
    )
