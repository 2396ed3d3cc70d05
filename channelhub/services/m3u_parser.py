"""Streaming M3U playlist parser.

Playlists from some providers exceed 100 MB, so the body is never held in
memory: bytes are decoded incrementally and only the current partial line and
the pending ``#EXTINF`` entry are kept between chunks.
"""
from __future__ import annotations

import codecs
import hashlib
import logging
import re
from typing import TYPE_CHECKING, Optional

import httpx

from channelhub.errors import ParseError, UpstreamError
from channelhub.models.feeds import UNCATEGORIZED, M3UChannel, M3UGroup, M3UPlaylist
from channelhub.services.http_client import redact_url

if TYPE_CHECKING:
    from channelhub.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_LINE_LENGTH = 64 * 1024

_ATTR_RE = re.compile(r'([A-Za-z0-9_-]+)="([^"]*)"')


def channel_id_for(url: str, name: str) -> str:
    """Stable synthetic id: the same entry gets the same id on every sync."""
    return hashlib.sha1(f"{url}|{name}".encode("utf-8")).hexdigest()[:16]


def parse_extinf(line: str) -> dict:
    """Split ``#EXTINF:<duration> key="value" ...,<name>`` into its parts."""
    body = line[len("#EXTINF:"):]
    matches = list(_ATTR_RE.finditer(body))
    attrs = {m.group(1).lower(): m.group(2) for m in matches}

    # The display name follows the first comma after the last quoted attribute,
    # so commas inside attribute values or the name itself are kept.
    tail_start = matches[-1].end() if matches else 0
    comma = body.find(",", tail_start)
    name = body[comma + 1:].strip() if comma != -1 else ""

    head_end = matches[0].start() if matches else (comma if comma != -1 else len(body))
    try:
        duration = int(float(body[:head_end].strip()))
    except ValueError:
        duration = -1

    return {"duration": duration, "name": name, "attrs": attrs}


class M3ULineParser:
    """Incremental core: ``feed()`` bytes as they arrive, then ``close()``."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._header_seen = False
        self._pending: Optional[dict] = None
        self._pending_group = ""
        self._groups: dict[str, int] = {}
        self.lines = 0

    @property
    def header_seen(self) -> bool:
        return self._header_seen

    @property
    def groups(self) -> list[M3UGroup]:
        return [M3UGroup(name=name, channel_count=count) for name, count in self._groups.items()]

    def feed(self, chunk: bytes) -> list[M3UChannel]:
        """Consume a chunk and return the channels it completed."""
        text = self._partial + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._partial = lines.pop()
        if len(self._partial) > MAX_LINE_LENGTH:
            raise ParseError(f"M3U line exceeds {MAX_LINE_LENGTH} characters")
        channels = []
        for line in lines:
            channel = self._parse_line(line)
            if channel is not None:
                channels.append(channel)
        return channels

    def close(self) -> list[M3UChannel]:
        tail = self._partial + self._decoder.decode(b"", final=True)
        self._partial = ""
        channel = self._parse_line(tail)
        return [channel] if channel is not None else []

    def _parse_line(self, line: str) -> Optional[M3UChannel]:
        line = line.strip()
        if not line:
            return None
        self.lines += 1

        if not self._header_seen:
            if line.lstrip("\ufeff").startswith("#EXTM3U"):
                self._header_seen = True
                return None
            raise ParseError("Playlist does not start with #EXTM3U")

        if line.startswith("#EXTINF:"):
            self._pending = parse_extinf(line)
            self._pending_group = ""
            return None
        if line.startswith("#EXTGRP:"):
            self._pending_group = line[len("#EXTGRP:"):].strip()
            return None
        if line.startswith("#"):
            return None

        # URL line; bare URLs without metadata are not channels
        pending, self._pending = self._pending, None
        if pending is None:
            return None

        attrs = pending["attrs"]
        name = pending["name"] or attrs.get("tvg-name", "") or line
        group = attrs.get("group-title", "") or self._pending_group
        group_key = group or UNCATEGORIZED
        self._groups[group_key] = self._groups.get(group_key, 0) + 1

        return M3UChannel(
            id=channel_id_for(line, name),
            name=name,
            url=line,
            group_title=group,
            tvg_id=attrs.get("tvg-id", ""),
            tvg_name=attrs.get("tvg-name", ""),
            tvg_logo=attrs.get("tvg-logo", ""),
            duration=pending["duration"],
        )


class M3UStreamParser:
    """Fetches a playlist over HTTP and parses it without buffering the body."""

    def __init__(self, http_client: "HttpClientService", timeout: float = 60.0):
        self.http_client = http_client
        self.timeout = timeout

    async def fetch_and_parse(self, url: str) -> M3UPlaylist:
        parser = M3ULineParser()
        channels: list[M3UChannel] = []
        client = await self.http_client.get_client()
        safe_url = redact_url(url)

        try:
            async with client.stream("GET", url, timeout=httpx.Timeout(self.timeout, read=600.0)) as response:
                if not response.is_success:
                    raise UpstreamError(
                        f"Playlist fetch failed with HTTP {response.status_code}",
                        status=response.status_code,
                        url=safe_url,
                    )
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    channels.extend(parser.feed(chunk))
        except httpx.HTTPError as e:
            raise UpstreamError(f"Error fetching playlist {safe_url}: {e}", url=safe_url) from e

        channels.extend(parser.close())
        if not parser.header_seen:
            raise ParseError(f"Empty playlist at {safe_url}")

        groups = parser.groups
        logger.info(f"Parsed M3U {safe_url}: {len(channels)} channels, {len(groups)} groups, {parser.lines} lines")
        return M3UPlaylist(channels=channels, groups=groups)
