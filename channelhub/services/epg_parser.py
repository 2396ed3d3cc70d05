"""Streaming XMLTV parser.

The feed is pushed chunk by chunk into an ``lxml`` pull parser; every
``<channel>`` and ``<programme>`` element is converted and then cleared
(together with its already-processed siblings) so the partially built tree
never grows beyond a single element. Gzip-compressed feeds are inflated on
the fly.
"""
from __future__ import annotations

import logging
import re
import zlib
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import httpx
from lxml import etree

from channelhub.errors import ParseError, UpstreamError
from channelhub.models.feeds import EpgChannel, EpgFeed, EpgProgramme
from channelhub.services.http_client import redact_url

if TYPE_CHECKING:
    from channelhub.services.http_client import HttpClientService

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
GZIP_MAGIC = b"\x1f\x8b"

_XMLTV_TIME_RE = re.compile(r"^(\d{14}|\d{12})\s*([+-]\d{4})?")


def parse_xmltv_time(time_str: Optional[str]) -> Optional[datetime]:
    """Parse XMLTV datetime like '20260217120000 +0100' into a timezone-aware datetime."""
    if not time_str:
        return None
    match = _XMLTV_TIME_RE.match(time_str.strip())
    if not match:
        return None
    dt_part, tz_part = match.groups()
    fmt = "%Y%m%d%H%M%S" if len(dt_part) == 14 else "%Y%m%d%H%M"
    try:
        dt = datetime.strptime(dt_part, fmt)
    except ValueError:
        return None
    offset = timedelta(0)
    if tz_part:
        sign = 1 if tz_part[0] == "+" else -1
        offset = timedelta(hours=int(tz_part[1:3]), minutes=int(tz_part[3:5])) * sign
    return dt.replace(tzinfo=timezone(offset))


def _local(tag) -> str:
    # Comments and processing instructions carry a callable, not a string
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _child_text(elem, name: str) -> Optional[str]:
    for child in elem:
        if _local(child.tag) == name and child.text:
            return child.text.strip()
    return None


def _release(elem) -> None:
    """Free a processed top-level element and everything before it."""
    elem.clear()
    parent = elem.getparent()
    if parent is not None:
        while elem.getprevious() is not None:
            del parent[0]


class XmltvPullParser:
    """Incremental core: ``feed()`` bytes as they arrive, then ``close()``."""

    def __init__(self):
        self._parser = etree.XMLPullParser(
            events=("start", "end"),
            huge_tree=True,
            resolve_entities=False,
        )
        self._head = b""
        self._mode: Optional[str] = None
        self._gunzip = None
        self._root = None
        self.skipped = 0

    def feed(self, chunk: bytes) -> tuple[list[EpgChannel], list[EpgProgramme]]:
        if self._mode is None:
            self._head += chunk
            if len(self._head) < len(GZIP_MAGIC):
                return [], []
            chunk, self._head = self._head, b""
            self._mode = "gzip" if chunk.startswith(GZIP_MAGIC) else "plain"
            if self._mode == "gzip":
                self._gunzip = zlib.decompressobj(zlib.MAX_WBITS | 16)

        if self._gunzip is not None:
            try:
                chunk = self._gunzip.decompress(chunk)
            except zlib.error as e:
                raise ParseError(f"Corrupt gzip XMLTV stream: {e}") from e

        try:
            self._parser.feed(chunk)
        except etree.XMLSyntaxError as e:
            raise ParseError(f"Malformed XMLTV: {e}") from e
        return self._drain()

    def close(self) -> tuple[list[EpgChannel], list[EpgProgramme]]:
        try:
            if self._head:
                # Body shorter than the gzip magic
                head, self._head = self._head, b""
                self._mode = "plain"
                self._parser.feed(head)
            if self._gunzip is not None:
                self._parser.feed(self._gunzip.flush())
                if not self._gunzip.eof:
                    raise ParseError("Truncated gzip XMLTV stream")
            self._parser.close()
        except etree.XMLSyntaxError as e:
            raise ParseError(f"Malformed XMLTV: {e}") from e
        result = self._drain()
        if self._root is None:
            raise ParseError("XMLTV document has no <tv> root element")
        return result

    def _drain(self) -> tuple[list[EpgChannel], list[EpgProgramme]]:
        channels: list[EpgChannel] = []
        programmes: list[EpgProgramme] = []
        for event, elem in self._parser.read_events():
            tag = _local(elem.tag)
            if event == "start":
                if self._root is None:
                    if tag != "tv":
                        raise ParseError(f"Unexpected XMLTV root element <{tag}>")
                    self._root = elem
                continue

            parent = elem.getparent()
            # Only direct children of <tv> are records
            if parent is None or parent.getparent() is not None:
                continue
            if tag == "channel":
                channel = self._channel(elem)
                if channel is not None:
                    channels.append(channel)
            elif tag == "programme":
                programme = self._programme(elem)
                if programme is not None:
                    programmes.append(programme)
            _release(elem)
        return channels, programmes

    def _channel(self, elem) -> Optional[EpgChannel]:
        channel_id = (elem.get("id") or "").strip()
        if not channel_id:
            self.skipped += 1
            return None
        icon = None
        for child in elem:
            if _local(child.tag) == "icon":
                icon = (child.get("src") or "").strip() or None
                break
        return EpgChannel(
            id=channel_id,
            name=_child_text(elem, "display-name") or channel_id,
            icon=icon,
        )

    def _programme(self, elem) -> Optional[EpgProgramme]:
        channel_id = (elem.get("channel") or "").strip()
        start = parse_xmltv_time(elem.get("start"))
        if not channel_id or start is None:
            self.skipped += 1
            return None
        return EpgProgramme(
            channel_id=channel_id,
            start=start,
            stop=parse_xmltv_time(elem.get("stop")),
            title=_child_text(elem, "title") or "",
            description=_child_text(elem, "desc") or "",
        )


class EpgStreamParser:
    """Fetches an XMLTV feed over HTTP and parses it incrementally."""

    def __init__(self, http_client: "HttpClientService", timeout: float = 60.0):
        self.http_client = http_client
        self.timeout = timeout

    async def fetch_and_parse(self, url: str) -> EpgFeed:
        parser = XmltvPullParser()
        channels: list[EpgChannel] = []
        programmes: list[EpgProgramme] = []
        client = await self.http_client.get_client()
        safe_url = redact_url(url)

        try:
            async with client.stream("GET", url, timeout=httpx.Timeout(self.timeout, read=600.0)) as response:
                if not response.is_success:
                    raise UpstreamError(
                        f"XMLTV fetch failed with HTTP {response.status_code}",
                        status=response.status_code,
                        url=safe_url,
                    )
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    new_channels, new_programmes = parser.feed(chunk)
                    channels.extend(new_channels)
                    programmes.extend(new_programmes)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Error fetching XMLTV {safe_url}: {e}", url=safe_url) from e

        new_channels, new_programmes = parser.close()
        channels.extend(new_channels)
        programmes.extend(new_programmes)

        if parser.skipped:
            logger.warning(f"Skipped {parser.skipped} incomplete XMLTV records from {safe_url}")
        logger.info(f"Parsed XMLTV {safe_url}: {len(channels)} channels, {len(programmes)} programmes")
        return EpgFeed(channels=channels, programmes=programmes)
