"""Parsed feed records produced by the M3U and XMLTV stream parsers."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

UNCATEGORIZED = "Uncategorized"


class M3UChannel(BaseModel):
    id: str
    name: str
    url: str
    group_title: str = ""
    tvg_id: str = ""
    tvg_name: str = ""
    tvg_logo: str = ""
    duration: int = -1

    def to_stream(self) -> dict:
        """Xtream-shaped dict fed to the live item mapper."""
        return {
            "stream_id": self.id,
            "name": self.name,
            "category_id": self.group_title or UNCATEGORIZED,
            "stream_icon": self.tvg_logo,
            "stream_url": self.url,
            "epg_channel_id": self.tvg_id,
        }


class M3UGroup(BaseModel):
    name: str
    channel_count: int = 0


class M3UPlaylist(BaseModel):
    channels: list[M3UChannel] = Field(default_factory=list)
    groups: list[M3UGroup] = Field(default_factory=list)


class EpgChannel(BaseModel):
    id: str
    name: str
    icon: Optional[str] = None


class EpgProgramme(BaseModel):
    channel_id: str
    start: datetime
    stop: Optional[datetime] = None
    title: str = ""
    description: str = ""


class EpgFeed(BaseModel):
    channels: list[EpgChannel] = Field(default_factory=list)
    programmes: list[EpgProgramme] = Field(default_factory=list)
