"""Pydantic models for application configuration."""
from __future__ import annotations

import uuid
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SourceType = Literal["xtream", "m3u", "epg"]


class Source(BaseModel):
    """An upstream provider: Xtream panel, M3U playlist or standalone XMLTV feed."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    type: SourceType = "xtream"
    name: str = "New Source"
    url: str = ""
    username: Optional[str] = None
    password: Optional[str] = None
    enabled: bool = True

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")


class Options(BaseModel):
    """Application options."""
    model_config = ConfigDict(extra="allow")

    sync_interval: int = 3600  # seconds, 0 disables the periodic sync
    sync_on_startup: bool = True
    epg_max_age_hours: int = 24
    upstream_timeout: float = 60.0


class AppConfig(BaseModel):
    """Root application configuration."""
    model_config = ConfigDict(extra="allow")

    sources: list[Source] = Field(default_factory=list)
    options: Options = Field(default_factory=Options)
