"""Catalog records and the per-kind mapping from upstream payloads to stored rows.

Upstream items come in three shapes (Xtream live, movie and series) that name
the same concepts differently (``stream_id`` vs ``series_id``, ``stream_icon``
vs ``cover``, ...). Each kind has an explicit mapper in ``ITEM_MAPPERS``; the
untouched upstream dict travels along in ``raw`` so that fields which are not
promoted to columns stay retrievable.
"""
from __future__ import annotations

from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field

CategoryType = Literal["live", "movie", "series"]
ItemType = Literal["live", "movie", "series", "epg_channel"]
SyncState = Literal["syncing", "success", "error"]


def composite_id(source_id: str, upstream_id: Any) -> str:
    """Namespace an upstream id with its owning source."""
    return f"{source_id}:{upstream_id}"


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class Category(BaseModel):
    source_id: str
    type: CategoryType
    category_id: str
    name: str = ""
    parent_id: Optional[str] = None
    raw: dict = Field(default_factory=dict)

    @property
    def composite_id(self) -> str:
        return composite_id(self.source_id, self.category_id)

    @classmethod
    def from_upstream(cls, source_id: str, type: str, raw: dict) -> Optional["Category"]:
        category_id = _text(raw.get("category_id"))
        if category_id is None:
            return None
        parent = raw.get("parent_id")
        return cls(
            source_id=source_id,
            type=type,
            category_id=category_id,
            name=str(raw.get("category_name") or ""),
            # Xtream uses 0 for "no parent"
            parent_id=str(parent) if parent else None,
            raw=raw,
        )


class PlaylistItem(BaseModel):
    source_id: str
    type: ItemType
    item_id: str
    name: str = ""
    category_id: Optional[str] = None
    icon: Optional[str] = None
    stream_url: Optional[str] = None
    container_extension: Optional[str] = None
    rating: Optional[str] = None
    year: Optional[str] = None
    added_at: Optional[str] = None
    raw: dict = Field(default_factory=dict)

    @property
    def composite_id(self) -> str:
        return composite_id(self.source_id, self.item_id)


# ------------------------------------------------------------------
# Upstream item mappers
# ------------------------------------------------------------------


def map_live(source_id: str, raw: dict) -> Optional[PlaylistItem]:
    item_id = _text(raw.get("stream_id"))
    if item_id is None:
        return None
    return PlaylistItem(
        source_id=source_id,
        type="live",
        item_id=item_id,
        name=str(raw.get("name") or ""),
        category_id=_text(raw.get("category_id")),
        icon=_text(raw.get("stream_icon")),
        stream_url=_text(raw.get("stream_url")),
        added_at=_text(raw.get("added")),
        raw=raw,
    )


def map_movie(source_id: str, raw: dict) -> Optional[PlaylistItem]:
    item_id = _text(raw.get("stream_id"))
    if item_id is None:
        return None
    return PlaylistItem(
        source_id=source_id,
        type="movie",
        item_id=item_id,
        name=str(raw.get("name") or ""),
        category_id=_text(raw.get("category_id")),
        icon=_text(raw.get("stream_icon")),
        container_extension=_text(raw.get("container_extension")),
        rating=_text(raw.get("rating")),
        year=_text(raw.get("year")),
        added_at=_text(raw.get("added")),
        raw=raw,
    )


def map_series(source_id: str, raw: dict) -> Optional[PlaylistItem]:
    item_id = _text(raw.get("series_id"))
    if item_id is None:
        return None
    return PlaylistItem(
        source_id=source_id,
        type="series",
        item_id=item_id,
        name=str(raw.get("name") or ""),
        category_id=_text(raw.get("category_id")),
        icon=_text(raw.get("cover")),
        rating=_text(raw.get("rating")),
        year=_text(raw.get("releaseDate") or raw.get("release_date")),
        added_at=_text(raw.get("last_modified")),
        raw=raw,
    )


ITEM_MAPPERS: dict[str, Callable[[str, dict], Optional[PlaylistItem]]] = {
    "live": map_live,
    "movie": map_movie,
    "series": map_series,
}


def map_upstream_item(source_id: str, kind: str, raw: dict) -> Optional[PlaylistItem]:
    """Map one upstream record of *kind* to a row, or ``None`` if it carries no id."""
    try:
        mapper = ITEM_MAPPERS[kind]
    except KeyError:
        raise ValueError(f"Unknown item kind: {kind}") from None
    return mapper(source_id, raw)


# ------------------------------------------------------------------
# Sync status / visibility
# ------------------------------------------------------------------


class SyncStatus(BaseModel):
    source_id: str
    scope: str = "all"
    last_sync_at: Optional[int] = None  # epoch millis
    status: SyncState
    error: Optional[str] = None
    error_kind: Optional[str] = None


class VisibilityChange(BaseModel):
    """Hide or show one category or item of a source."""

    kind: Literal["category", "item"] = "item"
    type: ItemType
    id: str
    hidden: bool = True
