"""
Shared dataclasses used across the playlist and guide pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


ALL_CATEGORY = "all"
FAVORITES_CATEGORY = "favorites"


@dataclass(slots=True)
class Channel:
    """A playlist entry with its derived identity."""
    id: str
    name: str
    logo_url: str
    group: str
    stream_url: str
    epg_key: str | None = None

    def __post_init__(self) -> None:
        for attr in ("id", "name", "group"):
            if not getattr(self, attr):
                raise ValueError(f"Channel.{attr} must not be empty")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "logo_url": self.logo_url,
            "group": self.group,
            "stream_url": self.stream_url,
            "epg_key": self.epg_key,
        }


@dataclass(slots=True)
class ProgramEntry:
    """A single scheduled programme; times are UTC or None when unparsable."""
    title: str
    description: str
    start: datetime | None
    stop: datetime | None

    def __post_init__(self) -> None:
        if self.start is not None and self.stop is not None and self.start > self.stop:
            raise ValueError(
                f"Programme '{self.title}' stops ({self.stop}) before it starts ({self.start})"
            )

    def is_airing(self, at: datetime) -> bool:
        """Half-open containment: start <= at < stop."""
        if self.start is None or self.stop is None:
            return False
        return self.start <= at < self.stop


# EPG channel key (as written in the guide) -> start-sorted, non-empty programmes
EpgTimelineTable = dict[str, list[ProgramEntry]]


@dataclass(slots=True)
class CategoryTally:
    """Channel counts per group plus the synthetic 'all' and 'favorites' entries."""
    total: int
    favorites: int
    groups: dict[str, int] = field(default_factory=dict)

    def as_mapping(self) -> dict[str, int]:
        mapping = {ALL_CATEGORY: self.total, FAVORITES_CATEGORY: self.favorites}
        mapping.update(self.groups)
        return mapping

    def sorted_groups(self) -> list[tuple[str, int]]:
        return sorted(self.groups.items())


@dataclass(slots=True)
class SourceInfo:
    """Where the current playlist or guide came from."""
    name: str
    source: str
    loaded_at: datetime
    item_count: int = 0


__all__ = [
    "ALL_CATEGORY",
    "FAVORITES_CATEGORY",
    "Channel",
    "ProgramEntry",
    "EpgTimelineTable",
    "CategoryTally",
    "SourceInfo",
]
