from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

SCALAR_FIELDS = (
    "title",
    "album",
    "album_artist",
    "year",
    "track_number",
    "track_total",
    "disc_number",
)
LIST_FIELDS = ("performers", "composers", "genres")
INT_FIELDS = ("year", "track_number", "track_total", "disc_number")
LIST_SEPARATOR = "; "


@dataclass(slots=True)
class LocalTrack:
    path: Path
    disc_number: Optional[int] = None
    track_number: Optional[int] = None
    title: Optional[str] = None
    composers: List[str] = field(default_factory=list)
    performers: List[str] = field(default_factory=list)
    duration_ms: Optional[int] = None
    genres: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True, slots=True)
class RemoteTrack:
    id: str
    ordinal: int
    title: Optional[str]
    duration_ms: Optional[int] = None
    disc_number: Optional[int] = None
    track_number: Optional[int] = None
    release_id: Optional[str] = None


@dataclass(slots=True)
class TrackPair:
    local: Optional[LocalTrack]
    remote: Optional[RemoteTrack]

    def __post_init__(self) -> None:
        if self.local is None and self.remote is None:
            raise ValueError("a track pair needs at least one side")

    @property
    def complete(self) -> bool:
        return self.local is not None and self.remote is not None


@dataclass(frozen=True, slots=True)
class TagSnapshot:
    """Fixed set of tag fields the reconciler reads and writes.

    ``None`` means "unknown" in a snapshot read from disk and "leave unchanged"
    in a desired snapshot.
    """

    title: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    performers: Optional[Tuple[str, ...]] = None
    composers: Optional[Tuple[str, ...]] = None
    genres: Optional[Tuple[str, ...]] = None
    year: Optional[int] = None
    track_number: Optional[int] = None
    track_total: Optional[int] = None
    disc_number: Optional[int] = None

    def __post_init__(self) -> None:
        for name in LIST_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, str):
                raise ValueError(f"{name} must be a sequence of strings, not a string")
            items = tuple(value)
            if not all(isinstance(item, str) for item in items):
                raise ValueError(f"{name} must only contain strings")
            object.__setattr__(self, name, items)
        for name in INT_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        for name in ("title", "album", "album_artist"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{name} must be a string, got {value!r}")

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def merged(self, **changes: Any) -> "TagSnapshot":
        return replace(self, **changes)

    @staticmethod
    def parse_field(name: str, raw: str) -> Any:
        """Convert operator input for one field into the snapshot's type."""
        if name in LIST_FIELDS:
            return tuple(part.strip() for part in raw.split(";") if part.strip())
        if name in INT_FIELDS:
            value = parse_int(raw)
            if value is None or value < 1:
                raise ValueError(f"{name} expects a positive number, got {raw!r}")
            return value
        if name in SCALAR_FIELDS:
            cleaned = raw.strip()
            if not cleaned:
                raise ValueError(f"{name} cannot be empty")
            return cleaned
        raise ValueError(f"unknown tag field {name!r}")


@dataclass(frozen=True, slots=True)
class Candidate:
    id: str
    name: str
    provider: str
    entity_type: str = "artist"
    artist: Optional[str] = None
    year: Optional[int] = None
    track_count: Optional[int] = None
    disambiguation: Optional[str] = None
    constituents: Tuple[str, ...] = ()

    @property
    def is_combined(self) -> bool:
        return len(self.constituents) > 1

    @property
    def release_ids(self) -> Tuple[str, ...]:
        return self.constituents or (self.id,)


@dataclass(frozen=True, slots=True)
class AlbumPlacement:
    artist: Optional[str]
    year: Optional[int]
    album: Optional[str]

    @property
    def complete(self) -> bool:
        return bool(self.artist and self.album)


def parse_int(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        cleaned = value.strip()
        if "/" in cleaned:
            cleaned = cleaned.split("/", 1)[0].strip()
        if cleaned.isdigit():
            return int(cleaned)
        return None
    as_str = str(value).strip()
    if as_str.isdigit():
        return int(as_str)
    return None


def parse_year(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value if 1000 <= value <= 9999 else None
    text = str(value).strip()
    if len(text) >= 4 and text[:4].isdigit():
        year = int(text[:4])
        return year if year >= 1000 else None
    return None
