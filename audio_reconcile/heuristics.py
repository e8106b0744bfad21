from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .models import AlbumPlacement

TRACK_PATTERN = re.compile(r"^(?:(?P<disc>\d{1,2})[-.])?(?P<num>\d{1,3})(?:[\s._-]+)(?P<title>.+)$")
ARTIST_YEAR_ALBUM_PATTERN = re.compile(
    r"^(?P<artist>.+?)\s+[-–]\s+(?P<year>\d{4})\s+[-–]\s+(?P<album>.+)$"
)
YEAR_ALBUM_PATTERN = re.compile(r"^(?P<year>\d{4})\s*[-–.]\s*(?P<album>.+)$")
ALBUM_YEAR_PATTERN = re.compile(r"^(?P<album>.+?)\s*[\(\[](?P<year>\d{4})[\)\]]$")
ARTIST_ALBUM_PATTERN = re.compile(r"^(?P<artist>[^/]+?)\s+[-–]\s+(?P<album>.+)$")


@dataclass(slots=True)
class PathGuess:
    title: Optional[str] = None
    track_number: Optional[int] = None
    disc_number: Optional[int] = None


def guess_track_from_path(path: Path) -> PathGuess:
    guess = PathGuess()
    stem = path.stem
    match = TRACK_PATTERN.match(stem)
    if match:
        guess.track_number = int(match.group("num"))
        if match.group("disc"):
            guess.disc_number = int(match.group("disc"))
        guess.title = _clean(match.group("title"))
    else:
        guess.title = _clean(stem)
    return guess


def guess_placement_from_directory(directory: Path) -> AlbumPlacement:
    name = directory.name
    parent = directory.parent.name or None
    match = ARTIST_YEAR_ALBUM_PATTERN.match(name)
    if match:
        return AlbumPlacement(
            artist=_clean(match.group("artist")),
            year=int(match.group("year")),
            album=_clean(match.group("album")),
        )
    match = YEAR_ALBUM_PATTERN.match(name)
    if match:
        return AlbumPlacement(_clean(parent), int(match.group("year")), _clean(match.group("album")))
    match = ALBUM_YEAR_PATTERN.match(name)
    if match:
        return AlbumPlacement(_clean(parent), int(match.group("year")), _clean(match.group("album")))
    match = ARTIST_ALBUM_PATTERN.match(name)
    if match:
        return AlbumPlacement(_clean(match.group("artist")), None, _clean(match.group("album")))
    return AlbumPlacement(_clean(parent), None, _clean(name))


def _clean(value: str | None) -> Optional[str]:
    if not value:
        return None
    cleaned = value.replace("_", " ").strip(" ._-")
    return cleaned or None
