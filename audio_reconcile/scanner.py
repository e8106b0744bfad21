from __future__ import annotations

import fnmatch
import logging
import os
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .config import LibrarySettings
from .errors import TagError
from .heuristics import guess_placement_from_directory, guess_track_from_path
from .models import AlbumPlacement, LocalTrack, TagSnapshot
from .tagging import TagContainer

logger = logging.getLogger(__name__)


@dataclass
class AlbumScan:
    directory: Path
    tracks: List[LocalTrack]
    placement: AlbumPlacement
    unreadable: List[Path] = field(default_factory=list)


class AlbumScanner:
    """Reads every audio file of an album folder into LocalTrack records."""

    def __init__(self, settings: LibrarySettings, container: TagContainer) -> None:
        self.settings = settings
        self.container = container
        self._exts = {ext.lower() for ext in self.settings.include_extensions}

    def iter_album_directories(self, roots: Optional[Iterable[Path]] = None) -> Iterator[Path]:
        for root in roots if roots is not None else self.settings.roots:
            if not root.exists():
                logger.warning("Library root %s does not exist", root)
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
                directory = Path(dirpath)
                if any(self._should_include(directory / name) for name in filenames):
                    yield directory

    def audio_files(self, directory: Path) -> List[Path]:
        if not directory.is_dir():
            return []
        return sorted(
            (path for path in directory.iterdir() if path.is_file() and self._should_include(path)),
            key=lambda p: p.name.casefold(),
        )

    def scan(self, directory: Path) -> AlbumScan:
        tracks: List[LocalTrack] = []
        snapshots: List[TagSnapshot] = []
        unreadable: List[Path] = []
        for path in self.audio_files(directory):
            try:
                snapshot, duration = self._read(path)
            except TagError as exc:
                logger.warning("Could not read tags from %s: %s", path, exc.reason)
                unreadable.append(path)
                snapshot, duration = TagSnapshot(), None
            snapshots.append(snapshot)
            tracks.append(self._to_local_track(path, snapshot, duration))
        placement = self.placement_for(directory, snapshots)
        logger.debug("Scanned %s: %d tracks, placement %s", directory, len(tracks), placement)
        return AlbumScan(directory, tracks, placement, unreadable)

    def _read(self, path: Path) -> tuple[TagSnapshot, Optional[int]]:
        handle = self.container.open(path)
        try:
            return handle.read(), handle.duration_ms
        finally:
            handle.close()

    @staticmethod
    def _to_local_track(path: Path, snapshot: TagSnapshot, duration: Optional[int]) -> LocalTrack:
        guess = guess_track_from_path(path)
        return LocalTrack(
            path=path,
            disc_number=snapshot.disc_number,
            track_number=snapshot.track_number,
            title=snapshot.title or guess.title,
            composers=list(snapshot.composers or ()),
            performers=list(snapshot.performers or ()),
            duration_ms=duration,
            genres=list(snapshot.genres or ()),
        )

    @staticmethod
    def placement_for(directory: Path, snapshots: Iterable[TagSnapshot]) -> AlbumPlacement:
        artists: Counter[str] = Counter()
        albums: Counter[str] = Counter()
        years: Counter[int] = Counter()
        for snapshot in snapshots:
            artist = snapshot.album_artist or (snapshot.performers[0] if snapshot.performers else None)
            if artist:
                artists[artist.strip()] += 1
            if snapshot.album:
                albums[snapshot.album.strip()] += 1
            if snapshot.year:
                years[snapshot.year] += 1
        guess = guess_placement_from_directory(directory)
        return AlbumPlacement(
            artist=_most_common(artists) or guess.artist,
            year=_most_common(years) or guess.year,
            album=_most_common(albums) or guess.album,
        )

    def _should_include(self, path: Path) -> bool:
        if path.suffix.lower() not in self._exts:
            return False
        if path.name.startswith("."):
            return False
        rel = str(path)
        for pattern in self.settings.exclude_patterns:
            if fnmatch.fnmatch(rel, pattern):
                return False
        return True


def _most_common(counter: Counter) -> Optional[object]:
    if not counter:
        return None
    return counter.most_common(1)[0][0]
