from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .alignment import AlignmentStrategy
from .models import AlbumPlacement, Candidate, LocalTrack, RemoteTrack, TrackPair

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    ARTIST = "A"
    RELEASE = "B"
    TRACKS = "C"
    DONE = "done"


STAGE_LABELS = {
    Stage.ARTIST: "artist",
    Stage.RELEASE: "release",
    Stage.TRACKS: "tracks",
    Stage.DONE: "done",
}


@dataclass
class ReconciliationSession:
    """Everything one album folder's pass through stages A-C needs.

    Control fields (stage, selections, flags) are changed by ``transition``;
    data fields (candidates, tracks, pairs) are filled in by the effects the
    reconciler executes.
    """

    directory: Path
    provider_name: str = "musicbrainz"
    providers: Tuple[str, ...] = ()
    stage: Stage = Stage.ARTIST
    strategy: AlignmentStrategy = AlignmentStrategy.ORDER
    reverse: bool = False
    preview: bool = False
    unattended: bool = False
    artist_query: Optional[str] = None
    album_query: Optional[str] = None
    artist: Optional[Candidate] = None
    release: Optional[Candidate] = None
    artist_candidates: List[Candidate] = field(default_factory=list)
    release_candidates: List[Candidate] = field(default_factory=list)
    album_artist_override: Optional[str] = None
    local_tracks: List[LocalTrack] = field(default_factory=list)
    placement: Optional[AlbumPlacement] = None
    remote_tracks: List[RemoteTrack] = field(default_factory=list)
    pairs: List[TrackPair] = field(default_factory=list)
    tag_edits: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    last_error: Optional[str] = None
    last_fetch: Optional[Any] = None
    warnings: List[str] = field(default_factory=list)
    finish_reason: Optional[str] = None
    revision: int = 0
    _track_cache: Dict[str, List[RemoteTrack]] = field(default_factory=dict, repr=False)

    @property
    def finished(self) -> bool:
        return self.stage is Stage.DONE

    def touch(self) -> None:
        """Mark the session as changed so front-ends redraw it."""
        self.revision += 1

    def enter(self, stage: Stage) -> None:
        if stage is not self.stage:
            logger.debug("%s: stage %s -> %s", self.directory.name, self.stage.value, stage.value)
        self.stage = stage
        self.touch()

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    # release-track cache

    def cached_tracks(self, release_id: str) -> Optional[List[RemoteTrack]]:
        tracks = self._track_cache.get(release_id)
        return list(tracks) if tracks is not None else None

    def store_tracks(self, release_id: str, tracks: Iterable[RemoteTrack]) -> None:
        self._track_cache[release_id] = list(tracks)

    def invalidate_tracks(self, release_ids: Optional[Iterable[str]] = None) -> None:
        if release_ids is None:
            self._track_cache.clear()
            return
        for release_id in release_ids:
            self._track_cache.pop(release_id, None)

    def select_release(self, release: Optional[Candidate]) -> None:
        """Switch the active release; tracks cached for ids no longer in use are dropped."""
        keep = set(release.release_ids) if release else set()
        previous = set(self.release.release_ids) if self.release else set()
        stale = previous - keep
        if stale:
            self.invalidate_tracks(stale)
        self.release = release
        self.remote_tracks = []
        self.pairs = []

    def pair_key(self, index: int) -> str:
        """Stable key for per-pair tag edits (survives realignment and relocation)."""
        pair = self.pairs[index]
        if pair.remote is not None:
            return f"remote:{pair.remote.id}"
        assert pair.local is not None
        return f"local:{pair.local.name}"

    def edits_for(self, pair: TrackPair) -> Dict[str, Any]:
        edits: Dict[str, Any] = {}
        if pair.local is not None:
            edits.update(self.tag_edits.get(f"local:{pair.local.name}", {}))
        if pair.remote is not None:
            edits.update(self.tag_edits.get(f"remote:{pair.remote.id}", {}))
        return edits
