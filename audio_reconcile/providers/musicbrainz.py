from __future__ import annotations

import logging
import socket
import time
import urllib.error
from typing import Any, Callable, Dict, List, Optional

import musicbrainzngs

from .. import __version__
from ..config import ProviderSettings
from ..errors import NoCandidates, NoTracks, ProviderError, ProviderUnavailable
from ..models import Candidate, RemoteTrack, parse_int, parse_year
from . import ENTITY_ARTIST, ENTITY_RELEASE

logger = logging.getLogger(__name__)


class MusicBrainzProvider:
    name = "musicbrainz"

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings
        musicbrainzngs.set_useragent(
            "audio-reconcile",
            __version__,
            contact=settings.musicbrainz_useragent,
        )

    def search(
        self,
        query: Optional[str],
        entity_type: str,
        *,
        artist_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Candidate]:
        limit = limit or self.settings.search_limit
        if entity_type == ENTITY_ARTIST:
            if not query:
                return []
            response = self._run_with_retries(
                lambda: musicbrainzngs.search_artists(artist=query, limit=limit),
                label=f"artist search {query!r}",
                missing=NoCandidates,
            )
            return [self._artist_candidate(entry) for entry in response.get("artist-list", []) if entry.get("id")]
        if entity_type == ENTITY_RELEASE:
            if query:
                criteria: Dict[str, str] = {"release": query}
                if artist_id:
                    criteria["arid"] = artist_id
                response = self._run_with_retries(
                    lambda: musicbrainzngs.search_releases(limit=limit, **criteria),
                    label=f"release search {query!r}",
                    missing=NoCandidates,
                )
            elif artist_id:
                response = self._run_with_retries(
                    lambda: musicbrainzngs.browse_releases(artist=artist_id, includes=["media"], limit=limit),
                    label=f"release browse for artist {artist_id}",
                    missing=NoCandidates,
                )
            else:
                return []
            return [self._release_candidate(entry) for entry in response.get("release-list", []) if entry.get("id")]
        raise ValueError(f"unsupported entity type {entity_type!r}")

    def get_tracks(self, release_id: str) -> List[RemoteTrack]:
        response = self._run_with_retries(
            lambda: musicbrainzngs.get_release_by_id(release_id, includes=["recordings", "media"]),
            label=f"release fetch {release_id}",
            missing=NoTracks,
        )
        release = response.get("release") or {}
        tracks: List[RemoteTrack] = []
        ordinal = 0
        for medium_index, medium in enumerate(release.get("medium-list", []), start=1):
            disc_number = parse_int(medium.get("position")) or medium_index
            for track in medium.get("track-list", []):
                ordinal += 1
                recording = track.get("recording") or {}
                length = track.get("length") or recording.get("length")
                tracks.append(
                    RemoteTrack(
                        id=str(track.get("id") or recording.get("id") or f"{release_id}:{ordinal}"),
                        ordinal=ordinal,
                        title=track.get("title") or recording.get("title"),
                        duration_ms=parse_int(length),
                        disc_number=disc_number,
                        track_number=parse_int(track.get("position")) or parse_int(track.get("number")),
                        release_id=release_id,
                    )
                )
        return tracks

    def _artist_candidate(self, entry: Dict[str, Any]) -> Candidate:
        details = [entry.get("disambiguation"), entry.get("country")]
        return Candidate(
            id=entry["id"],
            name=entry.get("name") or entry["id"],
            provider=self.name,
            entity_type=ENTITY_ARTIST,
            disambiguation=", ".join(d for d in details if d) or None,
        )

    def _release_candidate(self, entry: Dict[str, Any]) -> Candidate:
        media = entry.get("medium-list") or []
        track_count = parse_int(entry.get("medium-track-count")) or sum(
            parse_int(medium.get("track-count")) or 0 for medium in media
        )
        formats = sorted({medium.get("format") for medium in media if medium.get("format")})
        details = [", ".join(formats), entry.get("country"), entry.get("disambiguation")]
        return Candidate(
            id=entry["id"],
            name=entry.get("title") or entry["id"],
            provider=self.name,
            entity_type=ENTITY_RELEASE,
            artist=entry.get("artist-credit-phrase"),
            year=parse_year(entry.get("date")),
            track_count=track_count or None,
            disambiguation=" | ".join(d for d in details if d) or None,
        )

    def _run_with_retries(
        self,
        fn: Callable[[], Dict[str, Any]],
        *,
        label: str,
        missing: type[ProviderError],
    ) -> Dict[str, Any]:
        retries = int(self.settings.network_retries or 0)
        backoff = float(self.settings.network_retry_backoff_seconds or 0.0)
        attempts = max(1, 1 + retries)
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return fn() or {}
            except musicbrainzngs.ResponseError as exc:
                if getattr(getattr(exc, "cause", None), "code", None) == 404:
                    raise missing(self.name, f"{label}: not found") from exc
                raise ProviderUnavailable(self.name, f"{label} failed: {exc}") from exc
            except Exception as exc:
                if not self._is_transient_network_error(exc):
                    raise
                last_exc = exc
                if attempt >= attempts:
                    break
                sleep_for = max(0.0, backoff) * (2 ** (attempt - 1))
                logger.debug("MusicBrainz %s failed (%s); retrying in %.1fs", label, exc, sleep_for)
                if sleep_for:
                    time.sleep(sleep_for)
        raise ProviderUnavailable(self.name, f"{label} failed: {last_exc}") from last_exc

    @staticmethod
    def _is_transient_network_error(exc: Exception) -> bool:
        if isinstance(exc, (socket.gaierror, urllib.error.URLError, TimeoutError, ConnectionError)):
            return True
        network_err = getattr(musicbrainzngs, "NetworkError", None)
        return bool(network_err and isinstance(exc, network_err))
