from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional

from ..config import ProviderSettings
from ..errors import NoCandidates, NoTracks, ProviderError, ProviderUnavailable
from ..match_utils import normalize_match_text, parse_duration_text
from ..models import Candidate, RemoteTrack, parse_year
from . import ENTITY_ARTIST, ENTITY_RELEASE

logger = logging.getLogger(__name__)

API_ROOT = "https://api.discogs.com"
POSITION_PATTERN = re.compile(r"^(?:(?:CD|DVD|Disc\s*)?(?P<disc>\d+)[-.])?(?P<track>\d+)$", re.IGNORECASE)


class DiscogsProvider:
    name = "discogs"

    def __init__(self, settings: ProviderSettings) -> None:
        if not settings.discogs_token:
            raise ValueError("Discogs token required")
        self.settings = settings
        self.token = settings.discogs_token
        self.useragent = settings.discogs_useragent

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
            data = self._request(
                "/database/search", {"q": query, "type": "artist", "per_page": limit}, missing=NoCandidates
            )
            return [
                Candidate(id=str(item["id"]), name=item.get("title") or str(item["id"]), provider=self.name)
                for item in data.get("results", [])
                if item.get("id")
            ]
        if entity_type == ENTITY_RELEASE:
            if artist_id:
                return self._artist_releases(artist_id, query, limit)
            if not query:
                return []
            data = self._request(
                "/database/search", {"q": query, "type": "release", "per_page": limit}, missing=NoCandidates
            )
            return [self._release_candidate(item) for item in data.get("results", []) if item.get("id")]
        raise ValueError(f"unsupported entity type {entity_type!r}")

    def get_tracks(self, release_id: str) -> List[RemoteTrack]:
        data = self._request(f"/releases/{release_id}", {}, missing=NoTracks)
        tracks: List[RemoteTrack] = []
        for entry in data.get("tracklist", []):
            if entry.get("type_", "track") not in (None, "", "track"):
                continue
            disc, number = self.parse_position(entry.get("position"))
            ordinal = len(tracks) + 1
            tracks.append(
                RemoteTrack(
                    id=f"{release_id}:{entry.get('position') or ordinal}",
                    ordinal=ordinal,
                    title=entry.get("title"),
                    duration_ms=parse_duration_text(entry.get("duration")),
                    disc_number=disc,
                    track_number=number,
                    release_id=str(release_id),
                )
            )
        return tracks

    @staticmethod
    def parse_position(position: Optional[str]) -> tuple[Optional[int], Optional[int]]:
        """``"2-05"`` -> (2, 5); ``"7"`` -> (None, 7); vinyl sides such as ``"A1"`` -> (None, None)."""
        if not position:
            return None, None
        match = POSITION_PATTERN.match(position.strip())
        if not match:
            return None, None
        disc = int(match.group("disc")) if match.group("disc") else None
        return disc, int(match.group("track"))

    def _artist_releases(self, artist_id: str, query: Optional[str], limit: int) -> List[Candidate]:
        data = self._request(
            f"/artists/{artist_id}/releases",
            {"sort": "year", "sort_order": "asc", "per_page": 100},
            missing=NoCandidates,
        )
        candidates: List[Candidate] = []
        for item in data.get("releases", []):
            release_id = item.get("main_release") if item.get("type") == "master" else item.get("id")
            if not release_id:
                continue
            candidates.append(
                Candidate(
                    id=str(release_id),
                    name=item.get("title") or str(release_id),
                    provider=self.name,
                    entity_type=ENTITY_RELEASE,
                    artist=item.get("artist"),
                    year=parse_year(item.get("year")),
                    disambiguation=item.get("format") or item.get("role"),
                )
            )
        if query:
            wanted = normalize_match_text(query)
            filtered = [c for c in candidates if wanted and wanted in normalize_match_text(c.name)]
            if filtered:
                candidates = filtered
        return candidates[:limit]

    def _release_candidate(self, item: Dict[str, Any]) -> Candidate:
        title = item.get("title") or str(item["id"])
        artist = None
        if " - " in title:
            artist, title = title.split(" - ", 1)
        return Candidate(
            id=str(item["id"]),
            name=title,
            provider=self.name,
            entity_type=ENTITY_RELEASE,
            artist=artist,
            year=parse_year(item.get("year")),
            disambiguation=", ".join(item.get("format") or []) or None,
        )

    def _request(self, path: str, params: Dict[str, Any], *, missing: type[ProviderError]) -> Dict[str, Any]:
        query = dict(params)
        query["token"] = self.token
        url = f"{API_ROOT}{path}?{urllib.parse.urlencode(query)}"
        req = urllib.request.Request(url, headers={"User-Agent": self.useragent})
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                return json.load(resp) or {}
        except urllib.error.HTTPError as exc:
            logger.debug("Discogs HTTP error %s for %s: %s", exc.code, path, exc)
            if exc.code == 404:
                raise missing(self.name, f"{path} not found") from exc
            raise ProviderUnavailable(self.name, f"HTTP {exc.code} for {path}") from exc
        except (urllib.error.URLError, TimeoutError, ValueError) as exc:
            logger.warning("Discogs request failed for %s: %s", path, exc)
            raise ProviderUnavailable(self.name, f"request for {path} failed: {exc}") from exc
