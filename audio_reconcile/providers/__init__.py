from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from ..config import ProviderSettings
from ..models import Candidate, RemoteTrack

logger = logging.getLogger(__name__)

ENTITY_ARTIST = "artist"
ENTITY_RELEASE = "release"


class MetadataProvider(Protocol):
    name: str

    def search(
        self,
        query: Optional[str],
        entity_type: str,
        *,
        artist_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Candidate]: ...

    def get_tracks(self, release_id: str) -> List[RemoteTrack]: ...


def build_providers(settings: ProviderSettings) -> Dict[str, MetadataProvider]:
    from .discogs import DiscogsProvider
    from .musicbrainz import MusicBrainzProvider

    providers: Dict[str, MetadataProvider] = {"musicbrainz": MusicBrainzProvider(settings)}
    if settings.discogs_token:
        providers["discogs"] = DiscogsProvider(settings)
    else:
        logger.debug("Discogs disabled; set providers.discogs_token to enable")
    return providers
