from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from .alignment import REVERSIBLE_STRATEGIES, AlignmentStrategy, swap_locals
from .errors import NoTracks, ProviderError
from .match_utils import normalize_match_text
from .models import Candidate, TagSnapshot
from .providers import ENTITY_RELEASE
from .session import ReconciliationSession, Stage

logger = logging.getLogger(__name__)


# events


@dataclass(frozen=True, slots=True)
class Start:
    pass


@dataclass(frozen=True, slots=True)
class SearchArtist:
    query: str


@dataclass(frozen=True, slots=True)
class SwitchProvider:
    name: str


@dataclass(frozen=True, slots=True)
class SelectArtist:
    index: Optional[int] = None
    artist_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SearchRelease:
    query: str


@dataclass(frozen=True, slots=True)
class SelectRelease:
    index: Optional[int] = None
    release_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CombineReleases:
    indices: Tuple[int, ...]


@dataclass(frozen=True, slots=True)
class Back:
    pass


@dataclass(frozen=True, slots=True)
class Skip:
    reason: str = "skipped by operator"


@dataclass(frozen=True, slots=True)
class Retry:
    pass


@dataclass(frozen=True, slots=True)
class ChangeStrategy:
    strategy: Union[AlignmentStrategy, str]


@dataclass(frozen=True, slots=True)
class ToggleReverse:
    pass


@dataclass(frozen=True, slots=True)
class RefreshTracks:
    pass


@dataclass(frozen=True, slots=True)
class SetAlbumArtist:
    name: Optional[str]


@dataclass(frozen=True, slots=True)
class EditTag:
    pair: int
    field: str
    value: Any


@dataclass(frozen=True, slots=True)
class SwapLocals:
    first: int
    second: int


@dataclass(frozen=True, slots=True)
class Commit:
    indices: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True, slots=True)
class TogglePreview:
    pass


@dataclass(frozen=True, slots=True)
class Relocate:
    pass


@dataclass(frozen=True, slots=True)
class FetchFailed:
    """Fed back by the reconciler when a provider effect raised."""

    error: ProviderError


Event = Union[
    Start,
    SearchArtist,
    SwitchProvider,
    SelectArtist,
    SearchRelease,
    SelectRelease,
    CombineReleases,
    Back,
    Skip,
    Retry,
    ChangeStrategy,
    ToggleReverse,
    RefreshTracks,
    SetAlbumArtist,
    EditTag,
    SwapLocals,
    Commit,
    TogglePreview,
    Relocate,
    FetchFailed,
]


# effects


@dataclass(frozen=True, slots=True)
class FetchArtists:
    query: str


@dataclass(frozen=True, slots=True)
class FetchReleases:
    query: Optional[str]
    artist_id: Optional[str]


@dataclass(frozen=True, slots=True)
class FetchTracks:
    release_ids: Tuple[str, ...]
    refresh: bool = False


@dataclass(frozen=True, slots=True)
class Align:
    pass


@dataclass(frozen=True, slots=True)
class CommitPairs:
    indices: Tuple[int, ...]


@dataclass(frozen=True, slots=True)
class RelocateAlbum:
    pass


@dataclass(frozen=True, slots=True)
class Rescan:
    pass


@dataclass(frozen=True, slots=True)
class Notify:
    message: str
    level: str = "info"


@dataclass(frozen=True, slots=True)
class Finish:
    reason: str


Effect = Union[
    FetchArtists,
    FetchReleases,
    FetchTracks,
    Align,
    CommitPairs,
    RelocateAlbum,
    Rescan,
    Notify,
    Finish,
]

UNATTENDED_TRACKS_WARNING = "Unattended mode: alignment and commit skipped for {name}"


def transition(session: ReconciliationSession, event: Event) -> Tuple[Stage, List[Effect]]:
    """Apply ``event`` to the session's control fields and return the effects to run.

    Performs no I/O. Events that make no sense at the current stage leave the
    session untouched and return a single ``Notify``.
    """
    if session.finished and not isinstance(event, Start):
        return session.stage, [Notify("Album already finished.", "warning")]

    match event:
        case Start():
            effects = _start(session)
        case Skip(reason=reason):
            effects = _finish(session, reason)
        case Retry():
            effects = _retry(session)
        case FetchFailed(error=error):
            effects = _fetch_failed(session, error)
        case SwitchProvider(name=name):
            effects = _switch_provider(session, name)
        case ChangeStrategy(strategy=strategy):
            effects = _change_strategy(session, strategy)
        case TogglePreview():
            session.preview = not session.preview
            session.touch()
            effects = [Notify(f"Preview mode {'on' if session.preview else 'off'}")]
        case Back():
            effects = _back(session)
        case _ if session.stage is Stage.ARTIST:
            effects = _artist_stage(session, event)
        case _ if session.stage is Stage.RELEASE:
            effects = _release_stage(session, event)
        case _:
            effects = _tracks_stage(session, event)
    return session.stage, effects


def _start(session: ReconciliationSession) -> List[Effect]:
    session.artist = None
    session.artist_candidates = []
    session.release_candidates = []
    session.select_release(None)
    session.last_error = None
    session.last_fetch = None
    session.finish_reason = None
    session.enter(Stage.ARTIST)
    if session.artist_query:
        return [FetchArtists(session.artist_query)]
    return [Notify(f"No artist hint for {session.directory.name}; enter an artist to search for.")]


def _finish(session: ReconciliationSession, reason: str) -> List[Effect]:
    session.finish_reason = reason
    session.enter(Stage.DONE)
    return [Finish(reason)]


def _retry(session: ReconciliationSession) -> List[Effect]:
    fetch = session.last_fetch
    if fetch is None:
        return [Notify("Nothing to retry.")]
    session.last_error = None
    if isinstance(fetch, FetchTracks):
        if session.stage is not Stage.TRACKS or session.release is None:
            return [Notify("Select a release first.")]
        return [FetchTracks(fetch.release_ids, refresh=True), Align()]
    if isinstance(fetch, FetchReleases) and session.stage is not Stage.RELEASE:
        return [Notify("Release search can only be retried at release selection.")]
    if isinstance(fetch, FetchArtists) and session.stage is not Stage.ARTIST:
        return [Notify("Artist search can only be retried at artist selection.")]
    return [fetch]


def _fetch_failed(session: ReconciliationSession, error: ProviderError) -> List[Effect]:
    session.last_error = str(error)
    session.touch()
    if isinstance(error, NoTracks) and session.stage is Stage.TRACKS:
        release = session.release
        session.select_release(None)
        session.enter(Stage.RELEASE)
        siblings = _siblings(session.release_candidates, release) if release else []
        hint = f" ({len(siblings)} sibling release(s) available)" if siblings else ""
        return [
            Notify(
                f"No tracks for {release.name if release else 'release'}: {error}; "
                f"pick another release{hint}, switch provider or skip.",
                "warning",
            )
        ]
    options = ["retry", "new search", "switch provider", "skip"]
    if len(session.providers) <= 1:
        options.remove("switch provider")
    return [Notify(f"{error} (options: {', '.join(options)})", "error")]


def _switch_provider(session: ReconciliationSession, name: str) -> List[Effect]:
    provider = name.strip().lower()
    if session.providers and provider not in session.providers:
        available = ", ".join(session.providers)
        return [Notify(f"Unknown provider {name!r}; available: {available}", "warning")]
    if provider == session.provider_name and session.stage is Stage.ARTIST and session.artist_candidates:
        return [Notify(f"Already using {provider}.")]
    session.provider_name = provider
    session.artist = None
    session.artist_candidates = []
    session.release_candidates = []
    session.select_release(None)
    session.invalidate_tracks()
    session.last_error = None
    session.last_fetch = None
    session.enter(Stage.ARTIST)
    effects: List[Effect] = [Notify(f"Switched provider to {provider}")]
    if session.artist_query:
        effects.append(FetchArtists(session.artist_query))
    return effects


def _change_strategy(session: ReconciliationSession, value: Union[AlignmentStrategy, str]) -> List[Effect]:
    try:
        strategy = AlignmentStrategy.parse(value)
    except ValueError as exc:
        return [Notify(str(exc), "warning")]
    session.strategy = strategy
    session.touch()
    if session.stage is Stage.TRACKS:
        return [Align()]
    return [Notify(f"Alignment strategy set to {strategy.value}")]


def _back(session: ReconciliationSession) -> List[Effect]:
    if session.stage is Stage.TRACKS:
        session.select_release(None)
        session.enter(Stage.RELEASE)
        if not session.release_candidates and session.artist is not None:
            return [FetchReleases(session.album_query, session.artist.id)]
        return []
    if session.stage is Stage.RELEASE:
        session.artist = None
        session.release_candidates = []
        session.enter(Stage.ARTIST)
        if not session.artist_candidates and session.artist_query:
            return [FetchArtists(session.artist_query)]
        return []
    return [Notify("Already at artist selection.")]


def _artist_stage(session: ReconciliationSession, event: Event) -> List[Effect]:
    match event:
        case SearchArtist(query=query):
            query = query.strip()
            if not query:
                return [Notify("Enter an artist name to search for.", "warning")]
            session.artist_query = query
            session.artist_candidates = []
            session.touch()
            return [FetchArtists(query)]
        case SelectArtist(index=index, artist_id=artist_id):
            candidate, error = _pick(session.artist_candidates, index, artist_id, session.provider_name, "artist")
            if candidate is None:
                return [Notify(error, "warning")]
            session.artist = candidate
            session.release_candidates = []
            session.select_release(None)
            session.enter(Stage.RELEASE)
            return [FetchReleases(session.album_query, candidate.id)]
    return [_unavailable(session, event)]


def _release_stage(session: ReconciliationSession, event: Event) -> List[Effect]:
    match event:
        case SearchRelease(query=query):
            session.album_query = query.strip() or None
            session.release_candidates = []
            session.touch()
            return [FetchReleases(session.album_query, session.artist.id if session.artist else None)]
        case SelectRelease(index=index, release_id=release_id):
            candidate, error = _pick(
                session.release_candidates, index, release_id, session.provider_name, ENTITY_RELEASE
            )
            if candidate is None:
                return [Notify(error, "warning")]
            return _enter_tracks(session, candidate)
        case CombineReleases(indices=indices):
            candidate, error = _combine(session, indices)
            if candidate is None:
                return [Notify(error, "warning")]
            return _enter_tracks(session, candidate)
    return [_unavailable(session, event)]


def _enter_tracks(session: ReconciliationSession, release: Candidate) -> List[Effect]:
    session.select_release(release)
    session.enter(Stage.TRACKS)
    if session.unattended:
        message = UNATTENDED_TRACKS_WARNING.format(name=release.name)
        session.warn(message)
        session.finish_reason = "unattended"
        session.enter(Stage.DONE)
        return [Notify(message, "warning"), Finish("unattended")]
    effects: List[Effect] = []
    if release.is_combined:
        effects.append(Notify(f"Combined {len(release.constituents)} releases into one track list"))
    effects.extend([FetchTracks(release.release_ids), Align()])
    return effects


def _tracks_stage(session: ReconciliationSession, event: Event) -> List[Effect]:
    match event:
        case ToggleReverse():
            session.reverse = not session.reverse
            session.touch()
            effects: List[Effect] = []
            if session.strategy not in REVERSIBLE_STRATEGIES:
                effects.append(Notify(f"Reverse order has no effect on {session.strategy.value} alignment"))
            effects.append(Align())
            return effects
        case RefreshTracks():
            if session.release is None:
                return [Notify("No release selected.", "warning")]
            session.invalidate_tracks(session.release.release_ids)
            return [FetchTracks(session.release.release_ids, refresh=True), Align()]
        case SetAlbumArtist(name=name):
            cleaned = name.strip() if name else None
            session.album_artist_override = cleaned or None
            session.touch()
            if session.album_artist_override:
                return [Notify(f"Album artist set to {session.album_artist_override}")]
            return [Notify("Album artist override cleared")]
        case EditTag(pair=pair, field=field_name, value=value):
            return _edit_tag(session, pair, field_name, value)
        case SwapLocals(first=first, second=second):
            try:
                session.pairs = swap_locals(session.pairs, first - 1, second - 1)
            except IndexError as exc:
                return [Notify(str(exc), "warning")]
            session.strategy = AlignmentStrategy.MANUAL
            session.touch()
            return [Notify(f"Swapped files of pairs {first} and {second}")]
        case Commit(indices=indices):
            if not session.pairs:
                return [Notify("Nothing to commit.", "warning")]
            if indices is None:
                selected = tuple(i for i, pair in enumerate(session.pairs, start=1) if pair.complete)
            else:
                out_of_range = [i for i in indices if not 1 <= i <= len(session.pairs)]
                if out_of_range:
                    return [Notify("Selection out of range.", "warning")]
                selected = tuple(sorted(set(indices)))
            if not selected:
                return [Notify("No complete pairs to commit.", "warning")]
            return [CommitPairs(selected)]
        case Relocate():
            return [RelocateAlbum(), Rescan()]
    return [_unavailable(session, event)]


def _edit_tag(session: ReconciliationSession, pair: int, field_name: str, value: Any) -> List[Effect]:
    if not 1 <= pair <= len(session.pairs):
        return [Notify("Selection out of range.", "warning")]
    key = session.pair_key(pair - 1)
    edits = session.tag_edits.setdefault(key, {})
    if value is None:
        edits.pop(field_name, None)
        session.touch()
        return [Notify(f"Cleared {field_name} edit on pair {pair}")]
    try:
        parsed = TagSnapshot.parse_field(field_name, value) if isinstance(value, str) else value
        TagSnapshot(**{field_name: parsed})
    except (TypeError, ValueError) as exc:
        return [Notify(f"Invalid value for {field_name}: {exc}", "warning")]
    edits[field_name] = parsed
    session.touch()
    return [Notify(f"Pair {pair}: {field_name} will be set to {parsed!r}")]


def _pick(
    candidates: List[Candidate],
    index: Optional[int],
    candidate_id: Optional[str],
    provider: str,
    entity_type: str,
) -> Tuple[Optional[Candidate], str]:
    if candidate_id:
        cleaned = candidate_id.strip()
        for candidate in candidates:
            if candidate.id == cleaned:
                return candidate, ""
        return Candidate(id=cleaned, name=cleaned, provider=provider, entity_type=entity_type), ""
    if index is None:
        if not candidates:
            return None, f"No {entity_type} candidates to choose from."
        index = 1
    if not 1 <= index <= len(candidates):
        return None, "Selection out of range."
    return candidates[index - 1], ""


def _siblings(candidates: List[Candidate], release: Candidate) -> List[Candidate]:
    wanted = normalize_match_text(release.name)
    excluded = set(release.release_ids)
    return [
        c for c in candidates if c.id not in excluded and not c.is_combined and normalize_match_text(c.name) == wanted
    ]


def _combine(session: ReconciliationSession, indices: Tuple[int, ...]) -> Tuple[Optional[Candidate], str]:
    candidates = session.release_candidates
    if not indices:
        return None, "Choose the releases to combine."
    if any(not 1 <= i <= len(candidates) for i in indices):
        return None, "Selection out of range."
    chosen = [candidates[i - 1] for i in sorted(set(indices))]
    if len(chosen) == 1:
        chosen = chosen + _siblings(candidates, chosen[0])
    if len(chosen) < 2:
        return None, f"No releases share the name {chosen[0].name!r}; pick at least two to combine."
    ids: List[str] = []
    for candidate in chosen:
        for release_id in candidate.release_ids:
            if release_id not in ids:
                ids.append(release_id)
    counts = [c.track_count for c in chosen]
    years = [c.year for c in chosen if c.year]
    combined = Candidate(
        id="combined:" + "+".join(ids),
        name=chosen[0].name,
        provider=session.provider_name,
        entity_type=ENTITY_RELEASE,
        artist=chosen[0].artist,
        year=min(years) if years else None,
        track_count=sum(c for c in counts if c) if all(counts) else None,
        disambiguation=f"{len(ids)} releases combined",
        constituents=tuple(ids),
    )
    return combined, ""


def _unavailable(session: ReconciliationSession, event: Event) -> Notify:
    name = type(event).__name__
    return Notify(f"{name} is not available at stage {session.stage.value}.", "warning")
