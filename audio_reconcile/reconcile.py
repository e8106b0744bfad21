from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from .alignment import AlignmentStrategy, TrackAligner
from .config import Settings
from .errors import NoCandidates, NoTracks, ProviderError, ProviderUnavailable, RelocationError
from .match_utils import normalize_title_for_match
from .models import AlbumPlacement, RemoteTrack, TagSnapshot, TrackPair
from .organizer import AlbumRelocator
from .providers import ENTITY_ARTIST, ENTITY_RELEASE, MetadataProvider
from .report import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_INSPECTED,
    STATUS_SKIPPED,
    AlbumOutcome,
    RunReport,
)
from .scanner import AlbumScan, AlbumScanner
from .session import ReconciliationSession
from .state_machine import (
    Align,
    CommitPairs,
    Effect,
    Event,
    FetchArtists,
    FetchFailed,
    FetchReleases,
    FetchTracks,
    Finish,
    Notify,
    RelocateAlbum,
    Rescan,
    Skip,
    Start,
    transition,
)
from .tagging import TagCommitter, TagContainer

logger = logging.getLogger(__name__)


class EventSource(Protocol):
    def next_event(self, session: ReconciliationSession) -> Optional[Event]: ...

    def notify(self, session: ReconciliationSession, message: str, level: str = "info") -> None: ...


@dataclass
class _AlbumRun:
    session: ReconciliationSession
    outcome: AlbumOutcome
    events: EventSource


def combine_release_tracks(
    track_lists: Sequence[Sequence[RemoteTrack]],
) -> Tuple[List[RemoteTrack], List[str]]:
    """Concatenate several releases into one track list.

    Ordinals run on across releases; each release's discs are numbered after
    the previous release's last disc. Divergent releases are reported back as
    warnings rather than reconciled.
    """
    combined: List[RemoteTrack] = []
    warnings: List[str] = []
    counts = [len(tracks) for tracks in track_lists]
    if len(set(counts)) > 1:
        warnings.append("Combined releases differ in track count: " + " / ".join(str(c) for c in counts))
    seen_titles: Set[str] = set()
    overlaps: List[str] = []
    disc_offset = 0
    for tracks in track_lists:
        release_titles: Set[str] = set()
        last_disc = 0
        for track in sorted(tracks, key=lambda t: t.ordinal):
            disc = track.disc_number or 1
            last_disc = max(last_disc, disc)
            combined.append(replace(track, ordinal=len(combined) + 1, disc_number=disc + disc_offset))
            key = normalize_title_for_match(track.title)
            if not key:
                continue
            if key in seen_titles and track.title not in overlaps:
                overlaps.append(track.title or key)
            release_titles.add(key)
        seen_titles.update(release_titles)
        disc_offset += last_disc
    if overlaps:
        shown = ", ".join(overlaps[:5])
        more = f" and {len(overlaps) - 5} more" if len(overlaps) > 5 else ""
        warnings.append(f"Titles repeated across combined releases: {shown}{more}")
    return combined, warnings


class Reconciler:
    """Runs album folders through the reconciliation stages and executes their effects."""

    def __init__(
        self,
        settings: Settings,
        providers: Dict[str, MetadataProvider],
        container: TagContainer,
        *,
        scanner: Optional[AlbumScanner] = None,
        aligner: Optional[TrackAligner] = None,
        committer: Optional[TagCommitter] = None,
        relocator: Optional[AlbumRelocator] = None,
        report: Optional[RunReport] = None,
    ) -> None:
        if not providers:
            raise ValueError("at least one metadata provider is required")
        self.settings = settings
        self.providers = providers
        self.container = container
        self.scanner = scanner or AlbumScanner(settings.library, container)
        self.aligner = aligner or TrackAligner(settings.reconcile.name_match_threshold)
        self.committer = committer or TagCommitter(container)
        self.relocator = relocator or AlbumRelocator(
            settings.target_root(),
            lock_retries=settings.organizer.lock_retries,
            lock_backoff_seconds=settings.organizer.lock_backoff_seconds,
            cleanup_empty_dirs=settings.organizer.cleanup_empty_dirs,
            library_roots=settings.library.roots,
        )
        self.report = report or RunReport()

    def run(self, directories: Iterable[Path], events: EventSource, *, unattended: bool = False) -> RunReport:
        for directory in directories:
            try:
                self.reconcile_album(directory, events, unattended=unattended)
            except OSError as exc:
                logger.error("Failed to process %s: %s", directory, exc)
                self.report.add(AlbumOutcome(directory, status=STATUS_FAILED, reason=str(exc), errors=[str(exc)]))
        return self.report

    def reconcile_album(
        self, directory: Path, events: EventSource, *, unattended: bool = False
    ) -> AlbumOutcome:
        scan = self.scanner.scan(directory)
        outcome = AlbumOutcome(directory)
        outcome.warnings.extend(f"Unreadable tags: {path.name}" for path in scan.unreadable)
        if not scan.tracks:
            logger.info("No audio files in %s; skipping", directory)
            outcome.reason = "no audio files"
            self.report.add(outcome)
            return outcome
        for track in scan.tracks:
            self.report.genres.add(track.genres)

        session = self.open_session(scan, unattended=unattended)
        run = _AlbumRun(session, outcome, events)
        self.dispatch(run, Start())
        while not session.finished:
            event = events.next_event(session)
            if event is None:
                event = Skip("no more input")
            self.dispatch(run, event)
        outcome.warnings.extend(w for w in session.warnings if w not in outcome.warnings)
        self.report.add(outcome)
        return outcome

    def open_session(self, scan: AlbumScan, *, unattended: bool = False) -> ReconciliationSession:
        options = self.settings.reconcile
        default = self.settings.providers.default
        provider_name = default if default in self.providers else next(iter(self.providers))
        return ReconciliationSession(
            directory=scan.directory,
            provider_name=provider_name,
            providers=tuple(self.providers),
            strategy=AlignmentStrategy.parse(options.default_strategy),
            reverse=options.reverse,
            preview=options.preview,
            unattended=unattended,
            artist_query=scan.placement.artist,
            album_query=scan.placement.album,
            local_tracks=list(scan.tracks),
            placement=scan.placement,
        )

    def dispatch(self, run: _AlbumRun, event: Event) -> None:
        stage, effects = transition(run.session, event)
        logger.debug("%s -> stage %s, effects %s", type(event).__name__, stage.value, effects)
        for effect in effects:
            if not self._apply(run, effect):
                break

    def _apply(self, run: _AlbumRun, effect: Effect) -> bool:
        """Execute one effect; False stops the remaining effects of the same transition."""
        session = run.session
        match effect:
            case FetchArtists() | FetchReleases() | FetchTracks():
                session.last_fetch = effect
                try:
                    self._fetch(run, effect)
                except ProviderError as exc:
                    logger.warning("%s: %s", session.directory.name, exc)
                    self.dispatch(run, FetchFailed(exc))
                    return False
                session.last_error = None
                session.touch()
            case Align():
                self._align(run)
            case CommitPairs(indices=indices):
                self._commit(run, indices)
            case RelocateAlbum():
                return self._relocate(run)
            case Rescan():
                self._refresh_locals(session)
            case Notify(message=message, level=level):
                if level in ("warning", "error"):
                    run.outcome.warnings.append(message)
                run.events.notify(session, message, level)
            case Finish(reason=reason):
                self._finish(run, reason)
        return True

    # effects

    def _provider(self, session: ReconciliationSession) -> MetadataProvider:
        provider = self.providers.get(session.provider_name)
        if provider is None:
            raise ProviderUnavailable(session.provider_name, "provider is not configured")
        return provider

    def _fetch(self, run: _AlbumRun, effect: Effect) -> None:
        session = run.session
        provider = self._provider(session)
        limit = self.settings.providers.search_limit
        match effect:
            case FetchArtists(query=query):
                candidates = provider.search(query, ENTITY_ARTIST, limit=limit)
                if not candidates:
                    raise NoCandidates(provider.name, f"no artists match {query!r}")
                session.artist_candidates = candidates
            case FetchReleases(query=query, artist_id=artist_id):
                candidates = provider.search(query, ENTITY_RELEASE, artist_id=artist_id, limit=limit)
                if not candidates and query and artist_id:
                    logger.debug("No releases match %r; listing all releases of %s", query, artist_id)
                    candidates = provider.search(None, ENTITY_RELEASE, artist_id=artist_id, limit=limit)
                if not candidates:
                    raise NoCandidates(provider.name, f"no releases found for {query or artist_id!r}")
                session.release_candidates = candidates
            case FetchTracks(release_ids=release_ids, refresh=refresh):
                track_lists = [self._release_tracks(session, provider, rid, refresh) for rid in release_ids]
                if len(track_lists) == 1:
                    session.remote_tracks = track_lists[0]
                    return
                tracks, warnings = combine_release_tracks(track_lists)
                for warning in warnings:
                    session.warn(warning)
                    run.events.notify(session, warning, "warning")
                session.remote_tracks = tracks

    @staticmethod
    def _release_tracks(
        session: ReconciliationSession, provider: MetadataProvider, release_id: str, refresh: bool
    ) -> List[RemoteTrack]:
        cached = None if refresh else session.cached_tracks(release_id)
        if cached is not None:
            return cached
        tracks = provider.get_tracks(release_id)
        if not tracks:
            raise NoTracks(provider.name, f"release {release_id} has no tracks")
        session.store_tracks(release_id, tracks)
        return list(tracks)

    def _align(self, run: _AlbumRun) -> None:
        session = run.session
        if not session.remote_tracks:
            run.events.notify(session, "No remote tracks to align.", "warning")
            return
        session.pairs = self.aligner.align(
            session.local_tracks, session.remote_tracks, session.strategy, reverse=session.reverse
        )
        session.touch()
        complete = sum(1 for pair in session.pairs if pair.complete)
        run.events.notify(
            session,
            f"Aligned {complete} of {len(session.pairs)} pairs by {session.strategy.value}"
            + (" (reversed)" if session.reverse else ""),
        )

    def album_artist(self, session: ReconciliationSession) -> Optional[str]:
        if session.album_artist_override:
            return session.album_artist_override
        if session.release and session.release.artist:
            return session.release.artist
        return session.artist.name if session.artist else None

    def desired_snapshot(self, session: ReconciliationSession, pair: TrackPair) -> TagSnapshot:
        if pair.remote is None:
            raise ValueError("a pair without a remote track has no desired tags")
        remote = pair.remote
        release = session.release
        disc = remote.disc_number or 1
        disc_total = sum(1 for track in session.remote_tracks if (track.disc_number or 1) == disc)
        snapshot = TagSnapshot(
            title=remote.title or None,
            album=release.name if release else None,
            album_artist=self.album_artist(session),
            year=release.year if release else None,
            track_number=remote.track_number or remote.ordinal,
            track_total=disc_total or None,
            disc_number=remote.disc_number,
        )
        edits = session.edits_for(pair)
        return snapshot.merged(**edits) if edits else snapshot

    def _commit(self, run: _AlbumRun, indices: Iterable[int]) -> None:
        session = run.session
        results = []
        for index in indices:
            pair = session.pairs[index - 1]
            if not pair.complete:
                run.events.notify(session, f"Pair {index} is missing a file or a track; skipped", "warning")
                continue
            assert pair.local is not None
            result = self.committer.commit(
                pair.local.path, self.desired_snapshot(session, pair), preview=session.preview
            )
            results.append(result)
            run.outcome.commits.append(result)
            if not result.success:
                run.outcome.errors.append(result.describe())
                run.events.notify(session, result.describe(), "error")
            else:
                run.events.notify(session, result.describe())
        if any(result.written for result in results):
            self._refresh_locals(session)

    def _refresh_locals(self, session: ReconciliationSession) -> None:
        """Rescan the album folder, keeping the current pairing by file name."""
        self._rescan(session)
        by_name = {track.name: track for track in session.local_tracks}
        pairs = []
        for pair in session.pairs:
            local = by_name.pop(pair.local.name, None) if pair.local else None
            if local is None and pair.remote is None:
                continue
            pairs.append(TrackPair(local, pair.remote))
        if session.pairs:
            pairs.extend(TrackPair(track, None) for track in by_name.values())
        session.pairs = pairs

    def _relocate(self, run: _AlbumRun) -> bool:
        session = run.session
        busy = sorted(p for p in self.container.open_paths() if _is_under(p, session.directory))
        if busy:
            message = f"Cannot move {session.directory.name}: {len(busy)} file(s) still open"
            run.outcome.errors.append(message)
            run.events.notify(session, message, "error")
            return False
        scanned = session.placement or AlbumPlacement(None, None, None)
        release = session.release
        placement = AlbumPlacement(
            artist=self.album_artist(session) or scanned.artist,
            year=(release.year if release else None) or scanned.year,
            album=(release.name if release else None) or scanned.album,
        )
        try:
            result = self.relocator.relocate(session.directory, placement, dry_run=session.preview)
        except RelocationError as exc:
            run.outcome.errors.append(str(exc))
            run.events.notify(session, f"Relocation failed: {exc}", "error")
            return False
        if not result.moved:
            verb = "would move to" if result.destination != result.source else "already at"
            run.events.notify(session, f"{session.directory.name} {verb} {result.destination}")
            return False
        session.directory = result.destination
        run.outcome.relocated_to = result.destination
        run.events.notify(session, f"Moved to {result.destination}")
        return True

    def _rescan(self, session: ReconciliationSession) -> None:
        scan = self.scanner.scan(session.directory)
        session.local_tracks = list(scan.tracks)
        session.placement = scan.placement
        session.touch()

    @staticmethod
    def _finish(run: _AlbumRun, reason: str) -> None:
        outcome = run.outcome
        outcome.reason = reason
        if reason == "unattended":
            outcome.status = STATUS_INSPECTED
        elif outcome.commits or outcome.relocated_to:
            outcome.status = STATUS_COMPLETED
        else:
            outcome.status = STATUS_SKIPPED
        logger.info("%s: %s (%s)", run.session.directory.name, outcome.status, reason)


def _is_under(path: Path, directory: Path) -> bool:
    return path == directory or directory in path.parents
