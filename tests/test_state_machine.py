import unittest
from pathlib import Path

from audio_reconcile.alignment import AlignmentStrategy
from audio_reconcile.errors import NoTracks, ProviderUnavailable
from audio_reconcile.models import LocalTrack, TrackPair
from audio_reconcile.session import ReconciliationSession, Stage
from audio_reconcile.state_machine import (
    Align,
    Back,
    ChangeStrategy,
    CombineReleases,
    Commit,
    CommitPairs,
    EditTag,
    FetchArtists,
    FetchFailed,
    FetchReleases,
    FetchTracks,
    Finish,
    Notify,
    RefreshTracks,
    Relocate,
    RelocateAlbum,
    Rescan,
    Retry,
    SearchArtist,
    SearchRelease,
    SelectArtist,
    SelectRelease,
    Skip,
    Start,
    SwapLocals,
    SwitchProvider,
    ToggleReverse,
    transition,
)
from fakes import artist, release, remote_tracks


def _session(**kwargs) -> ReconciliationSession:
    defaults = dict(
        directory=Path("/music/Artist/Album"),
        providers=("musicbrainz", "discogs"),
        artist_query="Artist",
        album_query="Album",
    )
    defaults.update(kwargs)
    return ReconciliationSession(**defaults)


def _at_release(session: ReconciliationSession) -> ReconciliationSession:
    transition(session, Start())
    session.artist_candidates = [artist("a1", "Artist"), artist("a2", "Artists")]
    transition(session, SelectArtist(index=1))
    session.release_candidates = [
        release("r1", "Greatest Hits", artist_name="Artist", year=2001, track_count=10),
        release("r2", "Greatest Hits", artist_name="Artist", year=1999, track_count=12),
        release("r3", "Other Album", artist_name="Artist"),
    ]
    return session


def _at_tracks(session: ReconciliationSession) -> ReconciliationSession:
    _at_release(session)
    transition(session, SelectRelease(index=1))
    session.remote_tracks = remote_tracks("r1", ["One", "Two"])
    session.pairs = [
        TrackPair(LocalTrack(Path("/music/Artist/Album/01.mp3")), session.remote_tracks[0]),
        TrackPair(LocalTrack(Path("/music/Artist/Album/02.mp3")), session.remote_tracks[1]),
        TrackPair(LocalTrack(Path("/music/Artist/Album/bonus.mp3")), None),
    ]
    return session


class TestArtistAndReleaseStages(unittest.TestCase):
    def test_start_fetches_artists_from_hint(self) -> None:
        session = _session()
        stage, effects = transition(session, Start())
        self.assertIs(stage, Stage.ARTIST)
        self.assertEqual(effects, [FetchArtists("Artist")])

    def test_start_without_hint_asks_for_search(self) -> None:
        session = _session(artist_query=None)
        _, effects = transition(session, Start())
        self.assertEqual(len(effects), 1)
        self.assertIsInstance(effects[0], Notify)

    def test_search_artist(self) -> None:
        session = _session()
        transition(session, Start())
        _, effects = transition(session, SearchArtist("  Someone Else "))
        self.assertEqual(effects, [FetchArtists("Someone Else")])
        self.assertEqual(session.artist_query, "Someone Else")
        _, effects = transition(session, SearchArtist("   "))
        self.assertEqual(effects[0].level, "warning")

    def test_select_artist_moves_to_release_stage(self) -> None:
        session = _session()
        transition(session, Start())
        session.artist_candidates = [artist("a1", "Artist")]
        stage, effects = transition(session, SelectArtist(index=1))
        self.assertIs(stage, Stage.RELEASE)
        self.assertEqual(session.artist.id, "a1")
        self.assertEqual(effects, [FetchReleases("Album", "a1")])

    def test_out_of_range_selection_keeps_stage(self) -> None:
        session = _session()
        transition(session, Start())
        session.artist_candidates = [artist("a1", "Artist")]
        stage, effects = transition(session, SelectArtist(index=5))
        self.assertIs(stage, Stage.ARTIST)
        self.assertEqual(effects, [Notify("Selection out of range.", "warning")])

    def test_select_by_unknown_id_builds_candidate(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, SelectRelease(release_id=" mbid-123 "))
        self.assertIs(stage, Stage.TRACKS)
        self.assertEqual(session.release.id, "mbid-123")
        self.assertEqual(session.release.entity_type, "release")
        self.assertEqual(effects, [FetchTracks(("mbid-123",)), Align()])

    def test_event_for_other_stage_is_reported_not_raised(self) -> None:
        session = _session()
        transition(session, Start())
        stage, effects = transition(session, SelectRelease(index=1))
        self.assertIs(stage, Stage.ARTIST)
        self.assertEqual(effects, [Notify("SelectRelease is not available at stage A.", "warning")])

    def test_search_release_keeps_artist(self) -> None:
        session = _at_release(_session())
        _, effects = transition(session, SearchRelease("Live"))
        self.assertEqual(effects, [FetchReleases("Live", "a1")])
        self.assertEqual(session.release_candidates, [])

    def test_select_release_enters_tracks(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, SelectRelease(index=2))
        self.assertIs(stage, Stage.TRACKS)
        self.assertEqual(session.release.id, "r2")
        self.assertEqual(effects, [FetchTracks(("r2",)), Align()])


class TestCombineReleases(unittest.TestCase):
    def test_single_index_pulls_in_same_named_siblings(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, CombineReleases((1,)))
        self.assertIs(stage, Stage.TRACKS)
        combined = session.release
        self.assertEqual(combined.id, "combined:r1+r2")
        self.assertEqual(combined.constituents, ("r1", "r2"))
        self.assertEqual(combined.track_count, 22)
        self.assertEqual(combined.year, 1999)
        self.assertIsInstance(effects[0], Notify)
        self.assertEqual(effects[1:], [FetchTracks(("r1", "r2")), Align()])

    def test_explicit_indices(self) -> None:
        session = _at_release(_session())
        transition(session, CombineReleases((3, 1)))
        self.assertEqual(session.release.release_ids, ("r1", "r3"))
        self.assertIsNone(session.release.track_count)

    def test_lone_release_cannot_be_combined(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, CombineReleases((3,)))
        self.assertIs(stage, Stage.RELEASE)
        self.assertEqual(effects[0].level, "warning")
        _, effects = transition(session, CombineReleases((9,)))
        self.assertEqual(effects, [Notify("Selection out of range.", "warning")])


class TestFailuresAndNavigation(unittest.TestCase):
    def test_no_tracks_returns_to_release_selection(self) -> None:
        session = _at_release(_session())
        transition(session, SelectRelease(index=1))
        stage, effects = transition(session, FetchFailed(NoTracks("musicbrainz", "release r1 has no tracks")))
        self.assertIs(stage, Stage.RELEASE)
        self.assertIsNone(session.release)
        self.assertIn("1 sibling release(s)", effects[0].message)
        self.assertEqual(session.last_error, "musicbrainz: release r1 has no tracks")

    def test_unavailable_provider_offers_recovery(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, FetchFailed(ProviderUnavailable("musicbrainz", "timed out")))
        self.assertIs(stage, Stage.RELEASE)
        self.assertEqual(effects[0].level, "error")
        self.assertIn("switch provider", effects[0].message)

        single = _at_release(_session(providers=("musicbrainz",)))
        _, effects = transition(single, FetchFailed(ProviderUnavailable("musicbrainz", "timed out")))
        self.assertNotIn("switch provider", effects[0].message)
        self.assertIn("retry", effects[0].message)

    def test_retry_repeats_last_fetch(self) -> None:
        session = _session()
        transition(session, Start())
        self.assertEqual(transition(session, Retry())[1], [Notify("Nothing to retry.")])
        session.last_fetch = FetchArtists("Artist")
        session.last_error = "musicbrainz: timed out"
        _, effects = transition(session, Retry())
        self.assertEqual(effects, [FetchArtists("Artist")])
        self.assertIsNone(session.last_error)

    def test_retry_of_tracks_refreshes(self) -> None:
        session = _at_release(_session())
        transition(session, SelectRelease(index=1))
        session.last_fetch = FetchTracks(("r1",))
        _, effects = transition(session, Retry())
        self.assertEqual(effects, [FetchTracks(("r1",), refresh=True), Align()])

    def test_back_walks_stages(self) -> None:
        session = _at_tracks(_session())
        self.assertEqual(transition(session, Back()), (Stage.RELEASE, []))
        self.assertIsNone(session.release)
        self.assertEqual(session.pairs, [])
        self.assertEqual(transition(session, Back()), (Stage.ARTIST, []))
        self.assertIsNone(session.artist)
        stage, effects = transition(session, Back())
        self.assertIs(stage, Stage.ARTIST)
        self.assertEqual(effects, [Notify("Already at artist selection.")])

    def test_back_refetches_missing_releases(self) -> None:
        session = _at_tracks(_session())
        session.release_candidates = []
        _, effects = transition(session, Back())
        self.assertEqual(effects, [FetchReleases("Album", "a1")])

    def test_switch_provider_resets_to_artist_stage(self) -> None:
        session = _at_tracks(_session())
        session.store_tracks("r1", session.remote_tracks)
        stage, effects = transition(session, SwitchProvider("Discogs"))
        self.assertIs(stage, Stage.ARTIST)
        self.assertEqual(session.provider_name, "discogs")
        self.assertEqual(session.artist_candidates, [])
        self.assertEqual(session.release_candidates, [])
        self.assertIsNone(session.cached_tracks("r1"))
        self.assertEqual(effects[-1], FetchArtists("Artist"))

    def test_unknown_provider_is_rejected(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, SwitchProvider("spotify"))
        self.assertIs(stage, Stage.RELEASE)
        self.assertEqual(session.provider_name, "musicbrainz")
        self.assertEqual(effects[0].level, "warning")

    def test_skip_finishes_and_later_events_are_ignored(self) -> None:
        session = _at_release(_session())
        stage, effects = transition(session, Skip())
        self.assertIs(stage, Stage.DONE)
        self.assertEqual(effects, [Finish("skipped by operator")])
        self.assertEqual(transition(session, SelectRelease(index=1)), (Stage.DONE, [Notify("Album already finished.", "warning")]))


class TestUnattended(unittest.TestCase):
    def test_release_choice_finishes_without_fetching(self) -> None:
        session = _at_release(_session(unattended=True))
        stage, effects = transition(session, SelectRelease(index=1))
        self.assertIs(stage, Stage.DONE)
        self.assertEqual(session.finish_reason, "unattended")
        self.assertEqual(effects[-1], Finish("unattended"))
        self.assertFalse(any(isinstance(e, (FetchTracks, Align, CommitPairs)) for e in effects))
        self.assertEqual(len(session.warnings), 1)


class TestTracksStage(unittest.TestCase):
    def test_change_strategy_realigns(self) -> None:
        session = _at_tracks(_session())
        _, effects = transition(session, ChangeStrategy("duration"))
        self.assertIs(session.strategy, AlignmentStrategy.DURATION)
        self.assertEqual(effects, [Align()])
        _, effects = transition(session, ChangeStrategy("fingerprint"))
        self.assertEqual(effects[0].level, "warning")
        self.assertIs(session.strategy, AlignmentStrategy.DURATION)

    def test_strategy_outside_tracks_stage_is_remembered(self) -> None:
        session = _session()
        transition(session, Start())
        _, effects = transition(session, ChangeStrategy("hybrid"))
        self.assertIs(session.strategy, AlignmentStrategy.HYBRID)
        self.assertIsInstance(effects[0], Notify)

    def test_reverse_warns_for_non_reversible_strategy(self) -> None:
        session = _at_tracks(_session(strategy=AlignmentStrategy.TRACK_NUMBER))
        _, effects = transition(session, ToggleReverse())
        self.assertTrue(session.reverse)
        self.assertIsInstance(effects[0], Notify)
        self.assertEqual(effects[-1], Align())
        session.strategy = AlignmentStrategy.ORDER
        self.assertEqual(transition(session, ToggleReverse())[1], [Align()])

    def test_swap_switches_to_manual(self) -> None:
        session = _at_tracks(_session())
        transition(session, SwapLocals(1, 2))
        self.assertIs(session.strategy, AlignmentStrategy.MANUAL)
        self.assertEqual(session.pairs[0].local.name, "02.mp3")
        _, effects = transition(session, SwapLocals(1, 9))
        self.assertEqual(effects[0].level, "warning")

    def test_edit_tag_is_keyed_by_remote_track(self) -> None:
        session = _at_tracks(_session())
        transition(session, EditTag(1, "title", " New Title "))
        self.assertEqual(session.tag_edits["remote:r1-t1"], {"title": "New Title"})
        transition(session, EditTag(3, "genres", "Rock; Pop"))
        self.assertEqual(session.tag_edits["local:bonus.mp3"], {"genres": ("Rock", "Pop")})

        _, effects = transition(session, EditTag(1, "year", "soon"))
        self.assertEqual(effects[0].level, "warning")
        self.assertNotIn("year", session.tag_edits["remote:r1-t1"])

        transition(session, EditTag(1, "title", None))
        self.assertEqual(session.tag_edits["remote:r1-t1"], {})

    def test_commit_selects_complete_pairs(self) -> None:
        session = _at_tracks(_session())
        self.assertEqual(transition(session, Commit())[1], [CommitPairs((1, 2))])
        self.assertEqual(transition(session, Commit((2, 2, 1)))[1], [CommitPairs((1, 2))])
        self.assertEqual(transition(session, Commit((4,)))[1], [Notify("Selection out of range.", "warning")])
        session.pairs = []
        self.assertEqual(transition(session, Commit())[1], [Notify("Nothing to commit.", "warning")])

    def test_relocate_rescans_without_realigning(self) -> None:
        session = _at_tracks(_session())
        self.assertEqual(transition(session, Relocate())[1], [RelocateAlbum(), Rescan()])

    def test_refresh_invalidates_only_current_release(self) -> None:
        session = _at_tracks(_session())
        session.store_tracks("r1", session.remote_tracks)
        session.store_tracks("r2", remote_tracks("r2", ["x"]))
        _, effects = transition(session, RefreshTracks())
        self.assertIsNone(session.cached_tracks("r1"))
        self.assertIsNotNone(session.cached_tracks("r2"))
        self.assertEqual(effects, [FetchTracks(("r1",), refresh=True), Align()])


class TestSessionTrackCache(unittest.TestCase):
    def test_changing_release_drops_stale_tracks(self) -> None:
        session = _session()
        first = release("r1", "One")
        second = release("r2", "Two")
        session.select_release(first)
        session.store_tracks("r1", remote_tracks("r1", ["a"]))
        session.store_tracks("r2", remote_tracks("r2", ["b"]))
        session.select_release(second)
        self.assertIsNone(session.cached_tracks("r1"))
        self.assertEqual(len(session.cached_tracks("r2")), 1)

    def test_revision_changes_on_every_control_update(self) -> None:
        session = _session()
        before = session.revision
        transition(session, Start())
        self.assertGreater(session.revision, before)


if __name__ == "__main__":
    unittest.main()
