import unittest
from types import SimpleNamespace
from unittest.mock import patch

from audio_reconcile.config import ProviderSettings
from audio_reconcile.errors import NoTracks, ProviderUnavailable
from audio_reconcile.providers import ENTITY_ARTIST, ENTITY_RELEASE
from audio_reconcile.providers.musicbrainz import MusicBrainzProvider


def _settings(**kwargs) -> ProviderSettings:
    values = dict(musicbrainz_useragent="test", network_retries=1, network_retry_backoff_seconds=0.0)
    values.update(kwargs)
    return ProviderSettings(**values)


def _stub(calls: dict, **methods):
    class _MBStub:
        class NetworkError(Exception):
            pass

        class ResponseError(Exception):
            def __init__(self, message: str = "", cause=None) -> None:
                super().__init__(message)
                self.cause = cause

        @staticmethod
        def set_useragent(*_args, **_kwargs) -> None:
            return None

    for name, fn in methods.items():
        def wrapper(*args, _fn=fn, _name=name, **kwargs):
            calls.setdefault(_name, []).append(kwargs or args)
            return _fn(_MBStub, *args, **kwargs)

        setattr(_MBStub, name, staticmethod(wrapper))
    return _MBStub


class TestMusicBrainzProvider(unittest.TestCase):
    def test_artist_search_builds_candidates(self) -> None:
        calls: dict = {}
        stub = _stub(
            calls,
            search_artists=lambda mb, **kw: {
                "artist-list": [
                    {"id": "a1", "name": "Nina Simone", "country": "US"},
                    {"name": "no id"},
                ]
            },
        )
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            provider = MusicBrainzProvider(_settings())
            candidates = provider.search("Nina", ENTITY_ARTIST, limit=3)

        self.assertEqual(len(candidates), 1)
        self.assertEqual((candidates[0].id, candidates[0].name), ("a1", "Nina Simone"))
        self.assertEqual(candidates[0].disambiguation, "US")
        self.assertEqual(calls["search_artists"], [{"artist": "Nina", "limit": 3}])

    def test_release_search_filters_by_artist(self) -> None:
        calls: dict = {}
        stub = _stub(
            calls,
            search_releases=lambda mb, **kw: {
                "release-list": [
                    {
                        "id": "r1",
                        "title": "Pastel Blues",
                        "date": "1965-10",
                        "artist-credit-phrase": "Nina Simone",
                        "medium-list": [{"format": "Vinyl", "track-count": 9}],
                        "country": "US",
                    }
                ]
            },
        )
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            candidates = MusicBrainzProvider(_settings()).search("Pastel", ENTITY_RELEASE, artist_id="a1")

        self.assertEqual(calls["search_releases"], [{"limit": 10, "release": "Pastel", "arid": "a1"}])
        release = candidates[0]
        self.assertEqual((release.name, release.year, release.track_count), ("Pastel Blues", 1965, 9))
        self.assertEqual(release.artist, "Nina Simone")
        self.assertEqual(release.disambiguation, "Vinyl | US")

    def test_release_browse_without_query(self) -> None:
        calls: dict = {}
        stub = _stub(calls, browse_releases=lambda mb, **kw: {"release-list": [{"id": "r9", "title": "X"}]})
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            provider = MusicBrainzProvider(_settings())
            candidates = provider.search(None, ENTITY_RELEASE, artist_id="a1")
            self.assertEqual(provider.search(None, ENTITY_RELEASE), [])
        self.assertEqual([c.id for c in candidates], ["r9"])
        self.assertEqual(calls["browse_releases"][0]["artist"], "a1")

    def test_tracks_span_media(self) -> None:
        payload = {
            "release": {
                "id": "r1",
                "medium-list": [
                    {
                        "position": "1",
                        "track-list": [
                            {"id": "t1", "position": "1", "length": "200000", "recording": {"title": "Intro"}},
                            {"id": "t2", "position": "2", "title": "Song", "recording": {"length": "180500"}},
                        ],
                    },
                    {
                        "position": "2",
                        "track-list": [{"id": "t3", "number": "1", "title": "Encore", "recording": {}}],
                    },
                ],
            }
        }
        stub = _stub({}, get_release_by_id=lambda mb, *a, **kw: payload)
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            tracks = MusicBrainzProvider(_settings()).get_tracks("r1")

        self.assertEqual([t.ordinal for t in tracks], [1, 2, 3])
        self.assertEqual([t.title for t in tracks], ["Intro", "Song", "Encore"])
        self.assertEqual([(t.disc_number, t.track_number) for t in tracks], [(1, 1), (1, 2), (2, 1)])
        self.assertEqual([t.duration_ms for t in tracks], [200000, 180500, None])
        self.assertTrue(all(t.release_id == "r1" for t in tracks))

    def test_network_errors_are_retried_then_reported(self) -> None:
        calls: dict = {}

        def failing(mb, **kw):
            raise mb.NetworkError("dns")

        stub = _stub(calls, search_artists=failing)
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(ProviderUnavailable):
                MusicBrainzProvider(_settings()).search("Nina", ENTITY_ARTIST)
        self.assertEqual(len(calls["search_artists"]), 2)

    def test_transient_failure_recovers(self) -> None:
        calls: dict = {}

        def flaky(mb, **kw):
            if len(calls["search_artists"]) == 1:
                raise mb.NetworkError("reset")
            return {"artist-list": [{"id": "a1", "name": "A"}]}

        stub = _stub(calls, search_artists=flaky)
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            candidates = MusicBrainzProvider(_settings()).search("A", ENTITY_ARTIST)
        self.assertEqual([c.id for c in candidates], ["a1"])

    def test_missing_release_maps_to_no_tracks(self) -> None:
        def missing(mb, *a, **kw):
            raise mb.ResponseError("not found", cause=SimpleNamespace(code=404))

        stub = _stub({}, get_release_by_id=missing)
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(NoTracks):
                MusicBrainzProvider(_settings()).get_tracks("nope")

    def test_other_response_errors_are_unavailable(self) -> None:
        def broken(mb, *a, **kw):
            raise mb.ResponseError("server error", cause=SimpleNamespace(code=503))

        stub = _stub({}, get_release_by_id=broken)
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", stub):
            with self.assertRaises(ProviderUnavailable):
                MusicBrainzProvider(_settings()).get_tracks("r1")

    def test_unknown_entity_type(self) -> None:
        with patch("audio_reconcile.providers.musicbrainz.musicbrainzngs", _stub({})):
            with self.assertRaises(ValueError):
                MusicBrainzProvider(_settings()).search("x", "label")


if __name__ == "__main__":
    unittest.main()
