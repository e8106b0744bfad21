import io
import json
import unittest
import urllib.error
import urllib.parse
from unittest.mock import patch

from audio_reconcile.config import ProviderSettings
from audio_reconcile.errors import NoTracks, ProviderUnavailable
from audio_reconcile.providers import ENTITY_ARTIST, ENTITY_RELEASE
from audio_reconcile.providers.discogs import DiscogsProvider


class _FakeDiscogs:
    def __init__(self, routes: dict) -> None:
        self.routes = routes
        self.requests: list = []

    def __call__(self, req, timeout=None):
        parsed = urllib.parse.urlparse(req.full_url)
        self.requests.append((parsed.path, urllib.parse.parse_qs(parsed.query), req.get_header("User-agent")))
        payload = self.routes.get(parsed.path)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", None, None)
        return io.BytesIO(json.dumps(payload).encode("utf-8"))


class TestDiscogsProvider(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = DiscogsProvider(ProviderSettings(discogs_token="tok", discogs_useragent="tests/1.0"))

    def test_token_is_required(self) -> None:
        with self.assertRaises(ValueError):
            DiscogsProvider(ProviderSettings())

    def test_artist_search_sends_token_and_agent(self) -> None:
        fake = _FakeDiscogs({"/database/search": {"results": [{"id": 42, "title": "Nina Simone"}, {"title": "x"}]}})
        with patch("urllib.request.urlopen", fake):
            candidates = self.provider.search("nina", ENTITY_ARTIST, limit=5)

        self.assertEqual([(c.id, c.name, c.provider) for c in candidates], [("42", "Nina Simone", "discogs")])
        path, params, agent = fake.requests[0]
        self.assertEqual(params["token"], ["tok"])
        self.assertEqual(params["type"], ["artist"])
        self.assertEqual(params["per_page"], ["5"])
        self.assertEqual(agent, "tests/1.0")

    def test_artist_releases_prefer_main_release_and_filter(self) -> None:
        fake = _FakeDiscogs(
            {
                "/artists/42/releases": {
                    "releases": [
                        {"type": "master", "id": 1, "main_release": 100, "title": "Pastel Blues", "year": 1965},
                        {"type": "release", "id": 200, "title": "Live at Town Hall", "year": 1959},
                        {"type": "master", "id": 3, "title": "No Main"},
                    ]
                }
            }
        )
        with patch("urllib.request.urlopen", fake):
            everything = self.provider.search(None, ENTITY_RELEASE, artist_id="42")
            filtered = self.provider.search("pastel", ENTITY_RELEASE, artist_id="42")
            unmatched = self.provider.search("zzz", ENTITY_RELEASE, artist_id="42")

        self.assertEqual([c.id for c in everything], ["100", "200"])
        self.assertEqual(everything[0].year, 1965)
        self.assertEqual([c.id for c in filtered], ["100"])
        self.assertEqual(len(unmatched), 2)

    def test_release_search_splits_artist_from_title(self) -> None:
        fake = _FakeDiscogs(
            {"/database/search": {"results": [{"id": 7, "title": "Nina Simone - Pastel Blues", "year": "1965", "format": ["Vinyl", "LP"]}]}}
        )
        with patch("urllib.request.urlopen", fake):
            (candidate,) = self.provider.search("pastel blues", ENTITY_RELEASE)
        self.assertEqual((candidate.artist, candidate.name, candidate.year), ("Nina Simone", "Pastel Blues", 1965))
        self.assertEqual(candidate.disambiguation, "Vinyl, LP")

    def test_tracklist_skips_headings(self) -> None:
        fake = _FakeDiscogs(
            {
                "/releases/7": {
                    "tracklist": [
                        {"type_": "heading", "title": "Side One"},
                        {"type_": "track", "position": "1-1", "title": "Be My Husband", "duration": "2:20"},
                        {"type_": "track", "position": "1-2", "title": "Nobody", "duration": ""},
                        {"type_": "track", "position": "B1", "title": "Sinnerman", "duration": "10:19"},
                    ]
                }
            }
        )
        with patch("urllib.request.urlopen", fake):
            tracks = self.provider.get_tracks("7")

        self.assertEqual([t.title for t in tracks], ["Be My Husband", "Nobody", "Sinnerman"])
        self.assertEqual([t.ordinal for t in tracks], [1, 2, 3])
        self.assertEqual([t.duration_ms for t in tracks], [140000, None, 619000])
        self.assertEqual([(t.disc_number, t.track_number) for t in tracks], [(1, 1), (1, 2), (None, None)])
        self.assertEqual(tracks[0].id, "7:1-1")

    def test_missing_release_is_no_tracks(self) -> None:
        with patch("urllib.request.urlopen", _FakeDiscogs({})):
            with self.assertRaises(NoTracks):
                self.provider.get_tracks("404")

    def test_server_and_network_errors_are_unavailable(self) -> None:
        for error in (
            urllib.error.HTTPError("https://api.discogs.com", 503, "Unavailable", None, None),
            urllib.error.URLError("dns"),
        ):
            with self.subTest(error=error):
                with patch("urllib.request.urlopen", _FakeDiscogs({"/releases/1": error})):
                    with self.assertRaises(ProviderUnavailable):
                        self.provider.get_tracks("1")

    def test_parse_position(self) -> None:
        self.assertEqual(DiscogsProvider.parse_position("2-05"), (2, 5))
        self.assertEqual(DiscogsProvider.parse_position("7"), (None, 7))
        self.assertEqual(DiscogsProvider.parse_position("CD2-3"), (2, 3))
        self.assertEqual(DiscogsProvider.parse_position("A1"), (None, None))
        self.assertEqual(DiscogsProvider.parse_position(None), (None, None))


if __name__ == "__main__":
    unittest.main()
