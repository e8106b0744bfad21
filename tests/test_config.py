import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from audio_reconcile.config import Settings, find_config


class TestSettings(unittest.TestCase):
    def test_load_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp).resolve()
            config = root / "config.yaml"
            config.write_text(
                "\n".join(
                    [
                        "library:",
                        f"  roots: ['{root / 'music'}']",
                        "  include_extensions: [MP3, '.flac']",
                        "providers:",
                        "  default: Discogs",
                        "  discogs_token: abc",
                        "organizer:",
                        f"  target_root: '{root / 'sorted'}'",
                        "  lock_retries: 2",
                        "reconcile:",
                        "  default_strategy: track-number",
                        "  reverse: true",
                    ]
                ),
                encoding="utf-8",
            )
            settings = Settings.load(config)

        self.assertEqual(settings.library.roots, [root / "music"])
        self.assertEqual(settings.library.include_extensions, [".mp3", ".flac"])
        self.assertEqual(settings.providers.default, "discogs")
        self.assertEqual(settings.organizer.lock_retries, 2)
        self.assertEqual(settings.reconcile.default_strategy, "tracknumber")
        self.assertTrue(settings.reconcile.reverse)
        self.assertEqual(settings.target_root(), root / "sorted")

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = Path(tmp) / "config.yaml"
            config.write_text("", encoding="utf-8")
            settings = Settings.load(config)
        self.assertEqual(settings.providers.default, "musicbrainz")
        self.assertEqual(settings.reconcile.default_strategy, "order")
        self.assertEqual(settings.target_root(), Path.cwd())

    def test_target_root_falls_back_to_first_library_root(self) -> None:
        settings = Settings.model_validate({"library": {"roots": ["/music/a", "/music/b"]}})
        self.assertEqual(settings.target_root(), Path("/music/a").resolve())

    def test_invalid_values_are_rejected(self) -> None:
        for raw in (
            {"providers": {"default": "spotify"}},
            {"reconcile": {"default_strategy": "fingerprint"}},
            {"organizer": {"lock_retries": -1}},
        ):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError):
                    Settings.model_validate(raw)

    def test_find_config_prefers_explicit_path(self) -> None:
        explicit = Path("/etc/audio-reconcile.yaml")
        self.assertEqual(find_config(explicit), explicit)


if __name__ == "__main__":
    unittest.main()
