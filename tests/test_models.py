import unittest

from audio_reconcile.models import Candidate, TagSnapshot, parse_int, parse_year


class TestParsing(unittest.TestCase):
    def test_parse_year_accepts_mutagen_id3_timestamp(self) -> None:
        from mutagen.id3 import ID3TimeStamp

        self.assertEqual(parse_year(ID3TimeStamp("1998")), 1998)

    def test_parse_year(self) -> None:
        self.assertEqual(parse_year("2004-05-01"), 2004)
        self.assertEqual(parse_year(1971), 1971)
        self.assertIsNone(parse_year(71))
        self.assertIsNone(parse_year("unknown"))
        self.assertIsNone(parse_year(None))

    def test_parse_int(self) -> None:
        self.assertEqual(parse_int(" 3/12 "), 3)
        self.assertEqual(parse_int(7), 7)
        self.assertIsNone(parse_int(True))
        self.assertIsNone(parse_int("A1"))


class TestTagSnapshot(unittest.TestCase):
    def test_lists_are_normalised_to_tuples(self) -> None:
        snapshot = TagSnapshot(performers=["Nina Simone"])
        self.assertEqual(snapshot.performers, ("Nina Simone",))

    def test_invalid_values_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TagSnapshot(genres="Jazz")
        with self.assertRaises(ValueError):
            TagSnapshot(track_number=0)
        with self.assertRaises(ValueError):
            TagSnapshot(title=5)

    def test_parse_field(self) -> None:
        self.assertEqual(TagSnapshot.parse_field("genres", "Jazz; ; Soul"), ("Jazz", "Soul"))
        self.assertEqual(TagSnapshot.parse_field("year", "1965"), 1965)
        self.assertEqual(TagSnapshot.parse_field("title", "  Sinnerman "), "Sinnerman")
        for name, raw in (("year", "soon"), ("title", "  "), ("mood", "x")):
            with self.subTest(name=name), self.assertRaises(ValueError):
                TagSnapshot.parse_field(name, raw)

    def test_merged_keeps_other_fields(self) -> None:
        snapshot = TagSnapshot(title="A", album="B").merged(title="C")
        self.assertEqual((snapshot.title, snapshot.album), ("C", "B"))


class TestCandidate(unittest.TestCase):
    def test_release_ids(self) -> None:
        single = Candidate("r1", "Album", "musicbrainz", entity_type="release")
        combined = Candidate("combined:r1+r2", "Album", "musicbrainz", "release", constituents=("r1", "r2"))
        self.assertEqual(single.release_ids, ("r1",))
        self.assertFalse(single.is_combined)
        self.assertEqual(combined.release_ids, ("r1", "r2"))
        self.assertTrue(combined.is_combined)


if __name__ == "__main__":
    unittest.main()
