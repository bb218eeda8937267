"""
Tests for the inline tag codec.
"""

import unittest

from utils import tags
from utils.errors import MalformedTag
from utils.tags import Tag


class TestEncodeDecode(unittest.TestCase):
    def test_round_trip_keeps_order(self):
        original = [Tag("e", "102938475"), Tag("v", "180"), Tag("e", "555")]
        self.assertEqual(tags.decode(tags.encode(original)), original)

    def test_encode_format(self):
        self.assertEqual(tags.encode([Tag("e", "1"), Tag("v", "256")]), "e:1;v:256;")

    def test_decode_empty(self):
        self.assertEqual(tags.decode(""), [])
        self.assertEqual(tags.decode(None), [])

    def test_decode_skips_empty_segments(self):
        self.assertEqual(tags.decode(";;e:1;;"), [Tag("e", "1")])

    def test_decode_splits_on_first_colon(self):
        self.assertEqual(tags.decode("x:a:b;"), [Tag("x", "a:b")])

    def test_decode_keeps_unknown_types(self):
        self.assertEqual(tags.decode("z:9;e:1;"), [Tag("z", "9"), Tag("e", "1")])

    def test_strict_decode_rejects_missing_separator(self):
        with self.assertRaises(MalformedTag):
            tags.decode("e:1;garbage;")

    def test_lenient_decode_skips_bad_segment(self):
        with self.assertLogs("utils.tags", level="WARNING"):
            result = tags.decode("e:1;garbage;v:10;", strict=False)
        self.assertEqual(result, [Tag("e", "1"), Tag("v", "10")])

    def test_encode_rejects_separator_in_value(self):
        with self.assertRaises(MalformedTag):
            tags.encode([Tag("e", "1;2")])
        with self.assertRaises(MalformedTag):
            tags.encode([Tag("", "1")])


class TestMutation(unittest.TestCase):
    def test_upsert_replaces_single_type(self):
        text = tags.encode([Tag("e", "1"), Tag("v", "100"), Tag("e", "2")])
        updated = tags.upsert_tag(tags.decode(text), "v", "300")
        decoded = tags.decode(tags.encode(updated))
        self.assertEqual(tags.values_of(decoded, "v"), ["300"])
        self.assertEqual([t for t in decoded if t.type != "v"], [Tag("e", "1"), Tag("e", "2")])

    def test_upsert_adds_when_missing(self):
        self.assertEqual(tags.upsert_tag([Tag("e", "1")], "v", "50"), [Tag("e", "1"), Tag("v", "50")])

    def test_remove_single_value(self):
        current = [Tag("e", "1"), Tag("e", "2"), Tag("v", "9")]
        self.assertEqual(tags.remove_tags(current, "e", "1"), [Tag("e", "2"), Tag("v", "9")])

    def test_remove_whole_type(self):
        current = [Tag("e", "1"), Tag("e", "2"), Tag("v", "9")]
        self.assertEqual(tags.remove_tags(current, "e"), [Tag("v", "9")])

    def test_parse_volume(self):
        self.assertEqual(tags.parse_volume("180"), 180)
        with self.assertRaises(MalformedTag):
            tags.parse_volume("loud")


if __name__ == "__main__":
    unittest.main()
