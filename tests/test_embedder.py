"""
Tests for the sound list layout.
"""

import unittest

from utils.embedder import LIST_COLUMNS, Embedder


class TestSoundListPages(unittest.TestCase):
    def test_single_page_columns(self):
        names = [f"s{i}" for i in range(8)]
        pages = Embedder.sound_list_pages(names, max_len=4096)
        self.assertEqual(len(pages), 1)
        body = pages[0].strip("`").strip("\n")
        rows = body.split("\n")
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0].split(), names[:LIST_COLUMNS])
        self.assertEqual(rows[1].split(), names[LIST_COLUMNS:])

    def test_pages_respect_limit(self):
        names = [f"sound{i:03d}" for i in range(300)]
        pages = Embedder.sound_list_pages(names, max_len=500)
        self.assertGreater(len(pages), 1)
        for page in pages:
            self.assertLessEqual(len(page), 500)
            self.assertTrue(page.startswith("```\n"))
            self.assertTrue(page.endswith("\n```"))
        listed = [n for page in pages for n in page.strip("`").split()]
        self.assertEqual(listed, names)

    def test_empty(self):
        self.assertEqual(Embedder.sound_list_pages([]), [])
        embeds = Embedder.sound_list([])
        self.assertEqual(len(embeds), 1)
        self.assertTrue(embeds[0].title.endswith("No Sounds Yet"))


if __name__ == "__main__":
    unittest.main()
