"""
Tests for the sound index builder.
"""

import unittest

from fakes import FakePlatform

from utils.errors import ChannelNotFound, UpstreamTransient
from utils.indexer import SoundIndexBuilder, index_message
from utils.models import AttachmentRecord, MessageRecord
from utils.store import GuildStateStore

GUILD = 1


class TestIndexMessage(unittest.TestCase):
    def test_plain_clip(self):
        message = MessageRecord(1, 9, "", False, [AttachmentRecord("horn.mp3", "u")])
        entry = index_message(message)
        self.assertEqual(entry.name, "horn")
        self.assertEqual(entry.sound.message_id, 1)
        self.assertEqual(entry.sound.volume, 0)
        self.assertEqual(entry.entrance_users, [])

    def test_tags_applied(self):
        message = MessageRecord(1, 9, "e:42;v:180;e:7;", True, [AttachmentRecord("horn.mp3", "u")])
        entry = index_message(message)
        self.assertEqual(entry.sound.volume, 180)
        self.assertEqual(entry.entrance_users, ["42", "7"])

    def test_not_a_clip(self):
        self.assertIsNone(index_message(MessageRecord(1, 9, "hello")))
        self.assertIsNone(
            index_message(MessageRecord(1, 9, "", False, [AttachmentRecord("pic.png", "u")]))
        )

    def test_several_clips_ignored(self):
        message = MessageRecord(
            1, 9, "", False,
            [AttachmentRecord("a.mp3", "u1"), AttachmentRecord("b.mp3", "u2")],
        )
        self.assertIsNone(index_message(message))

    def test_bad_volume_is_skipped(self):
        message = MessageRecord(1, 9, "v:loud;e:5;", True, [AttachmentRecord("horn.mp3", "u")])
        with self.assertLogs("utils.indexer", level="WARNING"):
            entry = index_message(message)
        self.assertEqual(entry.sound.volume, 0)
        self.assertEqual(entry.entrance_users, ["5"])


class TestSoundIndexBuilder(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.platform = FakePlatform()
        self.sounds = self.platform.add_channel(GUILD, "sounds")
        self.builder = SoundIndexBuilder(self.platform, retry_base_delay=0)

    async def test_two_page_scan(self):
        for i in range(150):
            if i % 5 == 4:
                self.platform.post(self.sounds.id, content="chatter")
            else:
                self.platform.post(self.sounds.id, f"clip{i:03d}.mp3")

        result = await self.builder.build(self.sounds.id)

        self.assertEqual(result.pages, 2)
        self.assertEqual(result.messages_scanned, 150)
        self.assertEqual(len(result.catalog), 120)
        self.assertEqual(len(self.platform.page_calls), 2)
        self.assertIsNone(self.platform.page_calls[0])

    async def test_newest_message_wins(self):
        old = self.platform.post(self.sounds.id, "horn.mp3")
        new = self.platform.post(self.sounds.id, "horn.mp3")
        result = await self.builder.build(self.sounds.id)
        self.assertEqual(len(result.catalog), 1)
        self.assertEqual(result.catalog["horn"].message_id, new.id)
        self.assertNotEqual(result.catalog["horn"].message_id, old.id)

    async def test_duplicate_entrance_keeps_newest(self):
        self.platform.post(self.sounds.id, "old.mp3", content="e:42;", author_is_bot=True)
        newer = self.platform.post(self.sounds.id, "new.mp3", content="e:42;", author_is_bot=True)
        with self.assertLogs("utils.indexer", level="WARNING") as logs:
            result = await self.builder.build(self.sounds.id)
        self.assertEqual(result.entrances["42"].message_id, newer.id)
        self.assertIs(result.entrances["42"], result.catalog["new"])
        self.assertTrue(any("42" in line for line in logs.output))

    async def test_empty_channel(self):
        result = await self.builder.build(self.sounds.id)
        self.assertEqual(result.pages, 0)
        self.assertEqual(result.catalog, {})

    async def test_exact_page_boundary(self):
        builder = SoundIndexBuilder(self.platform, page_size=10, retry_base_delay=0)
        for i in range(20):
            self.platform.post(self.sounds.id, f"s{i}.mp3")
        result = await builder.build(self.sounds.id)
        self.assertEqual(len(result.catalog), 20)
        # Two full pages, then an empty one to confirm the end
        self.assertEqual(len(self.platform.page_calls), 3)

    async def test_transient_failure_is_retried(self):
        self.platform.post(self.sounds.id, "horn.mp3")
        self.platform.transient_failures = [UpstreamTransient("429", status_code=429)]
        result = await self.builder.build(self.sounds.id)
        self.assertIn("horn", result.catalog)
        self.assertEqual(len(self.platform.page_calls), 2)

    async def test_retries_are_bounded(self):
        self.platform.transient_failures = [UpstreamTransient("503") for _ in range(5)]
        with self.assertRaises(UpstreamTransient):
            await self.builder.build(self.sounds.id)
        self.assertEqual(len(self.platform.page_calls), self.builder.max_retries)

    async def test_rebuild_swaps_into_store(self):
        store = GuildStateStore()
        store.ensure(GUILD, self.sounds.id)
        self.platform.post(self.sounds.id, "horn.mp3", content="e:7;", author_is_bot=True)
        await self.builder.rebuild(store, GUILD)
        self.assertEqual(await store.sound_names(GUILD), ["horn"])
        self.assertIsNotNone(await store.entrance_for(GUILD, "7"))
        self.assertEqual(store.get(GUILD).rebuilds, 1)

    async def test_rebuild_without_sounds_channel(self):
        store = GuildStateStore()
        store.ensure(GUILD)
        with self.assertRaises(ChannelNotFound):
            await self.builder.rebuild(store, GUILD)


if __name__ == "__main__":
    unittest.main()
