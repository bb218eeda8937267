"""
Tests for the per-guild state store.
"""

import asyncio
import unittest

from utils.errors import GuildNotReady, SoundExists, SoundNotFound
from utils.models import Sound, VoiceChannelMembership
from utils.store import GuildStateStore

GUILD = 1


class TestGuildStateStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = GuildStateStore()
        self.store.ensure(GUILD, sounds_channel_id=10, commands_channel_id=11)

    async def test_unknown_guild(self):
        with self.assertRaises(GuildNotReady):
            await self.store.find_sound(99, "horn")
        self.assertFalse(self.store.has(99))

    async def test_ensure_keeps_existing_state(self):
        horn = Sound(1, "u1")
        await self.store.put_sound(GUILD, "horn", horn)
        state = self.store.ensure(GUILD, sounds_channel_id=20)
        self.assertEqual(state.sounds_channel_id, 20)
        self.assertEqual(state.commands_channel_id, 11)
        self.assertIs(await self.store.find_sound(GUILD, "horn"), horn)

    async def test_find_and_names(self):
        await self.store.put_sound(GUILD, "siren", Sound(2, "u2"))
        await self.store.put_sound(GUILD, "air", Sound(1, "u1"))
        self.assertEqual(await self.store.sound_names(GUILD), ["air", "siren"])
        self.assertEqual(self.store.sound_count(GUILD), 2)
        with self.assertRaises(SoundNotFound):
            await self.store.find_sound(GUILD, "nope")

    async def test_remove_sound_drops_entrances(self):
        horn = Sound(1, "u1")
        await self.store.put_sound(GUILD, "horn", horn)
        await self.store.set_entrance(GUILD, "42", horn)
        await self.store.remove_sound(GUILD, "horn")
        self.assertIsNone(await self.store.entrance_for(GUILD, "42"))

    async def test_replace_sound_repoints_entrances(self):
        old, new = Sound(1, "u1", 100), Sound(2, "u2", 100)
        await self.store.put_sound(GUILD, "horn", old)
        await self.store.set_entrance(GUILD, "42", old)
        await self.store.replace_sound(GUILD, "horn", new)
        self.assertIs(await self.store.entrance_for(GUILD, "42"), new)
        self.assertEqual(await self.store.entrance_users_for(GUILD, new), ["42"])

    async def test_rename_sound(self):
        old, new = Sound(1, "u1"), Sound(2, "u2")
        await self.store.put_sound(GUILD, "horn", old)
        await self.store.set_entrance(GUILD, "42", old)
        await self.store.rename_sound(GUILD, "horn", "honk", new)
        self.assertEqual(await self.store.sound_names(GUILD), ["honk"])
        self.assertIs(await self.store.entrance_for(GUILD, "42"), new)

    async def test_rename_to_taken_name(self):
        await self.store.put_sound(GUILD, "horn", Sound(1, "u1"))
        await self.store.put_sound(GUILD, "air", Sound(2, "u2"))
        with self.assertRaises(SoundExists):
            await self.store.rename_sound(GUILD, "horn", "air", Sound(3, "u3"))
        self.assertEqual(await self.store.sound_names(GUILD), ["air", "horn"])

    async def test_replace_index_is_wholesale(self):
        await self.store.put_sound(GUILD, "stale", Sound(1, "u1"))
        fresh = Sound(5, "u5")
        await self.store.replace_index(GUILD, {"fresh": fresh}, {"7": fresh})
        self.assertEqual(await self.store.sound_names(GUILD), ["fresh"])
        self.assertIs(await self.store.entrance_for(GUILD, "7"), fresh)

    async def test_move_member(self):
        await self.store.set_membership(
            GUILD,
            [VoiceChannelMembership(100, GUILD, "General", {5}), VoiceChannelMembership(200, GUILD, "Games")],
        )
        previous = await self.store.move_member(GUILD, 5, 200)
        self.assertEqual(previous, 100)
        channels = {c.channel_id: c.members for c in await self.store.membership(GUILD)}
        self.assertEqual(channels, {100: set(), 200: {5}})

        previous = await self.store.move_member(GUILD, 5, None)
        self.assertEqual(previous, 200)
        channels = {c.channel_id: c.members for c in await self.store.membership(GUILD)}
        self.assertEqual(channels[200], set())

    async def test_membership_returns_copies(self):
        await self.store.set_membership(GUILD, [VoiceChannelMembership(100, GUILD, "General", {5})])
        snapshot = await self.store.membership(GUILD)
        snapshot[0].members.add(6)
        self.assertEqual((await self.store.membership(GUILD))[0].members, {5})


class TestGuildLocks(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = GuildStateStore()
        self.store.ensure(GUILD, sounds_channel_id=10)
        self.store.ensure(2, sounds_channel_id=20)

    async def test_held_lock_blocks_only_its_guild(self):
        state = self.store.get(GUILD)
        async with state.lock:
            waiting = asyncio.create_task(self.store.put_sound(GUILD, "horn", Sound(1, "u1")))
            await asyncio.sleep(0.01)
            self.assertFalse(waiting.done())

            await asyncio.wait_for(self.store.put_sound(2, "horn", Sound(2, "u2")), timeout=1)
            await asyncio.wait_for(self.store.move_member(2, 5, 300), timeout=1)
            self.assertEqual(await self.store.sound_names(2), ["horn"])
            self.assertFalse(waiting.done())

        await asyncio.wait_for(waiting, timeout=1)
        self.assertEqual(await self.store.sound_names(GUILD), ["horn"])

    async def test_concurrent_mutations_stay_consistent(self):
        await self.store.set_membership(GUILD, [VoiceChannelMembership(100, GUILD, "General")])
        sounds = [Sound(i, f"u{i}") for i in range(20)]
        fresh = Sound(99, "u99")

        await asyncio.gather(
            *(self.store.put_sound(GUILD, f"s{i}", s) for i, s in enumerate(sounds)),
            *(self.store.set_entrance(GUILD, str(i), s) for i, s in enumerate(sounds)),
            *(self.store.move_member(GUILD, i, 100 if i % 2 else 200) for i in range(20)),
        )
        self.assertEqual(self.store.sound_count(GUILD), 20)
        channels = {c.channel_id: c.members for c in await self.store.membership(GUILD)}
        self.assertEqual(channels[100] | channels[200], set(range(20)))
        self.assertFalse(channels[100] & channels[200])

        await asyncio.gather(
            self.store.replace_index(GUILD, {"fresh": fresh}, {"7": fresh}),
            self.store.set_entrance(GUILD, "8", fresh),
        )
        # Whichever ran last, the catalog is the rebuilt one and both writes are whole
        self.assertEqual(await self.store.sound_names(GUILD), ["fresh"])
        self.assertIs(await self.store.entrance_for(GUILD, "7"), fresh)
        self.assertEqual(self.store.get(GUILD).rebuilds, 1)


if __name__ == "__main__":
    unittest.main()
