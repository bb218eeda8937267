"""
Voice presence tracking and entrance triggering.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from config.constants import ENTRANCE_DELAY
from utils.errors import SoundboardError
from utils.models import Sound, VoiceChannelMembership, VoiceTransition
from utils.store import GuildStateStore

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[int], Awaitable[List[VoiceChannelMembership]]]
EntrancePlayer = Callable[[int, int, Sound], Awaitable[object]]


class VoicePresenceTracker:
    """Maintains per-channel membership and fires entrance sounds.

    The first event seen for a guild triggers a full snapshot of its voice
    channels; after that every transition is applied incrementally.  An
    entrance plays only on a fresh connect (no previous channel), never on a
    move between channels.
    """

    def __init__(
        self,
        store: GuildStateStore,
        snapshot: SnapshotProvider,
        play_entrance: EntrancePlayer,
        *,
        entrance_delay: float = ENTRANCE_DELAY,
    ):
        self.store = store
        self.snapshot = snapshot
        self.play_entrance = play_entrance
        self.entrance_delay = entrance_delay
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def should_trigger_entrance(transition: VoiceTransition) -> bool:
        return not transition.is_bot and transition.is_fresh_join

    async def handle(self, transition: VoiceTransition) -> Optional[asyncio.Task]:
        """Apply *transition*; returns the scheduled entrance task, if any."""
        if transition.is_bot:
            return None

        guild_id = transition.guild_id
        if not self.store.has(guild_id):
            logger.debug("Voice event for unknown guild %d ignored", guild_id)
            return None

        if not self.store.has_membership(guild_id):
            await self._load_snapshot(guild_id)

        await self.store.move_member(guild_id, transition.user_id, transition.to_channel)

        channel_id = transition.to_channel
        if channel_id is None or not self.should_trigger_entrance(transition):
            return None

        sound = await self.store.entrance_for(guild_id, str(transition.user_id))
        if sound is None:
            return None

        task = asyncio.create_task(
            self._fire_entrance(guild_id, transition.user_id, channel_id, sound)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _load_snapshot(self, guild_id: int) -> None:
        try:
            channels = await self.snapshot(guild_id)
        except SoundboardError as exc:
            # Keep going with an empty snapshot; events still build it up.
            logger.warning("Guild %d: voice snapshot failed: %s", guild_id, exc.message)
            channels = []
        await self.store.set_membership(guild_id, channels)
        logger.info(
            "Guild %d: voice snapshot loaded (%d channels, %d members)",
            guild_id, len(channels), sum(len(c.members) for c in channels),
        )

    async def _fire_entrance(self, guild_id: int, user_id: int, channel_id: int, sound: Sound) -> None:
        try:
            await asyncio.sleep(self.entrance_delay)
            await self.play_entrance(guild_id, channel_id, sound)
        except asyncio.CancelledError:
            raise
        except SoundboardError as exc:
            logger.warning(
                "Guild %d: entrance for user %d failed: %s", guild_id, user_id, exc.message
            )
        except Exception as exc:
            logger.error(
                "Guild %d: entrance for user %d crashed: %s", guild_id, user_id, exc, exc_info=True
            )

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()
