"""
Authoritative in-memory state per guild.

The raw guild map is private; every read/write goes through a
:class:`GuildStateStore` method that takes the guild's state lock.  The lock
is short-held and never spans a network call, and it is distinct from the
playback lock owned by :mod:`utils.playback`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from utils.errors import GuildNotReady, SoundExists, SoundNotFound
from utils.models import EntranceBindings, Sound, SoundCatalog, VoiceChannelMembership

if TYPE_CHECKING:
    from utils.playback import CancelToken

logger = logging.getLogger(__name__)


@dataclass
class GuildState:
    """Everything the bot knows about one guild."""

    guild_id: int
    sounds_channel_id: Optional[int] = None
    commands_channel_id: Optional[int] = None
    catalog: SoundCatalog = field(default_factory=dict)
    entrances: EntranceBindings = field(default_factory=dict)
    # Empty until the first voice event triggers a snapshot.
    voice_channels: Dict[int, VoiceChannelMembership] = field(default_factory=dict)
    membership_loaded: bool = False
    playback_cancel: Optional["CancelToken"] = None
    rebuilds: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class GuildStateStore:
    """Per-guild container with locked accessors."""

    def __init__(self) -> None:
        self._guilds: Dict[int, GuildState] = {}

    # ── Lifecycle ────────────────────────────────────────────────────

    def ensure(
        self,
        guild_id: int,
        sounds_channel_id: Optional[int] = None,
        commands_channel_id: Optional[int] = None,
    ) -> GuildState:
        """Create the guild's state on first sight, or refresh its channel ids."""
        state = self._guilds.get(guild_id)
        if state is None:
            state = GuildState(guild_id=guild_id)
            self._guilds[guild_id] = state
            logger.debug("Created state for guild %d", guild_id)
        if sounds_channel_id is not None:
            state.sounds_channel_id = sounds_channel_id
        if commands_channel_id is not None:
            state.commands_channel_id = commands_channel_id
        return state

    def get(self, guild_id: int) -> GuildState:
        state = self._guilds.get(guild_id)
        if state is None:
            raise GuildNotReady(guild_id)
        return state

    def has(self, guild_id: int) -> bool:
        return guild_id in self._guilds

    def guild_ids(self) -> List[int]:
        return list(self._guilds)

    def discard(self, guild_id: int) -> None:
        self._guilds.pop(guild_id, None)

    # ── Catalog ──────────────────────────────────────────────────────

    async def find_sound(self, guild_id: int, name: str) -> Sound:
        state = self.get(guild_id)
        async with state.lock:
            sound = state.catalog.get(name)
        if sound is None:
            raise SoundNotFound(name)
        return sound

    async def sound_names(self, guild_id: int) -> List[str]:
        state = self.get(guild_id)
        async with state.lock:
            return sorted(state.catalog)

    def sound_count(self, guild_id: Optional[int] = None) -> int:
        """Catalog size for one guild, or across all guilds."""
        if guild_id is not None:
            return len(self.get(guild_id).catalog)
        return sum(len(s.catalog) for s in self._guilds.values())

    async def name_of(self, guild_id: int, sound: Sound) -> Optional[str]:
        state = self.get(guild_id)
        async with state.lock:
            for name, candidate in state.catalog.items():
                if candidate is sound:
                    return name
        return None

    async def put_sound(self, guild_id: int, name: str, sound: Sound) -> Optional[Sound]:
        """Install *sound* under *name*; returns the record it replaced.

        Entrances stay bound to the replaced record: their tags live on its
        message, not on the new one.
        """
        state = self.get(guild_id)
        async with state.lock:
            previous = state.catalog.get(name)
            state.catalog[name] = sound
        return previous

    async def remove_sound(self, guild_id: int, name: str) -> Sound:
        state = self.get(guild_id)
        async with state.lock:
            sound = state.catalog.pop(name, None)
            if sound is None:
                raise SoundNotFound(name)
            for user_id in [u for u, s in state.entrances.items() if s is sound]:
                del state.entrances[user_id]
        return sound

    async def replace_sound(self, guild_id: int, name: str, sound: Sound) -> None:
        """Swap the record behind *name* (after a re-upload), keeping bindings."""
        state = self.get(guild_id)
        async with state.lock:
            previous = state.catalog.get(name)
            if previous is None:
                raise SoundNotFound(name)
            state.catalog[name] = sound
            self._repoint_entrances(state, previous, sound)

    async def rename_sound(self, guild_id: int, old: str, new: str, sound: Sound) -> None:
        """Move *old* to *new*, installing *sound* as the record under *new*."""
        state = self.get(guild_id)
        async with state.lock:
            previous = state.catalog.get(old)
            if previous is None:
                raise SoundNotFound(old)
            if new != old and new in state.catalog:
                raise SoundExists(new)
            del state.catalog[old]
            state.catalog[new] = sound
            self._repoint_entrances(state, previous, sound)

    async def set_volume(self, guild_id: int, name: str, volume: int) -> Sound:
        state = self.get(guild_id)
        async with state.lock:
            sound = state.catalog.get(name)
            if sound is None:
                raise SoundNotFound(name)
            sound.volume = volume
        return sound

    @staticmethod
    def _repoint_entrances(state: GuildState, old: Sound, new: Sound) -> None:
        for user_id, bound in state.entrances.items():
            if bound is old:
                state.entrances[user_id] = new

    # ── Entrances ────────────────────────────────────────────────────

    async def entrance_for(self, guild_id: int, user_id: str) -> Optional[Sound]:
        state = self.get(guild_id)
        async with state.lock:
            return state.entrances.get(user_id)

    async def set_entrance(self, guild_id: int, user_id: str, sound: Sound) -> Optional[Sound]:
        state = self.get(guild_id)
        async with state.lock:
            previous = state.entrances.get(user_id)
            state.entrances[user_id] = sound
        return previous

    async def clear_entrance(self, guild_id: int, user_id: str) -> Optional[Sound]:
        state = self.get(guild_id)
        async with state.lock:
            return state.entrances.pop(user_id, None)

    async def entrance_users_for(self, guild_id: int, sound: Sound) -> List[str]:
        state = self.get(guild_id)
        async with state.lock:
            return [u for u, s in state.entrances.items() if s is sound]

    # ── Rebuild ──────────────────────────────────────────────────────

    async def replace_index(
        self, guild_id: int, catalog: SoundCatalog, entrances: EntranceBindings
    ) -> None:
        """Atomically swap in a freshly built catalog and entrance map."""
        state = self.get(guild_id)
        async with state.lock:
            state.catalog = catalog
            state.entrances = entrances
            state.rebuilds += 1

    # ── Voice membership ─────────────────────────────────────────────

    def has_membership(self, guild_id: int) -> bool:
        return self.get(guild_id).membership_loaded

    async def set_membership(
        self, guild_id: int, channels: Iterable[VoiceChannelMembership]
    ) -> None:
        state = self.get(guild_id)
        async with state.lock:
            state.voice_channels = {c.channel_id: c for c in channels}
            state.membership_loaded = True

    async def membership(self, guild_id: int) -> List[VoiceChannelMembership]:
        """Copy of the current snapshot, in channel order of insertion."""
        state = self.get(guild_id)
        async with state.lock:
            return [
                VoiceChannelMembership(c.channel_id, c.guild_id, c.name, set(c.members))
                for c in state.voice_channels.values()
            ]

    async def move_member(
        self, guild_id: int, user_id: int, to_channel: Optional[int]
    ) -> Optional[int]:
        """Remove *user_id* from its current channel and add it to *to_channel*.

        Returns the channel the user was listed in before the move.
        """
        state = self.get(guild_id)
        async with state.lock:
            previous: Optional[int] = None
            for channel in state.voice_channels.values():
                if user_id in channel.members:
                    channel.members.discard(user_id)
                    previous = channel.channel_id
                    break
            if to_channel is not None:
                channel = state.voice_channels.get(to_channel)
                if channel is None:
                    channel = VoiceChannelMembership(to_channel, guild_id, "")
                    state.voice_channels[to_channel] = channel
                channel.members.add(user_id)
        return previous

    # ── Playback cancellation handle ─────────────────────────────────

    def playback_cancel(self, guild_id: int) -> Optional["CancelToken"]:
        state = self._guilds.get(guild_id)
        return state.playback_cancel if state else None

    def set_playback_cancel(self, guild_id: int, token: Optional["CancelToken"]) -> None:
        self.ensure(guild_id).playback_cancel = token
