"""
Command-facing soundboard operations.

:class:`Soundboard` ties the store, the index builder, the playback
controller and the presence tracker together behind the operations the cog
exposes.  Every method raises a :class:`~utils.errors.SoundboardError`
subclass on a user-visible failure; nothing here talks to discord.py
directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from config.constants import (
    DEFAULT_COMMANDS_CHANNEL,
    DEFAULT_SOUNDS_CHANNEL,
    ENTRANCE_DELAY,
    MAX_VOLUME,
    SOUND_EXTENSION,
    TAG_ENTRANCE,
    TAG_VOLUME,
    VOLUME_UNSPECIFIED,
)
from utils import tags as tagcodec
from utils.errors import (
    AlreadyEntrance,
    ChannelNotFound,
    MessageNotFound,
    OutOfRange,
    SoundboardError,
    SoundExists,
)
from utils.file_handler import FileHandler
from utils.indexer import IndexResult, SoundIndexBuilder, index_message
from utils.models import MessageRecord, Sound
from utils.presence import VoicePresenceTracker

if TYPE_CHECKING:
    from utils.platform import ChatPlatform, VoiceTransport
    from utils.playback import PlaybackController, PlaybackResult
    from utils.store import GuildStateStore

logger = logging.getLogger(__name__)

MESSAGE_LINK = "https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"


class Soundboard:
    """Per-process soundboard service shared by every guild."""

    def __init__(
        self,
        store: "GuildStateStore",
        platform: "ChatPlatform",
        controller: "PlaybackController",
        *,
        indexer: Optional[SoundIndexBuilder] = None,
        sounds_channel: str = DEFAULT_SOUNDS_CHANNEL,
        commands_channel: str = DEFAULT_COMMANDS_CHANNEL,
        extension: str = SOUND_EXTENSION,
        entrance_delay: float = ENTRANCE_DELAY,
    ):
        self.store = store
        self.platform = platform
        self.controller = controller
        self.indexer = indexer or SoundIndexBuilder(platform, extension=extension)
        self.sounds_channel = sounds_channel
        self.commands_channel = commands_channel
        self.extension = extension
        self._edit_locks: Dict[int, asyncio.Lock] = {}
        self.presence = VoicePresenceTracker(
            store,
            platform.voice_snapshot,
            self.play_entrance,
            entrance_delay=entrance_delay,
        )

    # ── Session / index ──────────────────────────────────────────────

    async def session_ready(self, guild_ids: Iterable[int]) -> int:
        """Set up every guild the session can see; returns how many loaded."""
        loaded = 0
        for guild_id in guild_ids:
            try:
                if await self.setup_guild(guild_id):
                    loaded += 1
            except SoundboardError as exc:
                logger.error("Guild %d: setup failed: %s", guild_id, exc.message)
            except Exception as exc:
                logger.error("Guild %d: setup crashed: %s", guild_id, exc, exc_info=True)
        logger.info("Soundboard ready in %d guild(s)", loaded)
        return loaded

    async def setup_guild(self, guild_id: int) -> bool:
        """Resolve the guild's channels by name and build its index."""
        channels = await self.platform.list_channels(guild_id)
        text_channels = [c for c in channels if not c.is_voice]
        sounds = next((c for c in text_channels if c.name == self.sounds_channel), None)
        commands = next((c for c in text_channels if c.name == self.commands_channel), None)

        if sounds is None:
            logger.warning(
                "Guild %d has no #%s channel; skipping", guild_id, self.sounds_channel
            )
            return False

        self.store.ensure(guild_id, sounds.id, commands.id if commands else None)
        await self.rebuild(guild_id)
        return True

    async def rebuild(self, guild_id: int) -> Optional[IndexResult]:
        """Rebuild one guild; on failure the guild keeps its previous data."""
        try:
            return await self.indexer.rebuild(self.store, guild_id)
        except SoundboardError as exc:
            logger.error(
                "Guild %d: rebuild failed, keeping stale index: %s", guild_id, exc.message
            )
            return None
        except Exception as exc:
            logger.error(
                "Guild %d: rebuild crashed, keeping stale index: %s", guild_id, exc, exc_info=True
            )
            return None

    async def rebuild_all(self) -> None:
        for guild_id in self.store.guild_ids():
            await self.rebuild(guild_id)

    async def register_upload(self, guild_id: int, message: MessageRecord) -> Optional[str]:
        """Index a freshly posted clip message; returns its sound name."""
        entry = index_message(message, self.extension)
        if entry is None:
            return None
        previous = await self.store.put_sound(guild_id, entry.name, entry.sound)
        for user_id in entry.entrance_users:
            await self.store.set_entrance(guild_id, user_id, entry.sound)
        logger.info(
            "Guild %d: %s sound %r (message %d)",
            guild_id, "replaced" if previous else "added", entry.name, message.id,
        )
        return entry.name

    def is_sounds_channel(self, guild_id: int, channel_id: int) -> bool:
        return (
            self.store.has(guild_id)
            and self.store.get(guild_id).sounds_channel_id == channel_id
        )

    def is_commands_channel(self, guild_id: int, channel_id: int) -> bool:
        """Commands are accepted anywhere when the guild has no commands channel."""
        if not self.store.has(guild_id):
            return True
        expected = self.store.get(guild_id).commands_channel_id
        return expected is None or expected == channel_id

    # ── Lookup ───────────────────────────────────────────────────────

    async def find_sound(self, guild_id: int, name: str) -> Sound:
        return await self.store.find_sound(guild_id, name)

    async def list_sounds(self, guild_id: int) -> List[str]:
        return await self.store.sound_names(guild_id)

    async def sound_link(self, guild_id: int, name: str) -> str:
        sound = await self.store.find_sound(guild_id, name)
        return MESSAGE_LINK.format(
            guild_id=guild_id,
            channel_id=self._sounds_channel_id(guild_id),
            message_id=sound.message_id,
        )

    # ── Metadata edits ───────────────────────────────────────────────
    # Each edit reads a clip message, rewrites its tags and writes them back;
    # the guild's edit lock keeps those read-modify-write cycles in order.

    def _edit_lock(self, guild_id: int) -> asyncio.Lock:
        lock = self._edit_locks.get(guild_id)
        if lock is None:
            lock = self._edit_locks[guild_id] = asyncio.Lock()
        return lock

    async def set_entrance(self, guild_id: int, user_id: int, name: str) -> Sound:
        """Bind *name* as the entrance of *user_id*, persisting it as an ``e`` tag."""
        user = str(user_id)
        async with self._edit_lock(guild_id):
            sound = await self.store.find_sound(guild_id, name)
            current = await self.store.entrance_for(guild_id, user)
            if current is sound:
                raise AlreadyEntrance(name)

            message, sound = await self._ensure_bot_owned(guild_id, name, sound)

            if current is not None:
                await self._strip_entrance(guild_id, current, user)

            tags = tagcodec.decode(message.content, strict=False)
            if user not in tagcodec.values_of(tags, TAG_ENTRANCE):
                tags.append(tagcodec.Tag(TAG_ENTRANCE, user))
                await self.platform.edit_message_content(
                    message.channel_id, message.id, tagcodec.encode(tags)
                )

            await self.store.set_entrance(guild_id, user, sound)
        logger.info("Guild %d: user %s entrance set to %r", guild_id, user, name)
        return sound

    async def clear_entrance(self, guild_id: int, user_id: int) -> Optional[Sound]:
        user = str(user_id)
        async with self._edit_lock(guild_id):
            current = await self.store.entrance_for(guild_id, user)
            if current is None:
                return None
            await self._strip_entrance(guild_id, current, user)
            await self.store.clear_entrance(guild_id, user)
        logger.info("Guild %d: user %s entrance cleared", guild_id, user)
        return current

    async def adjust_volume(self, guild_id: int, name: str, volume: int) -> Sound:
        """Set a clip's volume (0-512, 256 = unity), persisting it as a ``v`` tag."""
        if not VOLUME_UNSPECIFIED <= volume <= MAX_VOLUME:
            raise OutOfRange(volume, VOLUME_UNSPECIFIED, MAX_VOLUME)

        async with self._edit_lock(guild_id):
            sound = await self.store.find_sound(guild_id, name)
            message, sound = await self._ensure_bot_owned(guild_id, name, sound)

            tags = tagcodec.upsert_tag(
                tagcodec.decode(message.content, strict=False), TAG_VOLUME, str(volume)
            )
            await self.platform.edit_message_content(
                message.channel_id, message.id, tagcodec.encode(tags)
            )
            updated = await self.store.set_volume(guild_id, name, volume)
        logger.info("Guild %d: volume of %r set to %d", guild_id, name, volume)
        return updated

    async def rename_sound(self, guild_id: int, old: str, new: str) -> Sound:
        """Re-upload *old* under a new filename, keeping its tags."""
        new = new.strip()
        if not new or any(ch.isspace() for ch in new) or "/" in new:
            raise SoundboardError("Sound names can't be empty or contain spaces or '/'.")

        async with self._edit_lock(guild_id):
            sound = await self.store.find_sound(guild_id, old)
            if new == old:
                return sound
            if new in await self.store.sound_names(guild_id):
                raise SoundExists(new)

            channel_id = self._sounds_channel_id(guild_id)
            message = await self.platform.fetch_message(channel_id, sound.message_id)
            _, renamed = await self._reupload(
                channel_id, sound, message, FileHandler.clip_filename(new, self.extension)
            )
            await self.store.rename_sound(guild_id, old, new, renamed)
        logger.info("Guild %d: renamed %r to %r", guild_id, old, new)
        return renamed

    # ── Playback ─────────────────────────────────────────────────────

    async def play(
        self, guild_id: int, name: str, channel_id: Optional[int] = None
    ) -> "PlaybackResult":
        sound = await self.store.find_sound(guild_id, name)
        return await self.controller.play(guild_id, sound, channel_id)

    async def skip(
        self, guild_id: int, name: Optional[str] = None, channel_id: Optional[int] = None
    ) -> Optional["PlaybackResult"]:
        """Stop the current clip; with *name*, play that clip next.

        The lookup happens before the signal so a typo leaves the current
        clip running.
        """
        if name is None:
            self.controller.skip(guild_id)
            return None
        sound = await self.store.find_sound(guild_id, name)
        self.controller.skip(guild_id)
        return await self.controller.play(guild_id, sound, channel_id)

    def stop(self, guild_id: int) -> bool:
        return self.controller.stop(guild_id)

    async def play_entrance(
        self, guild_id: int, channel_id: int, sound: Sound
    ) -> "PlaybackResult":
        return await self.controller.play(guild_id, sound, channel_id)

    async def connect(self, guild_id: int, channel_id: int) -> "VoiceTransport":
        return await self.controller.join(guild_id, channel_id)

    # ── Internals ────────────────────────────────────────────────────

    def _sounds_channel_id(self, guild_id: int) -> int:
        channel_id = self.store.get(guild_id).sounds_channel_id
        if channel_id is None:
            raise ChannelNotFound(f"This server has no #{self.sounds_channel} channel.")
        return channel_id

    async def _ensure_bot_owned(
        self, guild_id: int, name: str, sound: Sound
    ) -> Tuple[MessageRecord, Sound]:
        """Return the clip's message, re-uploading it first if a human posted it.

        Only the bot's own messages can be edited, so tags can only be
        written once the clip lives on a bot message.
        """
        channel_id = self._sounds_channel_id(guild_id)
        message = await self.platform.fetch_message(channel_id, sound.message_id)
        if message.author_is_bot:
            return message, sound

        uploaded, replacement = await self._reupload(
            channel_id, sound, message, FileHandler.clip_filename(name, self.extension)
        )
        await self.store.replace_sound(guild_id, name, replacement)
        logger.info(
            "Guild %d: re-uploaded %r as bot message %d", guild_id, name, uploaded.id
        )
        return uploaded, replacement

    async def _reupload(
        self,
        channel_id: int,
        sound: Sound,
        message: MessageRecord,
        filename: str,
    ) -> Tuple[MessageRecord, Sound]:
        data = await self.platform.download(sound.url)
        uploaded = await self.platform.upload_file(
            channel_id, filename, data, content=message.content
        )
        url = uploaded.attachments[0].url if uploaded.attachments else sound.url
        replacement = Sound(message_id=uploaded.id, url=url, volume=sound.volume)
        try:
            await self.platform.delete_message(channel_id, message.id)
        except MessageNotFound:
            logger.debug("Original clip message %d was already gone", message.id)
        return uploaded, replacement

    async def _strip_entrance(self, guild_id: int, sound: Sound, user: str) -> None:
        """Remove *user*'s ``e`` tag from the clip message behind *sound*.

        Callers hold the guild's edit lock.
        """
        channel_id = self._sounds_channel_id(guild_id)
        try:
            message = await self.platform.fetch_message(channel_id, sound.message_id)
        except MessageNotFound:
            logger.info(
                "Guild %d: previous entrance message %d is gone", guild_id, sound.message_id
            )
            return

        tags = tagcodec.decode(message.content, strict=False)
        remaining = tagcodec.remove_tags(tags, TAG_ENTRANCE, user)
        if remaining == tags:
            return
        if not message.author_is_bot:
            logger.warning(
                "Guild %d: cannot edit user-authored message %d to drop entrance of %s",
                guild_id, message.id, user,
            )
            return
        await self.platform.edit_message_content(
            channel_id, message.id, tagcodec.encode(remaining)
        )
