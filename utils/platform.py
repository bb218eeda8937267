"""
Collaborator interfaces for the soundboard core and their discord.py
implementations.

The core (index builder, store, playback, presence) only sees the Protocols
below and the platform-neutral records from :mod:`utils.models`; everything
that touches discord.py lives here.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, List, Optional, Protocol

import aiohttp
import discord

from config.constants import FFMPEG_BEFORE_OPTIONS, MAX_SOUND_SIZE, OPUS_BITRATE_KBPS
from utils.errors import (
    ChannelNotFound,
    MessageNotFound,
    NotInVoice,
    SoundboardError,
    UpstreamTransient,
    VoiceJoinFailed,
)
from utils.file_handler import FileHandler
from utils.models import AttachmentRecord, ChannelRecord, MessageRecord, VoiceChannelMembership

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)


# =====================================================================
#  Protocols
# =====================================================================


class ChatPlatform(Protocol):
    async def list_channels(self, guild_id: int) -> List[ChannelRecord]: ...

    async def fetch_messages_page(
        self, channel_id: int, before_id: Optional[int], limit: int
    ) -> List[MessageRecord]: ...

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageRecord: ...

    async def send_message(self, channel_id: int, content: str) -> MessageRecord: ...

    async def edit_message_content(
        self, channel_id: int, message_id: int, content: str
    ) -> MessageRecord: ...

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def upload_file(
        self, channel_id: int, filename: str, data: bytes, content: str = ""
    ) -> MessageRecord: ...

    async def download(self, url: str) -> bytes: ...

    async def voice_snapshot(self, guild_id: int) -> List[VoiceChannelMembership]: ...


class FrameSource(Protocol):
    def read(self) -> bytes:
        """Next 20 ms Opus frame, or ``b""`` at end of stream."""
        ...

    def cleanup(self) -> None: ...


class VoiceTransport(Protocol):
    def is_ready(self) -> bool: ...

    def send_frame(self, frame: bytes) -> None: ...

    async def set_speaking(self, speaking: bool) -> None: ...

    async def disconnect(self) -> None: ...


class VoiceConnector(Protocol):
    async def connect(self, guild_id: int, channel_id: Optional[int]) -> VoiceTransport: ...

    async def disconnect(self, guild_id: int) -> None: ...


# =====================================================================
#  discord.py: messages and channels
# =====================================================================


def message_record(message: discord.Message) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        channel_id=message.channel.id,
        content=message.content or "",
        author_is_bot=message.author.bot,
        attachments=[AttachmentRecord(a.filename, a.url) for a in message.attachments],
    )


@contextmanager
def _translate_errors(what: str, *, message_id: Optional[int] = None) -> Iterator[None]:
    """Map discord.py HTTP errors and network timeouts onto the soundboard error taxonomy."""
    try:
        yield
    except discord.NotFound as exc:
        if message_id is not None:
            raise MessageNotFound(message_id) from exc
        raise ChannelNotFound(f"{what}: not found") from exc
    except discord.Forbidden as exc:
        raise SoundboardError(f"{what}: missing permissions") from exc
    except discord.HTTPException as exc:
        if exc.status == 429 or exc.status >= 500:
            raise UpstreamTransient(
                f"{what} failed with HTTP {exc.status}",
                status_code=exc.status,
                retry_after=getattr(exc, "retry_after", None),
            ) from exc
        raise SoundboardError(f"{what} failed: {exc.text or exc.status}") from exc
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise UpstreamTransient(f"{what} failed: {exc!r}") from exc


class DiscordPlatform:
    """:class:`ChatPlatform` backed by a running discord.py bot."""

    def __init__(
        self,
        bot: "commands.Bot",
        session: aiohttp.ClientSession,
        *,
        max_sound_size: int = MAX_SOUND_SIZE,
    ):
        self.bot = bot
        self.session = session
        self.max_sound_size = max_sound_size

    async def _channel(self, channel_id: int) -> discord.TextChannel:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            with _translate_errors(f"Fetching channel {channel_id}"):
                channel = await self.bot.fetch_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise ChannelNotFound(f"Channel {channel_id} is not a text channel")
        return channel

    async def list_channels(self, guild_id: int) -> List[ChannelRecord]:
        guild = self.bot.get_guild(guild_id)
        if guild is not None:
            channels = list(guild.channels)
        else:
            with _translate_errors(f"Listing channels of guild {guild_id}"):
                fetched = await self.bot.fetch_guild(guild_id)
                channels = list(await fetched.fetch_channels())
        return [
            ChannelRecord(
                id=c.id,
                name=c.name,
                is_voice=isinstance(c, (discord.VoiceChannel, discord.StageChannel)),
            )
            for c in channels
        ]

    async def fetch_messages_page(
        self, channel_id: int, before_id: Optional[int], limit: int
    ) -> List[MessageRecord]:
        channel = await self._channel(channel_id)
        before = discord.Object(id=before_id) if before_id else None
        with _translate_errors(f"Reading history of channel {channel_id}"):
            return [
                message_record(m)
                async for m in channel.history(limit=limit, before=before)
            ]

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageRecord:
        channel = await self._channel(channel_id)
        with _translate_errors("Fetching message", message_id=message_id):
            return message_record(await channel.fetch_message(message_id))

    async def send_message(self, channel_id: int, content: str) -> MessageRecord:
        channel = await self._channel(channel_id)
        with _translate_errors(f"Sending to channel {channel_id}"):
            return message_record(await channel.send(content))

    async def edit_message_content(
        self, channel_id: int, message_id: int, content: str
    ) -> MessageRecord:
        channel = await self._channel(channel_id)
        with _translate_errors("Editing message", message_id=message_id):
            edited = await channel.get_partial_message(message_id).edit(content=content)
            return message_record(edited)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        channel = await self._channel(channel_id)
        with _translate_errors("Deleting message", message_id=message_id):
            await channel.get_partial_message(message_id).delete()

    async def upload_file(
        self, channel_id: int, filename: str, data: bytes, content: str = ""
    ) -> MessageRecord:
        channel = await self._channel(channel_id)
        with _translate_errors(f"Uploading {filename}"):
            sent = await channel.send(
                content=content or None,
                file=FileHandler.make_sound_file(data, filename),
            )
            return message_record(sent)

    async def download(self, url: str) -> bytes:
        return await FileHandler.download(self.session, url, self.max_sound_size)

    async def voice_snapshot(self, guild_id: int) -> List[VoiceChannelMembership]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise ChannelNotFound(f"Guild {guild_id} is not cached")
        return [
            VoiceChannelMembership(
                channel_id=channel.id,
                guild_id=guild_id,
                name=channel.name,
                members={m.id for m in channel.members if not m.bot},
            )
            for channel in guild.voice_channels
        ]


# =====================================================================
#  discord.py: voice
# =====================================================================


class DiscordVoiceTransport:
    """Sends pre-encoded Opus frames through a discord.py voice client."""

    def __init__(self, voice_client: discord.VoiceClient):
        self.voice_client = voice_client

    def is_ready(self) -> bool:
        return self.voice_client.is_connected()

    def send_frame(self, frame: bytes) -> None:
        self.voice_client.send_audio_packet(frame, encode=False)

    async def set_speaking(self, speaking: bool) -> None:
        state = discord.SpeakingState.voice if speaking else discord.SpeakingState.none
        await self.voice_client.ws.speak(state)

    async def disconnect(self) -> None:
        await self.voice_client.disconnect(force=True)


class DiscordVoiceConnector:
    """Joins, moves, or reuses the guild's voice client."""

    def __init__(self, bot: "commands.Bot", *, timeout: float):
        self.bot = bot
        self.timeout = timeout

    async def connect(self, guild_id: int, channel_id: Optional[int]) -> DiscordVoiceTransport:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise VoiceJoinFailed("This server is not available.")

        voice_client = guild.voice_client
        if channel_id is None:
            if voice_client is None or not voice_client.is_connected():
                raise NotInVoice()
            return DiscordVoiceTransport(voice_client)  # type: ignore[arg-type]

        channel = guild.get_channel(channel_id)
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            raise VoiceJoinFailed("That voice channel no longer exists.")

        if voice_client is None or not voice_client.is_connected():
            if voice_client is not None:
                await voice_client.disconnect(force=True)
            voice_client = await channel.connect(self_deaf=True, timeout=self.timeout)
            logger.info("Joined voice channel %s in guild %d", channel.name, guild_id)
        elif voice_client.channel.id != channel_id:
            await voice_client.move_to(channel)
            logger.info("Moved to voice channel %s in guild %d", channel.name, guild_id)
        return DiscordVoiceTransport(voice_client)  # type: ignore[arg-type]

    async def disconnect(self, guild_id: int) -> None:
        guild = self.bot.get_guild(guild_id)
        if guild is not None and guild.voice_client is not None:
            await guild.voice_client.disconnect(force=True)


# =====================================================================
#  discord.py: encoder
# =====================================================================


class FFmpegFrameSource:
    """Opus frames from FFmpeg with the clip's gain applied as an audio filter.

    Requires FFmpeg on the host (``apt install ffmpeg``).
    """

    def __init__(self, url: str, gain: float = 1.0, *, bitrate: int = OPUS_BITRATE_KBPS):
        self._source = discord.FFmpegOpusAudio(
            url,
            bitrate=bitrate,
            before_options=FFMPEG_BEFORE_OPTIONS,
            options=f"-vn -filter:a volume={gain:.3f}",
        )

    def read(self) -> bytes:
        return self._source.read()

    def cleanup(self) -> None:
        self._source.cleanup()


def ffmpeg_encoder(url: str, gain: float) -> FFmpegFrameSource:
    return FFmpegFrameSource(url, gain)
