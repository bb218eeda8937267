"""
In-memory stand-ins for the chat platform, voice connection and encoder.
"""

import asyncio
import dataclasses
from typing import Dict, List, Optional, Sequence

from utils.errors import ChannelNotFound, MessageNotFound, SoundboardError
from utils.models import AttachmentRecord, ChannelRecord, MessageRecord, VoiceChannelMembership


class FakePlatform:
    """Chat platform backed by plain lists, newest message = highest id."""

    def __init__(self):
        self.channels: Dict[int, List[ChannelRecord]] = {}
        self.messages: Dict[int, List[MessageRecord]] = {}
        self.voice: Dict[int, List[VoiceChannelMembership]] = {}
        self.page_calls: List[Optional[int]] = []
        self.transient_failures: List[Exception] = []
        self.edits: List[tuple] = []
        self.deleted: List[int] = []
        self.downloads: List[str] = []
        self.fetch_delay = 0.0
        self.channel_failures: Dict[int, Exception] = {}
        self._next_id = 1000

    # ── Setup helpers ────────────────────────────────────────────────

    def next_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_channel(self, guild_id: int, name: str, is_voice: bool = False) -> ChannelRecord:
        channel = ChannelRecord(id=self.next_id(), name=name, is_voice=is_voice)
        self.channels.setdefault(guild_id, []).append(channel)
        self.messages.setdefault(channel.id, [])
        return channel

    def post(
        self,
        channel_id: int,
        filename: Optional[str] = None,
        content: str = "",
        author_is_bot: bool = False,
        extra_files: Sequence[str] = (),
    ) -> MessageRecord:
        message_id = self.next_id()
        files = ([filename] if filename else []) + list(extra_files)
        message = MessageRecord(
            id=message_id,
            channel_id=channel_id,
            content=content,
            author_is_bot=author_is_bot,
            attachments=[
                AttachmentRecord(f, f"https://cdn.test/{message_id}/{f}") for f in files
            ],
        )
        self.messages.setdefault(channel_id, []).append(message)
        return message

    def get(self, channel_id: int, message_id: int) -> MessageRecord:
        for message in self.messages.get(channel_id, []):
            if message.id == message_id:
                return message
        raise MessageNotFound(message_id)

    # ── ChatPlatform ─────────────────────────────────────────────────

    async def list_channels(self, guild_id):
        if guild_id not in self.channels:
            raise ChannelNotFound(f"Guild {guild_id} unknown")
        return list(self.channels[guild_id])

    async def fetch_messages_page(self, channel_id, before_id, limit):
        self.page_calls.append(before_id)
        if channel_id in self.channel_failures:
            raise self.channel_failures[channel_id]
        if self.transient_failures:
            raise self.transient_failures.pop(0)
        newest_first = sorted(self.messages.get(channel_id, []), key=lambda m: m.id, reverse=True)
        if before_id is not None:
            newest_first = [m for m in newest_first if m.id < before_id]
        return newest_first[:limit]

    async def fetch_message(self, channel_id, message_id):
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return self.get(channel_id, message_id)

    async def send_message(self, channel_id, content):
        return self.post(channel_id, content=content, author_is_bot=True)

    async def edit_message_content(self, channel_id, message_id, content):
        message = self.get(channel_id, message_id)
        if not message.author_is_bot:
            raise SoundboardError("Cannot edit a message authored by another user")
        edited = dataclasses.replace(message, content=content)
        history = self.messages[channel_id]
        history[history.index(message)] = edited
        self.edits.append((message_id, content))
        return edited

    async def delete_message(self, channel_id, message_id):
        message = self.get(channel_id, message_id)
        self.messages[channel_id].remove(message)
        self.deleted.append(message_id)

    async def upload_file(self, channel_id, filename, data, content=""):
        return self.post(channel_id, filename, content=content, author_is_bot=True)

    async def download(self, url):
        self.downloads.append(url)
        return b"ID3" + url.encode()

    async def voice_snapshot(self, guild_id):
        return [
            VoiceChannelMembership(c.channel_id, c.guild_id, c.name, set(c.members))
            for c in self.voice.get(guild_id, [])
        ]


class FakeTransport:
    def __init__(self, log: List[bytes], ready_after: int = 0):
        self.log = log
        self.ready_after = ready_after
        self.speaking: List[bool] = []
        self.fail_send = False

    def is_ready(self):
        if self.ready_after > 0:
            self.ready_after -= 1
            return False
        return True

    def send_frame(self, frame):
        if self.fail_send:
            raise OSError("socket closed")
        self.log.append(frame)

    async def set_speaking(self, speaking):
        self.speaking.append(speaking)

    async def disconnect(self):
        pass


class FakeConnector:
    """Voice connector recording joins; ``hang`` makes connect never return."""

    def __init__(self, ready_after: int = 0):
        self.frames: List[bytes] = []
        self.joins: List[tuple] = []
        self.hang = False
        self.ready_after = ready_after
        self.transport: Optional[FakeTransport] = None

    async def connect(self, guild_id, channel_id):
        self.joins.append((guild_id, channel_id))
        if self.hang:
            await asyncio.Event().wait()
        if self.transport is None:
            self.transport = FakeTransport(self.frames, self.ready_after)
        return self.transport

    async def disconnect(self, guild_id):
        self.transport = None


class FakeSource:
    """Yields ``b"<url>#<n>"`` frames, then end-of-stream."""

    def __init__(self, url: str, gain: float, frames: int = 5, fail: bool = False):
        self.url = url
        self.gain = gain
        self.remaining = frames
        self.index = 0
        self.fail = fail
        self.cleaned = False

    def read(self):
        if self.fail:
            raise RuntimeError("decoder exploded")
        if self.remaining <= 0:
            return b""
        self.remaining -= 1
        self.index += 1
        return f"{self.url}#{self.index}".encode()

    def cleanup(self):
        self.cleaned = True


class FakeEncoderFactory:
    def __init__(self, frames: int = 5):
        self.frames = frames
        self.frames_by_url: Dict[str, int] = {}
        self.fail_on_start = False
        self.fail_on_read = False
        self.sources: List[FakeSource] = []

    def __call__(self, url, gain):
        if self.fail_on_start:
            raise RuntimeError("ffmpeg not found")
        source = FakeSource(
            url, gain, self.frames_by_url.get(url, self.frames), fail=self.fail_on_read
        )
        self.sources.append(source)
        return source
