"""
Sound index builder.

Walks the sounds channel history page by page (newest first) and derives the
catalog and entrance bindings from attachments and inline tags.  A rebuild
never diffs: it produces a complete catalog that replaces the old one in a
single locked swap, so any live patches applied since the previous rebuild
are discarded without corruption.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator, List, Optional

from config.constants import (
    API_MAX_RETRIES,
    API_RETRY_BASE_DELAY,
    PAGE_SIZE,
    SOUND_EXTENSION,
    TAG_ENTRANCE,
    TAG_VOLUME,
)
from utils import tags as tagcodec
from utils.errors import ChannelNotFound, InvariantViolation, MalformedTag, UpstreamTransient
from utils.file_handler import FileHandler
from utils.models import EntranceBindings, MessageRecord, Sound, SoundCatalog

if TYPE_CHECKING:
    from utils.platform import ChatPlatform
    from utils.store import GuildStateStore

logger = logging.getLogger(__name__)


@dataclass
class IndexedMessage:
    """What a single clip message contributes to the index."""

    name: str
    sound: Sound
    entrance_users: List[str] = field(default_factory=list)


@dataclass
class IndexResult:
    catalog: SoundCatalog = field(default_factory=dict)
    entrances: EntranceBindings = field(default_factory=dict)
    messages_scanned: int = 0
    pages: int = 0


def index_message(
    message: MessageRecord, extension: str = SOUND_EXTENSION
) -> Optional[IndexedMessage]:
    """Turn one message into a catalog entry, or ``None`` if it isn't a clip.

    A clip message carries exactly one attachment with the accepted
    extension.  Tags are decoded leniently: a bad segment is logged and the
    rest of the message still counts.
    """
    clips = [a for a in message.attachments if FileHandler.is_sound(a.filename, extension)]
    if len(clips) != 1:
        if len(clips) > 1:
            logger.debug(
                "Message %d carries %d clips; one clip per message is supported",
                message.id, len(clips),
            )
        return None

    attachment = clips[0]
    sound = Sound(message_id=message.id, url=attachment.url)
    entry = IndexedMessage(name=FileHandler.clip_name(attachment.filename), sound=sound)

    for tag in tagcodec.decode(message.content, strict=False):
        if tag.type == TAG_ENTRANCE:
            entry.entrance_users.append(tag.value)
        elif tag.type == TAG_VOLUME:
            try:
                sound.volume = tagcodec.parse_volume(tag.value)
            except MalformedTag as exc:
                logger.warning("Message %d: %s", message.id, exc.message)
    return entry


class SoundIndexBuilder:
    """Rebuilds a guild's catalog from its sounds channel history."""

    def __init__(
        self,
        platform: "ChatPlatform",
        *,
        page_size: int = PAGE_SIZE,
        extension: str = SOUND_EXTENSION,
        max_retries: int = API_MAX_RETRIES,
        retry_base_delay: float = API_RETRY_BASE_DELAY,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.platform = platform
        self.page_size = page_size
        self.extension = extension
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    # ── Paging ───────────────────────────────────────────────────────

    async def _fetch_page(self, channel_id: int, before_id: Optional[int]) -> List[MessageRecord]:
        """Fetch one page, retrying transient failures with exponential backoff."""
        attempt = 0
        while True:
            try:
                return await self.platform.fetch_messages_page(
                    channel_id, before_id, self.page_size
                )
            except UpstreamTransient as exc:
                attempt += 1
                if attempt >= self.max_retries:
                    raise
                wait = exc.retry_after or self.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "History page for channel %d failed (attempt %d/%d), waiting %.1fs: %s",
                    channel_id, attempt, self.max_retries, wait, exc.message,
                )
                await asyncio.sleep(wait)

    async def pages(self, channel_id: int) -> AsyncIterator[List[MessageRecord]]:
        """Yield history pages newest-first until a short page signals the end.

        Restartable: each call begins again from the newest message.
        """
        before_id: Optional[int] = None
        while True:
            page = await self._fetch_page(channel_id, before_id)
            if page:
                yield page
            if len(page) < self.page_size:
                return
            before_id = page[-1].id

    # ── Build ────────────────────────────────────────────────────────

    async def build(self, channel_id: int) -> IndexResult:
        """Scan the whole channel and return a fresh catalog.

        Traversal is newest-first, so the first message seen for a name or
        an entrance owner is the newest one and wins.
        """
        result = IndexResult()
        async for page in self.pages(channel_id):
            result.pages += 1
            for message in page:
                result.messages_scanned += 1
                entry = index_message(message, self.extension)
                if entry is None:
                    continue
                self._merge(result, entry)
        return result

    @staticmethod
    def _merge(result: IndexResult, entry: IndexedMessage) -> None:
        if entry.name not in result.catalog:
            result.catalog[entry.name] = entry.sound
        else:
            logger.debug(
                "Sound %r: newer message %d kept over %d",
                entry.name, result.catalog[entry.name].message_id, entry.sound.message_id,
            )

        for user_id in entry.entrance_users:
            kept = result.entrances.get(user_id)
            if kept is None:
                result.entrances[user_id] = entry.sound
            elif kept is not entry.sound:
                violation = InvariantViolation(
                    f"User {user_id} has entrance tags on messages "
                    f"{kept.message_id} and {entry.sound.message_id}"
                )
                logger.warning("%s; keeping the newest", violation.message)

    async def rebuild(self, store: "GuildStateStore", guild_id: int) -> IndexResult:
        """Build without holding the guild lock, then swap the result in."""
        state = store.get(guild_id)
        if state.sounds_channel_id is None:
            raise ChannelNotFound(f"Guild {guild_id} has no sounds channel")
        result = await self.build(state.sounds_channel_id)
        await store.replace_index(guild_id, result.catalog, result.entrances)
        logger.info(
            "Rebuilt guild %d: %d sounds, %d entrances (%d messages, %d pages)",
            guild_id, len(result.catalog), len(result.entrances),
            result.messages_scanned, result.pages,
        )
        return result

