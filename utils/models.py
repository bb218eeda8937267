"""
Platform-neutral records shared by the index builder, store, playback
controller and presence tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from config.constants import VOLUME_UNSPECIFIED


@dataclass(eq=False)
class Sound:
    """A playable clip backed by a message in the sounds channel.

    Identity matters: entrance bindings hold a reference to the same
    instance the catalog holds, so equality is by object.
    """

    message_id: int
    url: str
    volume: int = VOLUME_UNSPECIFIED


SoundCatalog = Dict[str, Sound]
EntranceBindings = Dict[str, Sound]


@dataclass
class VoiceChannelMembership:
    channel_id: int
    guild_id: int
    name: str
    members: Set[int] = field(default_factory=set)


@dataclass(frozen=True)
class AttachmentRecord:
    filename: str
    url: str


@dataclass(frozen=True)
class MessageRecord:
    """The parts of a chat message the soundboard cares about."""

    id: int
    channel_id: int
    content: str = ""
    author_is_bot: bool = False
    attachments: List[AttachmentRecord] = field(default_factory=list)


@dataclass(frozen=True)
class ChannelRecord:
    id: int
    name: str
    is_voice: bool = False


@dataclass(frozen=True)
class VoiceTransition:
    """One voice-state change: ``from_channel`` → ``to_channel``.

    ``None`` on either side means "not connected".
    """

    guild_id: int
    user_id: int
    from_channel: Optional[int] = None
    to_channel: Optional[int] = None
    is_bot: bool = False

    @property
    def is_fresh_join(self) -> bool:
        return self.from_channel is None and self.to_channel is not None

    @property
    def is_switch(self) -> bool:
        return (
            self.from_channel is not None
            and self.to_channel is not None
            and self.from_channel != self.to_channel
        )
