"""
Error taxonomy for the soundboard core.

Every exception carries a message that is safe to show to a Discord user;
the cog turns these into error embeds at the command boundary.
"""

from __future__ import annotations

from typing import Optional


class SoundboardError(Exception):
    """Base exception for recoverable soundboard failures."""

    title = "Something went wrong"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ── Not found ────────────────────────────────────────────────────────


class NotFound(SoundboardError):
    title = "Not Found"


class SoundNotFound(NotFound):
    title = "Sound Not Found"

    def __init__(self, name: str):
        super().__init__(f"There is no sound called `{name}`.")
        self.name = name


class ChannelNotFound(NotFound):
    title = "Channel Not Found"


class MessageNotFound(NotFound):
    title = "Message Not Found"

    def __init__(self, message_id: int):
        super().__init__(f"Message {message_id} no longer exists.")
        self.message_id = message_id


class NotInVoice(NotFound):
    title = "Not in VC"

    def __init__(self, message: str = "\U0001f50a Join a voice channel first!"):
        super().__init__(message)


class GuildNotReady(NotFound):
    title = "Not Ready"

    def __init__(self, guild_id: int):
        super().__init__("Sounds for this server are still loading. Try again shortly.")
        self.guild_id = guild_id


# ── Data / input ─────────────────────────────────────────────────────


class MalformedTag(SoundboardError):
    title = "Malformed Tag"

    def __init__(self, segment: str, reason: str = "missing ':' separator"):
        super().__init__(f"Malformed tag `{segment}`: {reason}")
        self.segment = segment
        self.reason = reason


class OutOfRange(SoundboardError):
    title = "Out of Range"

    def __init__(self, value: int, low: int, high: int):
        super().__init__(f"Volume must be between {low} and {high} (got {value}).")
        self.value = value
        self.low = low
        self.high = high


class AlreadyEntrance(SoundboardError):
    title = "Already Set"

    def __init__(self, name: str):
        super().__init__(f"`{name}` is already your entrance.")
        self.name = name


class SoundExists(SoundboardError):
    title = "Name Taken"

    def __init__(self, name: str):
        super().__init__(f"A sound called `{name}` already exists.")
        self.name = name


class InvariantViolation(SoundboardError):
    title = "Inconsistent State"


# ── Upstream / playback ──────────────────────────────────────────────


class UpstreamTransient(SoundboardError):
    """A platform call failed in a way worth retrying (rate limit, 5xx, timeout)."""

    title = "Discord Unavailable"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class VoiceJoinFailed(SoundboardError):
    title = "Connection Error"


class EncodingFailure(SoundboardError):
    title = "Playback Failed"
