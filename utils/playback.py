"""
Per-guild serialized audio delivery.

Each guild has one playback lock; ``play`` holds it for the whole call, so a
second ``play`` for the same guild waits for the first to finish or be
cancelled (FIFO).  Cancellation is cooperative: every attempt gets a fresh
:class:`CancelToken`, and ``skip``/``stop`` only ever signal the token of the
attempt that is currently running.  A signal sent after an attempt has ended
lands on a discarded token and cannot cut the next playback short.

State machine::

    IDLE ──play──▶ PLAYING ──EOF──▶ IDLE
                      │
                   cancel
                      ▼
                  STOPPING ──settle──▶ IDLE
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional

from config.constants import (
    FRAME_INTERVAL,
    STOP_SETTLE_DELAY,
    UNITY_VOLUME,
    VOICE_JOIN_TIMEOUT,
    VOICE_READY_POLL,
    VOLUME_UNSPECIFIED,
)
from utils.errors import EncodingFailure, SoundboardError, VoiceJoinFailed
from utils.models import Sound

if TYPE_CHECKING:
    from utils.platform import FrameSource, VoiceConnector, VoiceTransport
    from utils.store import GuildStateStore

logger = logging.getLogger(__name__)

EncoderFactory = Callable[[str, float], "FrameSource"]


class PlaybackState(str, enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPING = "stopping"


class CancelToken:
    """One-shot cancellation signal scoped to a single playback attempt."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> bool:
        """Signal cancellation; returns False if it was already signalled."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class PlaybackResult:
    frames_sent: int = 0
    cancelled: bool = False


def encoder_gain(volume: int) -> float:
    """Map a stored volume (0–512, 256 = unity) to an encoder gain factor.

    0 is the "unspecified" sentinel and plays at unity.
    """
    if volume == VOLUME_UNSPECIFIED:
        return 1.0
    return volume / UNITY_VOLUME


class PlaybackController:
    """Plays one sound at a time per guild through a voice transport."""

    def __init__(
        self,
        store: "GuildStateStore",
        connector: "VoiceConnector",
        encoder_factory: EncoderFactory,
        *,
        frame_interval: float = FRAME_INTERVAL,
        settle_delay: float = STOP_SETTLE_DELAY,
        join_timeout: float = VOICE_JOIN_TIMEOUT,
        ready_poll: float = VOICE_READY_POLL,
    ):
        self.store = store
        self.connector = connector
        self.encoder_factory = encoder_factory
        self.frame_interval = frame_interval
        self.settle_delay = settle_delay
        self.join_timeout = join_timeout
        self.ready_poll = ready_poll
        self._locks: Dict[int, asyncio.Lock] = {}
        self._states: Dict[int, PlaybackState] = {}

    # ── State helpers ─────────────────────────────────────────────────

    def _get_lock(self, guild_id: int) -> asyncio.Lock:
        if guild_id not in self._locks:
            self._locks[guild_id] = asyncio.Lock()
        return self._locks[guild_id]

    def state(self, guild_id: int) -> PlaybackState:
        return self._states.get(guild_id, PlaybackState.IDLE)

    def is_playing(self, guild_id: int) -> bool:
        return self.state(guild_id) is not PlaybackState.IDLE

    def is_busy(self, guild_id: int) -> bool:
        """True while a playback holds the lock (including voice join)."""
        return self._get_lock(guild_id).locked()

    # ── Public API ────────────────────────────────────────────────────

    async def play(
        self, guild_id: int, sound: Sound, channel_id: Optional[int] = None
    ) -> PlaybackResult:
        """Play *sound* in *guild_id*, waiting for any playback already running.

        Raises :class:`VoiceJoinFailed` or :class:`EncodingFailure`; either
        aborts only this attempt.
        """
        async with self._get_lock(guild_id):
            token = CancelToken()
            self.store.set_playback_cancel(guild_id, token)
            self._states[guild_id] = PlaybackState.PLAYING

            transport: Optional["VoiceTransport"] = None
            source: Optional["FrameSource"] = None
            try:
                transport = await self._ensure_voice(guild_id, channel_id)
                source = self._open_source(sound)
                result = await self._pump(guild_id, transport, source, token)
                logger.debug(
                    "Guild %d: playback of message %d ended (%d frames, cancelled=%s)",
                    guild_id, sound.message_id, result.frames_sent, result.cancelled,
                )
                return result
            finally:
                await self._release(guild_id, token, transport, source)

    def skip(self, guild_id: int) -> bool:
        """Signal the running playback to stop; never blocks.

        Returns False (and drops the signal) when nothing is playing.
        """
        token = self.store.playback_cancel(guild_id)
        if token is None:
            return False
        return token.cancel()

    stop = skip

    async def join(self, guild_id: int, channel_id: Optional[int]) -> "VoiceTransport":
        """Connect (or move) to *channel_id* without playing anything."""
        return await self._connect(guild_id, channel_id)

    # ── Internals ─────────────────────────────────────────────────────

    async def _ensure_voice(self, guild_id: int, channel_id: Optional[int]) -> "VoiceTransport":
        transport = await self._connect(guild_id, channel_id)
        await transport.set_speaking(True)
        return transport

    async def _connect(self, guild_id: int, channel_id: Optional[int]) -> "VoiceTransport":
        """Join (or reuse) the guild's voice session, bounded by ``join_timeout``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.join_timeout
        try:
            transport = await asyncio.wait_for(
                self.connector.connect(guild_id, channel_id), timeout=self.join_timeout
            )
        except asyncio.TimeoutError:
            raise VoiceJoinFailed(
                f"Timed out after {self.join_timeout:.0f}s joining the voice channel."
            ) from None
        except SoundboardError:
            raise
        except Exception as exc:
            logger.error("Guild %d: voice connect error: %s", guild_id, exc, exc_info=True)
            raise VoiceJoinFailed("Could not join the voice channel.") from exc

        while not transport.is_ready():
            if loop.time() >= deadline:
                raise VoiceJoinFailed(
                    f"Voice connection was not ready after {self.join_timeout:.0f}s."
                )
            await asyncio.sleep(self.ready_poll)
        return transport

    def _open_source(self, sound: Sound) -> "FrameSource":
        gain = encoder_gain(sound.volume)
        try:
            return self.encoder_factory(sound.url, gain)
        except Exception as exc:
            logger.error("Encoder failed to start for %s: %s", sound.url, exc)
            raise EncodingFailure("Could not start the audio encoder.") from exc

    async def _pump(
        self,
        guild_id: int,
        transport: "VoiceTransport",
        source: "FrameSource",
        token: CancelToken,
    ) -> PlaybackResult:
        """Send one frame per tick until end-of-stream or cancellation."""
        loop = asyncio.get_running_loop()
        result = PlaybackResult()
        next_tick = loop.time()

        while True:
            if token.cancelled:
                self._states[guild_id] = PlaybackState.STOPPING
                await asyncio.sleep(self.settle_delay)
                result.cancelled = True
                return result

            try:
                frame = await asyncio.to_thread(source.read)
            except Exception as exc:
                raise EncodingFailure("The audio stream could not be decoded.") from exc

            if not frame:
                if result.frames_sent == 0:
                    raise EncodingFailure("The clip produced no audio.")
                return result

            try:
                transport.send_frame(frame)
            except Exception as exc:
                raise VoiceJoinFailed("Lost the voice connection during playback.") from exc
            result.frames_sent += 1

            next_tick += self.frame_interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind (slow read); restart the cadence instead of bursting.
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    async def _release(
        self,
        guild_id: int,
        token: CancelToken,
        transport: Optional["VoiceTransport"],
        source: Optional["FrameSource"],
    ) -> None:
        if source is not None:
            try:
                source.cleanup()
            except Exception as exc:
                logger.warning("Guild %d: encoder cleanup failed: %s", guild_id, exc)
        if transport is not None:
            try:
                await transport.set_speaking(False)
            except Exception as exc:
                logger.debug("Guild %d: could not clear speaking flag: %s", guild_id, exc)
        if self.store.playback_cancel(guild_id) is token:
            self.store.set_playback_cancel(guild_id, None)
        self._states[guild_id] = PlaybackState.IDLE
