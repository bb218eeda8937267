"""
Application settings loaded from environment variables.
All configuration is centralized here for easy management.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from config.constants import (
    DEFAULT_COMMANDS_CHANNEL,
    DEFAULT_SOUNDS_CHANNEL,
    ENTRANCE_DELAY,
    REBUILD_INTERVAL_HOURS,
    VOICE_JOIN_TIMEOUT,
)

load_dotenv()


def _parse_optional_int(raw: str) -> Optional[int]:
    raw = raw.strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_float(raw: str, default: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable application settings loaded once at startup."""

    # Discord
    discord_token: str = field(default_factory=lambda: os.getenv("DISCORD_TOKEN", ""))
    application_id: Optional[int] = field(
        default_factory=lambda: _parse_optional_int(os.getenv("DISCORD_APPLICATION_ID", ""))
    )

    # Bot
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Channels (resolved by name in every guild)
    sounds_channel: str = field(
        default_factory=lambda: os.getenv("SOUNDS_CHANNEL", DEFAULT_SOUNDS_CHANNEL)
    )
    commands_channel: str = field(
        default_factory=lambda: os.getenv("COMMANDS_CHANNEL", DEFAULT_COMMANDS_CHANNEL)
    )

    # Sound index / playback
    rebuild_interval_hours: float = field(
        default_factory=lambda: _parse_float(
            os.getenv("REBUILD_INTERVAL_HOURS", ""), REBUILD_INTERVAL_HOURS
        )
    )
    entrance_delay: float = field(
        default_factory=lambda: _parse_float(os.getenv("ENTRANCE_DELAY", ""), ENTRANCE_DELAY)
    )
    voice_join_timeout: float = field(
        default_factory=lambda: _parse_float(
            os.getenv("VOICE_JOIN_TIMEOUT", ""), VOICE_JOIN_TIMEOUT
        )
    )
    max_sound_size_mb: int = field(
        default_factory=lambda: int(os.getenv("MAX_SOUND_SIZE_MB", "10"))
    )

    # Rate limiting
    rate_limit_per_user: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_PER_USER", "10"))
    )
    rate_limit_global: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_GLOBAL", "200"))
    )

    # Health check
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8080")))

    # ── Helpers ──────────────────────────────────────────────────────
    @property
    def max_sound_size_bytes(self) -> int:
        return self.max_sound_size_mb * 1024 * 1024

    def validate(self) -> List[str]:
        """Return a list of validation errors (empty = OK)."""
        errors: List[str] = []
        if not self.discord_token:
            errors.append("DISCORD_TOKEN is required")
        if not self.sounds_channel:
            errors.append("SOUNDS_CHANNEL must not be empty")
        if self.rebuild_interval_hours <= 0:
            errors.append("REBUILD_INTERVAL_HOURS must be positive")
        if self.voice_join_timeout <= 0:
            errors.append("VOICE_JOIN_TIMEOUT must be positive")
        if self.entrance_delay < 0:
            errors.append("ENTRANCE_DELAY must not be negative")
        return errors
