"""
Standardized Discord embed builder for consistent bot responses.
"""

from __future__ import annotations

import datetime
from typing import List, Optional, Sequence, Tuple

import discord

from config.constants import (
    BOT_COLOR,
    BOT_ERROR_COLOR,
    BOT_INFO_COLOR,
    BOT_NAME,
    BOT_SUCCESS_COLOR,
    BOT_WARN_COLOR,
    MAX_EMBED_DESC,
    UNITY_VOLUME,
    VOLUME_UNSPECIFIED,
)

# Sound list layout: names padded to a fixed column, several per row.
LIST_COLUMN_WIDTH = 15
LIST_COLUMNS = 6


class Embedder:
    """Factory for creating consistent, branded Discord embeds."""

    @staticmethod
    def _base(
        title: str,
        description: str,
        color: int,
        *,
        footer: Optional[str] = None,
    ) -> discord.Embed:
        embed = discord.Embed(
            title=title,
            description=description,
            color=color,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
        )
        embed.set_footer(text=footer or f"🔊 {BOT_NAME}")
        return embed

    # ── Standard Embed Types ─────────────────────────────────────────

    @classmethod
    def standard(
        cls,
        title: str,
        description: str,
        *,
        fields: Optional[List[Tuple[str, str, bool]]] = None,
        footer: Optional[str] = None,
    ) -> discord.Embed:
        """Create a standard themed embed."""
        embed = cls._base(title, description, BOT_COLOR, footer=footer)
        for name, value, inline in (fields or []):
            embed.add_field(name=name, value=value, inline=inline)
        return embed

    @classmethod
    def success(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"✅ {title}", description, BOT_SUCCESS_COLOR)

    @classmethod
    def error(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"❌ {title}", description, BOT_ERROR_COLOR)

    @classmethod
    def warning(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"⚠️ {title}", description, BOT_WARN_COLOR)

    @classmethod
    def info(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"ℹ️ {title}", description, BOT_INFO_COLOR)

    # ── Specialized Embeds ───────────────────────────────────────────

    @classmethod
    def rate_limited(cls, retry_after: float) -> discord.Embed:
        """Create a rate-limit warning embed."""
        return cls.warning(
            "Slow Down",
            f"You're sending requests too fast.\nPlease wait **{retry_after:.1f}s** before trying again.",
        )

    @classmethod
    def paginated(
        cls,
        title: str,
        content: str,
        page: int,
        total_pages: int,
    ) -> discord.Embed:
        """Create a paginated embed with page info in the footer."""
        embed = cls._base(title, content, BOT_COLOR)
        embed.set_footer(text=f"Page {page}/{total_pages} • 🔊 {BOT_NAME}")
        return embed

    @staticmethod
    def sound_list_pages(
        names: Sequence[str], max_len: int = MAX_EMBED_DESC
    ) -> List[str]:
        """Lay out *names* in padded columns, split into code-block pages.

        Each page is a complete code block no longer than *max_len*.
        """
        fence = "```"
        budget = max_len - 2 * len(fence) - 2
        pages: List[str] = []
        current = ""
        for index, name in enumerate(names, start=1):
            cell = name.ljust(LIST_COLUMN_WIDTH) + " "
            if index % LIST_COLUMNS == 0:
                cell = cell.rstrip() + "\n"
            if current and len(current) + len(cell) > budget:
                pages.append(current)
                current = ""
            current += cell
        if current:
            pages.append(current)
        return [f"{fence}\n{page.rstrip()}\n{fence}" for page in pages]

    @classmethod
    def sound_list(cls, names: Sequence[str]) -> List[discord.Embed]:
        """One embed per page of the guild's sound list."""
        if not names:
            return [
                cls.info(
                    "No Sounds Yet",
                    "Drop an `.mp3` file into the sounds channel to add one.",
                )
            ]
        pages = cls.sound_list_pages(names, MAX_EMBED_DESC)
        title = f"🔊 Available sounds ({len(names)})"
        if len(pages) == 1:
            return [cls.standard(title, pages[0])]
        return [
            cls.paginated(title, page, i, len(pages))
            for i, page in enumerate(pages, start=1)
        ]

    @classmethod
    def now_playing(cls, name: str, volume: int) -> discord.Embed:
        if volume == VOLUME_UNSPECIFIED:
            level = "default"
        else:
            level = f"{volume * 100 // UNITY_VOLUME}%"
        return cls.standard("▶️ Playing", f"**{name}**", footer=f"Volume: {level} • 🔊 {BOT_NAME}")

    @classmethod
    def help(cls, sounds_channel: str) -> discord.Embed:
        return cls.standard(
            "🔊 Soundboard Help",
            f"To add sounds, just post an `.mp3` file in **#{sounds_channel}** "
            "(one file per message, no text).",
            fields=[
                ("/play `<sound>`", "Plays a sound in your voice channel.", False),
                ("/skip `[sound]`", "Stops the current sound, or replaces it with another.", False),
                ("/stop", "Stops the current sound.", False),
                ("/connect", "Joins the voice channel you are in.", False),
                ("/sounds", "Lists every sound.", False),
                ("/find `<sound>`", "Links to the message holding a sound.", False),
                ("/rename `<sound>` `<new-name>`", "Renames a sound.", False),
                ("/entrance `<sound>`", "Plays this sound whenever you join voice.", False),
                ("/entrance-clear", "Removes your entrance sound.", False),
                ("/volume `<sound>` `<0-512>`", "Sets a sound's volume (256 = 100%).", False),
            ],
        )
