"""
Attachment helpers for clip files: name derivation and bounded downloads.
"""

from __future__ import annotations

import asyncio
import io
import logging

import aiohttp
import discord

from config.constants import API_TIMEOUT, MAX_SOUND_SIZE, SOUND_EXTENSION
from utils.errors import EncodingFailure, UpstreamTransient

logger = logging.getLogger(__name__)


class FileHandler:
    """Process clip attachments in the sounds channel."""

    @staticmethod
    def _get_extension(filename: str) -> str:
        if "." in filename:
            return "." + filename.rsplit(".", 1)[-1].lower()
        return ""

    @classmethod
    def is_sound(cls, filename: str, extension: str = SOUND_EXTENSION) -> bool:
        return cls._get_extension(filename) == extension.lower()

    @staticmethod
    def clip_name(filename: str) -> str:
        """``air_horn.mp3`` → ``air_horn``."""
        if "." in filename:
            return filename.rsplit(".", 1)[0]
        return filename

    @staticmethod
    def clip_filename(name: str, extension: str = SOUND_EXTENSION) -> str:
        return f"{name}{extension}"

    @staticmethod
    async def download(
        session: aiohttp.ClientSession,
        url: str,
        max_bytes: int = MAX_SOUND_SIZE,
    ) -> bytes:
        """Fetch a clip into memory, refusing anything above *max_bytes*."""
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=API_TIMEOUT)) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise UpstreamTransient(
                        f"Fetching clip failed with HTTP {resp.status}", status_code=resp.status
                    )
                if resp.status != 200:
                    raise EncodingFailure(f"Could not fetch the clip (HTTP {resp.status}).")

                buffer = io.BytesIO()
                async for chunk in resp.content.iter_chunked(64 * 1024):
                    if not chunk:
                        continue
                    if buffer.tell() + len(chunk) > max_bytes:
                        raise EncodingFailure(
                            f"Clip exceeds the {max_bytes // (1024 * 1024)} MB limit."
                        )
                    buffer.write(chunk)
                return buffer.getvalue()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Clip download from %s failed: %s", url, exc)
            raise UpstreamTransient(f"Fetching clip failed: {exc}") from exc

    @staticmethod
    def make_sound_file(data: bytes, filename: str) -> discord.File:
        """Create a Discord File from clip bytes."""
        return discord.File(io.BytesIO(data), filename=filename)
