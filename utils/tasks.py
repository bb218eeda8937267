"""
Background tasks: periodic sound index rebuild.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import tasks

from config.constants import REBUILD_INTERVAL_HOURS

if TYPE_CHECKING:
    from bot import SoundboardBot

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Scheduled background tasks for the bot."""

    def __init__(self, bot: SoundboardBot):
        self.bot = bot
        self.rebuild_task.change_interval(hours=bot.settings.rebuild_interval_hours)
        self.rebuild_task.start()

    @tasks.loop(hours=REBUILD_INTERVAL_HOURS)
    async def rebuild_task(self):
        """Rebuild every guild's sound index from its channel history."""
        if self.rebuild_task.current_loop == 0:
            # The ready handler has just built every index
            return
        try:
            await self.bot.soundboard.rebuild_all()
            logger.info(
                "🔁 Periodic rebuild done: %d sounds across %d guild(s)",
                self.bot.store.sound_count(), len(self.bot.store.guild_ids()),
            )
        except Exception as e:
            logger.error("Error during rebuild task: %s", e, exc_info=True)

    @rebuild_task.before_loop
    async def before_rebuild(self):
        """Wait until bot is ready before starting the rebuild loop."""
        await self.bot.wait_until_ready()
        logger.info(
            "🕐 Background rebuild task started (every %.1f hours)",
            self.bot.settings.rebuild_interval_hours,
        )

    def stop(self):
        """Stop all background tasks."""
        self.rebuild_task.cancel()
        logger.info("Background tasks stopped")
