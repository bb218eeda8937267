"""
Soundboard Discord Bot — Main entry point.
Loads configuration, initializes services, and starts the bot.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import aiohttp
import discord
from aiohttp import web
from discord import app_commands
from discord.ext import commands

from config.settings import Settings
from utils.embedder import Embedder
from utils.platform import DiscordPlatform, DiscordVoiceConnector, ffmpeg_encoder
from utils.playback import PlaybackController
from utils.rate_limiter import RateLimiter
from utils.soundboard import Soundboard
from utils.store import GuildStateStore
from utils.tasks import BackgroundTasks

# ── Logging ──────────────────────────────────────────────────────────
settings = Settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s │ %(levelname)-8s │ %(name)-20s │ %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("soundboard")

# ── Cog list ─────────────────────────────────────────────────────────
COGS = [
    "cogs.soundboard",
]


# ── Bot subclass ─────────────────────────────────────────────────────
class SoundboardBot(commands.Bot):
    """Custom Bot with shared services attached."""

    def __init__(self, settings: Settings):
        intents = discord.Intents.default()

        # PRIVILEGED INTENTS (must be enabled in Discord Developer Portal)
        intents.message_content = True  # Read clip tags and #sounds posts
        intents.members = True          # Voice channel occupants for the snapshot

        intents.guilds = True
        intents.messages = True
        intents.voice_states = True     # Entrance sounds
        intents.typing = False          # Not used

        super().__init__(
            command_prefix=commands.when_mentioned,  # Slash commands only
            intents=intents,
            application_id=settings.application_id,
        )

        self.settings = settings
        self.rate_limiter = RateLimiter(
            user_limit=settings.rate_limit_per_user,
            global_limit=settings.rate_limit_global,
        )
        self.store = GuildStateStore()
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.soundboard: Optional[Soundboard] = None
        self.background_tasks = None  # Will be initialized after setup
        self._health_runner: Optional[web.AppRunner] = None

    # ── Startup ──────────────────────────────────────────────────────

    async def setup_hook(self) -> None:
        """Called once when the bot starts. Load cogs and init services."""
        logger.info("Running setup_hook…")

        # Soundboard services
        self.http_session = aiohttp.ClientSession()
        platform = DiscordPlatform(
            self,
            self.http_session,
            max_sound_size=self.settings.max_sound_size_bytes,
        )
        controller = PlaybackController(
            self.store,
            DiscordVoiceConnector(self, timeout=self.settings.voice_join_timeout),
            ffmpeg_encoder,
            join_timeout=self.settings.voice_join_timeout,
        )
        self.soundboard = Soundboard(
            self.store,
            platform,
            controller,
            sounds_channel=self.settings.sounds_channel,
            commands_channel=self.settings.commands_channel,
            entrance_delay=self.settings.entrance_delay,
        )

        # Load cogs
        for cog_path in COGS:
            try:
                await self.load_extension(cog_path)
                logger.info("Loaded cog: %s", cog_path)
            except Exception as exc:
                logger.error("Failed to load cog %s: %s", cog_path, exc)

        self.tree.error(self.on_app_command_error)

        # Sync slash commands
        try:
            synced = await self.tree.sync()
            logger.info("Synced %d slash commands", len(synced))
        except Exception as exc:
            logger.error("Failed to sync commands: %s", exc)

        # Start health-check HTTP server
        await self._start_health_server()

        # Start background tasks
        self.background_tasks = BackgroundTasks(self)

    async def on_ready(self) -> None:
        logger.info("🔊 %s is online! Guilds: %d", self.user, len(self.guilds))
        await self.change_presence(
            activity=discord.Activity(
                type=discord.ActivityType.listening,
                name="/play • /sounds",
            )
        )

    # ── Shutdown ─────────────────────────────────────────────────────

    async def close(self) -> None:
        logger.info("Shutting down…")
        if self.background_tasks:
            self.background_tasks.stop()
        if self.soundboard:
            self.soundboard.presence.cancel_pending()
        if self.http_session and not self.http_session.closed:
            await self.http_session.close()
        if self._health_runner:
            await self._health_runner.cleanup()
        await super().close()

    # ── Global Error Handler ─────────────────────────────────────────

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        """Global handler for unhandled slash-command errors."""
        if isinstance(error, app_commands.CheckFailure):
            return  # interaction_check already replied
        logger.error("Unhandled app command error: %s", error, exc_info=error)
        embed = Embedder.error(
            "Something went wrong",
            "An unexpected error occurred. Please try again later.",
        )
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as exc:
            logger.debug("Could not deliver error reply: %s", exc)  # Interaction may have expired

    # ── Health Check Server ──────────────────────────────────────────

    async def _start_health_server(self) -> None:
        """Start a tiny HTTP server so the host knows the bot is alive."""
        app = web.Application()
        app.router.add_get("/", self._health_handler)
        app.router.add_get("/health", self._health_handler)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "0.0.0.0", self.settings.port)
        await site.start()
        self._health_runner = runner
        logger.info("Health-check server listening on port %d", self.settings.port)

    async def _health_handler(self, _request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "bot": str(self.user),
                "guilds": len(self.guilds),
                "latency_ms": round(self.latency * 1000, 2),
                "sounds": self.store.sound_count(),
            }
        )


# ── Entry Point ──────────────────────────────────────────────────────
def main() -> None:
    errors = settings.validate()
    if errors:
        for e in errors:
            logger.critical("CONFIG ERROR: %s", e)
        sys.exit(1)

    bot = SoundboardBot(settings)

    try:
        bot.run(settings.discord_token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as exc:
        logger.critical("Bot crashed: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
