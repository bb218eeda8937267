"""
Soundboard Cog — clip playback, entrances, and the sounds channel.

Commands:
    /play           — Play a sound in your voice channel
    /skip           — Stop the current sound, optionally playing another
    /stop           — Stop the current sound
    /connect        — Join your voice channel
    /sounds         — List every sound
    /find           — Link to the message holding a sound
    /rename         — Rename a sound
    /entrance       — Set your entrance sound
    /entrance-clear — Remove your entrance sound
    /volume         — Set a sound's volume (0-512, 256 = 100%)
    /soundboard-help — Show usage
    /reload-sounds  — Rebuild the sound index (Manage Server)

System requirement:
    FFmpeg must be installed on the host system (e.g. ``apt install ffmpeg``)
    for voice playback to work.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Coroutine, List, Optional, Set

import discord
from discord import app_commands
from discord.ext import commands

from config.constants import HYGIENE_DELETE_DELAY, MAX_AUTOCOMPLETE_CHOICES
from utils.embedder import Embedder
from utils.errors import NotInVoice, SoundboardError
from utils.file_handler import FileHandler
from utils.models import VoiceTransition
from utils.platform import message_record

if TYPE_CHECKING:
    from bot import SoundboardBot
    from utils.soundboard import Soundboard

logger = logging.getLogger(__name__)

MAX_EMBEDS_PER_MESSAGE = 10


# =====================================================================
#  Helpers
# =====================================================================


async def _send(
    interaction: discord.Interaction,
    embed: discord.Embed,
    *,
    ephemeral: bool = False,
) -> None:
    """Reply, or follow up if the interaction was already answered."""
    if interaction.response.is_done():
        await interaction.followup.send(embed=embed, ephemeral=ephemeral)
    else:
        await interaction.response.send_message(embed=embed, ephemeral=ephemeral)


async def _send_error(interaction: discord.Interaction, exc: SoundboardError) -> None:
    try:
        await _send(interaction, Embedder.error(exc.title, exc.message), ephemeral=True)
    except discord.HTTPException as send_exc:
        logger.warning("Could not deliver error reply: %s", send_exc)


def _voice_channel_id(interaction: discord.Interaction) -> Optional[int]:
    member = interaction.user
    if isinstance(member, discord.Member) and member.voice and member.voice.channel:
        return member.voice.channel.id
    return None


def _require_voice(interaction: discord.Interaction) -> int:
    channel_id = _voice_channel_id(interaction)
    if channel_id is None:
        raise NotInVoice()
    return channel_id


async def sound_autocomplete(
    interaction: discord.Interaction, current: str
) -> List[app_commands.Choice[str]]:
    bot = interaction.client
    guild_id = interaction.guild_id
    if guild_id is None or not bot.store.has(guild_id):  # type: ignore[attr-defined]
        return []
    names = await bot.soundboard.list_sounds(guild_id)  # type: ignore[attr-defined]
    needle = current.lower()
    return [
        app_commands.Choice(name=name, value=name)
        for name in names
        if needle in name.lower()
    ][:MAX_AUTOCOMPLETE_CHOICES]


# =====================================================================
#  The Cog
# =====================================================================


class SoundboardCog(commands.Cog, name="Soundboard"):
    """Clip playback, entrance sounds, and #sounds channel upkeep.

    Requires FFmpeg to be installed on the host system for voice
    playback (``apt install ffmpeg``).
    """

    def __init__(self, bot: "SoundboardBot") -> None:
        self.bot = bot
        self._playback_tasks: Set[asyncio.Task] = set()

    @property
    def soundboard(self) -> "Soundboard":
        return self.bot.soundboard

    # ── Cog-wide gate ────────────────────────────────────────────────

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Runs before every soundboard slash-command."""
        if interaction.guild_id is None:
            await interaction.response.send_message(
                embed=Embedder.error("Server Only", "This command can only be used in a server."),
                ephemeral=True,
            )
            return False

        if interaction.channel_id is not None and not self.soundboard.is_commands_channel(
            interaction.guild_id, interaction.channel_id
        ):
            await interaction.response.send_message(
                embed=Embedder.warning(
                    "Wrong Channel",
                    f"Use **#{self.bot.settings.commands_channel}** for soundboard commands.",
                ),
                ephemeral=True,
            )
            return False

        result = self.bot.rate_limiter.check(interaction.user.id, interaction.guild_id)
        if not result.allowed:
            await interaction.response.send_message(
                embed=Embedder.rate_limited(result.retry_after), ephemeral=True
            )
            return False
        return True

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def cog_unload(self) -> None:
        self.soundboard.presence.cancel_pending()
        for task in list(self._playback_tasks):
            task.cancel()
        for guild_id in self.bot.store.guild_ids():
            self.soundboard.stop(guild_id)
        logger.info("Soundboard cog unloaded")

    # ── Background playback ──────────────────────────────────────────

    def _spawn_playback(self, interaction: discord.Interaction, coro: Coroutine) -> asyncio.Task:
        """Run *coro* detached so the command returns immediately."""
        task = asyncio.create_task(self._run_playback(interaction, coro))
        self._playback_tasks.add(task)
        task.add_done_callback(self._playback_tasks.discard)
        return task

    async def _run_playback(self, interaction: discord.Interaction, coro: Coroutine) -> None:
        try:
            await coro
        except SoundboardError as exc:
            logger.info("Guild %s: playback failed: %s", interaction.guild_id, exc.message)
            await _send_error(interaction, exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Guild %s: playback crashed: %s", interaction.guild_id, exc, exc_info=True)

    # ── /play ─────────────────────────────────────────────────────────

    @app_commands.command(name="play", description="Play a sound in your voice channel")
    @app_commands.describe(sound="Name of the sound")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def play_cmd(self, interaction: discord.Interaction, sound: str) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        try:
            channel_id = _require_voice(interaction)
            clip = await self.soundboard.find_sound(guild_id, sound)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return

        await interaction.response.send_message(
            embed=Embedder.now_playing(sound, clip.volume), ephemeral=True
        )
        self._spawn_playback(interaction, self.soundboard.play(guild_id, sound, channel_id))

    # ── /skip ─────────────────────────────────────────────────────────

    @app_commands.command(name="skip", description="Stop the current sound, optionally playing another")
    @app_commands.describe(sound="Sound to play instead (optional)")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def skip_cmd(self, interaction: discord.Interaction, sound: Optional[str] = None) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied

        if sound is None:
            if self.soundboard.stop(guild_id):
                await interaction.response.send_message(
                    embed=Embedder.success("Skipped", "⏭ Stopped the current sound.")
                )
            else:
                await interaction.response.send_message(
                    embed=Embedder.warning("Nothing Playing", "There's nothing to skip."),
                    ephemeral=True,
                )
            return

        try:
            clip = await self.soundboard.find_sound(guild_id, sound)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return

        await interaction.response.send_message(
            embed=Embedder.now_playing(sound, clip.volume), ephemeral=True
        )
        self._spawn_playback(
            interaction,
            self.soundboard.skip(guild_id, sound, _voice_channel_id(interaction)),
        )

    # ── /stop ─────────────────────────────────────────────────────────

    @app_commands.command(name="stop", description="Stop the current sound")
    async def stop_cmd(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        if self.soundboard.stop(guild_id):
            await interaction.response.send_message(
                embed=Embedder.info("Stopped", "⏹ Sound stopped.")
            )
        else:
            await interaction.response.send_message(
                embed=Embedder.warning("Nothing Playing", "No sound is currently playing."),
                ephemeral=True,
            )

    # ── /connect ──────────────────────────────────────────────────────

    @app_commands.command(name="connect", description="Join the voice channel you are in")
    async def connect_cmd(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        try:
            channel_id = _require_voice(interaction)
            await interaction.response.defer(ephemeral=True)
            await self.soundboard.connect(guild_id, channel_id)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return
        await interaction.followup.send(
            embed=Embedder.success("Connected", f"🔊 Joined <#{channel_id}>."), ephemeral=True
        )

    # ── /sounds ───────────────────────────────────────────────────────

    @app_commands.command(name="sounds", description="List every sound")
    async def sounds_cmd(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        try:
            names = await self.soundboard.list_sounds(guild_id)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return

        embeds = Embedder.sound_list(names)
        batches = [
            embeds[i : i + MAX_EMBEDS_PER_MESSAGE]
            for i in range(0, len(embeds), MAX_EMBEDS_PER_MESSAGE)
        ]
        await interaction.response.send_message(embeds=batches[0])
        for batch in batches[1:]:
            await interaction.followup.send(embeds=batch)

    # ── /find ─────────────────────────────────────────────────────────

    @app_commands.command(name="find", description="Link to the message holding a sound")
    @app_commands.describe(sound="Name of the sound")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def find_cmd(self, interaction: discord.Interaction, sound: str) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        try:
            link = await self.soundboard.sound_link(guild_id, sound)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return
        await interaction.response.send_message(
            embed=Embedder.info("Found It", f"Found this: [{sound}]({link})")
        )

    # ── /rename ───────────────────────────────────────────────────────

    @app_commands.command(name="rename", description="Rename a sound")
    @app_commands.describe(sound="Current name", new_name="New name")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def rename_cmd(
        self, interaction: discord.Interaction, sound: str, new_name: str
    ) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        await interaction.response.defer()
        try:
            await self.soundboard.rename_sound(guild_id, sound, new_name)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return
        await interaction.followup.send(
            embed=Embedder.success("Sound Renamed", f"`{sound}` is now `{new_name.strip()}`.")
        )

    # ── /entrance ─────────────────────────────────────────────────────

    @app_commands.command(name="entrance", description="Play a sound whenever you join voice")
    @app_commands.describe(sound="Name of the sound")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def entrance_cmd(self, interaction: discord.Interaction, sound: str) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        await interaction.response.defer()
        try:
            await self.soundboard.set_entrance(guild_id, interaction.user.id, sound)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return
        await interaction.followup.send(
            embed=Embedder.success("Entrance Set", f"🚪 `{sound}` will play when you join voice.")
        )

    @app_commands.command(name="entrance-clear", description="Remove your entrance sound")
    async def entrance_clear_cmd(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        await interaction.response.defer(ephemeral=True)
        try:
            previous = await self.soundboard.clear_entrance(guild_id, interaction.user.id)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return
        if previous is None:
            embed = Embedder.warning("No Entrance", "You don't have an entrance sound.")
        else:
            embed = Embedder.success("Entrance Removed", "🚪 Your entrance sound was removed.")
        await interaction.followup.send(embed=embed, ephemeral=True)

    # ── /volume ───────────────────────────────────────────────────────

    @app_commands.command(name="volume", description="Set a sound's volume (0-512, 256 = 100%)")
    @app_commands.describe(sound="Name of the sound", level="Volume (0-512, 256 = 100%)")
    @app_commands.autocomplete(sound=sound_autocomplete)
    async def volume_cmd(self, interaction: discord.Interaction, sound: str, level: int) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        await interaction.response.defer()
        try:
            await self.soundboard.adjust_volume(guild_id, sound, level)
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return
        await interaction.followup.send(
            embed=Embedder.info("Volume", f"🔊 `{sound}` volume set to **{level}**.")
        )

    # ── /soundboard-help ──────────────────────────────────────────────

    @app_commands.command(name="soundboard-help", description="Show how to use the soundboard")
    async def help_cmd(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_message(
            embed=Embedder.help(self.bot.settings.sounds_channel), ephemeral=True
        )

    # ── /reload-sounds ────────────────────────────────────────────────

    @app_commands.command(name="reload-sounds", description="Rebuild the sound list from the sounds channel")
    @app_commands.default_permissions(manage_guild=True)
    async def reload_cmd(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        if not guild_id:
            return  # interaction_check already replied
        await interaction.response.defer(ephemeral=True)
        store = self.bot.store
        try:
            if store.has(guild_id):
                ok = await self.soundboard.rebuild(guild_id) is not None
            elif await self.soundboard.setup_guild(guild_id):
                ok = store.get(guild_id).rebuilds > 0
            else:
                await interaction.followup.send(
                    embed=Embedder.error(
                        "No Sounds Channel",
                        f"Create a **#{self.bot.settings.sounds_channel}** channel first.",
                    ),
                    ephemeral=True,
                )
                return
        except SoundboardError as exc:
            await _send_error(interaction, exc)
            return

        if ok:
            count = store.sound_count(guild_id)
            embed = Embedder.success("Sounds Reloaded", f"Loaded **{count}** sound(s).")
        else:
            embed = Embedder.error(
                "Rebuild Failed",
                "Could not read the sounds channel; the previous sound list is kept.",
            )
        await interaction.followup.send(embed=embed, ephemeral=True)

    # ── Gateway listeners ─────────────────────────────────────────────

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        await self.soundboard.session_ready([g.id for g in self.bot.guilds])

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info("Joined guild %s (%d)", guild.name, guild.id)
        try:
            await self.soundboard.setup_guild(guild.id)
        except SoundboardError as exc:
            logger.error("Guild %d: setup failed: %s", guild.id, exc.message)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        self.soundboard.stop(guild.id)
        self.bot.store.discard(guild.id)
        logger.info("Left guild %s (%d)", guild.name, guild.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        """Keep #sounds tidy and index new clips as they are posted."""
        if message.author.bot or message.guild is None:
            return
        guild_id = message.guild.id
        if not self.soundboard.is_sounds_channel(guild_id, message.channel.id):
            return

        if not message.attachments:
            await self._reject_text_post(message)
            return

        clips = [a for a in message.attachments if FileHandler.is_sound(a.filename)]
        if len(clips) > 1:
            await message.reply(
                embed=Embedder.warning(
                    "One Clip Per Message",
                    "Post each sound as its own message so it can be tagged and played.",
                ),
                mention_author=False,
            )
            return
        if not clips:
            await message.reply(
                embed=Embedder.warning("Not a Sound", "Only `.mp3` files are picked up."),
                mention_author=False,
            )
            return

        try:
            name = await self.soundboard.register_upload(guild_id, message_record(message))
        except SoundboardError as exc:
            logger.error("Guild %d: could not index upload %d: %s", guild_id, message.id, exc.message)
            return
        if name:
            try:
                await message.add_reaction("✅")
            except discord.HTTPException as exc:
                logger.debug("Could not react to upload %d: %s", message.id, exc)

    async def _reject_text_post(self, message: discord.Message) -> None:
        """Warn about a text-only post in #sounds, then remove both messages."""
        try:
            warning = await message.reply("Please use this channel for files only", mention_author=False)
        except discord.HTTPException as exc:
            logger.warning("Could not warn about text post %d: %s", message.id, exc)
            return
        await asyncio.sleep(HYGIENE_DELETE_DELAY)
        for target in (message, warning):
            try:
                await target.delete()
            except discord.HTTPException as exc:
                logger.debug("Could not delete message %d: %s", target.id, exc)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Track voice membership and fire entrance sounds."""
        guild_id = member.guild.id

        if self.bot.user is not None and member.id == self.bot.user.id:
            if before.channel is not None and after.channel is None:
                if self.soundboard.stop(guild_id):
                    logger.info("Guild %d: disconnected from voice, playback stopped", guild_id)
            return

        transition = VoiceTransition(
            guild_id=guild_id,
            user_id=member.id,
            from_channel=before.channel.id if before.channel else None,
            to_channel=after.channel.id if after.channel else None,
            is_bot=member.bot,
        )
        await self.soundboard.presence.handle(transition)


# =====================================================================
#  Setup
# =====================================================================


async def setup(bot: "SoundboardBot") -> None:
    await bot.add_cog(SoundboardCog(bot))
