# =============================================================================
#  Mediacord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import discord
from discord.ext import commands
from discord import Option
from discord import errors as discord_errors
from datetime import datetime, timezone
import logging
from common.config import Config, BACKEND_PHOTOS
from mediabot.destinations import ContainerNotFound
from mediabot.history import DiscordChannelSource
from mediabot.sync import SyncProgress, SyncSetupError, parse_sync_window

logger = logging.getLogger("mediabot")

config = Config(logger=logger)

GUILD_IDS: list[int] | None = config.COMMAND_GUILD_IDS or None


def guild_scoped_slash_command(*dargs, **dkwargs):
    """Scope slash commands to COMMAND_GUILD_IDS when configured, else global."""
    dkwargs.setdefault("guild_ids", GUILD_IDS)
    return commands.slash_command(*dargs, **dkwargs)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def format_progress(p: SyncProgress) -> str:
    text = (
        "🔄 Syncing...\n"
        f"📊 {p.done}/{p.total} media\n"
        f"✅ {p.uploaded} uploaded"
    )
    if p.failed:
        text += f" | ❌ {p.failed} failed"
    return text


def format_summary(result) -> str:
    text = (
        "✅ Sync complete!\n"
        f"💬 {_plural(result.messages, 'message')} with new media\n"
        f"🖼️ {result.total} media found\n"
        f"☁️ {result.uploaded} uploaded"
    )
    if result.failed:
        text += f"\n⚠️ {result.failed} failed"
    return text


class MediaCommands(commands.Cog):
    """
    Slash commands for managing monitored channels and running backfills.
    """

    def __init__(self, bot: discord.Bot):
        self.bot = bot
        self.allowed_users = getattr(config, "COMMAND_USERS", []) or []

    @property
    def app(self):
        return self.bot.app

    async def cog_check(self, ctx: discord.ApplicationContext):
        """
        Only COMMAND_USERS may run commands; without that list, members with
        Manage Server may. Logs every executed command once.
        """
        cmd = ctx.command
        guild_name = ctx.guild.name if ctx.guild else "DM"

        if self.allowed_users:
            allowed = ctx.user.id in self.allowed_users
        else:
            perms = getattr(ctx.user, "guild_permissions", None)
            allowed = bool(perms and perms.manage_guild)

        if not allowed:
            await ctx.respond(
                "You are not authorized to use this command.", ephemeral=True
            )
            logger.warning(
                f"[⚠️] Unauthorized access: {ctx.user.name} ({ctx.user.id}) attempted to run "
                f"command '{cmd.name if cmd else 'unknown'}' in {guild_name}."
            )
            return False

        logger.info(
            f"[⚡] {ctx.user.name} ({ctx.user.id}) executed the '{cmd.name if cmd else 'unknown'}' command in {guild_name}."
        )
        return True

    @commands.Cog.listener()
    async def on_application_command_error(self, ctx, error):
        """
        Permission failures are already answered by cog_check; everything
        else is logged with a traceback.
        """
        orig = getattr(error, "original", None)
        err = orig or error

        if isinstance(err, (commands.CheckFailure, discord_errors.CheckFailure)):
            return

        cmd = ctx.command.name if ctx.command else "<unknown>"
        logger.exception(f"Error in command '{cmd}':", exc_info=err)

    @commands.Cog.listener()
    async def on_ready(self):
        if not self.allowed_users:
            logger.warning(
                "[⚠️] No command users configured. Commands are limited to members with Manage Server."
            )
        else:
            logger.debug("[⚙️] Commands permissions set for users: %s", self.allowed_users)

    def _ok_embed(self, title: str, description: str) -> discord.Embed:
        return discord.Embed(
            title=title,
            description=description,
            color=discord.Color.blurple(),
            timestamp=datetime.now(timezone.utc),
        )

    def _err_embed(self, title: str, description: str) -> discord.Embed:
        return discord.Embed(
            title=title,
            description=description,
            color=discord.Color.red(),
            timestamp=datetime.now(timezone.utc),
        )

    @guild_scoped_slash_command(
        name="setup",
        description="Add a channel to monitor for images and videos.",
    )
    async def setup_channel(
        self,
        ctx: discord.ApplicationContext,
        channel: discord.TextChannel = Option(
            discord.TextChannel,
            "The text channel to monitor for media",
            required=True,
        ),
    ):
        if not ctx.guild:
            return await ctx.respond(
                "❌ This command can only be used in a server.", ephemeral=True
            )

        store = self.app.monitored
        if not store.add(ctx.guild.id, channel.id):
            return await ctx.respond(
                f"ℹ️ {channel.mention} is already being monitored.", ephemeral=True
            )

        total = len(store.channels_for(ctx.guild.id))
        logger.info(
            "[📝] Added channel %s (%s) in guild %s. Total: %d",
            channel.name,
            channel.id,
            ctx.guild.id,
            total,
        )
        await ctx.respond(
            f"✅ Successfully added {channel.mention} to monitoring! "
            f"({_plural(total, 'channel')} total)",
            ephemeral=True,
        )

    @guild_scoped_slash_command(
        name="remove",
        description="Remove a channel from monitoring.",
    )
    async def remove_channel(
        self,
        ctx: discord.ApplicationContext,
        channel: discord.TextChannel = Option(
            discord.TextChannel,
            "The text channel to stop monitoring",
            required=True,
        ),
    ):
        if not ctx.guild:
            return await ctx.respond(
                "❌ This command can only be used in a server.", ephemeral=True
            )

        store = self.app.monitored
        if not store.remove(ctx.guild.id, channel.id):
            return await ctx.respond(
                f"ℹ️ {channel.mention} is not being monitored.", ephemeral=True
            )

        remaining = len(store.channels_for(ctx.guild.id))
        logger.info(
            "[🗑️] Removed channel %s (%s) from guild %s. Remaining: %d",
            channel.name,
            channel.id,
            ctx.guild.id,
            remaining,
        )
        await ctx.respond(
            f"✅ Removed {channel.mention} from monitoring. "
            f"({_plural(remaining, 'channel')} remaining)",
            ephemeral=True,
        )

    @guild_scoped_slash_command(
        name="status",
        description="Check which channels are being monitored.",
    )
    async def status(self, ctx: discord.ApplicationContext):
        if not ctx.guild:
            return await ctx.respond(
                "❌ This command can only be used in a server.", ephemeral=True
            )

        channels = sorted(self.app.monitored.channels_for(ctx.guild.id))
        if not channels:
            return await ctx.respond(
                "❌ No channels are currently being monitored. Use `/setup` to add a channel.",
                ephemeral=True,
            )

        ledger = self.app.ledger
        lines = [
            f"• <#{cid}> ({_plural(ledger.count(cid), 'synced message')})"
            for cid in channels
        ]
        embed = self._ok_embed(
            f"📊 Monitoring {_plural(len(channels), 'channel')}",
            "\n".join(lines),
        )
        embed.set_footer(text=f"Storage: {self.app.store.name}")
        await ctx.respond(embed=embed, ephemeral=True)

    @guild_scoped_slash_command(
        name="sync",
        description="Upload media from this channel's history.",
    )
    async def sync(
        self,
        ctx: discord.ApplicationContext,
        days: int = Option(
            int, "Sync messages from the last N days", required=False, min_value=1
        ),
        since: str = Option(
            str, "Sync messages since a date (YYYY-MM-DD)", required=False
        ),
        limit: int = Option(
            int, "Sync the most recent N messages", required=False, min_value=1
        ),
    ):
        await ctx.defer(ephemeral=True)

        channel = ctx.channel
        if not ctx.guild:
            return await ctx.edit(content="❌ This command can only be used in a server.")
        if not isinstance(channel, discord.TextChannel):
            return await ctx.edit(content="❌ This command can only be used in text channels.")

        try:
            window = parse_sync_window(
                days=days,
                since=since,
                limit=limit,
                default_days=config.SYNC_DEFAULT_DAYS,
            )
        except SyncSetupError as e:
            return await ctx.edit(content=f"❌ {e}")

        async def _progress(p: SyncProgress) -> None:
            await ctx.edit(content=format_progress(p))

        await ctx.edit(content=f"🔄 Syncing {window.description}...")
        try:
            result = await self.app.pipeline.run(
                DiscordChannelSource(channel),
                channel.id,
                channel.name,
                window,
                progress=_progress,
            )
        except SyncSetupError as e:
            logger.error("[⛔] Sync of #%s could not start: %s", channel.name, e)
            return await ctx.edit(content=f"❌ {e}")
        except Exception:
            logger.exception("[⛔] Error during sync of #%s", channel.name)
            return await ctx.edit(
                content="❌ An error occurred during sync. Check logs for details."
            )

        await ctx.edit(content=format_summary(result))

    @guild_scoped_slash_command(
        name="storage_test",
        description="Check that the configured media storage is reachable.",
    )
    async def storage_test(self, ctx: discord.ApplicationContext):
        await ctx.defer(ephemeral=True)
        store = self.app.store
        await ctx.edit(content=f"🔍 Testing {store.name} connection...")

        if await store.test_connection():
            await ctx.edit(content=f"✅ {store.name} is working correctly!")
        else:
            await ctx.edit(
                content=f"❌ {store.name} test failed. Check logs for details."
            )

    @guild_scoped_slash_command(
        name="album_link",
        description="Share this channel's Google Photos album and get its link.",
    )
    async def album_link(self, ctx: discord.ApplicationContext):
        await ctx.defer(ephemeral=True)

        if config.STORAGE_BACKEND != BACKEND_PHOTOS:
            return await ctx.edit(
                content="ℹ️ Album links are only available with the Google Photos backend."
            )

        channel = ctx.channel
        name = getattr(channel, "name", None) or str(ctx.channel_id)
        try:
            album_id = await self.app.resolver.resolve(name)
            try:
                url = await self.app.store.share_album(album_id)
            except ContainerNotFound:
                album_id = await self.app.resolver.refresh(name, album_id)
                url = await self.app.store.share_album(album_id)
        except Exception:
            logger.exception("[⛔] Could not share album for #%s", name)
            url = None

        if not url:
            return await ctx.edit(
                embed=self._err_embed(
                    "No share link", "Could not share this channel's album. Check logs."
                )
            )
        await ctx.edit(embed=self._ok_embed(f"📸 #{name}", url))


def setup(bot: discord.Bot):
    bot.add_cog(MediaCommands(bot))
