"""Slash command handlers, driven through their callbacks with a fake context."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from common.stores import MonitoredChannelStore, SyncLedger
from mediabot.commands import MediaCommands
from mediabot.sync import SyncResult, SyncSetupError


def _ctx(guild_id=1):
    ctx = MagicMock()
    ctx.guild = SimpleNamespace(id=guild_id, name="Test Guild") if guild_id else None
    ctx.defer = AsyncMock()
    ctx.edit = AsyncMock()
    ctx.respond = AsyncMock()

    channel = MagicMock(spec=discord.TextChannel)
    channel.id = 77
    channel.name = "general"
    ctx.channel = channel
    return ctx


def _channel(channel_id=10, name="general"):
    return SimpleNamespace(id=channel_id, name=name, mention=f"<#{channel_id}>")


@pytest.fixture
def app(tmp_path):
    return SimpleNamespace(
        monitored=MonitoredChannelStore(tmp_path / "monitored-channels.json"),
        ledger=SyncLedger(tmp_path / "synced-messages.json"),
        store=SimpleNamespace(name="Fake Storage"),
        pipeline=SimpleNamespace(run=AsyncMock()),
    )


@pytest.fixture
def cog(app):
    return MediaCommands(SimpleNamespace(app=app))


def _edits(ctx):
    return [c.kwargs.get("content") for c in ctx.edit.await_args_list]


# =============================================================================
# /sync
# =============================================================================


class TestSyncCommand:
    @pytest.mark.asyncio
    async def test_bad_since_reports_error_and_reads_no_history(self, cog, app):
        ctx = _ctx()

        await MediaCommands.sync.callback(cog, ctx, days=None, since="not-a-date", limit=None)

        app.pipeline.run.assert_not_awaited()
        assert "Invalid date format" in _edits(ctx)[-1]
        assert _edits(ctx)[-1].startswith("❌")

    @pytest.mark.asyncio
    async def test_runs_pipeline_and_shows_summary(self, cog, app):
        app.pipeline.run.return_value = SyncResult(messages=1, total=2, uploaded=2)
        ctx = _ctx()

        await MediaCommands.sync.callback(cog, ctx, days=None, since=None, limit=10)

        args = app.pipeline.run.await_args.args
        assert args[1:3] == (77, "general")
        assert args[3].limit == 10
        assert "Sync complete" in _edits(ctx)[-1]
        assert "2 uploaded" in _edits(ctx)[-1]

    @pytest.mark.asyncio
    async def test_pipeline_setup_error_is_reported(self, cog, app):
        app.pipeline.run.side_effect = SyncSetupError("Could not read channel history: Missing Access")
        ctx = _ctx()

        await MediaCommands.sync.callback(cog, ctx, days=3, since=None, limit=None)

        assert _edits(ctx)[-1] == "❌ Could not read channel history: Missing Access"

    @pytest.mark.asyncio
    async def test_outside_a_guild_is_refused(self, cog, app):
        ctx = _ctx(guild_id=None)

        await MediaCommands.sync.callback(cog, ctx, days=None, since=None, limit=5)

        app.pipeline.run.assert_not_awaited()
        assert "only be used in a server" in _edits(ctx)[-1]


# =============================================================================
# /setup, /remove, /status
# =============================================================================


class TestChannelCommands:
    @pytest.mark.asyncio
    async def test_setup_then_remove_drops_empty_guild(self, cog, app, tmp_path):
        ctx = _ctx()

        await MediaCommands.setup_channel.callback(cog, ctx, channel=_channel())
        assert app.monitored.is_monitored(1, 10)
        assert "Successfully added <#10>" in ctx.respond.await_args.args[0]

        await MediaCommands.remove_channel.callback(cog, ctx, channel=_channel())
        assert app.monitored.guild_count() == 0
        assert "Removed <#10>" in ctx.respond.await_args.args[0]

        reloaded = MonitoredChannelStore(tmp_path / "monitored-channels.json")
        reloaded.load()
        assert reloaded.guild_count() == 0

    @pytest.mark.asyncio
    async def test_setup_twice_is_reported(self, cog, app):
        ctx = _ctx()

        await MediaCommands.setup_channel.callback(cog, ctx, channel=_channel())
        await MediaCommands.setup_channel.callback(cog, ctx, channel=_channel())

        assert "already being monitored" in ctx.respond.await_args.args[0]
        assert app.monitored.channels_for(1) == {"10"}

    @pytest.mark.asyncio
    async def test_remove_unknown_channel(self, cog, app):
        ctx = _ctx()

        await MediaCommands.remove_channel.callback(cog, ctx, channel=_channel(99))

        assert "is not being monitored" in ctx.respond.await_args.args[0]

    @pytest.mark.asyncio
    async def test_status_lists_channels_with_synced_counts(self, cog, app):
        app.monitored.add(1, 10)
        app.ledger.mark_synced(10, 500)
        ctx = _ctx()

        await MediaCommands.status.callback(cog, ctx)

        embed = ctx.respond.await_args.kwargs["embed"]
        assert "<#10> (1 synced message)" in embed.description
        assert embed.footer.text == "Storage: Fake Storage"

    @pytest.mark.asyncio
    async def test_status_without_channels(self, cog, app):
        ctx = _ctx()

        await MediaCommands.status.callback(cog, ctx)

        assert "No channels are currently being monitored" in ctx.respond.await_args.args[0]
