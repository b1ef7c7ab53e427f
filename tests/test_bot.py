"""Tests for the Discord bot wiring.

All Discord objects are mocked; no real Discord connection required.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.config import Settings
from factionbot.core.collective import (
    NUMBER_SYMBOLS,
    CollectiveActionRegistry,
    compute_poll_results,
)
from factionbot.discord.bot import (
    FactionBot,
    build_invocation,
    is_discord_enabled,
    start_discord_bot,
)
from factionbot.discord.embeds import build_help_embed, build_poll_results_embed
from factionbot.discord.helpers import FactionInfo, MemberInfo
from factionbot.models.faction import Rank


def _settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "_env_file": None,
        "factionbot_env": "production",
        "discord_bot_token": "test-token-not-real",
        "discord_client_id": "424242",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "database_key": "test-key",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def faction_bot(engine: AsyncEngine) -> FactionBot:
    return FactionBot(settings=_settings(), engine=engine, registry=CollectiveActionRegistry())


# ---------------------------------------------------------------------------
# is_discord_enabled
# ---------------------------------------------------------------------------


class TestIsDiscordEnabled:
    def test_enabled_with_token(self) -> None:
        assert is_discord_enabled(_settings()) is True

    def test_disabled_when_flag_false(self) -> None:
        assert is_discord_enabled(_settings(discord_enabled=False)) is False

    def test_skipped_in_development(self, settings: Settings) -> None:
        assert is_discord_enabled(settings) is False


# ---------------------------------------------------------------------------
# FactionBot construction
# ---------------------------------------------------------------------------


class TestFactionBotInit:
    def test_bot_creation(self, faction_bot: FactionBot, engine: AsyncEngine) -> None:
        assert faction_bot.engine is engine
        assert faction_bot.dispatcher.bot is faction_bot
        assert faction_bot.dispatcher.reminder_lead.total_seconds() == 15 * 60

    def test_reminder_lead_from_settings(self, engine: AsyncEngine) -> None:
        bot = FactionBot(
            settings=_settings(factionbot_reminder_lead_minutes=30),
            engine=engine,
            registry=CollectiveActionRegistry(),
        )
        assert bot.dispatcher.reminder_lead.total_seconds() == 30 * 60

    def test_bot_has_slash_commands(self, faction_bot: FactionBot) -> None:
        command_names = {cmd.name for cmd in faction_bot.tree.get_commands()}
        assert command_names == {
            "help",
            "ping",
            "register",
            "poll",
            "profile",
            "fine",
            "meeting",
            "radio",
            "config",
            "member",
        }

    def test_every_subcommand_has_a_route(self, faction_bot: FactionBot) -> None:
        routes = faction_bot.dispatcher.routes
        for cmd in faction_bot.tree.get_commands():
            children = getattr(cmd, "commands", None)
            if children:
                for child in children:
                    assert (cmd.name, child.name) in routes
            else:
                assert (cmd.name, None) in routes


class TestBuildInvocation:
    def test_values(self, make_interaction) -> None:
        interaction = make_interaction(user_id="77", manage_guild=True)
        invocation = build_invocation(interaction, "fine", "issue", amount=5)
        assert invocation.name == "fine issue"
        assert invocation.user_id == "77"
        assert invocation.guild_id == "999"
        assert invocation.can_manage_guild is True
        assert invocation.options == {"amount": 5}

    def test_direct_message(self, make_interaction) -> None:
        interaction = make_interaction()
        interaction.guild_id = None
        interaction.permissions = None
        invocation = build_invocation(interaction, "ping")
        assert invocation.guild_id is None
        assert invocation.can_manage_guild is False


# ---------------------------------------------------------------------------
# Reaction events
# ---------------------------------------------------------------------------


class TestReactionEvents:
    def _payload(self, *, is_bot: bool = False) -> MagicMock:
        payload = MagicMock()
        payload.message_id = 4242
        payload.user_id = 555
        payload.emoji = NUMBER_SYMBOLS[0]
        payload.member = MagicMock()
        payload.member.bot = is_bot
        return payload

    async def test_reaction_delivered(self, faction_bot: FactionBot) -> None:
        faction_bot.registry.deliver = AsyncMock(return_value=True)
        await faction_bot.on_raw_reaction_add(self._payload())
        faction_bot.registry.deliver.assert_awaited_once_with(
            4242, 555, NUMBER_SYMBOLS[0], actor_is_bot=False
        )

    async def test_bot_flag_passed(self, faction_bot: FactionBot) -> None:
        faction_bot.registry.deliver = AsyncMock(return_value=False)
        await faction_bot.on_raw_reaction_add(self._payload(is_bot=True))
        assert faction_bot.registry.deliver.await_args.kwargs["actor_is_bot"] is True

    async def test_delivery_failure_contained(self, faction_bot: FactionBot) -> None:
        faction_bot.registry.deliver = AsyncMock(side_effect=RuntimeError("db gone"))
        await faction_bot.on_raw_reaction_add(self._payload())


class TestStartDiscordBot:
    async def test_start_creates_task(self, engine: AsyncEngine) -> None:
        with patch.object(FactionBot, "start", new_callable=AsyncMock) as mock_start:
            bot = await start_discord_bot(_settings(), engine, CollectiveActionRegistry())
            assert isinstance(bot, FactionBot)
            assert bot.runner is not None and bot.runner.get_name() == "discord-bot"
            # Give the task a moment to start
            await asyncio.sleep(0.05)
            mock_start.assert_called_once_with("test-token-not-real")
            await bot.close()


# ---------------------------------------------------------------------------
# Embed builders
# ---------------------------------------------------------------------------


FACTION = FactionInfo(id="f1", name="Grove Street", prefix="!", timezone="UTC", guild_id="999")


class TestHelpEmbed:
    def test_member_sees_member_commands_only(self) -> None:
        member = MemberInfo(id="m1", discord_user_id="300", rank=Rank.MEMBER)
        names = [field.name for field in build_help_embed(FACTION, member).fields]
        assert "Members" in names
        assert "Officers" not in names

    def test_leader_sees_everything(self) -> None:
        member = MemberInfo(id="m1", discord_user_id="100", rank=Rank.LEADER)
        names = [field.name for field in build_help_embed(FACTION, member).fields]
        assert {"Members", "Officers", "Leaders"} <= set(names)


class TestPollResultsEmbed:
    def test_winner_named(self) -> None:
        results = compute_poll_results(["Beach", "Docks"], {1: 3})
        embed = build_poll_results_embed("Where?", results)
        text = " ".join(f"{f.name} {f.value}" for f in embed.fields) + (embed.description or "")
        assert "Docks" in text
        assert "100%" in text

    def test_no_votes(self) -> None:
        results = compute_poll_results(["Beach", "Docks"], {})
        embed = build_poll_results_embed("Where?", results)
        text = " ".join(f"{f.name} {f.value}" for f in embed.fields) + (embed.description or "")
        assert "No votes" in text
