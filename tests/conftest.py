"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.config import Settings
from factionbot.db.engine import create_engine, create_tables, get_session
from factionbot.db.repository import Repository

GUILD_ID = "999"
LEADER_ID = "100"
OFFICER_ID = "200"
MEMBER_ID = "300"


@pytest.fixture
def settings() -> Settings:
    """Test settings with all required values filled in."""
    return Settings(
        _env_file=None,
        factionbot_env="development",
        discord_bot_token="test-token-not-real",
        discord_client_id="424242",
        database_url="sqlite+aiosqlite:///:memory:",
        database_key="test-key",
    )


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> AsyncIterator[Repository]:
    """Yield a repository with a session bound to the in-memory database."""
    async with get_session(engine) as session:
        yield Repository(session)


@pytest.fixture
async def faction_id(engine: AsyncEngine) -> str:
    """A registered faction with a leader, an officer and a plain member."""
    from factionbot.models.faction import Rank

    async with get_session(engine) as session:
        repo = Repository(session)
        faction = await repo.create_faction(
            guild_id=GUILD_ID,
            name="Grove Street",
            prefix="!",
            timezone="UTC",
            meeting_channel_id="501",
            radio_channel_id="502",
            voting_channel_id="503",
            fine_log_channel_id="504",
        )
        await repo.add_member(faction.id, LEADER_ID, Rank.LEADER)
        await repo.add_member(faction.id, OFFICER_ID, Rank.OFFICER)
        await repo.add_member(faction.id, MEMBER_ID, Rank.MEMBER)
        return faction.id


def _make_interaction(**overrides: object) -> AsyncMock:
    """Build a fully-configured Discord interaction mock."""
    interaction = AsyncMock(spec=discord.Interaction)
    interaction.response = AsyncMock()
    interaction.followup = AsyncMock()
    interaction.user = MagicMock(spec=discord.Member)
    interaction.user.id = int(overrides.get("user_id", LEADER_ID))  # type: ignore[arg-type]
    interaction.user.display_name = overrides.get("display_name", "TestLeader")
    interaction.user.bot = False
    interaction.guild_id = int(overrides.get("guild_id", GUILD_ID))  # type: ignore[arg-type]
    interaction.permissions = MagicMock()
    interaction.permissions.manage_guild = overrides.get("manage_guild", False)
    return interaction


@pytest.fixture
def make_interaction() -> Callable[..., AsyncMock]:
    return _make_interaction


def make_message(message_id: int, channel_id: int) -> MagicMock:
    """A sent-message mock with async reaction and edit methods."""
    message = MagicMock(spec=discord.Message)
    message.id = message_id
    message.channel = MagicMock()
    message.channel.id = channel_id
    message.add_reaction = AsyncMock()
    message.edit = AsyncMock()
    message.clear_reactions = AsyncMock()
    return message


def make_channel(channel_id: int) -> MagicMock:
    """A text channel whose send() returns a message posted in it."""
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    channel.send = AsyncMock(return_value=make_message(channel_id * 10, channel_id))
    partial = MagicMock()
    partial.edit = AsyncMock()
    partial.clear_reactions = AsyncMock()
    partial.remove_reaction = AsyncMock()
    channel.get_partial_message = MagicMock(return_value=partial)
    return channel


@pytest.fixture
def channels() -> dict[int, MagicMock]:
    return {cid: make_channel(cid) for cid in (501, 502, 503, 504, 777)}


@pytest.fixture
def bot(channels: dict[int, MagicMock]) -> MagicMock:
    """A Discord client mock whose channel cache holds the faction's channels."""
    client = MagicMock(spec=discord.Client)
    client.get_channel = MagicMock(side_effect=lambda cid: channels.get(cid))
    client.latency = 0.042
    return client
