"""Discord bot helpers: faction/member resolution, DB session context, channel lookup."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime

import discord
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.core.errors import FactionNotRegistered, NotAFactionMember
from factionbot.db.engine import get_session
from factionbot.db.models import FactionRow, MemberRow
from factionbot.db.repository import Repository
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)

TEXT_CHANNEL_TYPES = (discord.ChannelType.text, discord.ChannelType.news)


@dataclass(frozen=True)
class FactionInfo:
    """Resolved faction for the guild an interaction came from."""

    id: str
    name: str
    prefix: str
    timezone: str
    guild_id: str
    admin_role_id: str | None = None
    meeting_channel_id: str | None = None
    radio_channel_id: str | None = None
    voting_channel_id: str | None = None
    fine_log_channel_id: str | None = None

    @classmethod
    def from_row(cls, row: FactionRow) -> FactionInfo:
        return cls(
            id=row.id,
            name=row.name,
            prefix=row.prefix,
            timezone=row.timezone,
            guild_id=row.discord_guild_id,
            admin_role_id=row.admin_role_id,
            meeting_channel_id=row.meeting_channel_id,
            radio_channel_id=row.radio_channel_id,
            voting_channel_id=row.voting_channel_id,
            fine_log_channel_id=row.fine_log_channel_id,
        )


@dataclass(frozen=True)
class MemberInfo:
    """Resolved membership of the invoking user."""

    id: str
    discord_user_id: str
    rank: Rank
    joined_at: datetime | None = None
    contact_info: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: MemberRow) -> MemberInfo:
        return cls(
            id=row.id,
            discord_user_id=row.discord_user_id,
            rank=Rank(row.rank),
            joined_at=row.joined_at,
            contact_info=dict(row.contact_info or {}),
        )


@asynccontextmanager
async def db_session(
    engine: AsyncEngine,
) -> AsyncGenerator[Repository, None]:
    """Yield a Repository bound to a fresh async session."""
    async with get_session(engine) as session:
        yield Repository(session)


async def find_faction(engine: AsyncEngine, guild_id: str) -> FactionInfo | None:
    async with db_session(engine) as repo:
        row = await repo.get_faction_by_guild(guild_id)
        return FactionInfo.from_row(row) if row else None


async def find_member(engine: AsyncEngine, faction_id: str, user_id: str) -> MemberInfo | None:
    async with db_session(engine) as repo:
        row = await repo.get_member(faction_id, user_id)
        return MemberInfo.from_row(row) if row else None


async def resolve_member(
    engine: AsyncEngine,
    guild_id: str,
    user_id: str,
) -> tuple[FactionInfo, MemberInfo]:
    """Look up the faction for a guild and the caller's membership in it.

    Raises FactionNotRegistered if the guild has no faction and
    NotAFactionMember if the user has no member row. Database errors
    propagate to the caller.
    """
    faction = await find_faction(engine, guild_id)
    if faction is None:
        raise FactionNotRegistered()
    member = await find_member(engine, faction.id, user_id)
    if member is None:
        raise NotAFactionMember()
    return faction, member


def channel_ref(channel: discord.abc.GuildChannel | None) -> dict[str, object] | None:
    """Reduce a channel option to the fields option validation needs."""
    if channel is None:
        return None
    return {
        "id": str(channel.id),
        "name": channel.name,
        "text_capable": channel.type in TEXT_CHANNEL_TYPES,
    }


def get_text_channel(
    client: discord.Client | None,
    channel_id: str | None,
) -> discord.TextChannel | None:
    """Return a cached messageable channel by id, or None."""
    if client is None or not channel_id:
        return None
    channel = client.get_channel(int(channel_id))
    if isinstance(channel, discord.abc.Messageable):
        return channel  # type: ignore[return-value]
    return None


def get_partial_message(
    client: discord.Client | None,
    channel_id: str | int | None,
    message_id: str | int | None,
) -> discord.PartialMessage | None:
    """Reference a message for editing or reaction changes without fetching it."""
    if not message_id:
        return None
    channel = get_text_channel(client, str(channel_id) if channel_id else None)
    if channel is None:
        return None
    return channel.get_partial_message(int(message_id))


async def send_best_effort(
    channel: discord.abc.Messageable | None,
    event: str,
    content: str | None = None,
    *,
    embed: discord.Embed | None = None,
) -> discord.Message | None:
    """Post to a channel, logging instead of raising if Discord refuses."""
    if channel is None:
        logger.info("%s_skipped reason=no_channel", event)
        return None
    try:
        return await channel.send(content, embed=embed)
    except discord.HTTPException:
        logger.exception("%s_failed", event)
        return None
