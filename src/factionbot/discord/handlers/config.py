"""/config prefix, admin, timezone and channels."""

from __future__ import annotations

import logging
from dataclasses import replace

from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_faction_embed
from factionbot.discord.helpers import FactionInfo, db_session
from factionbot.models.commands import (
    ConfigAdminOptions,
    ConfigChannelsOptions,
    ConfigPrefixOptions,
    ConfigTimezoneOptions,
)
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)


async def _apply(ctx: CommandContext, **values: str) -> FactionInfo:
    faction, member = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        await repo.update_faction(faction.id, **values)
    logger.info(
        "faction_configured faction=%s fields=%s by=%s",
        faction.id,
        ",".join(sorted(values)),
        member.discord_user_id,
    )
    return replace(faction, **values)


async def handle_config_prefix(ctx: CommandContext, options: ConfigPrefixOptions) -> None:
    faction = await _apply(ctx, prefix=options.prefix)
    await ctx.responder.send(embed=build_faction_embed(faction, title="Prefix updated"))


async def handle_config_admin(ctx: CommandContext, options: ConfigAdminOptions) -> None:
    faction = await _apply(ctx, admin_role_id=options.role_id)
    await ctx.responder.send(embed=build_faction_embed(faction, title="Admin role updated"))


async def handle_config_timezone(ctx: CommandContext, options: ConfigTimezoneOptions) -> None:
    faction = await _apply(ctx, timezone=options.timezone)
    await ctx.responder.send(embed=build_faction_embed(faction, title="Timezone updated"))


async def handle_config_channels(ctx: CommandContext, options: ConfigChannelsOptions) -> None:
    faction = await _apply(ctx, **options.columns())
    await ctx.responder.send(embed=build_faction_embed(faction, title="Channels updated"))


ROUTES = {
    ("config", "prefix"): Route(handle_config_prefix, ConfigPrefixOptions, min_rank=Rank.OFFICER),
    ("config", "admin"): Route(handle_config_admin, ConfigAdminOptions, min_rank=Rank.OFFICER),
    ("config", "timezone"): Route(
        handle_config_timezone, ConfigTimezoneOptions, min_rank=Rank.OFFICER
    ),
    ("config", "channels"): Route(
        handle_config_channels, ConfigChannelsOptions, min_rank=Rank.OFFICER
    ),
}
