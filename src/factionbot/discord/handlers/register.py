"""/register: create the faction for a guild and make the caller its leader."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from factionbot.core.errors import AlreadyRegistered
from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_faction_embed, build_welcome_embed
from factionbot.discord.helpers import FactionInfo, db_session, get_text_channel, send_best_effort
from factionbot.models.commands import RegisterOptions
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)


async def handle_register(ctx: CommandContext, options: RegisterOptions) -> None:
    """Create the faction row and the caller's LEADER row, then greet each channel.

    The two inserts share one session, so a failure in either leaves no
    faction behind. Welcome notices are best effort.
    """
    if ctx.faction is not None:
        raise AlreadyRegistered()

    guild_id = ctx.invocation.guild_id or ""
    channels = options.channels()
    try:
        async with db_session(ctx.engine) as repo:
            row = await repo.create_faction(
                guild_id=guild_id,
                name=options.name,
                prefix=options.prefix,
                timezone=options.timezone,
                admin_role_id=options.admin_role_id,
                meeting_channel_id=channels["meeting"].id if "meeting" in channels else None,
                radio_channel_id=channels["radio"].id if "radio" in channels else None,
                voting_channel_id=channels["voting"].id if "voting" in channels else None,
                fine_log_channel_id=channels["fine_log"].id if "fine_log" in channels else None,
            )
            await repo.add_member(row.id, ctx.invocation.user_id, Rank.LEADER)
            faction = FactionInfo.from_row(row)
    except IntegrityError:
        # Another /register for this guild won the race.
        raise AlreadyRegistered() from None

    logger.info(
        "faction_registered faction=%s guild=%s leader=%s",
        faction.id,
        guild_id,
        ctx.invocation.user_id,
    )

    for purpose, channel in channels.items():
        await send_best_effort(
            get_text_channel(ctx.bot, channel.id),
            "welcome_notice",
            embed=build_welcome_embed(faction.name, purpose),
        )

    await ctx.responder.send(
        embed=build_faction_embed(faction, title=f"{faction.name} registered"),
        ephemeral=False,
    )


ROUTES = {
    ("register", None): Route(
        handle_register,
        RegisterOptions,
        needs_member=False,
        requires_manage_guild=True,
        ephemeral=False,
    ),
}
