"""/radio set, /radio view and /radio announce."""

from __future__ import annotations

import logging

from factionbot.core.errors import OptionsInvalid
from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_radio_announcement_embed, build_radio_embed
from factionbot.discord.helpers import db_session, get_text_channel
from factionbot.models.commands import NoOptions, RadioAnnounceOptions, RadioSetOptions
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)


async def handle_radio_set(ctx: CommandContext, options: RadioSetOptions) -> None:
    faction, member = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        await repo.upsert_radio_settings(
            faction.id, options.frequency, options.format, member.discord_user_id
        )
    logger.info(
        "radio_set faction=%s frequency=%s format=%s",
        faction.id,
        options.frequency,
        options.format.value,
    )
    await ctx.responder.send(
        embed=build_radio_embed(options.frequency, options.format.value, member.discord_user_id)
    )


async def handle_radio_view(ctx: CommandContext, options: NoOptions) -> None:
    faction, _ = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        radio = await repo.get_radio_settings(faction.id)
    if radio is None:
        await ctx.responder.send("No radio frequency has been set yet.")
        return
    await ctx.responder.send(embed=build_radio_embed(radio.frequency, radio.format, radio.updated_by))


async def handle_radio_announce(ctx: CommandContext, options: RadioAnnounceOptions) -> None:
    """Post a message to the radio channel along with the current frequency."""
    faction, _ = ctx.require_member()
    channel = get_text_channel(ctx.bot, faction.radio_channel_id)
    if channel is None:
        raise OptionsInvalid("Set a radio channel first with `/config channels`.")
    async with db_session(ctx.engine) as repo:
        radio = await repo.get_radio_settings(faction.id)

    embed = build_radio_announcement_embed(
        options.message,
        ctx.interaction.user.display_name,
        frequency=radio.frequency if radio else None,
        radio_format=radio.format if radio else None,
    )
    await channel.send(embed=embed)
    logger.info("radio_announced faction=%s", faction.id)
    await ctx.responder.send("Announcement posted.")


ROUTES = {
    ("radio", "set"): Route(handle_radio_set, RadioSetOptions, min_rank=Rank.OFFICER),
    ("radio", "view"): Route(handle_radio_view),
    ("radio", "announce"): Route(handle_radio_announce, RadioAnnounceOptions),
}
