"""/profile view and /profile edit."""

from __future__ import annotations

import logging

from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_profile_embed
from factionbot.discord.helpers import db_session
from factionbot.models.commands import NoOptions, ProfileEditOptions

logger = logging.getLogger(__name__)


async def handle_profile_view(ctx: CommandContext, options: NoOptions) -> None:
    faction, member = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        fine_count = await repo.count_fines(faction.id, member.discord_user_id)
        attendance = await repo.get_attendance_counts(faction.id, member.discord_user_id)

    await ctx.responder.send(
        embed=build_profile_embed(
            ctx.interaction.user.display_name,
            member,
            fine_count,
            attendance,
            faction_name=faction.name,
        )
    )


async def handle_profile_edit(ctx: CommandContext, options: ProfileEditOptions) -> None:
    """Merge the supplied contact fields over the stored ones."""
    faction, member = ctx.require_member()
    contact = dict(member.contact_info)
    if options.phone is not None:
        contact["phone"] = options.phone
    if options.twitter is not None:
        contact["twitter"] = options.twitter

    async with db_session(ctx.engine) as repo:
        await repo.update_member_contact(faction.id, member.id, contact)

    logger.info("profile_updated faction=%s member=%s", faction.id, member.id)
    await ctx.responder.send("Your profile has been updated.")


ROUTES = {
    ("profile", "view"): Route(handle_profile_view),
    ("profile", "edit"): Route(handle_profile_edit, ProfileEditOptions),
}
