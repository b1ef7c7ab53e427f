"""/fine issue, /fine history and /fine remove.

Issuing and removing go through the rank-relative predicates in
``factionbot.core.authorization`` after the route's OFFICER check.
"""

from __future__ import annotations

import logging

from factionbot.core.authorization import can_fine, can_remove_fine, can_view_fines_of
from factionbot.core.errors import EntityNotFound, OptionsInvalid, PermissionDenied
from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_fine_embed, build_fine_history_embed
from factionbot.discord.helpers import db_session, get_text_channel, send_best_effort
from factionbot.models.commands import FineHistoryOptions, FineIssueOptions, FineRemoveOptions
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)

FINE_HISTORY_LIMIT = 10


async def handle_fine_issue(ctx: CommandContext, options: FineIssueOptions) -> None:
    faction, member = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        target = await repo.get_member(faction.id, options.target_user_id)
        if target is None:
            raise OptionsInvalid("That user is not a member of this faction.")
        if not can_fine(member.rank, member.discord_user_id, target.rank, target.discord_user_id):
            raise PermissionDenied("You can't fine a member of equal or higher rank.")
        fine = await repo.create_fine(
            faction_id=faction.id,
            target_user_id=options.target_user_id,
            issuer_id=member.discord_user_id,
            amount=options.amount,
            reason=options.reason,
        )

    logger.info(
        "fine_issued faction=%s fine=%s target=%s amount=%d",
        faction.id,
        fine.id,
        fine.target_user_id,
        fine.amount,
    )
    embed = build_fine_embed(fine)
    await send_best_effort(
        get_text_channel(ctx.bot, faction.fine_log_channel_id), "fine_log", embed=embed
    )
    await ctx.responder.send(embed=embed)


async def handle_fine_history(ctx: CommandContext, options: FineHistoryOptions) -> None:
    """Members see their own fines; officers may look up anyone or the whole faction."""
    faction, member = ctx.require_member()
    target_id = options.target_user_id
    if target_id is None and member.rank is Rank.MEMBER:
        target_id = member.discord_user_id
    if not can_view_fines_of(member.rank, member.discord_user_id, target_id):
        raise PermissionDenied("You can only view your own fines.")

    async with db_session(ctx.engine) as repo:
        fines = await repo.get_fines(faction.id, target_id, limit=FINE_HISTORY_LIMIT)

    await ctx.responder.send(embed=build_fine_history_embed(fines, target_id))


async def handle_fine_remove(ctx: CommandContext, options: FineRemoveOptions) -> None:
    faction, member = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        fine = await repo.get_fine(faction.id, options.fine_id)
        if fine is None:
            raise EntityNotFound(f"No fine `{options.fine_id}` in this faction.")
        if not can_remove_fine(member.rank, member.discord_user_id, fine.issuer_id):
            raise PermissionDenied("Only the officer who issued this fine or a leader can remove it.")
        await repo.delete_fine(faction.id, fine.id)

    logger.info("fine_removed faction=%s fine=%s by=%s", faction.id, fine.id, member.discord_user_id)
    await send_best_effort(
        get_text_channel(ctx.bot, faction.fine_log_channel_id),
        "fine_log",
        embed=build_fine_embed(fine, title="Fine Removed"),
    )
    await ctx.responder.send(f"Fine `{fine.id}` removed.")


ROUTES = {
    ("fine", "issue"): Route(handle_fine_issue, FineIssueOptions, min_rank=Rank.OFFICER),
    ("fine", "history"): Route(handle_fine_history, FineHistoryOptions),
    ("fine", "remove"): Route(handle_fine_remove, FineRemoveOptions, min_rank=Rank.OFFICER),
}
