"""/member add, remove, rank and list."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from factionbot.core.authorization import can_remove_member, can_set_rank
from factionbot.core.errors import EntityNotFound, OptionsInvalid, PermissionDenied
from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_member_list_embed
from factionbot.discord.helpers import db_session
from factionbot.models.commands import (
    MemberAddOptions,
    MemberRankOptions,
    MemberRemoveOptions,
    NoOptions,
)
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)

NOT_IN_FACTION = "That user is not a member of this faction."


async def handle_member_add(ctx: CommandContext, options: MemberAddOptions) -> None:
    faction, member = ctx.require_member()
    try:
        async with db_session(ctx.engine) as repo:
            if await repo.get_member(faction.id, options.target_user_id) is not None:
                raise OptionsInvalid("That user is already a member.")
            await repo.add_member(faction.id, options.target_user_id, Rank.MEMBER)
    except IntegrityError:
        raise OptionsInvalid("That user is already a member.") from None

    logger.info(
        "member_added faction=%s user=%s by=%s",
        faction.id,
        options.target_user_id,
        member.discord_user_id,
    )
    await ctx.responder.send(f"<@{options.target_user_id}> joined **{faction.name}**.")


async def handle_member_remove(ctx: CommandContext, options: MemberRemoveOptions) -> None:
    faction, member = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        target = await repo.get_member(faction.id, options.target_user_id)
        if target is None:
            raise EntityNotFound(NOT_IN_FACTION)
        if not can_remove_member(
            member.rank, member.discord_user_id, target.rank, target.discord_user_id
        ):
            raise PermissionDenied("You can only remove members ranked below you.")
        await repo.remove_member(faction.id, target.id)

    logger.info(
        "member_removed faction=%s user=%s by=%s",
        faction.id,
        options.target_user_id,
        member.discord_user_id,
    )
    await ctx.responder.send(f"<@{options.target_user_id}> was removed from **{faction.name}**.")


async def handle_member_rank(ctx: CommandContext, options: MemberRankOptions) -> None:
    faction, member = ctx.require_member()
    if not can_set_rank(member.rank, member.discord_user_id, options.target_user_id):
        raise PermissionDenied("You can't change your own rank.")
    async with db_session(ctx.engine) as repo:
        target = await repo.get_member(faction.id, options.target_user_id)
        if target is None:
            raise EntityNotFound(NOT_IN_FACTION)
        await repo.update_member_rank(faction.id, target.id, options.rank)

    logger.info(
        "member_rank_changed faction=%s user=%s rank=%s",
        faction.id,
        options.target_user_id,
        options.rank.value,
    )
    await ctx.responder.send(
        f"<@{options.target_user_id}> is now **{options.rank.value.title()}**."
    )


async def handle_member_list(ctx: CommandContext, options: NoOptions) -> None:
    faction, _ = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        members = await repo.get_members(faction.id)
    await ctx.responder.send(embed=build_member_list_embed(faction.name, members))


ROUTES = {
    ("member", "add"): Route(handle_member_add, MemberAddOptions, min_rank=Rank.OFFICER),
    ("member", "remove"): Route(handle_member_remove, MemberRemoveOptions, min_rank=Rank.OFFICER),
    ("member", "rank"): Route(handle_member_rank, MemberRankOptions, min_rank=Rank.LEADER),
    ("member", "list"): Route(handle_member_list),
}
