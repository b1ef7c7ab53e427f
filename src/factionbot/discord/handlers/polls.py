"""/poll: a reaction poll that closes itself after a fixed duration.

The poll message carries one number reaction per option. Each member
gets one vote; reacting with a different number moves the vote and
removes the old reaction. At the deadline the tally is written to the
poll row, the message is replaced with the results, and the reactions
are cleared.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

import discord
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.core.collective import CollectiveAction, compute_poll_results, symbols_for
from factionbot.core.errors import CommandError
from factionbot.core.schedule_times import deadline_after
from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_poll_embed, build_poll_results_embed
from factionbot.discord.helpers import db_session, get_partial_message
from factionbot.models.commands import PollOptions

logger = logging.getLogger(__name__)


def poll_action_id(poll_id: str) -> str:
    return f"poll:{poll_id}"


def build_poll_action(
    bot: discord.Client | None,
    engine: AsyncEngine,
    faction_id: str,
    poll_id: str,
    question: str,
    labels: Sequence[str],
    deadline: datetime,
    channel_id: int,
    message_id: int,
) -> CollectiveAction:
    symbols = symbols_for(len(labels))

    async def on_select(user_id: int, index: int, previous: int | None) -> bool:
        if previous is not None and previous != index:
            message = get_partial_message(bot, channel_id, message_id)
            if message is not None:
                try:
                    await message.remove_reaction(symbols[previous], discord.Object(id=user_id))
                except discord.HTTPException:
                    logger.exception("poll_reaction_remove_failed poll=%s user=%s", poll_id, user_id)
        async with db_session(engine) as repo:
            await repo.upsert_vote(poll_id, str(user_id), index)
        logger.info("poll_vote poll=%s user=%s option=%d", poll_id, user_id, index)
        return True

    async def on_close(action: CollectiveAction) -> None:
        async with db_session(engine) as repo:
            counts = await repo.get_vote_counts(poll_id)
            results = compute_poll_results(labels, counts, symbols)
            await repo.finalize_poll(faction_id, poll_id, results.winner_index, results.total_votes)
        logger.info(
            "poll_closed poll=%s votes=%d winner=%s",
            poll_id,
            results.total_votes,
            results.winner_index,
        )
        message = get_partial_message(bot, channel_id, message_id)
        if message is None:
            logger.warning("poll_results_skipped poll=%s reason=no_channel", poll_id)
            return
        try:
            await message.edit(embed=build_poll_results_embed(question, results))
            await message.clear_reactions()
        except discord.HTTPException:
            logger.exception("poll_results_edit_failed poll=%s", poll_id)

    return CollectiveAction(
        action_id=poll_action_id(poll_id),
        kind="poll",
        message_id=message_id,
        channel_id=channel_id,
        symbols=symbols,
        deadline=deadline,
        on_select=on_select,
        on_close=on_close,
    )


async def handle_poll(ctx: CommandContext, options: PollOptions) -> None:
    faction, member = ctx.require_member()
    ends_at = deadline_after(options.duration, datetime.now(UTC))
    symbols = symbols_for(len(options.options))

    async with db_session(ctx.engine) as repo:
        poll = await repo.create_poll(
            faction_id=faction.id,
            creator_id=member.discord_user_id,
            question=options.question,
            options=options.options,
            ends_at=ends_at,
        )
    poll_id = poll.id

    embed = build_poll_embed(
        options.question,
        options.options,
        symbols,
        ends_at,
        author_name=ctx.interaction.user.display_name,
    )
    try:
        message = await ctx.responder.send(embed=embed, ephemeral=False)
        if message is None:
            message = await ctx.interaction.original_response()
    except discord.HTTPException:
        logger.exception("poll_post_failed poll=%s", poll_id)
        async with db_session(ctx.engine) as repo:
            await repo.delete_poll(faction.id, poll_id)
        raise CommandError(
            "Couldn't post the poll. Check the bot can send messages here."
        ) from None

    async with db_session(ctx.engine) as repo:
        await repo.set_poll_message(faction.id, poll_id, str(message.channel.id), str(message.id))

    ctx.registry.open(
        build_poll_action(
            ctx.bot,
            ctx.engine,
            faction.id,
            poll_id,
            options.question,
            options.options,
            ends_at,
            message.channel.id,
            message.id,
        )
    )
    try:
        for symbol in symbols:
            await message.add_reaction(symbol)
    except discord.HTTPException:
        logger.exception("poll_reactions_failed poll=%s", poll_id)

    logger.info(
        "poll_opened faction=%s poll=%s options=%d ends_at=%s",
        faction.id,
        poll_id,
        len(options.options),
        ends_at.isoformat(),
    )


ROUTES = {
    ("poll", None): Route(handle_poll, PollOptions, ephemeral=False),
}
