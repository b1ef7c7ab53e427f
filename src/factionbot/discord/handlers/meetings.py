"""/meeting schedule, emergency, cancel and attendance.

A scheduled meeting opens an RSVP window on its announcement: faction
members react with one of the attendance symbols until the meeting
starts, and each reaction is stored as their attendance status. A
reminder is posted to the meeting channel shortly before the start.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import discord
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.core.collective import RSVP_STATUSES, RSVP_SYMBOLS, CollectiveAction
from factionbot.core.errors import CommandError, EntityNotFound, OptionsInvalid
from factionbot.core.schedule_times import (
    NonexistentLocalTime,
    is_future,
    local_to_utc,
    reminder_fire_time,
)
from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import (
    build_meeting_cancelled_embed,
    build_meeting_embed,
    build_rsvp_summary_embed,
)
from factionbot.discord.helpers import (
    db_session,
    get_partial_message,
    get_text_channel,
    send_best_effort,
)
from factionbot.models.commands import (
    MeetingAttendanceOptions,
    MeetingCancelOptions,
    MeetingEmergencyOptions,
    MeetingScheduleOptions,
)
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)

EVERYONE = discord.AllowedMentions(everyone=True)
NO_MEETING_CHANNEL_MESSAGE = "Set a meeting channel first with `/config channels`."


def meeting_action_id(meeting_id: str) -> str:
    return f"meeting:{meeting_id}"


def reminder_job_id(meeting_id: str) -> str:
    return f"meeting-reminder:{meeting_id}"


# ---------------------------------------------------------------------------
# RSVP window
# ---------------------------------------------------------------------------


def build_rsvp_action(
    bot: discord.Client | None,
    engine: AsyncEngine,
    faction_id: str,
    meeting_id: str,
    title: str,
    scheduled_at: datetime,
    channel_id: int,
    message_id: int,
) -> CollectiveAction:
    """RSVP collector for one meeting announcement, closing at the meeting start."""

    async def _remove_reaction(symbol: str, user_id: int) -> None:
        message = get_partial_message(bot, channel_id, message_id)
        if message is None:
            return
        try:
            await message.remove_reaction(symbol, discord.Object(id=user_id))
        except discord.HTTPException:
            logger.exception("rsvp_reaction_remove_failed meeting=%s user=%s", meeting_id, user_id)

    async def on_select(user_id: int, index: int, previous: int | None) -> bool:
        async with db_session(engine) as repo:
            is_member = await repo.get_member(faction_id, str(user_id)) is not None
            if is_member:
                await repo.upsert_attendance(meeting_id, str(user_id), RSVP_STATUSES[index])
        if not is_member:
            await _remove_reaction(RSVP_SYMBOLS[index], user_id)
            return False
        if previous is not None and previous != index:
            await _remove_reaction(RSVP_SYMBOLS[previous], user_id)
        logger.info(
            "rsvp_recorded meeting=%s user=%s status=%s",
            meeting_id,
            user_id,
            RSVP_STATUSES[index].value,
        )
        return True

    async def on_close(action: CollectiveAction) -> None:
        async with db_session(engine) as repo:
            tally = await repo.get_attendance_tally(meeting_id)
        message = get_partial_message(bot, channel_id, message_id)
        if message is None:
            logger.warning("rsvp_summary_skipped meeting=%s reason=no_channel", meeting_id)
            return
        try:
            await message.edit(
                embed=build_rsvp_summary_embed(meeting_id, title, scheduled_at, tally)
            )
            await message.clear_reactions()
        except discord.HTTPException:
            logger.exception("rsvp_summary_failed meeting=%s", meeting_id)

    return CollectiveAction(
        action_id=meeting_action_id(meeting_id),
        kind="meeting",
        message_id=message_id,
        channel_id=channel_id,
        symbols=RSVP_SYMBOLS,
        deadline=scheduled_at,
        on_select=on_select,
        on_close=on_close,
    )


# ---------------------------------------------------------------------------
# Reminder
# ---------------------------------------------------------------------------


async def send_meeting_reminder(
    bot: discord.Client | None,
    engine: AsyncEngine,
    faction_id: str,
    meeting_id: str,
    lead_minutes: int,
) -> None:
    """Scheduler job: post a reminder unless the meeting was cancelled meanwhile."""
    async with db_session(engine) as repo:
        meeting = await repo.get_meeting(faction_id, meeting_id)
        faction = await repo.get_faction_by_id(faction_id)
    if meeting is None or faction is None:
        logger.info("meeting_reminder_skipped meeting=%s reason=gone", meeting_id)
        return
    channel = get_text_channel(bot, faction.meeting_channel_id)
    if channel is None:
        logger.info("meeting_reminder_skipped meeting=%s reason=no_channel", meeting_id)
        return
    try:
        await channel.send(
            f"@everyone Reminder: **{meeting.title}** starts in {lead_minutes} minutes.",
            allowed_mentions=EVERYONE,
        )
        logger.info("meeting_reminder_sent meeting=%s", meeting_id)
    except discord.HTTPException:
        logger.exception("meeting_reminder_failed meeting=%s", meeting_id)


def arm_reminder(
    scheduler: Any,
    bot: discord.Client | None,
    engine: AsyncEngine,
    faction_id: str,
    meeting_id: str,
    scheduled_at: datetime,
    lead: timedelta,
    now: datetime | None = None,
) -> datetime | None:
    """Schedule the pre-meeting reminder. Returns its fire time, or None if not armed."""
    fire_at = reminder_fire_time(scheduled_at, now=now, lead=lead)
    if fire_at is None or scheduler is None:
        return None

    from apscheduler.triggers.date import DateTrigger

    scheduler.add_job(
        send_meeting_reminder,
        trigger=DateTrigger(run_date=fire_at),
        kwargs={
            "bot": bot,
            "engine": engine,
            "faction_id": faction_id,
            "meeting_id": meeting_id,
            "lead_minutes": int(lead.total_seconds() // 60),
        },
        id=reminder_job_id(meeting_id),
        name=f"Meeting reminder {meeting_id}",
        replace_existing=True,
    )
    logger.info("meeting_reminder_armed meeting=%s fire_at=%s", meeting_id, fire_at.isoformat())
    return fire_at


def disarm_reminder(scheduler: Any, meeting_id: str) -> bool:
    if scheduler is None:
        return False
    from apscheduler.jobstores.base import JobLookupError

    try:
        scheduler.remove_job(reminder_job_id(meeting_id))
    except JobLookupError:
        return False
    return True


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _post_announcement(
    ctx: CommandContext,
    channel: discord.abc.Messageable,
    meeting_id: str,
    embed: discord.Embed,
) -> discord.Message:
    """Post the @everyone announcement, dropping the meeting row if Discord refuses."""
    faction, _ = ctx.require_member()
    try:
        return await channel.send("@everyone", embed=embed, allowed_mentions=EVERYONE)
    except discord.HTTPException:
        logger.exception("meeting_announce_failed meeting=%s", meeting_id)
        async with db_session(ctx.engine) as repo:
            await repo.delete_meeting(faction.id, meeting_id)
        raise CommandError(
            "Couldn't post to the meeting channel. Check the bot can send messages there."
        ) from None


async def handle_meeting_schedule(ctx: CommandContext, options: MeetingScheduleOptions) -> None:
    faction, member = ctx.require_member()
    channel = get_text_channel(ctx.bot, faction.meeting_channel_id)
    if channel is None:
        raise OptionsInvalid(NO_MEETING_CHANNEL_MESSAGE)
    try:
        scheduled_at = local_to_utc(options.time, faction.timezone)
    except NonexistentLocalTime:
        raise OptionsInvalid(
            f"That time doesn't exist in `{faction.timezone}` because the clocks go forward. "
            "Pick another time."
        ) from None
    except ValueError:
        raise OptionsInvalid(
            f"The faction timezone `{faction.timezone}` is not valid. Fix it with `/config timezone`."
        ) from None
    if not is_future(scheduled_at):
        raise OptionsInvalid("Meeting time must be in the future.")

    async with db_session(ctx.engine) as repo:
        meeting = await repo.create_meeting(
            faction_id=faction.id,
            title=options.title,
            scheduled_at=scheduled_at,
            created_by=member.discord_user_id,
            description=options.description,
        )
    meeting_id = meeting.id

    embed = build_meeting_embed(meeting_id, options.title, scheduled_at, options.description)
    message = await _post_announcement(ctx, channel, meeting_id, embed)
    async with db_session(ctx.engine) as repo:
        await repo.set_meeting_message(
            faction.id, meeting_id, str(message.channel.id), str(message.id)
        )

    ctx.registry.open(
        build_rsvp_action(
            ctx.bot,
            ctx.engine,
            faction.id,
            meeting_id,
            options.title,
            scheduled_at,
            message.channel.id,
            message.id,
        )
    )
    try:
        for symbol in RSVP_SYMBOLS:
            await message.add_reaction(symbol)
    except discord.HTTPException:
        logger.exception("rsvp_reactions_failed meeting=%s", meeting_id)

    reminder_at = arm_reminder(
        ctx.scheduler,
        ctx.bot,
        ctx.engine,
        faction.id,
        meeting_id,
        scheduled_at,
        ctx.reminder_lead,
    )
    logger.info(
        "meeting_scheduled faction=%s meeting=%s at=%s reminder=%s",
        faction.id,
        meeting_id,
        scheduled_at.isoformat(),
        bool(reminder_at),
    )
    await ctx.responder.send(embed=embed)


async def handle_meeting_emergency(ctx: CommandContext, options: MeetingEmergencyOptions) -> None:
    """Call a meeting for right now. No RSVP window and no reminder."""
    faction, member = ctx.require_member()
    channel = get_text_channel(ctx.bot, faction.meeting_channel_id)
    if channel is None:
        raise OptionsInvalid(NO_MEETING_CHANNEL_MESSAGE)

    now = datetime.now(UTC)
    async with db_session(ctx.engine) as repo:
        meeting = await repo.create_meeting(
            faction_id=faction.id,
            title="Emergency",
            scheduled_at=now,
            created_by=member.discord_user_id,
            description=options.reason,
            is_emergency=True,
        )
    meeting_id = meeting.id

    embed = build_meeting_embed(meeting_id, "Emergency", now, options.reason, is_emergency=True)
    message = await _post_announcement(ctx, channel, meeting_id, embed)
    async with db_session(ctx.engine) as repo:
        await repo.set_meeting_message(
            faction.id, meeting_id, str(message.channel.id), str(message.id)
        )

    logger.info("meeting_emergency faction=%s meeting=%s", faction.id, meeting_id)
    await ctx.responder.send("Emergency meeting called.", embed=embed)


async def handle_meeting_cancel(ctx: CommandContext, options: MeetingCancelOptions) -> None:
    faction, _ = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        meeting = await repo.get_meeting(faction.id, options.meeting_id)
        if meeting is None:
            raise EntityNotFound(f"No meeting `{options.meeting_id}` in this faction.")
        await repo.delete_meeting(faction.id, meeting.id)
    ctx.registry.stop(meeting_action_id(meeting.id))
    disarm_reminder(ctx.scheduler, meeting.id)

    message = get_partial_message(ctx.bot, meeting.channel_id, meeting.message_id)
    if message is not None:
        try:
            await message.edit(
                content=None, embed=build_meeting_cancelled_embed(meeting.id, meeting.title)
            )
            await message.clear_reactions()
        except discord.HTTPException:
            logger.exception("meeting_cancel_edit_failed meeting=%s", meeting.id)

    logger.info("meeting_cancelled faction=%s meeting=%s", faction.id, meeting.id)
    await ctx.responder.send(f"Meeting **{meeting.title}** cancelled.")


async def handle_meeting_attendance(
    ctx: CommandContext, options: MeetingAttendanceOptions
) -> None:
    faction, _ = ctx.require_member()
    async with db_session(ctx.engine) as repo:
        meeting = await repo.get_meeting(faction.id, options.meeting_id)
        if meeting is None:
            raise EntityNotFound(f"No meeting `{options.meeting_id}` in this faction.")
        if await repo.get_member(faction.id, options.target_user_id) is None:
            raise OptionsInvalid("That user is not a member of this faction.")
        await repo.upsert_attendance(meeting.id, options.target_user_id, options.status)

    logger.info(
        "attendance_recorded meeting=%s user=%s status=%s",
        meeting.id,
        options.target_user_id,
        options.status.value,
    )
    await ctx.responder.send(
        f"Marked <@{options.target_user_id}> as **{options.status.value.title()}** "
        f"for **{meeting.title}**."
    )


ROUTES = {
    ("meeting", "schedule"): Route(
        handle_meeting_schedule, MeetingScheduleOptions, min_rank=Rank.OFFICER
    ),
    ("meeting", "emergency"): Route(
        handle_meeting_emergency, MeetingEmergencyOptions, min_rank=Rank.OFFICER
    ),
    ("meeting", "cancel"): Route(handle_meeting_cancel, MeetingCancelOptions, min_rank=Rank.OFFICER),
    ("meeting", "attendance"): Route(
        handle_meeting_attendance, MeetingAttendanceOptions, min_rank=Rank.OFFICER
    ),
}
