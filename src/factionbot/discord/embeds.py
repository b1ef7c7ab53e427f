"""Discord embed builders for the faction bot.

Each builder takes domain data and returns a styled embed ready to send.
Times are rendered with Discord timestamps so every reader sees them in
their own locale.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

import discord

from factionbot.core.schedule_times import as_utc
from factionbot.models.faction import ATTENDANCE_EMOJI, AttendanceStatus, Rank

if TYPE_CHECKING:
    from factionbot.core.collective import PollResults
    from factionbot.db.models import FineRow, MemberRow
    from factionbot.discord.helpers import FactionInfo, MemberInfo

COLOR_FACTION = 0x3498DB  # Blue: registration, config, membership
COLOR_FINE = 0xE74C3C  # Red: fines
COLOR_MEETING = 0x2ECC71  # Green: meetings
COLOR_EMERGENCY = 0xE67E22  # Orange: emergency meetings, cancellations
COLOR_RADIO = 0x9B59B6  # Purple: radio
COLOR_POLL = 0xF39C12  # Gold: polls
COLOR_HELP = 0x1ABC9C  # Teal: help

CHANNEL_LABELS = {
    "meeting": "Meetings",
    "radio": "Radio",
    "voting": "Voting",
    "fine_log": "Fine log",
}


def _timestamp(value: datetime, style: str = "F") -> str:
    return discord.utils.format_dt(as_utc(value), style=style)


def _mention(user_id: str) -> str:
    return f"<@{user_id}>"


def _channel(channel_id: str | None) -> str:
    return f"<#{channel_id}>" if channel_id else "_not set_"


# ---------------------------------------------------------------------------
# Registration & configuration
# ---------------------------------------------------------------------------


def build_faction_embed(faction: FactionInfo, title: str = "Faction Settings") -> discord.Embed:
    """Summarize a faction's configuration."""
    embed = discord.Embed(title=title, color=COLOR_FACTION)
    embed.add_field(name="Name", value=faction.name, inline=True)
    embed.add_field(name="Prefix", value=f"`{faction.prefix}`", inline=True)
    embed.add_field(name="Timezone", value=faction.timezone, inline=True)
    embed.add_field(
        name="Admin role",
        value=f"<@&{faction.admin_role_id}>" if faction.admin_role_id else "_not set_",
        inline=True,
    )
    embed.add_field(name="Meetings", value=_channel(faction.meeting_channel_id), inline=True)
    embed.add_field(name="Radio", value=_channel(faction.radio_channel_id), inline=True)
    embed.add_field(name="Voting", value=_channel(faction.voting_channel_id), inline=True)
    embed.add_field(name="Fine log", value=_channel(faction.fine_log_channel_id), inline=True)
    embed.set_footer(text=faction.name)
    return embed


def build_welcome_embed(faction_name: str, purpose: str) -> discord.Embed:
    """Posted once to each configured channel after registration."""
    label = CHANNEL_LABELS.get(purpose, purpose)
    embed = discord.Embed(
        title=f"Welcome to {faction_name}",
        description=f"This channel is now the faction's **{label}** channel.",
        color=COLOR_FACTION,
    )
    embed.set_footer(text=faction_name)
    return embed


def build_member_list_embed(faction_name: str, members: Sequence[MemberRow]) -> discord.Embed:
    embed = discord.Embed(title=f"{faction_name} Members", color=COLOR_FACTION)
    for rank in (Rank.LEADER, Rank.OFFICER, Rank.MEMBER):
        ids = [m.discord_user_id for m in members if m.rank == rank.value]
        if ids:
            embed.add_field(
                name=f"{rank.value.title()}s ({len(ids)})",
                value="\n".join(_mention(i) for i in ids)[:1024],
                inline=False,
            )
    if not members:
        embed.description = "_No members yet._"
    embed.set_footer(text=f"{len(members)} member{'s' if len(members) != 1 else ''}")
    return embed


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


def build_profile_embed(
    display_name: str,
    member: MemberInfo,
    fine_count: int,
    attendance: Mapping[str, int],
    faction_name: str = "",
) -> discord.Embed:
    """Build a member's profile card."""
    embed = discord.Embed(title=display_name, color=COLOR_FACTION)
    embed.add_field(name="Rank", value=member.rank.value.title(), inline=True)
    if member.joined_at is not None:
        embed.add_field(name="Member since", value=_timestamp(member.joined_at, "D"), inline=True)
    embed.add_field(name="Fines", value=str(fine_count), inline=True)

    lines = [
        f"{ATTENDANCE_EMOJI[status]} {status.value.title()}: {attendance.get(status.value, 0)}"
        for status in AttendanceStatus
    ]
    embed.add_field(name="Attendance", value="\n".join(lines), inline=False)

    contact = []
    if member.contact_info.get("phone"):
        contact.append(f"Phone: {member.contact_info['phone']}")
    if member.contact_info.get("twitter"):
        contact.append(f"Twitter: @{member.contact_info['twitter']}")
    embed.add_field(name="Contact", value="\n".join(contact) or "_none on file_", inline=False)
    if faction_name:
        embed.set_footer(text=faction_name)
    return embed


# ---------------------------------------------------------------------------
# Fines
# ---------------------------------------------------------------------------


def build_fine_embed(fine: FineRow, title: str = "Fine Issued") -> discord.Embed:
    embed = discord.Embed(title=title, color=COLOR_FINE)
    embed.add_field(name="Member", value=_mention(fine.target_user_id), inline=True)
    embed.add_field(name="Amount", value=f"${fine.amount:,}", inline=True)
    embed.add_field(name="Issued by", value=_mention(fine.issuer_id), inline=True)
    embed.add_field(name="Reason", value=fine.reason[:1024], inline=False)
    embed.set_footer(text=f"Fine ID: {fine.id}")
    if fine.created_at is not None:
        embed.timestamp = as_utc(fine.created_at)
    return embed


def build_fine_history_embed(
    fines: Sequence[FineRow],
    target_user_id: str | None = None,
) -> discord.Embed:
    """List fines, newest first."""
    embed = discord.Embed(title="Fine History", color=COLOR_FINE)
    if target_user_id:
        embed.description = f"Fines for {_mention(target_user_id)}"
    if not fines:
        embed.description = (embed.description or "") + "\n_No fines on record._"
        return embed
    for fine in fines:
        status = "paid" if fine.paid else "unpaid"
        header = f"${fine.amount:,} ({status})"
        body = f"{_mention(fine.target_user_id)}: {fine.reason[:200]}\n`{fine.id}`"
        if fine.created_at is not None:
            body += f" {_timestamp(fine.created_at, 'd')}"
        embed.add_field(name=header, value=body, inline=False)
    embed.set_footer(text=f"Showing {len(fines)} most recent")
    return embed


# ---------------------------------------------------------------------------
# Meetings
# ---------------------------------------------------------------------------


def build_meeting_embed(
    meeting_id: str,
    title: str,
    scheduled_at: datetime,
    description: str | None = None,
    *,
    is_emergency: bool = False,
) -> discord.Embed:
    """Announcement for a scheduled or emergency meeting."""
    if is_emergency:
        embed = discord.Embed(
            title=f"\N{POLICE CARS REVOLVING LIGHT} Emergency Meeting: {title}",
            color=COLOR_EMERGENCY,
        )
        embed.description = description or "All members report immediately."
        embed.add_field(name="Called", value=_timestamp(scheduled_at, "R"), inline=True)
    else:
        embed = discord.Embed(title=f"Meeting: {title}", color=COLOR_MEETING)
        if description:
            embed.description = description
        embed.add_field(name="When", value=_timestamp(scheduled_at), inline=True)
        embed.add_field(name="Starts", value=_timestamp(scheduled_at, "R"), inline=True)
        embed.add_field(
            name="RSVP",
            value=" ".join(
                f"{ATTENDANCE_EMOJI[s]} {s.value.title()}" for s in AttendanceStatus
            ),
            inline=False,
        )
    embed.set_footer(text=f"Meeting ID: {meeting_id}")
    return embed


def build_rsvp_summary_embed(
    meeting_id: str,
    title: str,
    scheduled_at: datetime,
    tally: Mapping[str, int],
) -> discord.Embed:
    """Replaces the announcement once RSVPs close."""
    embed = discord.Embed(title=f"Meeting: {title}", color=COLOR_MEETING)
    embed.description = f"RSVPs closed {_timestamp(scheduled_at, 'R')}."
    for status in AttendanceStatus:
        embed.add_field(
            name=f"{ATTENDANCE_EMOJI[status]} {status.value.title()}",
            value=str(tally.get(status.value, 0)),
            inline=True,
        )
    embed.set_footer(text=f"Meeting ID: {meeting_id}")
    return embed


def build_meeting_cancelled_embed(meeting_id: str, title: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"~~{title}~~",
        description="This meeting has been cancelled.",
        color=COLOR_EMERGENCY,
    )
    embed.set_footer(text=f"Meeting ID: {meeting_id}")
    return embed


# ---------------------------------------------------------------------------
# Radio
# ---------------------------------------------------------------------------


def build_radio_embed(frequency: str, radio_format: str, updated_by: str | None = None) -> discord.Embed:
    embed = discord.Embed(title="\N{RADIO} Faction Radio", color=COLOR_RADIO)
    embed.add_field(name="Frequency", value=f"**{frequency}**", inline=True)
    embed.add_field(name="Format", value=radio_format, inline=True)
    if updated_by:
        embed.add_field(name="Set by", value=_mention(updated_by), inline=True)
    return embed


def build_radio_announcement_embed(
    message: str,
    author_name: str,
    frequency: str | None = None,
    radio_format: str | None = None,
) -> discord.Embed:
    embed = discord.Embed(
        title="\N{RADIO} Radio Announcement",
        description=message,
        color=COLOR_RADIO,
    )
    if frequency:
        embed.add_field(name="Tune in", value=f"**{frequency}** {radio_format or ''}".strip())
    embed.set_author(name=author_name)
    return embed


# ---------------------------------------------------------------------------
# Polls
# ---------------------------------------------------------------------------


def build_poll_embed(
    question: str,
    options: Sequence[str],
    symbols: Sequence[str],
    ends_at: datetime,
    author_name: str = "",
) -> discord.Embed:
    """An open poll. Option order matches reaction order."""
    embed = discord.Embed(title=f"\N{BAR CHART} {question}", color=COLOR_POLL)
    embed.description = "\n".join(f"{symbol} {label}" for symbol, label in zip(symbols, options))
    embed.add_field(name="Closes", value=_timestamp(ends_at, "R"), inline=False)
    if author_name:
        embed.set_author(name=author_name)
    embed.set_footer(text="React to vote. Changing your reaction changes your vote.")
    return embed


def build_poll_results_embed(question: str, results: PollResults) -> discord.Embed:
    """Final results, shown in place of the open poll."""
    embed = discord.Embed(title=f"\N{BAR CHART} {question}", color=COLOR_POLL)
    lines = []
    for option in results.options:
        bar = "\N{FULL BLOCK}" * (option.percent // 10)
        lines.append(
            f"{option.symbol} {option.label}: **{option.votes}** ({option.percent}%) {bar}".rstrip()
        )
    embed.description = "\n".join(lines)
    winner = results.winner
    embed.add_field(
        name="Result",
        value=f"**{winner.label}** wins" if winner else "No votes were cast.",
        inline=False,
    )
    embed.set_footer(
        text=f"Poll closed | {results.total_votes} vote{'s' if results.total_votes != 1 else ''}"
    )
    return embed


# ---------------------------------------------------------------------------
# Help
# ---------------------------------------------------------------------------

HELP_BASIC = "`/help` this message\n`/ping` check the bot is alive"
HELP_REGISTER = "`/register` set up a faction for this server (Manage Server)"
HELP_MEMBER = (
    "`/profile view` `/profile edit` your profile and contact details\n"
    "`/fine history` your fines\n"
    "`/radio view` current frequency\n"
    "`/radio announce` post to the radio channel\n"
    "`/poll` start a reaction poll\n"
    "`/member list` everyone in the faction"
)
HELP_OFFICER = (
    "`/fine issue` `/fine remove` `/fine history [user]`\n"
    "`/meeting schedule` `/meeting emergency` `/meeting cancel` `/meeting attendance`\n"
    "`/radio set`\n"
    "`/config prefix` `/config admin` `/config timezone` `/config channels`\n"
    "`/member add` `/member remove`"
)
HELP_LEADER = "`/member rank` promote or demote a member"


def build_help_embed(
    faction: FactionInfo | None,
    member: MemberInfo | None,
) -> discord.Embed:
    """Command overview filtered to what the caller can use."""
    from factionbot.core.authorization import has_rank

    embed = discord.Embed(title="Faction Bot Commands", color=COLOR_HELP)
    embed.add_field(name="Basics", value=HELP_BASIC, inline=False)
    if faction is None:
        embed.add_field(name="Getting started", value=HELP_REGISTER, inline=False)
        embed.set_footer(text="This server has no faction yet. Use /register first.")
        return embed

    if member is not None:
        embed.add_field(name="Members", value=HELP_MEMBER, inline=False)
        if has_rank(member.rank, Rank.OFFICER):
            embed.add_field(name="Officers", value=HELP_OFFICER, inline=False)
        if member.rank is Rank.LEADER:
            embed.add_field(name="Leaders", value=HELP_LEADER, inline=False)
        rank_text = member.rank.value.title()
    else:
        rank_text = "not a member"
    embed.set_footer(text=f"{faction.name} | prefix {faction.prefix} | your rank: {rank_text}")
    return embed
