"""End-to-end command tests: dispatcher + handlers + in-memory database.

Discord is mocked; replies are read back from the interaction mock.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import ANY, AsyncMock, MagicMock, patch

import discord
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.core.collective import NUMBER_SYMBOLS, RSVP_SYMBOLS, CollectiveActionRegistry
from factionbot.db.engine import get_session
from factionbot.db.models import FactionRow, FineRow, MeetingRow, PollRow
from factionbot.db.repository import Repository
from factionbot.discord.dispatcher import DATABASE_ERROR_MESSAGE, Dispatcher, Invocation
from factionbot.discord.handlers import build_routes
from factionbot.discord.handlers.meetings import reminder_job_id
from factionbot.models.faction import Rank
from tests.conftest import GUILD_ID, LEADER_ID, MEMBER_ID, OFFICER_ID, make_message


@pytest.fixture
def registry() -> CollectiveActionRegistry:
    return CollectiveActionRegistry()


@pytest.fixture
def scheduler() -> MagicMock:
    return MagicMock()


@pytest.fixture
def dispatcher(engine, registry, bot, scheduler) -> Dispatcher:
    return Dispatcher(engine, registry, bot=bot, scheduler=scheduler, routes=build_routes())


async def run(
    dispatcher: Dispatcher,
    interaction,
    command: str,
    subcommand: str | None = None,
    *,
    user_id: str = LEADER_ID,
    guild_id: str | None = GUILD_ID,
    manage_guild: bool = False,
    **options: object,
):
    await dispatcher.dispatch(
        interaction, Invocation(command, subcommand, guild_id, user_id, manage_guild, options)
    )
    return interaction


def reply(interaction) -> tuple[str | None, discord.Embed | None]:
    """The (content, embed) of the last reply the interaction sent."""
    if interaction.followup.send.await_count:
        call = interaction.followup.send.await_args
        return call.args[0] if call.args else None, call.kwargs.get("embed")
    if interaction.edit_original_response.await_count:
        kwargs = interaction.edit_original_response.await_args.kwargs
        return kwargs.get("content"), kwargs.get("embed")
    if interaction.response.send_message.await_count:
        call = interaction.response.send_message.await_args
        return call.args[0] if call.args else None, call.kwargs.get("embed")
    raise AssertionError("no reply was sent")


async def count(engine: AsyncEngine, model, *where) -> int:
    async with get_session(engine) as session:
        result = await session.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


def local(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M")


class TestRegister:
    async def test_second_register_rejected(self, dispatcher, make_interaction, engine) -> None:
        first = await run(
            dispatcher,
            make_interaction(guild_id="12345"),
            "register",
            guild_id="12345",
            manage_guild=True,
            name="Ballas",
            timezone="UTC",
        )
        _, embed = reply(first)
        assert embed is not None and "Ballas" in embed.title

        second = await run(
            dispatcher,
            make_interaction(guild_id="12345"),
            "register",
            guild_id="12345",
            manage_guild=True,
            name="Ballas Again",
            timezone="UTC",
        )
        content, _ = reply(second)
        assert content == "This server already has a registered faction."
        assert await count(engine, FactionRow, FactionRow.discord_guild_id == "12345") == 1

    async def test_caller_becomes_leader(self, dispatcher, make_interaction, engine) -> None:
        await run(
            dispatcher,
            make_interaction(guild_id="12345", user_id="55"),
            "register",
            guild_id="12345",
            user_id="55",
            manage_guild=True,
            name="Ballas",
            timezone="UTC",
        )
        async with get_session(engine) as session:
            repo = Repository(session)
            faction = await repo.get_faction_by_guild("12345")
            member = await repo.get_member(faction.id, "55")
        assert member is not None and member.rank == Rank.LEADER.value

    async def test_needs_manage_guild(self, dispatcher, make_interaction, engine) -> None:
        interaction = await run(
            dispatcher,
            make_interaction(guild_id="12345"),
            "register",
            guild_id="12345",
            name="Ballas",
            timezone="UTC",
        )
        content, _ = reply(interaction)
        assert "Manage Server" in content
        assert await count(engine, FactionRow, FactionRow.discord_guild_id == "12345") == 0


class TestFines:
    @pytest.mark.parametrize("amount", [0, 1_000_001])
    async def test_amount_bounds_write_nothing(
        self, dispatcher, make_interaction, engine, faction_id, amount
    ) -> None:
        interaction = await run(
            dispatcher,
            make_interaction(),
            "fine",
            "issue",
            target_user_id=MEMBER_ID,
            amount=amount,
            reason="late",
        )
        content, _ = reply(interaction)
        assert "between 1 and 1,000,000" in content
        assert await count(engine, FineRow) == 0

    async def test_officer_cannot_fine_leader(
        self, dispatcher, make_interaction, engine, faction_id
    ) -> None:
        interaction = await run(
            dispatcher,
            make_interaction(user_id=OFFICER_ID),
            "fine",
            "issue",
            user_id=OFFICER_ID,
            target_user_id=LEADER_ID,
            amount=100,
            reason="insubordination",
        )
        content, _ = reply(interaction)
        assert "equal or higher rank" in content
        assert await count(engine, FineRow) == 0

    async def test_leader_may_fine_self(
        self, dispatcher, make_interaction, engine, faction_id, channels
    ) -> None:
        interaction = await run(
            dispatcher, make_interaction(), "fine", "issue",
            target_user_id=LEADER_ID, amount=50, reason="lost the van",
        )
        _, embed = reply(interaction)
        assert embed is not None
        assert await count(engine, FineRow) == 1
        channels[504].send.assert_awaited_once()

    async def test_leader_cannot_fine_other_leader(
        self, dispatcher, make_interaction, engine, faction_id
    ) -> None:
        async with get_session(engine) as session:
            await Repository(session).add_member(faction_id, "101", Rank.LEADER)
        await run(
            dispatcher, make_interaction(), "fine", "issue",
            target_user_id="101", amount=50, reason="x",
        )
        assert await count(engine, FineRow) == 0

    async def test_member_history_limited_to_self(
        self, dispatcher, make_interaction, faction_id
    ) -> None:
        interaction = await run(
            dispatcher,
            make_interaction(user_id=MEMBER_ID),
            "fine",
            "history",
            user_id=MEMBER_ID,
            target_user_id=OFFICER_ID,
        )
        content, _ = reply(interaction)
        assert content == "You can only view your own fines."

    async def test_remove(self, dispatcher, make_interaction, engine, faction_id) -> None:
        async with get_session(engine) as session:
            fine = await Repository(session).create_fine(faction_id, MEMBER_ID, OFFICER_ID, 10, "x")
            fine_id = fine.id
        interaction = await run(dispatcher, make_interaction(), "fine", "remove", fine_id=fine_id)
        content, _ = reply(interaction)
        assert fine_id in content
        assert await count(engine, FineRow) == 0


class TestRadio:
    async def test_set_then_view(self, dispatcher, make_interaction, faction_id) -> None:
        await run(
            dispatcher, make_interaction(user_id=OFFICER_ID), "radio", "set",
            user_id=OFFICER_ID, frequency="145.50",
        )
        interaction = await run(
            dispatcher, make_interaction(user_id=MEMBER_ID), "radio", "view", user_id=MEMBER_ID
        )
        _, embed = reply(interaction)
        assert embed is not None
        assert any("145.50" in field.value for field in embed.fields)

    async def test_view_unset(self, dispatcher, make_interaction, faction_id) -> None:
        interaction = await run(dispatcher, make_interaction(), "radio", "view")
        assert reply(interaction)[0] == "No radio frequency has been set yet."

    async def test_member_cannot_set(self, dispatcher, make_interaction, faction_id) -> None:
        interaction = await run(
            dispatcher, make_interaction(user_id=MEMBER_ID), "radio", "set",
            user_id=MEMBER_ID, frequency="145.50",
        )
        assert reply(interaction)[0] == "You do not have permission to use this command."

    async def test_announce(self, dispatcher, make_interaction, faction_id, channels) -> None:
        interaction = await run(
            dispatcher, make_interaction(), "radio", "announce", message="Switch now"
        )
        assert reply(interaction)[0] == "Announcement posted."
        channels[502].send.assert_awaited_once()

    async def test_member_can_announce(
        self, dispatcher, make_interaction, faction_id, channels
    ) -> None:
        interaction = await run(
            dispatcher, make_interaction(user_id=MEMBER_ID), "radio", "announce",
            user_id=MEMBER_ID, message="hi",
        )
        assert reply(interaction)[0] == "Announcement posted."
        channels[502].send.assert_awaited_once()


class TestPoll:
    async def _open_poll(self, dispatcher, make_interaction, user_id=MEMBER_ID):
        interaction = make_interaction(user_id=user_id)
        interaction.edit_original_response.return_value = make_message(4242, 777)
        await run(
            dispatcher, interaction, "poll",
            user_id=user_id, question="Where to?", options="A, B, C", duration=10,
        )
        return interaction

    async def test_opens_collective_action(
        self, dispatcher, make_interaction, registry, engine, faction_id
    ) -> None:
        before = datetime.now(UTC)
        interaction = await self._open_poll(dispatcher, make_interaction)

        action = registry.for_message(4242)
        assert action is not None
        assert action.symbols == NUMBER_SYMBOLS[:3]
        assert before + timedelta(minutes=10) <= action.deadline
        assert action.deadline <= datetime.now(UTC) + timedelta(minutes=10)

        message = interaction.edit_original_response.return_value
        assert [c.args[0] for c in message.add_reaction.await_args_list] == list(NUMBER_SYMBOLS[:3])
        assert await count(engine, PollRow, PollRow.message_id == "4242") == 1

    async def test_change_of_vote(
        self, dispatcher, make_interaction, registry, engine, faction_id, channels
    ) -> None:
        await self._open_poll(dispatcher, make_interaction)
        action = registry.for_message(4242)
        poll_id = action.action_id.removeprefix("poll:")

        assert await registry.deliver(4242, 555, NUMBER_SYMBOLS[0])
        assert await registry.deliver(4242, 555, NUMBER_SYMBOLS[1])

        async with get_session(engine) as session:
            assert await Repository(session).get_vote_counts(poll_id) == {1: 1}
        partial = channels[777].get_partial_message.return_value
        partial.remove_reaction.assert_awaited_once_with(NUMBER_SYMBOLS[0], ANY)

    async def test_close_posts_results(
        self, dispatcher, make_interaction, registry, engine, faction_id, channels
    ) -> None:
        await self._open_poll(dispatcher, make_interaction)
        action = registry.for_message(4242)
        await registry.deliver(4242, 555, NUMBER_SYMBOLS[2])

        assert await registry.close(action.action_id)

        partial = channels[777].get_partial_message.return_value
        partial.edit.assert_awaited_once()
        partial.clear_reactions.assert_awaited_once()
        async with get_session(engine) as session:
            poll = await session.get(PollRow, action.action_id.removeprefix("poll:"))
        assert poll.winner_index == 2
        assert poll.total_votes == 1
        assert poll.closed_at is not None

    async def test_failed_post_removes_poll(
        self, dispatcher, make_interaction, registry, engine, faction_id
    ) -> None:
        interaction = make_interaction(user_id=MEMBER_ID)
        interaction.edit_original_response.side_effect = discord.HTTPException(
            MagicMock(status=403, reason="Forbidden"), "Missing Permissions"
        )
        await run(
            dispatcher, interaction, "poll",
            user_id=MEMBER_ID, question="Where to?", options="A, B", duration=10,
        )
        assert await count(engine, PollRow) == 0
        assert len(registry) == 0

    async def test_invalid_options_open_nothing(
        self, dispatcher, make_interaction, registry, engine, faction_id
    ) -> None:
        interaction = await run(
            dispatcher, make_interaction(), "poll", question="Q", options="only one"
        )
        assert "between 2 and 10" in reply(interaction)[0]
        assert len(registry) == 0
        assert await count(engine, PollRow) == 0


class TestMeetings:
    async def test_past_time_rejected(
        self, dispatcher, make_interaction, engine, faction_id
    ) -> None:
        interaction = await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Old news", time="2000-01-01 10:00",
        )
        assert reply(interaction)[0] == "Meeting time must be in the future."
        assert await count(engine, MeetingRow) == 0

    async def test_close_meeting_skips_reminder(
        self, dispatcher, make_interaction, registry, scheduler, faction_id, channels
    ) -> None:
        soon = datetime.now(UTC) + timedelta(minutes=10)
        await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Quick sync", time=local(soon),
        )
        scheduler.add_job.assert_not_called()
        assert registry.for_message(5010) is not None
        channels[501].send.assert_awaited_once()
        assert channels[501].send.await_args.args[0] == "@everyone"

    async def test_reminder_armed(
        self, dispatcher, make_interaction, registry, scheduler, faction_id
    ) -> None:
        later = datetime.now(UTC) + timedelta(hours=2)
        await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Weekly", time=local(later),
        )
        meeting_id = registry.for_message(5010).action_id.removeprefix("meeting:")
        scheduler.add_job.assert_called_once()
        assert scheduler.add_job.call_args.kwargs["id"] == reminder_job_id(meeting_id)

    async def test_rsvp_members_only(
        self, dispatcher, make_interaction, registry, engine, faction_id, channels
    ) -> None:
        later = datetime.now(UTC) + timedelta(hours=2)
        await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Weekly", time=local(later),
        )
        meeting_id = registry.for_message(5010).action_id.removeprefix("meeting:")

        assert await registry.deliver(5010, int(MEMBER_ID), RSVP_SYMBOLS[1])
        assert not await registry.deliver(5010, 4040, RSVP_SYMBOLS[0])

        async with get_session(engine) as session:
            assert await Repository(session).get_attendance_tally(meeting_id) == {"LATE": 1}
        partial = channels[501].get_partial_message.return_value
        partial.remove_reaction.assert_awaited_once_with(RSVP_SYMBOLS[0], ANY)

    async def test_cancel_stops_rsvp(
        self, dispatcher, make_interaction, registry, scheduler, engine, faction_id, channels
    ) -> None:
        later = datetime.now(UTC) + timedelta(hours=2)
        await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Weekly", time=local(later),
        )
        meeting_id = registry.for_message(5010).action_id.removeprefix("meeting:")

        interaction = await run(
            dispatcher, make_interaction(), "meeting", "cancel", meeting_id=meeting_id
        )

        assert reply(interaction)[0] == "Meeting **Weekly** cancelled."
        assert registry.for_message(5010) is None
        scheduler.remove_job.assert_called_once_with(reminder_job_id(meeting_id))
        channels[501].get_partial_message.return_value.edit.assert_awaited_once()
        assert await count(engine, MeetingRow) == 0

    async def test_failed_cancel_keeps_rsvp_open(
        self, dispatcher, make_interaction, registry, scheduler, engine, faction_id, channels
    ) -> None:
        later = datetime.now(UTC) + timedelta(hours=2)
        await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Weekly", time=local(later),
        )
        meeting_id = registry.for_message(5010).action_id.removeprefix("meeting:")

        failure = OperationalError("DELETE", {}, Exception("database is locked"))
        with patch.object(Repository, "delete_meeting", AsyncMock(side_effect=failure)):
            interaction = await run(
                dispatcher, make_interaction(), "meeting", "cancel", meeting_id=meeting_id
            )

        assert reply(interaction)[0] == DATABASE_ERROR_MESSAGE
        assert registry.for_message(5010) is not None
        scheduler.remove_job.assert_not_called()
        assert await count(engine, MeetingRow) == 1

    async def test_time_in_dst_gap_rejected(
        self, dispatcher, make_interaction, engine, faction_id
    ) -> None:
        await run(dispatcher, make_interaction(), "config", "timezone", timezone="America/New_York")
        interaction = await run(
            dispatcher, make_interaction(), "meeting", "schedule",
            title="Spring forward", time="2030-03-10 02:30",
        )
        assert "doesn't exist" in reply(interaction)[0]
        assert await count(engine, MeetingRow) == 0

    async def test_no_meeting_channel(
        self, dispatcher, make_interaction, engine, faction_id, bot
    ) -> None:
        bot.get_channel.side_effect = lambda cid: None
        interaction = await run(
            dispatcher, make_interaction(), "meeting", "emergency", reason="Raid"
        )
        assert "meeting channel" in reply(interaction)[0]
        assert await count(engine, MeetingRow) == 0


class TestMembers:
    async def test_add_and_duplicate(self, dispatcher, make_interaction, faction_id) -> None:
        first = await run(dispatcher, make_interaction(), "member", "add", target_user_id="808")
        assert "joined" in reply(first)[0]
        second = await run(dispatcher, make_interaction(), "member", "add", target_user_id="808")
        assert reply(second)[0] == "That user is already a member."

    async def test_leader_cannot_change_own_rank(
        self, dispatcher, make_interaction, faction_id
    ) -> None:
        interaction = await run(
            dispatcher, make_interaction(), "member", "rank",
            target_user_id=LEADER_ID, rank="MEMBER",
        )
        assert reply(interaction)[0] == "You can't change your own rank."


    async def test_officer_cannot_remove_officer(
        self, dispatcher, make_interaction, engine, faction_id
    ) -> None:
        async with get_session(engine) as session:
            await Repository(session).add_member(faction_id, "201", Rank.OFFICER)
        interaction = await run(
            dispatcher, make_interaction(user_id=OFFICER_ID), "member", "remove",
            user_id=OFFICER_ID, target_user_id="201",
        )
        assert reply(interaction)[0] == "You can only remove members ranked below you."

    async def test_leader_promotes_member(self, dispatcher, make_interaction, engine, faction_id) -> None:
        await run(
            dispatcher, make_interaction(), "member", "rank",
            target_user_id=MEMBER_ID, rank="OFFICER",
        )
        async with get_session(engine) as session:
            member = await Repository(session).get_member(faction_id, MEMBER_ID)
        assert member.rank == Rank.OFFICER.value


class TestConfig:
    async def test_timezone_updated(self, dispatcher, make_interaction, engine, faction_id) -> None:
        interaction = await run(
            dispatcher, make_interaction(user_id=OFFICER_ID), "config", "timezone",
            user_id=OFFICER_ID, timezone="America/New_York",
        )
        _, embed = reply(interaction)
        assert embed is not None and embed.title == "Timezone updated"
        async with get_session(engine) as session:
            faction = await Repository(session).get_faction_by_guild(GUILD_ID)
        assert faction.timezone == "America/New_York"

    async def test_member_cannot_configure(
        self, dispatcher, make_interaction, engine, faction_id
    ) -> None:
        interaction = await run(
            dispatcher, make_interaction(user_id=MEMBER_ID), "config", "prefix",
            user_id=MEMBER_ID, prefix="?",
        )
        assert reply(interaction)[0] == "You do not have permission to use this command."
        async with get_session(engine) as session:
            faction = await Repository(session).get_faction_by_guild(GUILD_ID)
        assert faction.prefix == "!"

    async def test_channels_need_text(self, dispatcher, make_interaction, faction_id) -> None:
        interaction = await run(
            dispatcher, make_interaction(), "config", "channels",
            meeting_channel={"id": "9", "name": "Lounge", "text_capable": False},
        )
        assert "not a text channel" in reply(interaction)[0]


class TestGeneral:
    async def test_ping(self, dispatcher, make_interaction) -> None:
        interaction = await run(dispatcher, make_interaction(), "ping", guild_id=None)
        interaction.response.send_message.assert_awaited_once_with(
            "Pong! 42ms", embed=None, ephemeral=True
        )

    async def test_help_without_faction(self, dispatcher, make_interaction) -> None:
        interaction = await run(dispatcher, make_interaction(guild_id="12345"), "help", guild_id="12345")
        _, embed = reply(interaction)
        assert embed is not None
        assert "/register" in embed.footer.text

    async def test_profile_edit(self, dispatcher, make_interaction, engine, faction_id) -> None:
        interaction = await run(
            dispatcher, make_interaction(user_id=MEMBER_ID), "profile", "edit",
            user_id=MEMBER_ID, twitter="@cj",
        )
        assert reply(interaction)[0] == "Your profile has been updated."
        async with get_session(engine) as session:
            member = await Repository(session).get_member(faction_id, MEMBER_ID)
        assert member.contact_info == {"twitter": "cj"}
