"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. Every read and write of a faction-owned
row filters by the owning faction id; nothing is mutated by primary key
alone. Votes and attendance are written as upserts on their natural key
so the last write for a (poll, user) or (meeting, user) pair wins.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from factionbot.db.models import (
    Base,
    FactionRow,
    FineRow,
    MeetingAttendanceRow,
    MeetingRow,
    MemberRow,
    PollRow,
    PollVoteRow,
    RadioSettingsRow,
)
from factionbot.models.faction import AttendanceStatus, RadioFormat, Rank


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _insert(self, model: type[Base]) -> Any:
        """Return a dialect-specific INSERT that supports ON CONFLICT."""
        if self.session.bind is not None and self.session.bind.dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        return insert(model)

    # --- Factions ---

    async def get_faction_by_guild(self, guild_id: str) -> FactionRow | None:
        stmt = select(FactionRow).where(FactionRow.discord_guild_id == guild_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_faction_by_id(self, faction_id: str) -> FactionRow | None:
        return await self.session.get(FactionRow, faction_id)

    async def create_faction(
        self,
        guild_id: str,
        name: str,
        prefix: str,
        timezone: str,
        admin_role_id: str | None = None,
        meeting_channel_id: str | None = None,
        radio_channel_id: str | None = None,
        voting_channel_id: str | None = None,
        fine_log_channel_id: str | None = None,
    ) -> FactionRow:
        """Insert a faction. Raises IntegrityError if the guild already has one."""
        row = FactionRow(
            discord_guild_id=guild_id,
            name=name,
            prefix=prefix,
            timezone=timezone,
            admin_role_id=admin_role_id,
            meeting_channel_id=meeting_channel_id,
            radio_channel_id=radio_channel_id,
            voting_channel_id=voting_channel_id,
            fine_log_channel_id=fine_log_channel_id,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def update_faction(self, faction_id: str, **values: object) -> bool:
        """Update configuration columns on a faction. Returns False if nothing matched."""
        if not values:
            return False
        stmt = update(FactionRow).where(FactionRow.id == faction_id).values(**values)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    # --- Members ---

    async def get_member(self, faction_id: str, discord_user_id: str) -> MemberRow | None:
        stmt = select(MemberRow).where(
            MemberRow.faction_id == faction_id,
            MemberRow.discord_user_id == discord_user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_member(
        self,
        faction_id: str,
        discord_user_id: str,
        rank: Rank = Rank.MEMBER,
    ) -> MemberRow:
        """Insert a member. Raises IntegrityError if the user is already a member."""
        row = MemberRow(
            faction_id=faction_id,
            discord_user_id=discord_user_id,
            rank=rank.value,
            contact_info={},
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_members(self, faction_id: str) -> list[MemberRow]:
        stmt = (
            select(MemberRow)
            .where(MemberRow.faction_id == faction_id)
            .order_by(MemberRow.joined_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_member_rank(self, faction_id: str, member_id: str, rank: Rank) -> bool:
        stmt = (
            update(MemberRow)
            .where(MemberRow.id == member_id, MemberRow.faction_id == faction_id)
            .values(rank=rank.value)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def update_member_contact(
        self,
        faction_id: str,
        member_id: str,
        contact_info: dict[str, str],
    ) -> bool:
        stmt = (
            update(MemberRow)
            .where(MemberRow.id == member_id, MemberRow.faction_id == faction_id)
            .values(contact_info=contact_info)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def remove_member(self, faction_id: str, member_id: str) -> bool:
        stmt = delete(MemberRow).where(
            MemberRow.id == member_id,
            MemberRow.faction_id == faction_id,
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    # --- Fines ---

    async def create_fine(
        self,
        faction_id: str,
        target_user_id: str,
        issuer_id: str,
        amount: int,
        reason: str,
    ) -> FineRow:
        row = FineRow(
            faction_id=faction_id,
            target_user_id=target_user_id,
            issuer_id=issuer_id,
            amount=amount,
            reason=reason,
            paid=False,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_fine(self, faction_id: str, fine_id: str) -> FineRow | None:
        stmt = select(FineRow).where(FineRow.id == fine_id, FineRow.faction_id == faction_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_fine(self, faction_id: str, fine_id: str) -> bool:
        stmt = delete(FineRow).where(FineRow.id == fine_id, FineRow.faction_id == faction_id)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def get_fines(
        self,
        faction_id: str,
        target_user_id: str | None = None,
        limit: int = 10,
    ) -> list[FineRow]:
        """Most recent fines first, optionally for a single member."""
        stmt = select(FineRow).where(FineRow.faction_id == faction_id)
        if target_user_id is not None:
            stmt = stmt.where(FineRow.target_user_id == target_user_id)
        stmt = stmt.order_by(FineRow.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_fines(self, faction_id: str, target_user_id: str) -> int:
        stmt = select(func.count()).where(
            FineRow.faction_id == faction_id,
            FineRow.target_user_id == target_user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    # --- Meetings ---

    async def create_meeting(
        self,
        faction_id: str,
        title: str,
        scheduled_at: datetime,
        created_by: str,
        description: str | None = None,
        is_emergency: bool = False,
    ) -> MeetingRow:
        row = MeetingRow(
            faction_id=faction_id,
            title=title,
            description=description,
            scheduled_at=scheduled_at,
            created_by=created_by,
            is_emergency=is_emergency,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_meeting(self, faction_id: str, meeting_id: str) -> MeetingRow | None:
        stmt = select(MeetingRow).where(
            MeetingRow.id == meeting_id,
            MeetingRow.faction_id == faction_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_meeting_message(
        self,
        faction_id: str,
        meeting_id: str,
        channel_id: str,
        message_id: str,
    ) -> bool:
        stmt = (
            update(MeetingRow)
            .where(MeetingRow.id == meeting_id, MeetingRow.faction_id == faction_id)
            .values(channel_id=channel_id, message_id=message_id)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def delete_meeting(self, faction_id: str, meeting_id: str) -> bool:
        """Delete a meeting and its attendance rows. Returns False if not found."""
        meeting = await self.get_meeting(faction_id, meeting_id)
        if meeting is None:
            return False
        await self.session.execute(
            delete(MeetingAttendanceRow).where(MeetingAttendanceRow.meeting_id == meeting.id)
        )
        await self.session.execute(
            delete(MeetingRow).where(
                MeetingRow.id == meeting.id,
                MeetingRow.faction_id == faction_id,
            )
        )
        return True

    async def upsert_attendance(
        self,
        meeting_id: str,
        discord_user_id: str,
        status: AttendanceStatus,
    ) -> None:
        now = datetime.now(UTC)
        stmt = (
            self._insert(MeetingAttendanceRow)
            .values(
                meeting_id=meeting_id,
                discord_user_id=discord_user_id,
                status=status.value,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["meeting_id", "discord_user_id"],
                set_={"status": status.value, "updated_at": now},
            )
        )
        await self.session.execute(stmt)

    async def get_attendance_tally(self, meeting_id: str) -> dict[str, int]:
        """Count attendance rows per status for one meeting."""
        stmt = (
            select(MeetingAttendanceRow.status, func.count())
            .where(MeetingAttendanceRow.meeting_id == meeting_id)
            .group_by(MeetingAttendanceRow.status)
        )
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}

    async def get_attendance_counts(self, faction_id: str, discord_user_id: str) -> dict[str, int]:
        """Count a member's attendance rows per status across the faction's meetings."""
        stmt = (
            select(MeetingAttendanceRow.status, func.count())
            .join(MeetingRow, MeetingRow.id == MeetingAttendanceRow.meeting_id)
            .where(
                MeetingRow.faction_id == faction_id,
                MeetingAttendanceRow.discord_user_id == discord_user_id,
            )
            .group_by(MeetingAttendanceRow.status)
        )
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}

    # --- Polls ---

    async def create_poll(
        self,
        faction_id: str,
        creator_id: str,
        question: str,
        options: list[str],
        ends_at: datetime,
    ) -> PollRow:
        row = PollRow(
            faction_id=faction_id,
            creator_id=creator_id,
            question=question,
            options=list(options),
            ends_at=ends_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_poll(self, faction_id: str, poll_id: str) -> PollRow | None:
        stmt = select(PollRow).where(PollRow.id == poll_id, PollRow.faction_id == faction_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_poll_message(
        self,
        faction_id: str,
        poll_id: str,
        channel_id: str,
        message_id: str,
    ) -> bool:
        stmt = (
            update(PollRow)
            .where(PollRow.id == poll_id, PollRow.faction_id == faction_id)
            .values(channel_id=channel_id, message_id=message_id)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def delete_poll(self, faction_id: str, poll_id: str) -> bool:
        """Delete a poll and its votes. Returns False if not found."""
        poll = await self.get_poll(faction_id, poll_id)
        if poll is None:
            return False
        await self.session.execute(delete(PollVoteRow).where(PollVoteRow.poll_id == poll.id))
        await self.session.execute(
            delete(PollRow).where(PollRow.id == poll.id, PollRow.faction_id == faction_id)
        )
        return True

    async def upsert_vote(self, poll_id: str, discord_user_id: str, option_index: int) -> None:
        now = datetime.now(UTC)
        stmt = (
            self._insert(PollVoteRow)
            .values(
                poll_id=poll_id,
                discord_user_id=discord_user_id,
                option_index=option_index,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["poll_id", "discord_user_id"],
                set_={"option_index": option_index, "updated_at": now},
            )
        )
        await self.session.execute(stmt)

    async def get_vote_counts(self, poll_id: str) -> dict[int, int]:
        """Count votes per option index."""
        stmt = (
            select(PollVoteRow.option_index, func.count())
            .where(PollVoteRow.poll_id == poll_id)
            .group_by(PollVoteRow.option_index)
        )
        result = await self.session.execute(stmt)
        return {index: count for index, count in result.all()}

    async def finalize_poll(
        self,
        faction_id: str,
        poll_id: str,
        winner_index: int | None,
        total_votes: int,
    ) -> bool:
        """Record the poll result. Only the first call for a poll takes effect."""
        stmt = (
            update(PollRow)
            .where(
                PollRow.id == poll_id,
                PollRow.faction_id == faction_id,
                PollRow.closed_at.is_(None),
            )
            .values(
                winner_index=winner_index,
                total_votes=total_votes,
                closed_at=datetime.now(UTC),
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    # --- Radio ---

    async def get_radio_settings(self, faction_id: str) -> RadioSettingsRow | None:
        stmt = select(RadioSettingsRow).where(RadioSettingsRow.faction_id == faction_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_radio_settings(
        self,
        faction_id: str,
        frequency: str,
        radio_format: RadioFormat,
        updated_by: str,
    ) -> None:
        now = datetime.now(UTC)
        stmt = (
            self._insert(RadioSettingsRow)
            .values(
                faction_id=faction_id,
                frequency=frequency,
                format=radio_format.value,
                updated_by=updated_by,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["faction_id"],
                set_={
                    "frequency": frequency,
                    "format": radio_format.value,
                    "updated_by": updated_by,
                    "updated_at": now,
                },
            )
        )
        await self.session.execute(stmt)
