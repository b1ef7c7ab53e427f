"""SQLAlchemy ORM models for the faction bot database.

Every row is owned by a faction, directly through ``faction_id`` or
transitively through its meeting or poll.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class FactionRow(Base):
    __tablename__ = "factions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    prefix: Mapped[str] = mapped_column(String(10), default="!")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    discord_guild_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    admin_role_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    meeting_channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    radio_channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    voting_channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    fine_log_channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class MemberRow(Base):
    __tablename__ = "faction_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    faction_id: Mapped[str] = mapped_column(ForeignKey("factions.id"), nullable=False)
    discord_user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    rank: Mapped[str] = mapped_column(String(16), nullable=False)
    contact_info: Mapped[dict] = mapped_column(JSON, default=dict)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        UniqueConstraint("faction_id", "discord_user_id", name="uq_member_per_faction"),
    )


class FineRow(Base):
    __tablename__ = "fines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    faction_id: Mapped[str] = mapped_column(ForeignKey("factions.id"), nullable=False)
    target_user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    issuer_id: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_fines_faction_target", "faction_id", "target_user_id"),)


class MeetingRow(Base):
    __tablename__ = "meetings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    faction_id: Mapped[str] = mapped_column(ForeignKey("factions.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[str] = mapped_column(String(32), nullable=False)
    is_emergency: Mapped[bool] = mapped_column(Boolean, default=False)
    channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)

    __table_args__ = (Index("ix_meetings_faction_id", "faction_id"),)


class MeetingAttendanceRow(Base):
    __tablename__ = "meeting_attendance"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    meeting_id: Mapped[str] = mapped_column(ForeignKey("meetings.id"), nullable=False)
    discord_user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )

    __table_args__ = (
        UniqueConstraint("meeting_id", "discord_user_id", name="uq_attendance_per_user"),
    )


class PollRow(Base):
    __tablename__ = "polls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    faction_id: Mapped[str] = mapped_column(ForeignKey("factions.id"), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(32), nullable=False)
    question: Mapped[str] = mapped_column(String(200), nullable=False)
    options: Mapped[list] = mapped_column(JSON, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Set exactly once, when the poll closes.
    winner_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_votes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class PollVoteRow(Base):
    __tablename__ = "poll_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    poll_id: Mapped[str] = mapped_column(ForeignKey("polls.id"), nullable=False)
    discord_user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    option_index: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )

    __table_args__ = (
        UniqueConstraint("poll_id", "discord_user_id", name="uq_vote_per_user"),
    )


class RadioSettingsRow(Base):
    __tablename__ = "radio_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    faction_id: Mapped[str] = mapped_column(
        ForeignKey("factions.id"), nullable=False, unique=True
    )
    frequency: Mapped[str] = mapped_column(String(6), nullable=False)
    format: Mapped[str] = mapped_column(String(16), default="FM")
    updated_by: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )
