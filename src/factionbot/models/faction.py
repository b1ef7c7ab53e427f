"""Faction domain vocabulary: ranks, attendance statuses, radio formats.

Values are stored verbatim in the database, so renaming a member is a
schema change.
"""

from __future__ import annotations

from enum import StrEnum


class Rank(StrEnum):
    """A member's rank within a faction. Totally ordered: LEADER > OFFICER > MEMBER."""

    LEADER = "LEADER"
    OFFICER = "OFFICER"
    MEMBER = "MEMBER"


RANK_ORDER: dict[Rank, int] = {
    Rank.MEMBER: 0,
    Rank.OFFICER: 1,
    Rank.LEADER: 2,
}


class AttendanceStatus(StrEnum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"


ATTENDANCE_EMOJI: dict[AttendanceStatus, str] = {
    AttendanceStatus.PRESENT: "✅",
    AttendanceStatus.LATE: "⏰",
    AttendanceStatus.ABSENT: "❌",
}


class RadioFormat(StrEnum):
    FM = "FM"
    AM = "AM"
    DIGITAL = "DIGITAL"
