"""Time conversion for meeting scheduling and time-boxed actions.

Users type wall-clock times in their faction's timezone. Everything is
stored and scheduled as an absolute UTC instant.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_REMINDER_LEAD = timedelta(minutes=15)


class NonexistentLocalTime(ValueError):
    """The wall-clock time falls in a daylight-saving gap."""


def load_timezone(name: str) -> ZoneInfo | None:
    """Return the IANA zone called *name*, or None if it doesn't exist."""
    if not name or not name.strip():
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def is_valid_timezone(name: str) -> bool:
    return load_timezone(name) is not None


def parse_local_time(text: str) -> datetime:
    """Parse an ISO-8601 style date/time such as ``2025-04-01 15:00``.

    Raises ValueError if the text isn't a date and time, or if it carries
    its own UTC offset.
    """
    cleaned = text.strip()
    if len(cleaned) <= 10:
        # A bare date would silently become midnight.
        raise ValueError(f"missing time of day: {text!r}")
    parsed = datetime.fromisoformat(cleaned)
    if parsed.tzinfo is not None:
        raise ValueError(f"unexpected UTC offset: {text!r}")
    return parsed


def local_to_utc(local: datetime, timezone_name: str) -> datetime:
    """Interpret a naive wall-clock time in *timezone_name* and return it in UTC.

    The offset applied is the zone's offset at that wall-clock time, so
    daylight-saving transitions are honoured. Times that already carry an
    offset are converted as-is.

    Raises ValueError for an unknown timezone and NonexistentLocalTime for a
    wall-clock time skipped by a daylight-saving jump.
    """
    if local.tzinfo is not None:
        return local.astimezone(UTC)
    zone = load_timezone(timezone_name)
    if zone is None:
        raise ValueError(f"unknown timezone: {timezone_name!r}")
    instant = local.replace(tzinfo=zone).astimezone(UTC)
    if instant.astimezone(zone).replace(tzinfo=None) != local:
        raise NonexistentLocalTime(f"{local.isoformat()} does not exist in {timezone_name}")
    return instant


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_future(instant: datetime, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)
    return as_utc(instant) > as_utc(now)


def reminder_fire_time(
    meeting_at: datetime,
    now: datetime | None = None,
    lead: timedelta = DEFAULT_REMINDER_LEAD,
) -> datetime | None:
    """Return when the pre-meeting reminder should fire, or None if it's too late.

    A reminder is only armed when ``meeting_at - lead`` is still in the future.
    """
    fire_at = as_utc(meeting_at) - lead
    if not is_future(fire_at, now):
        return None
    return fire_at


def deadline_after(minutes: int, now: datetime | None = None) -> datetime:
    """Return the instant *minutes* after *now*."""
    now = now or datetime.now(UTC)
    return as_utc(now) + timedelta(minutes=minutes)
