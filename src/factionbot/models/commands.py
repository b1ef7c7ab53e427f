"""Typed, validated inputs for every slash command.

The dispatcher builds one of these from the raw interaction options before
a handler runs, so handlers never look at the chat SDK's option bags.
Validators raise ``ValueError`` with the message shown to the user;
``parse_options`` turns the first failure into ``OptionsInvalid``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from factionbot.core.errors import OptionsInvalid
from factionbot.core.schedule_times import is_valid_timezone, parse_local_time
from factionbot.models.faction import AttendanceStatus, RadioFormat, Rank

FREQUENCY_PATTERN = re.compile(r"^\d{3}\.\d{2}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9 \-]{6,19}$")
TWITTER_PATTERN = re.compile(r"^@?(\w{1,15})$")

MAX_FINE_AMOUNT = 1_000_000
MAX_POLL_MINUTES = 10_080
DEFAULT_POLL_MINUTES = 60
MIN_POLL_OPTIONS = 2
MAX_POLL_OPTIONS = 10


def _check_length(value: str, label: str, maximum: int, minimum: int = 1) -> str:
    if not minimum <= len(value) <= maximum:
        if minimum == 1 and not value:
            raise ValueError(f"{label} cannot be empty.")
        raise ValueError(f"{label} must be at most {maximum} characters.")
    return value


def _upper(value: object) -> object:
    return value.strip().upper() if isinstance(value, str) else value


class CommandOptions(BaseModel):
    """Base for all command inputs. Strings arrive stripped."""

    model_config = ConfigDict(str_strip_whitespace=True)


class NoOptions(CommandOptions):
    """For commands that take no options."""


class ChannelRef(BaseModel):
    """A channel chosen in a command option, reduced to what validation needs."""

    id: str
    name: str
    text_capable: bool

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"


def _require_text(channel: ChannelRef | None) -> ChannelRef | None:
    if channel is not None and not channel.text_capable:
        raise ValueError(f"#{channel.name} is not a text channel.")
    return channel


# --- Registration & configuration ---


class RegisterOptions(CommandOptions):
    name: str
    prefix: str = "!"
    timezone: str
    admin_role_id: str | None = None
    meeting_channel: ChannelRef | None = None
    radio_channel: ChannelRef | None = None
    voting_channel: ChannelRef | None = None
    fine_log_channel: ChannelRef | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _check_length(v, "Faction name", 100)

    @field_validator("prefix")
    @classmethod
    def _prefix(cls, v: str) -> str:
        return _check_length(v, "Prefix", 3)

    @field_validator("timezone")
    @classmethod
    def _timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone `{v}`. Use an IANA name such as `Europe/London`.")
        return v

    @field_validator("meeting_channel", "radio_channel", "voting_channel", "fine_log_channel")
    @classmethod
    def _text_channel(cls, v: ChannelRef | None) -> ChannelRef | None:
        return _require_text(v)

    def channels(self) -> dict[str, ChannelRef]:
        """Configured channels keyed by purpose, skipping any left unset."""
        named = {
            "meeting": self.meeting_channel,
            "radio": self.radio_channel,
            "voting": self.voting_channel,
            "fine_log": self.fine_log_channel,
        }
        return {purpose: ch for purpose, ch in named.items() if ch is not None}


class ConfigPrefixOptions(CommandOptions):
    prefix: str

    @field_validator("prefix")
    @classmethod
    def _prefix(cls, v: str) -> str:
        return _check_length(v, "Prefix", 10)


class ConfigAdminOptions(CommandOptions):
    role_id: str


class ConfigTimezoneOptions(CommandOptions):
    timezone: str

    @field_validator("timezone")
    @classmethod
    def _timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone `{v}`. Use an IANA name such as `Europe/London`.")
        return v


class ConfigChannelsOptions(CommandOptions):
    meeting_channel: ChannelRef | None = None
    radio_channel: ChannelRef | None = None
    voting_channel: ChannelRef | None = None
    fine_log_channel: ChannelRef | None = None

    @field_validator("meeting_channel", "radio_channel", "voting_channel", "fine_log_channel")
    @classmethod
    def _text_channel(cls, v: ChannelRef | None) -> ChannelRef | None:
        return _require_text(v)

    @model_validator(mode="after")
    def _at_least_one(self) -> ConfigChannelsOptions:
        if not self.columns():
            raise ValueError("Pick at least one channel to change.")
        return self

    def columns(self) -> dict[str, str]:
        """Faction column updates for the channels that were supplied."""
        named = {
            "meeting_channel_id": self.meeting_channel,
            "radio_channel_id": self.radio_channel,
            "voting_channel_id": self.voting_channel,
            "fine_log_channel_id": self.fine_log_channel,
        }
        return {col: ch.id for col, ch in named.items() if ch is not None}


# --- Profile ---


class ProfileEditOptions(CommandOptions):
    phone: str | None = None
    twitter: str | None = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str | None) -> str | None:
        if v is not None and not PHONE_PATTERN.match(v):
            raise ValueError("Phone numbers are 7-20 digits, spaces or dashes, optionally starting with `+`.")
        return v

    @field_validator("twitter")
    @classmethod
    def _twitter(cls, v: str | None) -> str | None:
        if v is None:
            return None
        match = TWITTER_PATTERN.match(v)
        if not match:
            raise ValueError("Twitter handles are 1-15 letters, digits or underscores.")
        return match.group(1)

    @model_validator(mode="after")
    def _at_least_one(self) -> ProfileEditOptions:
        if self.phone is None and self.twitter is None:
            raise ValueError("Provide a phone number, a Twitter handle, or both.")
        return self


# --- Fines ---


class FineIssueOptions(CommandOptions):
    target_user_id: str
    amount: int
    reason: str

    @field_validator("amount")
    @classmethod
    def _amount(cls, v: int) -> int:
        if not 1 <= v <= MAX_FINE_AMOUNT:
            raise ValueError(f"Fine amount must be between 1 and {MAX_FINE_AMOUNT:,}.")
        return v

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        return _check_length(v, "Reason", 1000)


class FineHistoryOptions(CommandOptions):
    target_user_id: str | None = None


class FineRemoveOptions(CommandOptions):
    fine_id: str


# --- Meetings ---


class MeetingScheduleOptions(CommandOptions):
    title: str
    time: datetime
    description: str | None = None

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return _check_length(v, "Title", 100)

    @field_validator("time", mode="before")
    @classmethod
    def _time(cls, v: object) -> object:
        if isinstance(v, str):
            try:
                return parse_local_time(v)
            except ValueError:
                raise ValueError(
                    f"Couldn't read `{v}` as a date and time. Use `YYYY-MM-DD HH:MM` "
                    "in the faction timezone, without a UTC offset."
                ) from None
        if isinstance(v, datetime) and v.tzinfo is not None:
            raise ValueError("Give the time in the faction timezone, without a UTC offset.")
        return v

    @field_validator("description")
    @classmethod
    def _description(cls, v: str | None) -> str | None:
        if not v:
            return None
        return _check_length(v, "Description", 2000)


class MeetingEmergencyOptions(CommandOptions):
    reason: str

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        return _check_length(v, "Reason", 100)


class MeetingCancelOptions(CommandOptions):
    meeting_id: str


class MeetingAttendanceOptions(CommandOptions):
    meeting_id: str
    target_user_id: str
    status: AttendanceStatus

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: object) -> object:
        v = _upper(v)
        if isinstance(v, str) and v not in AttendanceStatus.__members__:
            raise ValueError("Status must be one of PRESENT, LATE or ABSENT.")
        return v


# --- Radio ---


class RadioSetOptions(CommandOptions):
    frequency: str
    format: RadioFormat = RadioFormat.FM

    @field_validator("frequency")
    @classmethod
    def _frequency(cls, v: str) -> str:
        if not FREQUENCY_PATTERN.match(v):
            raise ValueError("Frequency must look like `123.45`.")
        return v

    @field_validator("format", mode="before")
    @classmethod
    def _format(cls, v: object) -> object:
        v = _upper(v)
        if isinstance(v, str) and v not in RadioFormat.__members__:
            raise ValueError("Format must be one of FM, AM or DIGITAL.")
        return v


class RadioAnnounceOptions(CommandOptions):
    message: str

    @field_validator("message")
    @classmethod
    def _message(cls, v: str) -> str:
        return _check_length(v, "Message", 2000)


# --- Polls ---


class PollOptions(CommandOptions):
    question: str
    options: list[str]
    duration: int = DEFAULT_POLL_MINUTES

    @field_validator("question")
    @classmethod
    def _question(cls, v: str) -> str:
        return _check_length(v, "Question", 200)

    @field_validator("options", mode="before")
    @classmethod
    def _split(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            v = [str(item).strip() for item in v]
            v = [item for item in v if item]
            if not MIN_POLL_OPTIONS <= len(v) <= MAX_POLL_OPTIONS:
                raise ValueError(
                    f"Polls need between {MIN_POLL_OPTIONS} and {MAX_POLL_OPTIONS} "
                    "comma-separated options."
                )
        return v

    @field_validator("duration")
    @classmethod
    def _duration(cls, v: int) -> int:
        if not 1 <= v <= MAX_POLL_MINUTES:
            raise ValueError(f"Duration must be between 1 and {MAX_POLL_MINUTES} minutes.")
        return v


# --- Membership ---


class MemberAddOptions(CommandOptions):
    target_user_id: str
    target_is_bot: bool = False

    @model_validator(mode="after")
    def _no_bots(self) -> MemberAddOptions:
        if self.target_is_bot:
            raise ValueError("Bots can't join a faction.")
        return self


class MemberRemoveOptions(CommandOptions):
    target_user_id: str


class MemberRankOptions(CommandOptions):
    target_user_id: str
    rank: Rank

    @field_validator("rank", mode="before")
    @classmethod
    def _rank(cls, v: object) -> object:
        v = _upper(v)
        if isinstance(v, str) and v not in Rank.__members__:
            raise ValueError("Rank must be one of LEADER, OFFICER or MEMBER.")
        return v


OptionsT = TypeVar("OptionsT", bound=BaseModel)


def _user_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    error = first.get("ctx", {}).get("error")
    if isinstance(error, ValueError):
        return str(error)
    field = ".".join(str(part) for part in first.get("loc", ())) or "options"
    if first.get("type") == "missing":
        return f"Missing required option `{field}`."
    return f"Invalid value for `{field}`."


def parse_options(model: type[OptionsT], raw: Mapping[str, object]) -> OptionsT:
    """Validate raw command options into *model*.

    Options passed as None are treated as not supplied, so model defaults
    apply. Raises OptionsInvalid carrying the first problem found.
    """
    supplied = {key: value for key, value in raw.items() if value is not None}
    try:
        return model.model_validate(supplied)
    except ValidationError as exc:
        raise OptionsInvalid(_user_message(exc)) from exc
