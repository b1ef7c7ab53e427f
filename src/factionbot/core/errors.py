"""User-facing command failures.

Raising one of these from a handler stops the command and replies with
``message``. Nothing has been written when they are raised.
"""

from __future__ import annotations

UNREGISTERED_MESSAGE = "This server does not have a registered faction. Use `/register` first."
NOT_A_MEMBER_MESSAGE = "You are not a member of this faction."
PERMISSION_DENIED_MESSAGE = "You do not have permission to use this command."
GUILD_ONLY_MESSAGE = "This command can only be used inside a server."


class CommandError(Exception):
    """Base class for failures reported to the invoking user verbatim."""

    default_message = "That command could not be completed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class OptionsInvalid(CommandError):
    """An option value is malformed or out of range."""

    default_message = "One of the command options is invalid."


class PermissionDenied(CommandError):
    default_message = PERMISSION_DENIED_MESSAGE


class FactionNotRegistered(CommandError):
    default_message = UNREGISTERED_MESSAGE


class NotAFactionMember(CommandError):
    default_message = NOT_A_MEMBER_MESSAGE


class GuildOnly(CommandError):
    default_message = GUILD_ONLY_MESSAGE


class EntityNotFound(CommandError):
    """The referenced fine, meeting or member doesn't exist in this faction."""

    default_message = "Nothing with that id exists in this faction."


class AlreadyRegistered(CommandError):
    default_message = "This server already has a registered faction."
