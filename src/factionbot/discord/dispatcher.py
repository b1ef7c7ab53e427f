"""Slash-command dispatcher and failure boundary.

Every command the bot exposes goes through ``Dispatcher.dispatch``:

1. look up the route for (command, subcommand)
2. defer the interaction if the route asks for it
3. resolve the faction and the caller's membership, check rank
4. validate the raw options into the route's options model
5. run the handler

Whatever happens, the user gets exactly one reply. ``Responder`` tracks
whether the interaction is still fresh, deferred, or already answered,
and picks the matching Discord call.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import discord
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.core.authorization import has_rank
from factionbot.core.collective import CollectiveActionRegistry
from factionbot.core.errors import CommandError, GuildOnly, PermissionDenied
from factionbot.core.schedule_times import DEFAULT_REMINDER_LEAD
from factionbot.discord.helpers import FactionInfo, MemberInfo, find_faction, find_member, resolve_member
from factionbot.models.commands import NoOptions, parse_options
from factionbot.models.faction import Rank

logger = logging.getLogger(__name__)

UNKNOWN_COMMAND_MESSAGE = "Unknown command."
DATABASE_ERROR_MESSAGE = "Something went wrong talking to the database. Please try again later."
GENERIC_ERROR_MESSAGE = "An error occurred while processing your command."
MANAGE_GUILD_MESSAGE = "You need the Manage Server permission to do that."


class ReplyState(enum.Enum):
    PENDING = "pending"
    DEFERRED = "deferred"
    REPLIED = "replied"


class Responder:
    """Sends replies to one interaction, whatever state it's in."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self.interaction = interaction
        self.state = ReplyState.PENDING

    async def defer(self, *, ephemeral: bool = True) -> None:
        if self.state is not ReplyState.PENDING:
            return
        await self.interaction.response.defer(ephemeral=ephemeral, thinking=True)
        self.state = ReplyState.DEFERRED

    async def send(
        self,
        content: str | None = None,
        *,
        embed: discord.Embed | None = None,
        ephemeral: bool = True,
    ) -> discord.Message | None:
        """Reply, edit the deferred reply, or follow up, as appropriate.

        Returns the sent message when Discord hands one back (deferred or
        follow-up replies); a fresh reply returns None.
        """
        if self.state is ReplyState.PENDING:
            await self.interaction.response.send_message(content, embed=embed, ephemeral=ephemeral)
            self.state = ReplyState.REPLIED
            return None
        if self.state is ReplyState.DEFERRED:
            message = await self.interaction.edit_original_response(content=content, embed=embed)
            self.state = ReplyState.REPLIED
            return message
        return await self.interaction.followup.send(
            content, embed=embed, ephemeral=ephemeral, wait=True
        )


@dataclass(frozen=True)
class Invocation:
    """A slash command invocation reduced to plain values."""

    command: str
    subcommand: str | None
    guild_id: str | None
    user_id: str
    can_manage_guild: bool = False
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"{self.command} {self.subcommand}" if self.subcommand else self.command


@dataclass
class CommandContext:
    """Everything a handler may touch while serving one invocation."""

    interaction: discord.Interaction
    invocation: Invocation
    responder: Responder
    engine: AsyncEngine
    registry: CollectiveActionRegistry
    bot: discord.Client | None = None
    scheduler: Any = None
    reminder_lead: timedelta = DEFAULT_REMINDER_LEAD
    faction: FactionInfo | None = None
    member: MemberInfo | None = None

    def require_member(self) -> tuple[FactionInfo, MemberInfo]:
        assert self.faction is not None and self.member is not None
        return self.faction, self.member


Handler = Callable[[CommandContext, Any], Awaitable[None]]


@dataclass(frozen=True)
class Route:
    """How one (command, subcommand) pair is authorized, validated and run.

    With ``needs_member`` False the faction and membership are still
    looked up when possible, but their absence isn't an error.
    """

    handler: Handler
    options_model: type[BaseModel] = NoOptions
    needs_member: bool = True
    min_rank: Rank = Rank.MEMBER
    guild_only: bool = True
    requires_manage_guild: bool = False
    defer: bool = True
    ephemeral: bool = True


RouteKey = tuple[str, str | None]


class Dispatcher:
    """Routes invocations to handlers inside a single failure boundary."""

    def __init__(
        self,
        engine: AsyncEngine,
        registry: CollectiveActionRegistry,
        *,
        bot: discord.Client | None = None,
        scheduler: Any = None,
        reminder_lead: timedelta = DEFAULT_REMINDER_LEAD,
        routes: Mapping[RouteKey, Route] | None = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.bot = bot
        self.scheduler = scheduler
        self.reminder_lead = reminder_lead
        self.routes: dict[RouteKey, Route] = dict(routes or {})

    def add_route(self, command: str, subcommand: str | None, route: Route) -> None:
        self.routes[(command, subcommand)] = route

    async def dispatch(self, interaction: discord.Interaction, invocation: Invocation) -> None:
        """Run one invocation. Never raises."""
        responder = Responder(interaction)
        route = self.routes.get((invocation.command, invocation.subcommand))
        if route is None:
            logger.warning("command_unknown command=%s", invocation.name)
            await self._reply_safely(responder, UNKNOWN_COMMAND_MESSAGE, invocation)
            return

        ctx = CommandContext(
            interaction=interaction,
            invocation=invocation,
            responder=responder,
            engine=self.engine,
            registry=self.registry,
            bot=self.bot,
            scheduler=self.scheduler,
            reminder_lead=self.reminder_lead,
        )
        try:
            await self._run(ctx, route)
        except CommandError as exc:
            logger.info(
                "command_rejected command=%s user=%s reason=%s",
                invocation.name,
                invocation.user_id,
                type(exc).__name__,
            )
            await self._reply_safely(responder, exc.message, invocation)
        except SQLAlchemyError:
            logger.exception("command_db_error command=%s", invocation.name)
            await self._reply_safely(responder, DATABASE_ERROR_MESSAGE, invocation)
        except Exception:  # Last-resort handler: the user still gets one reply
            logger.exception("command_failed command=%s", invocation.name)
            await self._reply_safely(responder, GENERIC_ERROR_MESSAGE, invocation)

    async def _run(self, ctx: CommandContext, route: Route) -> None:
        invocation = ctx.invocation
        if route.guild_only and not invocation.guild_id:
            raise GuildOnly()
        if route.requires_manage_guild and not invocation.can_manage_guild:
            raise PermissionDenied(MANAGE_GUILD_MESSAGE)

        if route.defer:
            await ctx.responder.defer(ephemeral=route.ephemeral)

        if route.needs_member:
            ctx.faction, ctx.member = await resolve_member(
                self.engine, invocation.guild_id or "", invocation.user_id
            )
            if not has_rank(ctx.member.rank, route.min_rank):
                raise PermissionDenied()
        elif invocation.guild_id:
            ctx.faction = await find_faction(self.engine, invocation.guild_id)
            if ctx.faction is not None:
                ctx.member = await find_member(self.engine, ctx.faction.id, invocation.user_id)

        options = parse_options(route.options_model, invocation.options)
        await route.handler(ctx, options)
        logger.info(
            "command_completed command=%s user=%s guild=%s",
            invocation.name,
            invocation.user_id,
            invocation.guild_id,
        )

    async def _reply_safely(
        self,
        responder: Responder,
        message: str,
        invocation: Invocation,
    ) -> None:
        try:
            await responder.send(message, ephemeral=True)
        except Exception:  # Last-resort handler: nowhere left to report to
            logger.exception("command_reply_failed command=%s", invocation.name)
