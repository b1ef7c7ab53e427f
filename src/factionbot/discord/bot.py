"""Discord bot for the faction bot.

Runs alongside FastAPI using the same event loop. Slash commands are thin
adapters that turn Discord's option values into an ``Invocation`` and hand
it to the dispatcher; reaction-add events go to the collective-action
registry.

The bot is optional: if DISCORD_ENABLED is false, nothing starts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import discord
from discord import Intents, app_commands
from discord.ext import commands
from sqlalchemy.ext.asyncio import AsyncEngine

from factionbot.core.collective import CollectiveActionRegistry
from factionbot.discord.dispatcher import Dispatcher, Invocation
from factionbot.discord.handlers import build_routes
from factionbot.discord.helpers import channel_ref

if TYPE_CHECKING:
    from factionbot.config import Settings

logger = logging.getLogger(__name__)

RANK_CHOICES = [
    app_commands.Choice(name="Leader", value="LEADER"),
    app_commands.Choice(name="Officer", value="OFFICER"),
    app_commands.Choice(name="Member", value="MEMBER"),
]
STATUS_CHOICES = [
    app_commands.Choice(name="Present", value="PRESENT"),
    app_commands.Choice(name="Late", value="LATE"),
    app_commands.Choice(name="Absent", value="ABSENT"),
]
FORMAT_CHOICES = [
    app_commands.Choice(name="FM", value="FM"),
    app_commands.Choice(name="AM", value="AM"),
    app_commands.Choice(name="Digital", value="DIGITAL"),
]


def build_invocation(
    interaction: discord.Interaction,
    command: str,
    subcommand: str | None = None,
    **options: Any,
) -> Invocation:
    """Reduce an interaction and its option values to an Invocation."""
    permissions = interaction.permissions
    return Invocation(
        command=command,
        subcommand=subcommand,
        guild_id=str(interaction.guild_id) if interaction.guild_id else None,
        user_id=str(interaction.user.id),
        can_manage_guild=bool(permissions and permissions.manage_guild),
        options=options,
    )


class FactionBot(commands.Bot):
    """The faction management bot.

    Runs in-process with FastAPI. Every slash command goes through one
    ``Dispatcher``; open polls and meeting RSVPs live in the injected
    ``CollectiveActionRegistry``.
    """

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        registry: CollectiveActionRegistry,
        scheduler: Any = None,
    ) -> None:
        # Default intents include guilds and guild reactions; no message content needed.
        intents = Intents.default()
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description="Faction management: members, fines, meetings, radio and polls.",
        )
        self.settings = settings
        self.engine = engine
        self.registry = registry
        self.runner: asyncio.Task[None] | None = None
        self.dispatcher = Dispatcher(
            engine,
            registry,
            bot=self,
            scheduler=scheduler,
            reminder_lead=timedelta(minutes=settings.factionbot_reminder_lead_minutes),
            routes=build_routes(),
        )
        self._setup_commands()

    async def _dispatch(
        self,
        interaction: discord.Interaction,
        command: str,
        subcommand: str | None = None,
        **options: Any,
    ) -> None:
        await self.dispatcher.dispatch(
            interaction, build_invocation(interaction, command, subcommand, **options)
        )

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        @self.tree.command(name="help", description="Show the commands you can use")
        async def help_command(interaction: discord.Interaction) -> None:
            await self._dispatch(interaction, "help")

        @self.tree.command(name="ping", description="Check that the bot is responding")
        async def ping_command(interaction: discord.Interaction) -> None:
            await self._dispatch(interaction, "ping")

        @self.tree.command(name="register", description="Register this server as a faction")
        @app_commands.describe(
            name="Faction name",
            timezone="IANA timezone, e.g. Europe/London",
            prefix="Short command prefix (up to 3 characters)",
            admin_role="Role with faction admin rights",
            meeting_channel="Where meetings are announced",
            radio_channel="Where radio announcements go",
            voting_channel="Where polls are posted",
            fine_log_channel="Where fines are logged",
        )
        async def register_command(
            interaction: discord.Interaction,
            name: str,
            timezone: str,
            prefix: str = "!",
            admin_role: discord.Role | None = None,
            meeting_channel: discord.abc.GuildChannel | None = None,
            radio_channel: discord.abc.GuildChannel | None = None,
            voting_channel: discord.abc.GuildChannel | None = None,
            fine_log_channel: discord.abc.GuildChannel | None = None,
        ) -> None:
            await self._dispatch(
                interaction,
                "register",
                name=name,
                timezone=timezone,
                prefix=prefix,
                admin_role_id=str(admin_role.id) if admin_role else None,
                meeting_channel=channel_ref(meeting_channel),
                radio_channel=channel_ref(radio_channel),
                voting_channel=channel_ref(voting_channel),
                fine_log_channel=channel_ref(fine_log_channel),
            )

        @self.tree.command(name="poll", description="Start a reaction poll")
        @app_commands.describe(
            question="What are you asking?",
            options="Comma-separated choices (2-10)",
            duration="Minutes until the poll closes (default 60, max 10080)",
        )
        async def poll_command(
            interaction: discord.Interaction,
            question: str,
            options: str,
            duration: int = 60,
        ) -> None:
            await self._dispatch(
                interaction, "poll", question=question, options=options, duration=duration
            )

        # --- /profile ---
        profile = app_commands.Group(name="profile", description="Your faction profile")

        @profile.command(name="view", description="View your profile")
        async def profile_view(interaction: discord.Interaction) -> None:
            await self._dispatch(interaction, "profile", "view")

        @profile.command(name="edit", description="Update your contact details")
        @app_commands.describe(phone="Phone number", twitter="Twitter handle")
        async def profile_edit(
            interaction: discord.Interaction,
            phone: str | None = None,
            twitter: str | None = None,
        ) -> None:
            await self._dispatch(interaction, "profile", "edit", phone=phone, twitter=twitter)

        # --- /fine ---
        fine = app_commands.Group(name="fine", description="Issue and review fines")

        @fine.command(name="issue", description="Fine a member")
        @app_commands.describe(user="Member to fine", amount="1 to 1,000,000", reason="Why")
        async def fine_issue(
            interaction: discord.Interaction,
            user: discord.Member,
            amount: int,
            reason: str,
        ) -> None:
            await self._dispatch(
                interaction,
                "fine",
                "issue",
                target_user_id=str(user.id),
                amount=amount,
                reason=reason,
            )

        @fine.command(name="history", description="Show recent fines")
        @app_commands.describe(user="Whose fines to show (officers only)")
        async def fine_history(
            interaction: discord.Interaction,
            user: discord.Member | None = None,
        ) -> None:
            await self._dispatch(
                interaction,
                "fine",
                "history",
                target_user_id=str(user.id) if user else None,
            )

        @fine.command(name="remove", description="Remove a fine")
        @app_commands.describe(fine_id="ID shown in the fine's footer")
        async def fine_remove(interaction: discord.Interaction, fine_id: str) -> None:
            await self._dispatch(interaction, "fine", "remove", fine_id=fine_id)

        # --- /meeting ---
        meeting = app_commands.Group(name="meeting", description="Faction meetings")

        @meeting.command(name="schedule", description="Schedule a meeting")
        @app_commands.describe(
            title="Meeting title",
            time="Local time in the faction timezone, e.g. 2025-04-01 19:30",
            description="Agenda or notes",
        )
        async def meeting_schedule(
            interaction: discord.Interaction,
            title: str,
            time: str,
            description: str | None = None,
        ) -> None:
            await self._dispatch(
                interaction,
                "meeting",
                "schedule",
                title=title,
                time=time,
                description=description,
            )

        @meeting.command(name="emergency", description="Call an emergency meeting now")
        @app_commands.describe(reason="What's happening")
        async def meeting_emergency(interaction: discord.Interaction, reason: str) -> None:
            await self._dispatch(interaction, "meeting", "emergency", reason=reason)

        @meeting.command(name="cancel", description="Cancel a scheduled meeting")
        @app_commands.describe(meeting_id="ID shown in the announcement footer")
        async def meeting_cancel(interaction: discord.Interaction, meeting_id: str) -> None:
            await self._dispatch(interaction, "meeting", "cancel", meeting_id=meeting_id)

        @meeting.command(name="attendance", description="Record a member's attendance")
        @app_commands.describe(meeting_id="Meeting ID", user="Member", status="Attendance")
        @app_commands.choices(status=STATUS_CHOICES)
        async def meeting_attendance(
            interaction: discord.Interaction,
            meeting_id: str,
            user: discord.Member,
            status: app_commands.Choice[str],
        ) -> None:
            await self._dispatch(
                interaction,
                "meeting",
                "attendance",
                meeting_id=meeting_id,
                target_user_id=str(user.id),
                status=status.value,
            )

        # --- /radio ---
        radio = app_commands.Group(name="radio", description="Faction radio")

        @radio.command(name="set", description="Set the radio frequency")
        @app_commands.describe(frequency="Frequency such as 123.45", format="Radio format")
        @app_commands.choices(format=FORMAT_CHOICES)
        async def radio_set(
            interaction: discord.Interaction,
            frequency: str,
            format: app_commands.Choice[str] | None = None,
        ) -> None:
            await self._dispatch(
                interaction,
                "radio",
                "set",
                frequency=frequency,
                format=format.value if format else None,
            )

        @radio.command(name="view", description="Show the current frequency")
        async def radio_view(interaction: discord.Interaction) -> None:
            await self._dispatch(interaction, "radio", "view")

        @radio.command(name="announce", description="Post an announcement to the radio channel")
        @app_commands.describe(message="Announcement text")
        async def radio_announce(interaction: discord.Interaction, message: str) -> None:
            await self._dispatch(interaction, "radio", "announce", message=message)

        # --- /config ---
        config = app_commands.Group(name="config", description="Faction settings")

        @config.command(name="prefix", description="Change the command prefix")
        async def config_prefix(interaction: discord.Interaction, prefix: str) -> None:
            await self._dispatch(interaction, "config", "prefix", prefix=prefix)

        @config.command(name="admin", description="Change the admin role")
        async def config_admin(interaction: discord.Interaction, role: discord.Role) -> None:
            await self._dispatch(interaction, "config", "admin", role_id=str(role.id))

        @config.command(name="timezone", description="Change the faction timezone")
        @app_commands.describe(timezone="IANA timezone, e.g. America/New_York")
        async def config_timezone(interaction: discord.Interaction, timezone: str) -> None:
            await self._dispatch(interaction, "config", "timezone", timezone=timezone)

        @config.command(name="channels", description="Change faction channels")
        async def config_channels(
            interaction: discord.Interaction,
            meeting: discord.abc.GuildChannel | None = None,
            radio: discord.abc.GuildChannel | None = None,
            voting: discord.abc.GuildChannel | None = None,
            fine_log: discord.abc.GuildChannel | None = None,
        ) -> None:
            await self._dispatch(
                interaction,
                "config",
                "channels",
                meeting_channel=channel_ref(meeting),
                radio_channel=channel_ref(radio),
                voting_channel=channel_ref(voting),
                fine_log_channel=channel_ref(fine_log),
            )

        # --- /member ---
        member = app_commands.Group(name="member", description="Faction membership")

        @member.command(name="add", description="Add someone to the faction")
        async def member_add(interaction: discord.Interaction, user: discord.Member) -> None:
            await self._dispatch(
                interaction,
                "member",
                "add",
                target_user_id=str(user.id),
                target_is_bot=user.bot,
            )

        @member.command(name="remove", description="Remove someone from the faction")
        async def member_remove(interaction: discord.Interaction, user: discord.Member) -> None:
            await self._dispatch(interaction, "member", "remove", target_user_id=str(user.id))

        @member.command(name="rank", description="Change a member's rank")
        @app_commands.choices(rank=RANK_CHOICES)
        async def member_rank(
            interaction: discord.Interaction,
            user: discord.Member,
            rank: app_commands.Choice[str],
        ) -> None:
            await self._dispatch(
                interaction,
                "member",
                "rank",
                target_user_id=str(user.id),
                rank=rank.value,
            )

        @member.command(name="list", description="List faction members")
        async def member_list(interaction: discord.Interaction) -> None:
            await self._dispatch(interaction, "member", "list")

        for group in (profile, fine, meeting, radio, config, member):
            self.tree.add_command(group)

    async def setup_hook(self) -> None:
        """Called when the bot is ready to start. Syncs slash commands."""
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        user = self.user
        logger.info(
            "discord_bot_ready user=%s guilds=%d",
            user.name if user else "unknown",
            len(self.guilds),
        )

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        """Feed reaction-add events to any collective action bound to the message."""
        if payload.member is not None:
            actor_is_bot = payload.member.bot
        else:
            actor_is_bot = self.user is not None and payload.user_id == self.user.id
        try:
            await self.registry.deliver(
                payload.message_id,
                payload.user_id,
                str(payload.emoji),
                actor_is_bot=actor_is_bot,
            )
        except Exception:  # Last-resort handler: gateway events have no caller
            logger.exception(
                "reaction_delivery_failed message=%s user=%s",
                payload.message_id,
                payload.user_id,
            )


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether the Discord bot should be started.

    Returns True only when discord_enabled is True, a token is set, AND the
    environment is not development, so a local server never answers
    commands for a live guild.
    """
    if settings.factionbot_env == "development":
        logger.info("discord_bot_skipped_in_development")
        return False
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_discord_bot(
    settings: Settings,
    engine: AsyncEngine,
    registry: CollectiveActionRegistry,
    scheduler: Any = None,
) -> FactionBot:
    """Create and start the Discord bot in the current event loop.

    Returns the bot instance so the caller can stop it during shutdown.
    The bot runs as a background task; this function returns immediately
    after starting it.
    """
    bot = FactionBot(settings=settings, engine=engine, registry=registry, scheduler=scheduler)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler: bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    bot.runner = asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
