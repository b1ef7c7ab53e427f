"""/help and /ping. Both work without a registered faction."""

from __future__ import annotations

import math

from factionbot.discord.dispatcher import CommandContext, Route
from factionbot.discord.embeds import build_help_embed
from factionbot.models.commands import NoOptions


async def handle_help(ctx: CommandContext, options: NoOptions) -> None:
    await ctx.responder.send(embed=build_help_embed(ctx.faction, ctx.member))


async def handle_ping(ctx: CommandContext, options: NoOptions) -> None:
    latency = ctx.bot.latency if ctx.bot is not None else float("nan")
    if math.isfinite(latency):
        await ctx.responder.send(f"Pong! {round(latency * 1000)}ms")
    else:
        await ctx.responder.send("Pong!")


ROUTES = {
    ("help", None): Route(handle_help, needs_member=False, guild_only=False),
    ("ping", None): Route(handle_ping, needs_member=False, guild_only=False, defer=False),
}
