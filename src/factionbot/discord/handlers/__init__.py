"""Command handlers, one module per command family."""

from __future__ import annotations

from factionbot.discord.dispatcher import Route, RouteKey
from factionbot.discord.handlers import (
    config,
    fines,
    general,
    meetings,
    members,
    polls,
    profile,
    radio,
    register,
)

MODULES = (register, general, profile, fines, meetings, radio, polls, config, members)


def build_routes() -> dict[RouteKey, Route]:
    """Every (command, subcommand) route the bot serves."""
    routes: dict[RouteKey, Route] = {}
    for module in MODULES:
        routes.update(module.ROUTES)
    return routes
