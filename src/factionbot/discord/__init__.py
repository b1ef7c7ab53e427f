"""Discord integration for the faction bot.

The bot runs in-process with FastAPI, sharing the same event loop.
Slash commands are routed through a single dispatcher; reaction events
feed the collective-action registry.

Optional: with DISCORD_ENABLED=false only the health server starts.
"""
