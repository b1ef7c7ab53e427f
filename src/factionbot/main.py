"""FastAPI application factory and console entry point.

The HTTP side is only a health endpoint; the app exists to own the
process lifetime: engine, scheduler, collective-action registry and bot.
"""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import ValidationError

from factionbot import __version__
from factionbot.config import Settings
from factionbot.core.collective import CollectiveActionRegistry
from factionbot.db.engine import create_engine, create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, start the scheduler, optionally start the Discord bot."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.effective_database_url())
    await create_tables(engine)
    app.state.engine = engine

    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("scheduler_started")

    registry = CollectiveActionRegistry(scheduler=scheduler)
    app.state.registry = registry

    discord_bot = None
    from factionbot.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from factionbot.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, engine, registry, scheduler)
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")
    app.state.discord_bot = discord_bot

    yield

    # Open polls and RSVP windows are not persisted; drop them with their timers.
    registry.shutdown()
    scheduler.shutdown(wait=False)
    logger.info("scheduler_stopped")

    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the faction bot FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.factionbot_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Faction Bot",
        version=__version__,
        description="Discord faction management bot",
        docs_url="/docs" if settings.factionbot_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.get("/health")
    async def health() -> dict[str, object]:
        registry = getattr(app.state, "registry", None)
        return {
            "status": "ok",
            "env": settings.factionbot_env,
            "open_actions": len(registry) if registry is not None else 0,
        }

    return app


def run() -> None:
    """Console entry point: validate settings, then serve the app with uvicorn."""
    try:
        settings = Settings()
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]).upper() for err in exc.errors() if err["loc"]})
        logging.basicConfig(level=logging.ERROR)
        logger.error("settings_invalid fields=%s", ",".join(missing))
        sys.exit(1)

    import uvicorn

    uvicorn.run(
        "factionbot.main:create_app",
        factory=True,
        host=settings.factionbot_host,
        port=settings.factionbot_port,
        log_level=settings.factionbot_log_level.lower(),
    )


if __name__ == "__main__":
    run()
