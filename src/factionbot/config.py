"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings
from sqlalchemy.engine import URL, make_url

# Settings that must be present for the process to start at all.
REQUIRED_SETTINGS = (
    "discord_bot_token",
    "discord_client_id",
    "database_url",
    "database_key",
)


class Settings(BaseSettings):
    """Faction bot configuration.

    The four required values have no default: constructing ``Settings``
    without them raises ``pydantic.ValidationError``, which the entry point
    treats as a fatal startup error.
    """

    # Discord
    discord_bot_token: str = Field(min_length=1)
    discord_client_id: str = Field(min_length=1)
    discord_guild_id: str = ""  # Sync commands to one guild (fast) instead of globally
    discord_enabled: bool = True

    # Persistence
    database_url: str = Field(min_length=1)
    database_key: str = Field(min_length=1)

    # Environment
    factionbot_env: str = "production"
    factionbot_log_level: str = "INFO"
    factionbot_host: str = "0.0.0.0"
    factionbot_port: int = 8000

    # Meetings
    factionbot_reminder_lead_minutes: int = Field(default=15, ge=1)

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    def effective_database_url(self) -> str | URL:
        """Return the database URL with the access key applied.

        Networked databases get ``database_key`` as their password when the
        URL doesn't already carry one. SQLite URLs are file paths and are
        returned unchanged.
        """
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" or url.password:
            return self.database_url
        return url.set(password=self.database_key)
