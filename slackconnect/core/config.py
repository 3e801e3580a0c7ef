"""
Application configuration models and helpers.

Centralizes settings management so both the FastAPI app and the standalone
dispatcher worker share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class SlackSettings(BaseSettings):
    """Configuration required for interacting with the Slack Web API."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., alias="SLACK_CLIENT_ID")
    client_secret: str = Field(..., alias="SLACK_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., alias="SLACK_REDIRECT_URI")
    api_base_url: str = Field("https://slack.com/api", alias="SLACK_API_BASE_URL")
    authorize_url: str = Field(
        "https://slack.com/oauth/v2/authorize", alias="SLACK_AUTHORIZE_URL"
    )
    http_timeout_seconds: float = Field(10.0, alias="SLACK_HTTP_TIMEOUT_SECONDS")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "channels:read",
            "chat:write",
            "users:read",
            "groups:read",
            "im:read",
            "mpim:read",
        ),
        alias="SLACK_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    token_encryption_secret: Optional[str] = Field(
        None,
        alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    session_secret: Optional[str] = Field(
        None,
        alias="SESSION_SECRET",
        description="HMAC secret for session tokens. Defaults to the Slack client secret.",
    )
    session_ttl_seconds: int = Field(7 * 24 * 3600, alias="SESSION_TTL_SECONDS")
    oauth_state_ttl_seconds: int = Field(900, alias="OAUTH_STATE_TTL")


class SchedulerSettings(BaseSettings):
    """Knobs for the message dispatch engine and token refresh policy."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    tick_interval_seconds: float = Field(60.0, alias="DISPATCH_TICK_SECONDS")
    batch_size: int = Field(50, alias="DISPATCH_BATCH_SIZE")
    max_attempts: int = Field(3, alias="DISPATCH_MAX_ATTEMPTS")
    token_refresh_window_seconds: int = Field(
        300, alias="TOKEN_REFRESH_WINDOW_SECONDS"
    )
    delivery_mode: Literal["local", "remote"] = Field(
        "local",
        alias="SCHEDULE_DELIVERY_MODE",
        description=(
            "'local' delivers scheduled messages from the dispatch engine only; "
            "'remote' hands them to chat.scheduleMessage and never re-posts them."
        ),
    )
    run_in_api_process: bool = Field(True, alias="DISPATCH_IN_API_PROCESS")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="APP_LOG_LEVEL")
    database_path: str = Field("data/slackconnect.db", alias="DATABASE_PATH")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "SchedulerSettings",
    "SecuritySettings",
    "SlackSettings",
    "get_settings",
]
