"""
Domain model for persisted Slack credentials.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so comparisons never mix naive and aware values."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SlackCredential(BaseModel):
    """Represents the token record stored for one Slack user."""

    user_id: str = Field(..., description="Slack user identifier (unique).")
    team_id: str = ""
    team_name: str = ""
    user_name: str = ""
    access_token: str
    bot_token: Optional[str] = None
    refresh_token: Optional[str] = Field(
        None, description="Absent when the token cannot be silently renewed."
    )
    token_expires_at: Optional[datetime] = Field(
        None, description="Absent means the access token does not expire."
    )
    last_token_refresh: Optional[datetime] = None
    token_refresh_count: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(0, description="Optimistic concurrency counter.")

    normalize_timestamps = field_validator(
        "token_expires_at", "last_token_refresh", "created_at", "updated_at"
    )(as_utc)

    def expires_within(self, window: timedelta, *, now: datetime) -> bool:
        """True when an expiry is recorded and falls at or before ``now + window``."""
        if self.token_expires_at is None:
            return False
        return self.token_expires_at <= now + window

    def is_expired(self, *, now: datetime) -> bool:
        return self.expires_within(timedelta(0), now=now)

    def needs_reauthentication(self, *, now: datetime) -> bool:
        """No refresh path remains and the access token is already past expiry."""
        return not self.refresh_token and self.is_expired(now=now)

    def apply_refresh(
        self,
        *,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: Optional[int],
        now: datetime,
    ) -> None:
        self.access_token = access_token
        # Slack does not rotate the refresh token on every exchange.
        if refresh_token:
            self.refresh_token = refresh_token
        if expires_in:
            self.token_expires_at = now + timedelta(seconds=expires_in)
        self.last_token_refresh = now
        self.token_refresh_count += 1

    def revoke_refresh(self, *, now: datetime) -> None:
        """Drop the refresh token and expire the credential immediately."""
        self.refresh_token = None
        self.token_expires_at = now


__all__ = ["SlackCredential", "as_utc", "utcnow"]
