"""Schemas related to Slack OAuth and credential status."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ConnectResponse(BaseModel):
    """Returned by the OAuth callback when the client does not want a redirect."""

    status: str = "connected"
    token: str = Field(..., description="Session token for subsequent API calls.")
    user_id: str
    team_name: str
    user_name: str


class UserProfile(BaseModel):
    user_id: str
    team_name: str
    user_name: str
    token_expires_at: Optional[datetime] = None
    last_token_refresh: Optional[datetime] = None
    token_refresh_count: int = 0


class TokenStatus(BaseModel):
    """Diagnostic view of a stored Slack credential."""

    user_id: str
    has_refresh_token: bool
    token_expires_at: Optional[datetime] = None
    is_expired: bool
    expires_in_minutes: Optional[int] = Field(
        None, description="Whole minutes until expiry; negative once expired."
    )
    last_token_refresh: Optional[datetime] = None
    token_refresh_count: int = 0


__all__ = ["ConnectResponse", "TokenStatus", "UserProfile"]
