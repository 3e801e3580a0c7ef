"""
Slack Web API adapter.

Thin, stateless wrappers around the handful of Web API methods the scheduler
needs. Every method takes the bearer token explicitly so callers always go
through the token service first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from slackconnect.core.config import SlackSettings
from slackconnect.utils.http import RetryConfig, request_with_retry

_INVALID_REFRESH_ERRORS = {"invalid_refresh_token", "invalid_grant"}


class SlackAPIError(Exception):
    """Raised when Slack answers ``ok: false`` or the request itself fails."""

    def __init__(self, method: str, error: str, detail: str | None = None) -> None:
        self.method = method
        self.error = error
        self.detail = detail
        message = f"{method} failed: {error}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InvalidRefreshTokenError(SlackAPIError):
    """The refresh token was rejected; only a new OAuth consent can recover."""


@dataclass(frozen=True)
class SlackTokenGrant:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    bot_token: Optional[str] = None


@dataclass(frozen=True)
class SlackIdentity:
    team_id: str
    user_id: str
    team_name: str
    user_name: str = ""


@dataclass(frozen=True)
class SlackChannel:
    id: str
    name: str
    is_private: bool = False


class SlackWebClient:
    """Call Slack Web API methods with explicit bearer tokens."""

    def __init__(
        self,
        settings: SlackSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._settings = settings
        self._base_url = settings.api_base_url.rstrip("/")
        self._transport = transport
        self._retry = retry_config or RetryConfig()

    async def _call(
        self,
        method: str,
        *,
        token: str | None = None,
        data: Dict[str, Any] | None = None,
        idempotent: bool = False,
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        url = f"{self._base_url}/{method}"
        async with httpx.AsyncClient(
            timeout=self._settings.http_timeout_seconds, transport=self._transport
        ) as client:
            try:
                if idempotent:
                    response = await request_with_retry(
                        client.post,
                        url,
                        data=data or {},
                        headers=headers,
                        retry_config=self._retry,
                    )
                else:
                    response = await client.post(url, data=data or {}, headers=headers)
                    response.raise_for_status()
            except httpx.HTTPError as exc:
                raise SlackAPIError(method, "http_error", str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise SlackAPIError(method, "invalid_response", response.text[:200]) from exc

        if not payload.get("ok"):
            error = payload.get("error") or "unknown_error"
            if method == "oauth.v2.access" and error in _INVALID_REFRESH_ERRORS:
                raise InvalidRefreshTokenError(method, error)
            raise SlackAPIError(method, error)
        return payload

    @staticmethod
    def _parse_grant(payload: Dict[str, Any]) -> SlackTokenGrant:
        # User tokens live under authed_user on the initial exchange; a user-token
        # refresh answers at the top level with token_type=user.
        authed_user = payload.get("authed_user") or {}
        top_level_is_bot = payload.get("token_type") == "bot"
        if authed_user.get("access_token"):
            access_token = authed_user["access_token"]
            refresh_token = authed_user.get("refresh_token")
            expires_in = authed_user.get("expires_in")
        else:
            access_token = payload.get("access_token")
            refresh_token = payload.get("refresh_token")
            expires_in = payload.get("expires_in")

        if not access_token:
            raise SlackAPIError("oauth.v2.access", "missing_access_token")

        bot_token = payload.get("access_token") if top_level_is_bot else None
        return SlackTokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(expires_in) if expires_in else None,
            bot_token=bot_token,
        )

    def build_authorization_url(self, state: str) -> str:
        """Construct the Slack OAuth v2 consent URL requesting user and bot scopes."""
        scopes = ",".join(self._settings.scopes)
        params = {
            "client_id": self._settings.client_id,
            "scope": scopes,
            "user_scope": scopes,
            "redirect_uri": str(self._settings.redirect_uri),
            "state": state,
        }
        return f"{self._settings.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> SlackTokenGrant:
        payload = await self._call(
            "oauth.v2.access",
            data={
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "code": code,
                "redirect_uri": str(self._settings.redirect_uri),
            },
        )
        return self._parse_grant(payload)

    async def refresh_token(self, refresh_token: str) -> SlackTokenGrant:
        """Exchange a refresh token; raises ``InvalidRefreshTokenError`` when it is dead."""
        payload = await self._call(
            "oauth.v2.access",
            data={
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        return self._parse_grant(payload)

    async def auth_test(self, token: str) -> SlackIdentity:
        payload = await self._call("auth.test", token=token, idempotent=True)
        return SlackIdentity(
            team_id=payload.get("team_id", ""),
            user_id=payload.get("user_id", ""),
            team_name=payload.get("team", ""),
            user_name=payload.get("user", ""),
        )

    async def list_channels(self, token: str) -> list[SlackChannel]:
        """Public and private channels visible to the token, archived ones excluded."""
        channels: list[SlackChannel] = []
        cursor: str | None = None
        while True:
            data: Dict[str, Any] = {
                "types": "public_channel,private_channel",
                "exclude_archived": "true",
                "limit": 1000,
            }
            if cursor:
                data["cursor"] = cursor
            payload = await self._call(
                "conversations.list", token=token, data=data, idempotent=True
            )
            for channel in payload.get("channels") or []:
                channels.append(
                    SlackChannel(
                        id=channel["id"],
                        name=channel.get("name", ""),
                        is_private=bool(channel.get("is_private", False)),
                    )
                )
            cursor = (payload.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return channels

    async def post_message(self, token: str, channel_id: str, text: str) -> str:
        """Post immediately and return the message ``ts``."""
        payload = await self._call(
            "chat.postMessage",
            token=token,
            data={"channel": channel_id, "text": text},
        )
        return payload.get("ts", "")

    async def schedule_message(
        self, token: str, channel_id: str, text: str, post_at: int
    ) -> str:
        """Ask Slack to deliver at ``post_at`` (epoch seconds); returns the schedule id."""
        payload = await self._call(
            "chat.scheduleMessage",
            token=token,
            data={"channel": channel_id, "text": text, "post_at": post_at},
        )
        return payload.get("scheduled_message_id", "")

    async def delete_scheduled_message(
        self, token: str, channel_id: str, scheduled_message_id: str
    ) -> None:
        await self._call(
            "chat.deleteScheduledMessage",
            token=token,
            data={
                "channel": channel_id,
                "scheduled_message_id": scheduled_message_id,
            },
        )


__all__ = [
    "InvalidRefreshTokenError",
    "SlackAPIError",
    "SlackChannel",
    "SlackIdentity",
    "SlackTokenGrant",
    "SlackWebClient",
]
