"""
Helpers for retrieving and refreshing Slack user tokens.

Refresh is lazy: a token is exchanged only when a caller needs it and it
expires within the refresh window. There is no background refresh timer.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict

from slackconnect.clients.slack_api import (
    InvalidRefreshTokenError,
    SlackAPIError,
    SlackWebClient,
)
from slackconnect.clients.sqlite_store import SQLiteStore
from slackconnect.models import SlackCredential, utcnow
from slackconnect.schemas import TokenStatus

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Base class for credential lifecycle failures."""


class UserNotFoundError(TokenError):
    """No credential is stored for the requested Slack user."""


class NoRefreshTokenError(TokenError):
    """The credential carries no refresh token, so it cannot be renewed silently."""


class RefreshRejectedError(TokenError):
    """Slack refused the refresh exchange."""

    def __init__(self, message: str, *, invalid_refresh_token: bool = False) -> None:
        super().__init__(message)
        self.invalid_refresh_token = invalid_refresh_token


class TokenRefreshFailedError(TokenError):
    """A usable token could not be produced for the caller."""

    needs_reauth = False


class AuthenticationRequiredError(TokenRefreshFailedError):
    """No silent refresh path remains; the user has to reconnect Slack."""

    needs_reauth = True


class SlackTokenService:
    """Keeps each user's Slack access token usable across its expiry boundary."""

    def __init__(
        self,
        store: SQLiteStore,
        slack_client: SlackWebClient,
        *,
        refresh_window: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._slack = slack_client
        self._refresh_window = refresh_window
        self._clock = clock
        self._refresh_locks: Dict[str, asyncio.Lock] = {}

    def _load(self, user_id: str) -> SlackCredential:
        credential = self._store.get_credential(user_id)
        if credential is None:
            raise UserNotFoundError(f"No Slack credential stored for user {user_id}.")
        return credential

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(user_id)
        if lock is None:
            lock = self._refresh_locks[user_id] = asyncio.Lock()
        return lock

    def _is_fresh(self, credential: SlackCredential) -> bool:
        return not credential.expires_within(self._refresh_window, now=self._clock())

    async def get_valid_access_token(self, user_id: str) -> str:
        """Return a token usable for at least the refresh window, refreshing if needed."""
        credential = self._load(user_id)
        if self._is_fresh(credential):
            return credential.access_token

        # Single-flight per user: late arrivals reuse the token the first caller obtained.
        async with self._lock_for(user_id):
            credential = self._load(user_id)
            if self._is_fresh(credential):
                return credential.access_token

            logger.info(
                "Slack token expires soon, refreshing",
                extra={
                    "user_id": user_id,
                    "token_expires_at": credential.token_expires_at.isoformat()
                    if credential.token_expires_at
                    else None,
                },
            )
            try:
                return await self.refresh_access_token(credential)
            except NoRefreshTokenError as exc:
                raise AuthenticationRequiredError(
                    "Slack token expired and cannot be refreshed; reconnect required."
                ) from exc
            except RefreshRejectedError as exc:
                if exc.invalid_refresh_token:
                    raise AuthenticationRequiredError(
                        "Slack refresh token is no longer valid; reconnect required."
                    ) from exc
                raise TokenRefreshFailedError(
                    f"Token refresh failed for user {user_id}: {exc}"
                ) from exc

    async def refresh_access_token(self, credential: SlackCredential) -> str:
        """Exchange the stored refresh token and persist the new token set."""
        if not credential.refresh_token:
            logger.error(
                "No refresh token available", extra={"user_id": credential.user_id}
            )
            raise NoRefreshTokenError(
                f"No refresh token stored for user {credential.user_id}."
            )

        try:
            grant = await self._slack.refresh_token(credential.refresh_token)
        except InvalidRefreshTokenError as exc:
            logger.warning(
                "Slack rejected refresh token; user must reconnect",
                extra={"user_id": credential.user_id},
            )
            self._revoke(credential)
            raise RefreshRejectedError(str(exc), invalid_refresh_token=True) from exc
        except SlackAPIError as exc:
            logger.error(
                "Slack token refresh failed",
                extra={"user_id": credential.user_id, "error": exc.error},
            )
            raise RefreshRejectedError(str(exc)) from exc

        refreshed_at = self._clock()
        target = credential
        for _ in range(2):
            target.apply_refresh(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_in=grant.expires_in,
                now=refreshed_at,
            )
            if self._store.update_credential(target):
                logger.info(
                    "Slack token refreshed",
                    extra={
                        "user_id": target.user_id,
                        "token_refresh_count": target.token_refresh_count,
                        "rotated_refresh_token": bool(grant.refresh_token),
                    },
                )
                return grant.access_token

            # Lost a write race. Keep the winner if it is already fresh, otherwise
            # lay our grant over the latest copy so a rotated refresh token is kept.
            target = self._load(credential.user_id)
            if self._is_fresh(target):
                logger.warning(
                    "Concurrent token update detected; using stored token",
                    extra={"user_id": target.user_id},
                )
                return target.access_token

        raise RefreshRejectedError(
            f"Could not persist refreshed token for user {credential.user_id}."
        )

    def _revoke(self, credential: SlackCredential) -> None:
        dead_refresh_token = credential.refresh_token
        credential.revoke_refresh(now=self._clock())
        if self._store.update_credential(credential):
            return
        latest = self._store.get_credential(credential.user_id)
        # Only downgrade if nobody stored a different refresh token meanwhile.
        if latest is not None and latest.refresh_token == dead_refresh_token:
            latest.revoke_refresh(now=self._clock())
            self._store.update_credential(latest)

    def needs_reauthentication(self, user_id: str) -> bool:
        """True iff no refresh token remains and the access token has expired."""
        credential = self._store.get_credential(user_id)
        if credential is None:
            return True
        return credential.needs_reauthentication(now=self._clock())

    def get_bot_token(self, user_id: str) -> str:
        credential = self._load(user_id)
        return credential.bot_token or credential.access_token

    async def validate_token(self, token: str) -> bool:
        """Best-effort liveness probe; every failure reads as ``False``."""
        try:
            await self._slack.auth_test(token)
        except Exception as exc:  # noqa: BLE001 - probe never propagates
            logger.info("Slack token validation failed", extra={"error": str(exc)})
            return False
        return True

    def token_status(self, user_id: str) -> TokenStatus:
        credential = self._load(user_id)
        now = self._clock()
        expires_in_minutes = None
        if credential.token_expires_at is not None:
            remaining = credential.token_expires_at - now
            expires_in_minutes = int(remaining.total_seconds() // 60)
        return TokenStatus(
            user_id=credential.user_id,
            has_refresh_token=bool(credential.refresh_token),
            token_expires_at=credential.token_expires_at,
            is_expired=credential.is_expired(now=now),
            expires_in_minutes=expires_in_minutes,
            last_token_refresh=credential.last_token_refresh,
            token_refresh_count=credential.token_refresh_count,
        )


__all__ = [
    "AuthenticationRequiredError",
    "NoRefreshTokenError",
    "RefreshRejectedError",
    "SlackTokenService",
    "TokenError",
    "TokenRefreshFailedError",
    "UserNotFoundError",
]
