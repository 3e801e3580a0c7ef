"""
Slack OAuth utilities.

Signs the OAuth ``state`` round-trip and issues the session tokens the API
uses to identify a connected Slack user.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from typing import Any, Dict

from fastapi import HTTPException, status
from jose import JWTError, jwt


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str, *, ttl_seconds: int = 900) -> None:
        self._secret_key = secret_key.encode("utf-8")
        self._ttl = timedelta(seconds=ttl_seconds)

    def encode(self, payload: Dict[str, Any]) -> str:
        body = {**payload, "issued_at": datetime.now(timezone.utc).isoformat()}
        serialized = json.dumps(body, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Malformed OAuth state.",
            ) from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid OAuth state signature.",
            )
        payload = json.loads(serialized)

        issued_at = datetime.fromisoformat(payload["issued_at"])
        if datetime.now(timezone.utc) - issued_at > self._ttl:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="OAuth state token has expired.",
            )
        return payload


class SessionTokenError(Exception):
    """Raised when a session token is missing, malformed, or expired."""


class SessionTokenService:
    """Issue and verify HS256 session tokens identifying a Slack user."""

    _ALGORITHM = "HS256"

    def __init__(self, secret_key: str, *, ttl_seconds: int) -> None:
        if not secret_key:
            raise ValueError("Session secret must be provided.")
        self._secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)

    def issue(self, *, user_id: str, team_name: str = "", user_name: str = "") -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": user_id,
            "team_name": team_name,
            "user_name": user_name,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._ALGORITHM)

    def verify(self, token: str) -> str:
        """Return the Slack user id carried by ``token``."""
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._ALGORITHM])
        except JWTError as exc:
            raise SessionTokenError(str(exc)) from exc
        user_id = claims.get("sub")
        if not user_id:
            raise SessionTokenError("Session token is missing its subject.")
        return user_id


__all__ = [
    "OAuthStateEncoder",
    "SessionTokenError",
    "SessionTokenService",
]
