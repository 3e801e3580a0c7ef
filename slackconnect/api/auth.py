"""Session authentication for API routes acting on behalf of a Slack user."""

from __future__ import annotations

from http import HTTPStatus
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from slackconnect.clients import SessionTokenError
from slackconnect.dependencies import (
    get_session_token_service,
    get_slack_token_service,
    get_sqlite_store,
)
from slackconnect.models import SlackCredential
from slackconnect.services import AuthenticationRequiredError


async def get_current_user(
    request: Request,
    sessions: Annotated[Any, Depends(get_session_token_service)],
    store: Annotated[Any, Depends(get_sqlite_store)],
    token_service: Annotated[Any, Depends(get_slack_token_service)],
) -> SlackCredential:
    """Resolve the bearer session token to a stored, still-recoverable credential."""
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Access token required.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = sessions.verify(token)
    except SessionTokenError as exc:
        raise HTTPException(
            status_code=HTTPStatus.FORBIDDEN, detail="Invalid session token."
        ) from exc

    credential = store.get_credential(user_id)
    if credential is None:
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="User not found.")

    if token_service.needs_reauthentication(user_id):
        raise AuthenticationRequiredError("Re-authentication required.")

    return credential


CurrentUser = Annotated[SlackCredential, Depends(get_current_user)]

__all__ = ["CurrentUser", "get_current_user"]
