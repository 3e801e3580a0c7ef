"""
FastAPI routes for connecting Slack and sending or scheduling messages.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import urlencode, urlparse

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from slackconnect.api.auth import CurrentUser
from slackconnect.clients import SlackAPIError
from slackconnect.dependencies import (
    get_app_settings,
    get_messaging_service,
    get_oauth_state_encoder,
    get_session_token_service,
    get_slack_client,
    get_slack_token_service,
    get_sqlite_store,
)
from slackconnect.models import MessageStatus, SlackCredential, utcnow
from slackconnect.schemas import (
    ChannelListResponse,
    ChannelView,
    ConnectResponse,
    ScheduledMessageList,
    ScheduledMessageView,
    ScheduleMessageRequest,
    ScheduleMessageResponse,
    SendMessageRequest,
    SendMessageResponse,
    TokenStatus,
    UserProfile,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _origin(url: str) -> tuple[str, str]:
    parsed = urlparse(url)
    return parsed.scheme.lower(), parsed.netloc.lower()


def _is_frontend_url(url: str, settings: Any) -> bool:
    """Session tokens may only be handed to the configured front-end origin."""
    frontend = settings.frontend_base_url
    return frontend is not None and _origin(url) == _origin(str(frontend))


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok", "timestamp": utcnow().isoformat()}


@router.get("/auth/slack/authorize", status_code=HTTPStatus.OK)
async def start_slack_oauth_flow(
    request: Request,
    slack_client: Annotated[Any, Depends(get_slack_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    settings: Annotated[Any, Depends(get_app_settings)],
    redirect_to: str | None = Query(
        default=None,
        description="Optional URL to redirect back to on successful authentication.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Slack consent screen.",
    ),
) -> Any:
    """Kick off the OAuth flow by generating a state token and authorization URL."""
    if redirect_to and not _is_frontend_url(redirect_to, settings):
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="redirect_to must point at the configured front-end.",
        )
    state = state_encoder.encode({"nonce": uuid.uuid4().hex, "redirect_to": redirect_to})
    authorization_url = slack_client.build_authorization_url(state=state)

    if redirect or _wants_html(request):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return {"authorization_url": authorization_url, "state": state}


@router.get("/auth/slack/callback", status_code=HTTPStatus.OK)
async def handle_slack_oauth_callback(
    request: Request,
    slack_client: Annotated[Any, Depends(get_slack_client)],
    state_encoder: Annotated[Any, Depends(get_oauth_state_encoder)],
    record_store: Annotated[Any, Depends(get_sqlite_store)],
    sessions: Annotated[Any, Depends(get_session_token_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state token."),
    code: str = Query(..., description="Authorization code returned by Slack."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    """Complete the OAuth exchange, store the credential, and issue a session token."""
    state_data = state_encoder.decode(state)

    try:
        grant = await slack_client.exchange_code(code)
    except SlackAPIError as exc:
        logger.error("OAuth code exchange failed", extra={"error": exc.error})
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Failed to exchange authorization code.",
        ) from exc

    try:
        identity = await slack_client.auth_test(grant.access_token)
    except SlackAPIError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail="Could not verify the Slack identity.",
        ) from exc

    now = utcnow()
    credential = SlackCredential(
        user_id=identity.user_id,
        team_id=identity.team_id,
        team_name=identity.team_name,
        user_name=identity.user_name or "Unknown User",
        access_token=grant.access_token,
        bot_token=grant.bot_token,
        refresh_token=grant.refresh_token,
        token_expires_at=now + timedelta(seconds=grant.expires_in)
        if grant.expires_in
        else None,
        token_refresh_count=0,
    )
    record_store.save_credential(credential)
    logger.info(
        "Slack user connected",
        extra={
            "user_id": credential.user_id,
            "has_refresh_token": bool(credential.refresh_token),
            "token_expires_at": credential.token_expires_at.isoformat()
            if credential.token_expires_at
            else None,
        },
    )

    session_token = sessions.issue(
        user_id=credential.user_id,
        team_name=credential.team_name,
        user_name=credential.user_name,
    )
    result = ConnectResponse(
        token=session_token,
        user_id=credential.user_id,
        team_name=credential.team_name,
        user_name=credential.user_name,
    )

    redirect_target = state_data.get("redirect_to")
    if not redirect_target or not _is_frontend_url(str(redirect_target), settings):
        redirect_target = settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        target = str(redirect_target)
        user_json = json.dumps(
            {
                "slackUserId": result.user_id,
                "teamName": result.team_name,
                "userName": result.user_name,
            }
        )
        separator = "&" if "?" in target else "?"
        query = urlencode({"token": session_token, "user": user_json})
        return RedirectResponse(
            url=f"{target}{separator}{query}",
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )

    return JSONResponse(content=result.model_dump())


@router.get("/auth/user", response_model=UserProfile)
async def get_user_profile(user: CurrentUser) -> UserProfile:
    return UserProfile(
        user_id=user.user_id,
        team_name=user.team_name,
        user_name=user.user_name,
        token_expires_at=user.token_expires_at,
        last_token_refresh=user.last_token_refresh,
        token_refresh_count=user.token_refresh_count,
    )


@router.get("/auth/token-status", response_model=TokenStatus)
async def get_token_status(
    user: CurrentUser,
    token_service: Annotated[Any, Depends(get_slack_token_service)],
) -> TokenStatus:
    return token_service.token_status(user.user_id)


@router.get("/messages/channels", response_model=ChannelListResponse)
async def list_channels(
    user: CurrentUser,
    messaging: Annotated[Any, Depends(get_messaging_service)],
) -> ChannelListResponse:
    channels = await messaging.list_channels(user_id=user.user_id)
    return ChannelListResponse(
        channels=[
            ChannelView(id=channel.id, name=channel.name, is_private=channel.is_private)
            for channel in channels
        ]
    )


@router.post("/messages/send", response_model=SendMessageResponse)
async def send_message(
    payload: SendMessageRequest,
    user: CurrentUser,
    messaging: Annotated[Any, Depends(get_messaging_service)],
) -> SendMessageResponse:
    """Post a message to Slack right away."""
    remote_id = await messaging.send_now(
        user_id=user.user_id, channel_id=payload.channel, text=payload.text
    )
    return SendMessageResponse(message_id=remote_id)


@router.post("/messages/schedule", response_model=ScheduleMessageResponse)
async def schedule_message(
    payload: ScheduleMessageRequest,
    user: CurrentUser,
    messaging: Annotated[Any, Depends(get_messaging_service)],
) -> ScheduleMessageResponse:
    """Record a message for delivery at ``scheduled_time``."""
    try:
        message = await messaging.schedule(
            user_id=user.user_id,
            channel_id=payload.channel,
            channel_name=payload.channel_name,
            text=payload.text,
            scheduled_time=payload.scheduled_time,
        )
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc

    return ScheduleMessageResponse(
        scheduled_message_id=message.message_id,
        remote_schedule_id=message.remote_schedule_id,
    )


@router.get("/messages/scheduled", response_model=ScheduledMessageList)
async def list_scheduled_messages(
    user: CurrentUser,
    messaging: Annotated[Any, Depends(get_messaging_service)],
    status: Optional[MessageStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
) -> ScheduledMessageList:
    messages = messaging.list_scheduled(user_id=user.user_id, status=status, limit=limit)
    views = [
        ScheduledMessageView.model_validate(message.model_dump()) for message in messages
    ]
    return ScheduledMessageList(messages=views, total=len(views))


@router.delete("/messages/scheduled/{message_id}", status_code=HTTPStatus.OK)
async def cancel_scheduled_message(
    message_id: str,
    user: CurrentUser,
    messaging: Annotated[Any, Depends(get_messaging_service)],
) -> dict:
    await messaging.cancel(user_id=user.user_id, message_id=message_id)
    return {"success": True}
