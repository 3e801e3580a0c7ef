"""
Immediate send, scheduling, and cancellation of Slack messages.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Literal, Optional

from slackconnect.clients.slack_api import SlackAPIError, SlackChannel, SlackWebClient
from slackconnect.clients.sqlite_store import SQLiteStore
from slackconnect.models import MessageStatus, ScheduledMessage, as_utc, utcnow
from slackconnect.services.slack_tokens import SlackTokenService

logger = logging.getLogger(__name__)

DeliveryMode = Literal["local", "remote"]


class DeliveryFailedError(Exception):
    """Slack rejected a post, schedule, or channel lookup for the caller."""


class ScheduledMessageNotFoundError(Exception):
    """The message does not exist, is not the caller's, or is no longer pending."""


class MessagingService:
    """Carry out a user's send/schedule/cancel requests against Slack."""

    def __init__(
        self,
        store: SQLiteStore,
        token_service: SlackTokenService,
        slack_client: SlackWebClient,
        *,
        delivery_mode: DeliveryMode = "local",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = token_service
        self._slack = slack_client
        self._delivery_mode = delivery_mode
        self._clock = clock

    @property
    def delivery_mode(self) -> DeliveryMode:
        return self._delivery_mode

    async def list_channels(self, *, user_id: str) -> list[SlackChannel]:
        token = await self._tokens.get_valid_access_token(user_id)
        try:
            channels = await self._slack.list_channels(token)
        except SlackAPIError as exc:
            raise DeliveryFailedError(str(exc)) from exc
        logger.info(
            "Fetched Slack channels", extra={"user_id": user_id, "count": len(channels)}
        )
        return channels

    async def send_now(self, *, user_id: str, channel_id: str, text: str) -> str:
        """Post immediately; returns Slack's message ``ts``. No local record is kept."""
        token = await self._tokens.get_valid_access_token(user_id)
        try:
            return await self._slack.post_message(token, channel_id, text)
        except SlackAPIError as exc:
            logger.error(
                "Immediate send failed",
                extra={"user_id": user_id, "channel_id": channel_id, "error": exc.error},
            )
            raise DeliveryFailedError(str(exc)) from exc

    async def schedule(
        self,
        *,
        user_id: str,
        channel_id: str,
        text: str,
        scheduled_time: datetime,
        channel_name: str = "",
    ) -> ScheduledMessage:
        """Record a future delivery.

        In ``remote`` mode Slack's own scheduler is asked to deliver and the local
        record only mirrors it; in ``local`` mode the dispatch engine delivers.
        """
        scheduled_time = as_utc(scheduled_time)
        if scheduled_time <= self._clock():
            raise ValueError("scheduled_time must be in the future.")

        remote_schedule_id: Optional[str] = None
        if self._delivery_mode == "remote":
            token = await self._tokens.get_valid_access_token(user_id)
            try:
                remote_schedule_id = await self._slack.schedule_message(
                    token, channel_id, text, int(scheduled_time.timestamp())
                )
            except SlackAPIError as exc:
                logger.error(
                    "Slack refused to schedule message",
                    extra={"user_id": user_id, "channel_id": channel_id, "error": exc.error},
                )
                raise DeliveryFailedError(str(exc)) from exc

        message = self._store.create_message(
            ScheduledMessage(
                user_id=user_id,
                channel_id=channel_id,
                channel_name=channel_name,
                text=text,
                scheduled_time=scheduled_time,
                remote_schedule_id=remote_schedule_id,
            )
        )
        logger.info(
            "Message scheduled",
            extra={
                "message_id": message.message_id,
                "scheduled_time": scheduled_time.isoformat(),
                "channel_name": channel_name,
                "delivery_mode": self._delivery_mode,
            },
        )
        return message

    def list_scheduled(
        self,
        *,
        user_id: str,
        status: Optional[MessageStatus] = None,
        limit: int = 50,
    ) -> list[ScheduledMessage]:
        return self._store.list_messages(user_id=user_id, status=status, limit=limit)

    async def cancel(self, *, user_id: str, message_id: str) -> ScheduledMessage:
        """Cancel a pending message. Local state wins even if Slack cannot be reached."""
        message = self._store.get_message(message_id)
        if (
            message is None
            or message.user_id != user_id
            or message.status.is_terminal
        ):
            raise ScheduledMessageNotFoundError(f"Scheduled message {message_id} not found.")

        if message.remote_schedule_id:
            await self._cancel_remote(message)

        message.mark_cancelled(cancelled_at=self._clock())
        if not self._store.update_message(message):
            # The dispatch engine (or another cancel) moved it out of pending first.
            raise ScheduledMessageNotFoundError(f"Scheduled message {message_id} not found.")
        logger.info("Cancelled scheduled message", extra={"message_id": message_id})
        return message

    async def _cancel_remote(self, message: ScheduledMessage) -> None:
        try:
            token = await self._tokens.get_valid_access_token(message.user_id)
            await self._slack.delete_scheduled_message(
                token, message.channel_id, message.remote_schedule_id or ""
            )
        except Exception:  # noqa: BLE001 - remote cancel is best effort
            logger.exception(
                "Failed to cancel message with Slack",
                extra={
                    "message_id": message.message_id,
                    "remote_schedule_id": message.remote_schedule_id,
                },
            )


__all__ = [
    "DeliveryFailedError",
    "DeliveryMode",
    "MessagingService",
    "ScheduledMessageNotFoundError",
]
