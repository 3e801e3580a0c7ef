"""
Domain model and delivery state machine for scheduled messages.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .credential import as_utc, utcnow

MAX_DELIVERY_ATTEMPTS = 3


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not MessageStatus.PENDING


class InvalidTransitionError(Exception):
    """Raised when a status change is attempted out of a terminal state."""


class ScheduledMessage(BaseModel):
    """A single delivery intent owned by a connected Slack user."""

    message_id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str
    channel_id: str
    channel_name: str = ""
    text: str
    scheduled_time: datetime
    remote_schedule_id: Optional[str] = Field(
        None, description="Set when Slack accepted a chat.scheduleMessage request."
    )
    remote_message_id: Optional[str] = None
    status: MessageStatus = MessageStatus.PENDING
    retry_count: int = Field(0, ge=0)
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    normalize_timestamps = field_validator(
        "scheduled_time", "sent_at", "cancelled_at", "created_at", "updated_at"
    )(as_utc)

    def _require_pending(self, action: str) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Cannot {action} message {self.message_id} in status {self.status.value}."
            )

    def mark_sent(self, *, sent_at: datetime, remote_message_id: Optional[str] = None) -> None:
        self._require_pending("send")
        self.status = MessageStatus.SENT
        self.sent_at = sent_at
        self.remote_message_id = remote_message_id

    def record_failure(
        self, error: str, *, max_attempts: int = MAX_DELIVERY_ATTEMPTS
    ) -> MessageStatus:
        """Count a failed attempt; the message fails terminally at ``max_attempts``."""
        self._require_pending("retry")
        self.retry_count += 1
        self.error_message = error
        if self.retry_count >= max_attempts:
            self.status = MessageStatus.FAILED
        return self.status

    def mark_cancelled(self, *, cancelled_at: datetime) -> None:
        self._require_pending("cancel")
        self.status = MessageStatus.CANCELLED
        self.cancelled_at = cancelled_at


__all__ = [
    "InvalidTransitionError",
    "MAX_DELIVERY_ATTEMPTS",
    "MessageStatus",
    "ScheduledMessage",
]
