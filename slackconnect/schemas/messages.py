"""
Pydantic models for message send, schedule, and listing requests.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from slackconnect.models import MessageStatus


class ChannelView(BaseModel):
    id: str
    name: str
    is_private: bool = False


class ChannelListResponse(BaseModel):
    channels: List[ChannelView] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    """Post a message to a channel right away."""

    channel: str = Field(..., min_length=1, description="Slack channel identifier.")
    channel_name: Optional[str] = None
    text: str = Field(..., min_length=1)


class SendMessageResponse(BaseModel):
    success: bool = True
    message_id: str = Field(..., description="Slack ts of the posted message.")


class ScheduleMessageRequest(BaseModel):
    """Deliver a message to a channel at a future time."""

    channel: str = Field(..., min_length=1, description="Slack channel identifier.")
    channel_name: str = ""
    text: str = Field(..., min_length=1)
    scheduled_time: datetime = Field(
        ..., description="Absolute delivery time; naive values are read as UTC."
    )


class ScheduledMessageView(BaseModel):
    message_id: str
    channel_id: str
    channel_name: str
    text: str
    scheduled_time: datetime
    status: MessageStatus
    retry_count: int
    remote_schedule_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ScheduleMessageResponse(BaseModel):
    success: bool = True
    scheduled_message_id: str
    remote_schedule_id: Optional[str] = None


class ScheduledMessageList(BaseModel):
    messages: List[ScheduledMessageView] = Field(default_factory=list)
    total: int = 0
