"""Public schema exports."""

from .auth import ConnectResponse, TokenStatus, UserProfile
from .messages import (
    ChannelListResponse,
    ChannelView,
    ScheduledMessageList,
    ScheduledMessageView,
    ScheduleMessageRequest,
    ScheduleMessageResponse,
    SendMessageRequest,
    SendMessageResponse,
)

__all__ = [
    "ChannelListResponse",
    "ChannelView",
    "ConnectResponse",
    "ScheduleMessageRequest",
    "ScheduleMessageResponse",
    "ScheduledMessageList",
    "ScheduledMessageView",
    "SendMessageRequest",
    "SendMessageResponse",
    "TokenStatus",
    "UserProfile",
]
