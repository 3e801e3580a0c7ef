"""Service layer exports."""

from .message_dispatch import DispatchReport, MessageDispatchEngine
from .messaging import (
    DeliveryFailedError,
    MessagingService,
    ScheduledMessageNotFoundError,
)
from .slack_tokens import (
    AuthenticationRequiredError,
    NoRefreshTokenError,
    RefreshRejectedError,
    SlackTokenService,
    TokenError,
    TokenRefreshFailedError,
    UserNotFoundError,
)
from .token_cipher import TokenCipherService

__all__ = [
    "AuthenticationRequiredError",
    "DeliveryFailedError",
    "DispatchReport",
    "MessageDispatchEngine",
    "MessagingService",
    "NoRefreshTokenError",
    "RefreshRejectedError",
    "ScheduledMessageNotFoundError",
    "SlackTokenService",
    "TokenCipherService",
    "TokenError",
    "TokenRefreshFailedError",
    "UserNotFoundError",
]
