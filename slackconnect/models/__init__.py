"""Domain models shared by the token service and the dispatch engine."""

from .credential import SlackCredential, as_utc, utcnow
from .scheduled_message import (
    MAX_DELIVERY_ATTEMPTS,
    InvalidTransitionError,
    MessageStatus,
    ScheduledMessage,
)

__all__ = [
    "InvalidTransitionError",
    "MAX_DELIVERY_ATTEMPTS",
    "MessageStatus",
    "ScheduledMessage",
    "SlackCredential",
    "as_utc",
    "utcnow",
]
