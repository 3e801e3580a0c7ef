"""Expose constructed client wrappers."""

from .slack_api import (
    InvalidRefreshTokenError,
    SlackAPIError,
    SlackChannel,
    SlackIdentity,
    SlackTokenGrant,
    SlackWebClient,
)
from .slack_oauth import OAuthStateEncoder, SessionTokenError, SessionTokenService
from .sqlite_store import SQLiteStore

__all__ = [
    "InvalidRefreshTokenError",
    "OAuthStateEncoder",
    "SQLiteStore",
    "SessionTokenError",
    "SessionTokenService",
    "SlackAPIError",
    "SlackChannel",
    "SlackIdentity",
    "SlackTokenGrant",
    "SlackWebClient",
]
