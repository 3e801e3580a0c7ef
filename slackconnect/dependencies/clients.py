"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from datetime import timedelta
from functools import lru_cache

from slackconnect.clients import (
    OAuthStateEncoder,
    SessionTokenService,
    SlackWebClient,
    SQLiteStore,
)
from slackconnect.core.config import AppSettings, get_settings
from slackconnect.services import (
    MessageDispatchEngine,
    MessagingService,
    SlackTokenService,
    TokenCipherService,
)


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return _settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder derived from the Slack client secret."""
    settings = _settings()
    return OAuthStateEncoder(
        secret_key=settings.slack.client_secret,
        ttl_seconds=settings.security.oauth_state_ttl_seconds,
    )


@lru_cache()
def get_session_token_service() -> SessionTokenService:
    """Provide the issuer/verifier for API session tokens."""
    settings = _settings()
    secret = settings.security.session_secret or settings.slack.client_secret
    return SessionTokenService(
        secret, ttl_seconds=settings.security.session_ttl_seconds
    )


@lru_cache()
def get_slack_client() -> SlackWebClient:
    """Create a singleton Slack Web API client."""
    return SlackWebClient(_settings().slack)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.slack.client_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide the shared credential and message store."""
    settings = _settings()
    return SQLiteStore(settings.database_path, token_cipher=get_token_cipher_service())


@lru_cache()
def get_slack_token_service() -> SlackTokenService:
    """Provide the per-process token lifecycle manager."""
    settings = _settings()
    return SlackTokenService(
        store=get_sqlite_store(),
        slack_client=get_slack_client(),
        refresh_window=timedelta(
            seconds=settings.scheduler.token_refresh_window_seconds
        ),
    )


@lru_cache()
def get_messaging_service() -> MessagingService:
    """Build the send/schedule/cancel service."""
    settings = _settings()
    return MessagingService(
        store=get_sqlite_store(),
        token_service=get_slack_token_service(),
        slack_client=get_slack_client(),
        delivery_mode=settings.scheduler.delivery_mode,
    )


@lru_cache()
def get_dispatch_engine() -> MessageDispatchEngine:
    """Provide the single dispatch engine for this process."""
    settings = _settings()
    return MessageDispatchEngine(
        store=get_sqlite_store(),
        token_service=get_slack_token_service(),
        slack_client=get_slack_client(),
        tick_interval_seconds=settings.scheduler.tick_interval_seconds,
        batch_size=settings.scheduler.batch_size,
        max_attempts=settings.scheduler.max_attempts,
    )


__all__ = [
    "get_app_settings",
    "get_dispatch_engine",
    "get_messaging_service",
    "get_oauth_state_encoder",
    "get_session_token_service",
    "get_slack_client",
    "get_slack_token_service",
    "get_sqlite_store",
    "get_token_cipher_service",
]
