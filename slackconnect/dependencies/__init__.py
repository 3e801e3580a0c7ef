"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_app_settings,
    get_dispatch_engine,
    get_messaging_service,
    get_oauth_state_encoder,
    get_session_token_service,
    get_slack_client,
    get_slack_token_service,
    get_sqlite_store,
    get_token_cipher_service,
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
