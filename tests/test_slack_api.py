from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from typing import Callable
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from slackconnect.clients.slack_api import (
    InvalidRefreshTokenError,
    SlackAPIError,
    SlackWebClient,
)
from slackconnect.core.config import SlackSettings
from slackconnect.utils.http import RetryConfig


def _settings() -> SlackSettings:
    return SlackSettings(
        client_id="cid",
        client_secret="csecret",
        redirect_uri="https://app.example.com/api/auth/slack/callback",
        scopes="chat:write,channels:read",
    )


class _Recorder:
    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self._responder = responder

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    def form(self, index: int = -1) -> dict[str, str]:
        parsed = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in parsed.items()}


def _client(recorder: _Recorder) -> SlackWebClient:
    return SlackWebClient(
        _settings(),
        transport=httpx.MockTransport(recorder),
        retry_config=RetryConfig(attempts=3, backoff_seconds=0),
    )


@pytest.mark.asyncio
async def test_exchange_code_prefers_user_token_and_keeps_bot_token() -> None:
    recorder = _Recorder(
        lambda request: httpx.Response(
            200,
            json={
                "ok": True,
                "access_token": "xoxb-bot",
                "token_type": "bot",
                "authed_user": {
                    "id": "U1",
                    "access_token": "xoxp-user",
                    "refresh_token": "xoxe-refresh",
                    "expires_in": 43200,
                },
            },
        )
    )

    grant = await _client(recorder).exchange_code("the-code")

    assert grant.access_token == "xoxp-user"
    assert grant.refresh_token == "xoxe-refresh"
    assert grant.expires_in == 43200
    assert grant.bot_token == "xoxb-bot"
    assert recorder.requests[0].url.path.endswith("/oauth.v2.access")
    assert recorder.form()["code"] == "the-code"


@pytest.mark.asyncio
async def test_refresh_reads_top_level_user_token() -> None:
    recorder = _Recorder(
        lambda request: httpx.Response(
            200,
            json={
                "ok": True,
                "access_token": "xoxp-new",
                "refresh_token": "xoxe-next",
                "token_type": "user",
                "expires_in": 43200,
            },
        )
    )

    grant = await _client(recorder).refresh_token("xoxe-old")

    assert grant.access_token == "xoxp-new"
    assert grant.refresh_token == "xoxe-next"
    assert grant.bot_token is None
    form = recorder.form()
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "xoxe-old"


@pytest.mark.asyncio
@pytest.mark.parametrize("error", ["invalid_refresh_token", "invalid_grant"])
async def test_dead_refresh_token_is_distinguished(error: str) -> None:
    recorder = _Recorder(lambda request: httpx.Response(200, json={"ok": False, "error": error}))

    with pytest.raises(InvalidRefreshTokenError):
        await _client(recorder).refresh_token("xoxe-dead")


@pytest.mark.asyncio
async def test_ok_false_raises_slack_api_error() -> None:
    recorder = _Recorder(
        lambda request: httpx.Response(200, json={"ok": False, "error": "not_in_channel"})
    )

    with pytest.raises(SlackAPIError) as excinfo:
        await _client(recorder).post_message("xoxp-token", "C1", "hi")

    assert not isinstance(excinfo.value, InvalidRefreshTokenError)
    assert excinfo.value.error == "not_in_channel"
    assert recorder.requests[0].headers["Authorization"] == "Bearer xoxp-token"


@pytest.mark.asyncio
async def test_list_channels_follows_cursor() -> None:
    pages = {
        None: {
            "ok": True,
            "channels": [{"id": "C1", "name": "general"}],
            "response_metadata": {"next_cursor": "page-2"},
        },
        "page-2": {
            "ok": True,
            "channels": [{"id": "C2", "name": "secret", "is_private": True}],
            "response_metadata": {"next_cursor": ""},
        },
    }

    def respond(request: httpx.Request) -> httpx.Response:
        cursor = parse_qs(request.content.decode()).get("cursor", [None])[0]
        return httpx.Response(200, json=pages[cursor])

    recorder = _Recorder(respond)

    channels = await _client(recorder).list_channels("xoxp-token")

    assert [(channel.id, channel.is_private) for channel in channels] == [
        ("C1", False),
        ("C2", True),
    ]
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_rate_limited_read_is_retried() -> None:
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(
                200, json={"ok": True, "team_id": "T1", "user_id": "U1", "team": "Acme"}
            ),
        ]
    )
    recorder = _Recorder(lambda request: next(responses))

    identity = await _client(recorder).auth_test("xoxp-token")

    assert identity.team_name == "Acme"
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_post_message_is_not_retried_on_server_error() -> None:
    recorder = _Recorder(lambda request: httpx.Response(500))

    with pytest.raises(SlackAPIError) as excinfo:
        await _client(recorder).post_message("xoxp-token", "C1", "hi")

    assert excinfo.value.error == "http_error"
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_schedule_message_sends_epoch_seconds() -> None:
    recorder = _Recorder(
        lambda request: httpx.Response(200, json={"ok": True, "scheduled_message_id": "Q1"})
    )

    schedule_id = await _client(recorder).schedule_message("xoxp-token", "C1", "later", 1760792400)

    assert schedule_id == "Q1"
    assert recorder.form()["post_at"] == "1760792400"


def test_authorization_url_requests_user_and_bot_scopes() -> None:
    client = SlackWebClient(_settings())

    url = urlparse(client.build_authorization_url("signed-state"))
    query = {key: values[0] for key, values in parse_qs(url.query).items()}

    assert url.netloc == "slack.com"
    assert query["client_id"] == "cid"
    assert query["scope"] == "chat:write,channels:read"
    assert query["user_scope"] == "chat:write,channels:read"
    assert query["state"] == "signed-state"
    assert query["redirect_uri"] == "https://app.example.com/api/auth/slack/callback"
