"""HTTP utilities providing retry/backoff semantics for Slack Web API calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        max_retry_after_seconds: float = 30.0,
    ) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.max_retry_after_seconds = max_retry_after_seconds


def _retry_delay(response: httpx.Response | None, config: RetryConfig, attempt: int) -> float:
    if response is not None and response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return min(float(retry_after), config.max_retry_after_seconds)
    return config.backoff_seconds * attempt


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """Await ``func`` until it returns a non-retryable response or attempts run out.

    Rate limiting (429) honours Slack's ``Retry-After`` header. Only use this for
    idempotent methods; posting a message twice is worse than failing once.
    """
    config = retry_config or RetryConfig()
    attempt = 0
    last_exception: Exception | None = None

    while attempt < config.attempts:
        response: httpx.Response | None = None
        try:
            response = await func(*args, **kwargs)
            if response.status_code not in _RETRYABLE_STATUS:
                response.raise_for_status()
                return response
            response.raise_for_status()
        except (httpx.HTTPStatusError, httpx.TransportError) as exc:
            if isinstance(exc, httpx.HTTPStatusError) and (
                exc.response.status_code not in _RETRYABLE_STATUS
            ):
                raise
            last_exception = exc
            attempt += 1
            if attempt >= config.attempts:
                break
            delay = _retry_delay(response, config, attempt)
            logger.warning(
                "Retrying Slack request",
                extra={"attempt": attempt, "delay_seconds": delay},
            )
            await asyncio.sleep(delay)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Request failed without raising an exception")


__all__ = ["RetryConfig", "request_with_retry"]
