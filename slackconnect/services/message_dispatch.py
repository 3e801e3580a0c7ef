"""
Recurring dispatch of scheduled Slack messages.

One engine is constructed per process. Each tick loads a bounded batch of due
``pending`` messages and delivers them one at a time. Every failure, whatever
its cause, spends one of the message's delivery attempts; the message fails
terminally once the attempts are used up.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from slackconnect.clients.slack_api import SlackWebClient
from slackconnect.clients.sqlite_store import SQLiteStore
from slackconnect.models import (
    MAX_DELIVERY_ATTEMPTS,
    MessageStatus,
    ScheduledMessage,
    utcnow,
)
from slackconnect.services.slack_tokens import SlackTokenService

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """Outcome counters for a single tick."""

    attempted: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    handed_off: int = 0
    conflicts: int = 0


def _describe(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


class MessageDispatchEngine:
    """Poll the message store on a fixed cadence and deliver due messages."""

    def __init__(
        self,
        store: SQLiteStore,
        token_service: SlackTokenService,
        slack_client: SlackWebClient,
        *,
        tick_interval_seconds: float = 60.0,
        batch_size: int = 50,
        max_attempts: int = MAX_DELIVERY_ATTEMPTS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive.")
        self._store = store
        self._tokens = token_service
        self._slack = slack_client
        self._interval = tick_interval_seconds
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._clock = clock

        self._tick_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Begin ticking on the running event loop. Only one loop may be active."""
        if self.is_running:
            raise RuntimeError("Message dispatch engine is already running.")
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(
            self._run_forever(), name="message-dispatch-loop"
        )
        logger.info(
            "Message dispatch engine started",
            extra={"tick_interval_seconds": self._interval, "batch_size": self._batch_size},
        )

    async def stop(self, *, drain: bool = True) -> None:
        """Stop ticking. With ``drain`` the in-flight tick finishes, otherwise it is cancelled."""
        if self._loop_task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        await self._loop_task
        self._loop_task = None

        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            if not drain:
                inflight.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await inflight
        logger.info("Message dispatch engine stopped", extra={"drained": drain})

    async def _run_forever(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            if self._inflight is not None and not self._inflight.done():
                logger.warning("Previous dispatch tick still running; skipping this tick")
            else:
                self._inflight = asyncio.create_task(
                    self._scheduled_tick(), name="message-dispatch-tick"
                )
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)

    async def _scheduled_tick(self) -> None:
        try:
            await self.run_once()
        except Exception:  # noqa: BLE001 - a broken tick must not end the loop
            logger.exception("Error processing pending messages")

    async def run_once(self) -> Optional[DispatchReport]:
        """Run one dispatch pass. Returns ``None`` if a pass is already in progress."""
        if self._tick_lock.locked():
            logger.warning("Dispatch pass already in progress; skipping")
            return None
        async with self._tick_lock:
            return await self._dispatch_due()

    async def _dispatch_due(self) -> DispatchReport:
        report = DispatchReport()
        due = self._store.list_due_messages(now=self._clock(), limit=self._batch_size)
        if not due:
            return report

        logger.info("Processing due messages", extra={"count": len(due)})
        for message in due:
            await self._dispatch_one(message, report)

        logger.info(
            "Dispatch pass finished",
            extra={
                "attempted": report.attempted,
                "sent": report.sent,
                "retried": report.retried,
                "failed": report.failed,
                "handed_off": report.handed_off,
                "conflicts": report.conflicts,
            },
        )
        return report

    async def _dispatch_one(self, message: ScheduledMessage, report: DispatchReport) -> None:
        if message.remote_schedule_id:
            # Slack's scheduler owns delivery for this one; posting again would duplicate it.
            message.mark_sent(sent_at=message.scheduled_time)
            if self._save(message, report):
                report.handed_off += 1
                logger.info(
                    "Marked remotely scheduled message as sent",
                    extra={
                        "message_id": message.message_id,
                        "remote_schedule_id": message.remote_schedule_id,
                    },
                )
            return

        report.attempted += 1
        try:
            token = await self._tokens.get_valid_access_token(message.user_id)
            remote_message_id = await self._slack.post_message(
                token, message.channel_id, message.text
            )
        except Exception as exc:  # noqa: BLE001 - all failures share one retry budget
            status = message.record_failure(_describe(exc), max_attempts=self._max_attempts)
            if not self._save(message, report):
                return
            if status is MessageStatus.FAILED:
                report.failed += 1
                logger.error(
                    "Scheduled message failed permanently",
                    extra={
                        "message_id": message.message_id,
                        "retry_count": message.retry_count,
                        "error": message.error_message,
                    },
                )
            else:
                report.retried += 1
                logger.warning(
                    "Scheduled message delivery failed; will retry",
                    extra={
                        "message_id": message.message_id,
                        "retry_count": message.retry_count,
                        "error": message.error_message,
                    },
                )
            return

        message.mark_sent(sent_at=self._clock(), remote_message_id=remote_message_id)
        if self._save(message, report):
            report.sent += 1
            logger.info(
                "Sent scheduled message",
                extra={"message_id": message.message_id, "channel_name": message.channel_name},
            )

    def _save(self, message: ScheduledMessage, report: DispatchReport) -> bool:
        if self._store.update_message(message, expected_status=MessageStatus.PENDING):
            return True
        report.conflicts += 1
        logger.warning(
            "Scheduled message changed during dispatch; keeping the stored state",
            extra={"message_id": message.message_id, "attempted_status": message.status.value},
        )
        return False


__all__ = ["DispatchReport", "MessageDispatchEngine"]
