from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import timedelta

import pytest

from slackconnect.clients.slack_api import SlackAPIError
from slackconnect.models import MessageStatus, ScheduledMessage
from slackconnect.services.message_dispatch import MessageDispatchEngine
from slackconnect.services.messaging import MessagingService
from slackconnect.services.slack_tokens import SlackTokenService

from _fakes import FakeClock, FakeSlackClient, make_credential


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def slack() -> FakeSlackClient:
    return FakeSlackClient()


@pytest.fixture
def tokens(store, slack, clock) -> SlackTokenService:
    store.save_credential(make_credential(expires_at=clock.now + timedelta(hours=12)))
    return SlackTokenService(store=store, slack_client=slack, clock=clock)


@pytest.fixture
def engine(store, tokens, slack, clock) -> MessageDispatchEngine:
    return MessageDispatchEngine(
        store=store, token_service=tokens, slack_client=slack, clock=clock
    )


def _queue(store, clock, *, offset=timedelta(minutes=-1), user_id="U1", **fields) -> ScheduledMessage:
    return store.create_message(
        ScheduledMessage(
            user_id=user_id,
            channel_id="C1",
            channel_name="general",
            text=fields.pop("text", "standup in 5"),
            scheduled_time=clock.now + offset,
            **fields,
        )
    )


@pytest.mark.asyncio
async def test_due_message_is_posted_and_marked_sent(store, slack, clock, engine) -> None:
    message = _queue(store, clock)

    report = await engine.run_once()

    assert report.attempted == 1
    assert report.sent == 1
    assert slack.posts == [("xoxp-current", "C1", "standup in 5")]
    stored = store.get_message(message.message_id)
    assert stored.status is MessageStatus.SENT
    assert stored.sent_at == clock.now
    assert stored.remote_message_id == "1760788800.000001"


@pytest.mark.asyncio
async def test_future_message_is_left_alone(store, slack, clock, engine) -> None:
    message = _queue(store, clock, offset=timedelta(minutes=1))

    report = await engine.run_once()

    assert report.attempted == 0
    assert slack.posts == []
    assert store.get_message(message.message_id).status is MessageStatus.PENDING


@pytest.mark.asyncio
async def test_failed_post_stays_pending_for_next_tick(store, slack, clock, engine) -> None:
    slack.post_error = SlackAPIError("chat.postMessage", "channel_not_found")
    message = _queue(store, clock)

    report = await engine.run_once()

    assert report.retried == 1
    stored = store.get_message(message.message_id)
    assert stored.status is MessageStatus.PENDING
    assert stored.retry_count == 1
    assert stored.error_message == "chat.postMessage failed: channel_not_found"


@pytest.mark.asyncio
async def test_third_failure_marks_message_failed(store, slack, clock, engine) -> None:
    slack.post_error = SlackAPIError("chat.postMessage", "not_in_channel")
    message = _queue(store, clock, retry_count=2)

    report = await engine.run_once()

    assert report.failed == 1
    stored = store.get_message(message.message_id)
    assert stored.status is MessageStatus.FAILED
    assert stored.retry_count == 3

    slack.post_error = None
    again = await engine.run_once()
    assert again.attempted == 0
    assert len(slack.posts) == 1


@pytest.mark.asyncio
async def test_one_bad_record_does_not_abort_the_batch(store, slack, clock, engine) -> None:
    orphan = _queue(store, clock, offset=timedelta(minutes=-2), user_id="U404")
    healthy = _queue(store, clock, offset=timedelta(minutes=-1))

    report = await engine.run_once()

    assert report.attempted == 2
    assert report.retried == 1
    assert report.sent == 1
    assert store.get_message(orphan.message_id).retry_count == 1
    assert store.get_message(healthy.message_id).status is MessageStatus.SENT


@pytest.mark.asyncio
async def test_batch_size_bounds_a_single_pass(store, tokens, slack, clock) -> None:
    engine = MessageDispatchEngine(
        store=store, token_service=tokens, slack_client=slack, batch_size=2, clock=clock
    )
    for minutes in (3, 2, 1):
        _queue(store, clock, offset=timedelta(minutes=-minutes), text=f"m{minutes}")

    first = await engine.run_once()
    second = await engine.run_once()

    assert first.sent == 2
    assert second.sent == 1
    assert [text for _, _, text in slack.posts] == ["m3", "m2", "m1"]


@pytest.mark.asyncio
async def test_remotely_scheduled_message_is_not_posted_again(store, slack, clock, engine) -> None:
    message = _queue(store, clock, remote_schedule_id="Q0001")

    report = await engine.run_once()

    assert report.handed_off == 1
    assert report.attempted == 0
    assert slack.posts == []
    stored = store.get_message(message.message_id)
    assert stored.status is MessageStatus.SENT
    assert stored.sent_at == message.scheduled_time


@pytest.mark.asyncio
@pytest.mark.parametrize(("mode", "expected_posts"), [("local", 1), ("remote", 0)])
async def test_scheduled_occurrence_is_delivered_at_most_once(
    store, tokens, slack, clock, engine, mode, expected_posts
) -> None:
    messaging = MessagingService(
        store=store, token_service=tokens, slack_client=slack, delivery_mode=mode, clock=clock
    )
    message = await messaging.schedule(
        user_id="U1",
        channel_id="C1",
        channel_name="general",
        text="retro at 3",
        scheduled_time=clock.now + timedelta(minutes=10),
    )

    clock.advance(minutes=11)
    await engine.run_once()
    clock.advance(minutes=1)
    follow_up = await engine.run_once()

    assert len(slack.posts) == expected_posts
    assert follow_up.attempted == 0
    assert follow_up.handed_off == 0
    assert store.get_message(message.message_id).status is MessageStatus.SENT


@pytest.mark.asyncio
async def test_run_once_skips_while_a_pass_is_in_progress(store, slack, clock, engine) -> None:
    release = asyncio.Event()

    async def block() -> None:
        await release.wait()

    slack.on_post = block
    _queue(store, clock)

    first = asyncio.create_task(engine.run_once())
    while not slack.posts:
        await asyncio.sleep(0)

    assert await engine.run_once() is None

    release.set()
    report = await first
    assert report.sent == 1
    assert len(slack.posts) == 1


@pytest.mark.asyncio
async def test_cancel_during_post_keeps_cancelled_state(store, slack, clock, engine) -> None:
    message = _queue(store, clock)

    async def cancel_concurrently() -> None:
        current = store.get_message(message.message_id)
        current.mark_cancelled(cancelled_at=clock.now)
        assert store.update_message(current)

    slack.on_post = cancel_concurrently

    report = await engine.run_once()

    assert report.conflicts == 1
    assert report.sent == 0
    assert store.get_message(message.message_id).status is MessageStatus.CANCELLED


@pytest.mark.asyncio
async def test_engine_ticks_until_stopped(store, tokens, slack, clock) -> None:
    engine = MessageDispatchEngine(
        store=store,
        token_service=tokens,
        slack_client=slack,
        tick_interval_seconds=0.01,
        clock=clock,
    )
    _queue(store, clock)

    engine.start()
    with pytest.raises(RuntimeError):
        engine.start()
    for _ in range(200):
        if slack.posts:
            break
        await asyncio.sleep(0.01)
    await engine.stop(drain=True)

    assert engine.is_running is False
    assert len(slack.posts) == 1


async def _wait_for_post(slack: FakeSlackClient) -> None:
    for _ in range(200):
        if slack.posts:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("no post was attempted")


@pytest.mark.asyncio
async def test_loop_does_not_start_a_tick_while_one_is_in_flight(
    store, tokens, slack, clock
) -> None:
    engine = MessageDispatchEngine(
        store=store,
        token_service=tokens,
        slack_client=slack,
        tick_interval_seconds=0.01,
        clock=clock,
    )
    release = asyncio.Event()

    async def block() -> None:
        await release.wait()

    slack.on_post = block
    passes: list[int] = []
    run_once = engine.run_once

    async def counting_run_once():
        passes.append(1)
        return await run_once()

    engine.run_once = counting_run_once
    message = _queue(store, clock)

    engine.start()
    await _wait_for_post(slack)
    await asyncio.sleep(0.1)

    assert len(passes) == 1

    release.set()
    await engine.stop(drain=True)

    assert len(slack.posts) == 1
    assert store.get_message(message.message_id).status is MessageStatus.SENT


@pytest.mark.asyncio
async def test_stop_without_drain_abandons_the_in_flight_tick(
    store, tokens, slack, clock
) -> None:
    engine = MessageDispatchEngine(
        store=store,
        token_service=tokens,
        slack_client=slack,
        tick_interval_seconds=0.01,
        clock=clock,
    )
    never = asyncio.Event()

    async def hang() -> None:
        await never.wait()

    slack.on_post = hang
    message = _queue(store, clock)

    engine.start()
    await _wait_for_post(slack)
    await engine.stop(drain=False)

    assert engine.is_running is False
    stored = store.get_message(message.message_id)
    assert stored.status is MessageStatus.PENDING
    assert stored.retry_count == 0


def test_engine_rejects_non_positive_interval(store, tokens, slack) -> None:
    with pytest.raises(ValueError):
        MessageDispatchEngine(
            store=store, token_service=tokens, slack_client=slack, tick_interval_seconds=0
        )
