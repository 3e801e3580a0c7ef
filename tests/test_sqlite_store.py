try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import timedelta

from slackconnect.models import MessageStatus, ScheduledMessage

from _fakes import START, make_credential


def _message(user_id: str = "U1", *, offset_minutes: int = 0) -> ScheduledMessage:
    return ScheduledMessage(
        user_id=user_id,
        channel_id="C1",
        channel_name="general",
        text="hello",
        scheduled_time=START + timedelta(minutes=offset_minutes),
    )


def test_list_due_messages_only_returns_pending_and_due(store) -> None:
    due = store.create_message(_message(offset_minutes=-5))
    on_time = store.create_message(_message(offset_minutes=0))
    store.create_message(_message(offset_minutes=5))
    cancelled = store.create_message(_message(offset_minutes=-10))
    cancelled.mark_cancelled(cancelled_at=START)
    assert store.update_message(cancelled)

    result = store.list_due_messages(now=START, limit=50)

    assert [m.message_id for m in result] == [due.message_id, on_time.message_id]


def test_list_due_messages_respects_batch_limit(store) -> None:
    for offset in range(-5, 0):
        store.create_message(_message(offset_minutes=offset))

    assert len(store.list_due_messages(now=START, limit=3)) == 3


def test_update_message_is_compare_and_swap(store) -> None:
    created = store.create_message(_message(offset_minutes=-1))
    first = store.get_message(created.message_id)
    second = store.get_message(created.message_id)

    first.mark_cancelled(cancelled_at=START)
    assert store.update_message(first)

    second.mark_sent(sent_at=START)
    assert not store.update_message(second)

    stored = store.get_message(created.message_id)
    assert stored.status is MessageStatus.CANCELLED
    assert stored.version == 1


def test_list_messages_is_scoped_to_owner_latest_first(store) -> None:
    early = store.create_message(_message(offset_minutes=1))
    late = store.create_message(_message(offset_minutes=30))
    store.create_message(_message("U2", offset_minutes=10))

    result = store.list_messages(user_id="U1")

    assert [m.message_id for m in result] == [late.message_id, early.message_id]
    assert store.list_messages(user_id="U1", status=MessageStatus.SENT) == []


def test_credential_updates_detect_concurrent_writers(store) -> None:
    store.save_credential(make_credential())
    first = store.get_credential("U1")
    second = store.get_credential("U1")

    first.access_token = "xoxp-first"
    assert store.update_credential(first)

    second.access_token = "xoxp-second"
    assert not store.update_credential(second)

    assert store.get_credential("U1").access_token == "xoxp-first"


def test_save_credential_overwrites_and_keeps_created_at(store) -> None:
    original = store.save_credential(make_credential())

    reconnected = store.save_credential(make_credential(access_token="xoxp-again"))

    loaded = store.get_credential("U1")
    assert loaded.access_token == "xoxp-again"
    assert loaded.created_at == original.created_at
    assert loaded.version == reconnected.version == 1
