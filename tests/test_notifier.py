"""Tests for the notifier."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from poolwatch.common.errors import DeliveryError, PermanentChatError, TransientChatError
from poolwatch.common.types import EventKind
from poolwatch.monitor.event_queue import EventQueue
from poolwatch.monitor.events import Event
from poolwatch.notify.notifier import Notifier

from conftest import T0, FakeChatClient


def make_event(kind=EventKind.BLOCK_FOUND, account_id="acc1", worker=None):
    return Event(kind=kind, account_id=account_id, occurred_at=T0, worker=worker)


def make_notifier(chat_client, **kwargs):
    options = {
        "rooms": ["!room:example.org"],
        "base_delay_seconds": 0.001,
        "max_delay_seconds": 0.01,
        "max_attempts": 3,
    }
    options.update(kwargs)
    return Notifier(chat_client, **options)


@pytest.mark.asyncio
async def test_deliver_success(chat_client):
    """Test a message is sent once with a stable transaction id."""
    notifier = make_notifier(chat_client)
    event = make_event()

    await notifier.deliver(event)

    assert len(chat_client.sent) == 1
    sent = chat_client.sent[0]
    assert sent["room_id"] == "!room:example.org"
    assert sent["txn_id"] == f"{event.event_id}-0"
    assert "Block found" in sent["text"]
    assert sent["html"]


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    """Test one transient failure then exactly one successful send."""
    chat = FakeChatClient([TransientChatError("busy", code="M_LIMIT_EXCEEDED"), None])
    notifier = make_notifier(chat)

    await notifier.deliver(make_event())

    assert len(chat.sent) == 2
    assert chat.sent[0]["txn_id"] == chat.sent[1]["txn_id"]
    assert notifier.total_retried == 1


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    """Test a permanent failure stops delivery immediately."""
    chat = FakeChatClient([PermanentChatError("forbidden", code="M_FORBIDDEN")])
    notifier = make_notifier(chat)

    with pytest.raises(DeliveryError) as exc_info:
        await notifier.deliver(make_event())

    assert len(chat.sent) == 1
    assert isinstance(exc_info.value.failures["!room:example.org"], PermanentChatError)


@pytest.mark.asyncio
async def test_retries_exhausted():
    """Test delivery gives up after max_attempts transient failures."""
    chat = FakeChatClient([TransientChatError("timeout")] * 5)
    notifier = make_notifier(chat, max_attempts=3)

    with pytest.raises(DeliveryError):
        await notifier.deliver(make_event())

    assert len(chat.sent) == 3


@pytest.mark.asyncio
async def test_retry_state_is_logged():
    """Test the scheduled retry time and last error reach the logs."""
    chat = FakeChatClient([TransientChatError("busy"), TransientChatError("still busy")])
    notifier = make_notifier(chat, max_attempts=2)

    with patch("poolwatch.notify.notifier.logger") as mock_logger:
        with pytest.raises(DeliveryError):
            await notifier.deliver(make_event())

    retry = mock_logger.warning.call_args
    assert retry.args == ("delivery_retry_scheduled",)
    assert retry.kwargs["error"] == "busy"
    scheduled_at = retry.kwargs["next_attempt_at"]
    assert scheduled_at

    exhausted = mock_logger.error.call_args
    assert exhausted.args == ("delivery_retries_exhausted",)
    assert exhausted.kwargs["error"] == "still busy"
    assert exhausted.kwargs["last_retry_at"] == scheduled_at


def test_backoff_delay():
    """Test exponential backoff with a cap."""
    notifier = Notifier(FakeChatClient(), rooms=["!r:x"], base_delay_seconds=1, max_delay_seconds=60)

    assert notifier.backoff_delay(1) == 1
    assert notifier.backoff_delay(2) == 2
    assert notifier.backoff_delay(3) == 4
    assert notifier.backoff_delay(7) == 60


def test_invalid_max_attempts():
    """Test at least one attempt is required."""
    with pytest.raises(ValueError):
        Notifier(FakeChatClient(), rooms=["!r:x"], max_attempts=0)


@pytest.mark.asyncio
async def test_retry_after_is_honored():
    """Test a server supplied retry delay overrides a shorter backoff."""
    chat = FakeChatClient([TransientChatError("slow down", retry_after=5.0), None])
    notifier = make_notifier(chat)

    with patch("poolwatch.notify.notifier.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        await notifier.deliver(make_event())

    mock_sleep.assert_awaited_once_with(5.0)


@pytest.mark.asyncio
async def test_account_rooms_override():
    """Test per-account rooms replace the default rooms."""
    chat = FakeChatClient()
    notifier = make_notifier(
        chat,
        rooms=["!default:x"],
        account_rooms={"acc2": ["!a:x", "!b:x"]},
    )
    event = make_event(account_id="acc2")

    await notifier.deliver(event)
    await notifier.deliver(make_event(account_id="acc1"))

    assert [sent["room_id"] for sent in chat.sent] == ["!a:x", "!b:x", "!default:x"]
    assert chat.sent[0]["txn_id"] == f"{event.event_id}-0"
    assert chat.sent[1]["txn_id"] == f"{event.event_id}-1"


@pytest.mark.asyncio
async def test_one_room_failing_does_not_stop_others():
    """Test the remaining rooms are still served when one refuses."""
    chat = FakeChatClient([PermanentChatError("forbidden", code="M_FORBIDDEN"), None])
    notifier = make_notifier(chat, rooms=["!a:x", "!b:x"])

    with pytest.raises(DeliveryError) as exc_info:
        await notifier.deliver(make_event())

    assert [sent["room_id"] for sent in chat.sent] == ["!a:x", "!b:x"]
    assert list(exc_info.value.failures) == ["!a:x"]


@pytest.mark.asyncio
async def test_run_drops_failed_event_and_continues():
    """Test a permanently failing event is dropped and the next one delivered."""
    chat = FakeChatClient([PermanentChatError("forbidden", code="M_FORBIDDEN"), None])
    reported = []

    async def on_error(event, error):
        reported.append((event, error))

    notifier = make_notifier(chat, error_callback=on_error)
    queue = EventQueue(max_queue_size=10)
    failing = make_event(kind=EventKind.PAYOUT)
    ok = make_event(kind=EventKind.WORKER_ONLINE, worker="rig1")
    await queue.put_many([failing, ok])

    task = asyncio.create_task(notifier.run(queue))
    await asyncio.wait_for(queue.join(), timeout=1)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert len(chat.sent) == 2
    assert [event for event, _ in reported] == [failing]
    assert isinstance(reported[0][1], DeliveryError)
    assert notifier.get_stats() == {"total_delivered": 1, "total_dropped": 1, "total_retried": 0}
    stats = queue.get_queue_stats()
    assert stats["total_delivered"] == 1
    assert stats["total_dropped"] == 1


@pytest.mark.asyncio
async def test_run_preserves_order():
    """Test events are delivered in queue order."""
    chat = FakeChatClient()
    notifier = make_notifier(chat)
    queue = EventQueue(max_queue_size=10)
    events = [
        make_event(kind=EventKind.WORKER_OFFLINE, worker=name) for name in ("w1", "w2", "w3")
    ]
    await queue.put_many(events)

    task = asyncio.create_task(notifier.run(queue))
    await asyncio.wait_for(queue.join(), timeout=1)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert [sent["txn_id"] for sent in chat.sent] == [f"{event.event_id}-0" for event in events]
