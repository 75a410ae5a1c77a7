"""Tests for event message templates."""

from datetime import timedelta

import pytest

from poolwatch.common.types import EventKind
from poolwatch.monitor.events import Event
from poolwatch.notify.formatter import TEMPLATES, format_event

from conftest import T0


def test_every_kind_has_a_template():
    """Test no event kind is left without a template."""
    assert set(TEMPLATES) == set(EventKind)


def test_block_found_message():
    event = Event(
        kind=EventKind.BLOCK_FOUND,
        account_id="acc1",
        occurred_at=T0,
        new_value=T0,
    )

    message = format_event(event)

    assert message.text.startswith("⛏️ Block found")
    assert "Account: acc1" in message.text
    assert "Found at: 2024-01-01 12:00:00 UTC" in message.text
    assert message.html.startswith("<b>⛏️ Block found</b>")


def test_worker_messages():
    offline = Event(
        kind=EventKind.WORKER_OFFLINE,
        account_id="acc1",
        occurred_at=T0,
        worker="rig1",
        old_value=T0 - timedelta(minutes=15),
    )
    online = Event(
        kind=EventKind.WORKER_ONLINE,
        account_id="acc1",
        occurred_at=T0,
        worker="rig1",
        old_value=T0 - timedelta(hours=2),
        new_value=T0,
    )

    offline_text = format_event(offline).text
    online_text = format_event(online).text

    assert "Worker offline" in offline_text
    assert "Worker: rig1" in offline_text
    assert "Last share: 2024-01-01 11:45:00 UTC" in offline_text
    assert "Worker back online" in online_text
    assert "Silent for: 2h 0m" in online_text


def test_hashrate_drop_message():
    event = Event(
        kind=EventKind.HASHRATE_DROP,
        account_id="acc1",
        occurred_at=T0,
        old_value=100_000.0,
        new_value=40_000.0,
    )

    text = format_event(event).text

    assert "Before: 100 Th/s" in text
    assert "Now: 40 Th/s" in text
    assert "Drop: 60.0%" in text


@pytest.mark.parametrize("amount,expected", [
    (0.01, "Amount: 1,000,000 SAT"),
    (None, None),
])
def test_payout_message(amount, expected):
    event = Event(
        kind=EventKind.PAYOUT,
        account_id="acc1",
        occurred_at=T0,
        old_value=0.01,
        new_value=0.0,
        amount=amount,
    )

    text = format_event(event).text

    assert "Payout" in text
    assert "Confirmed reward: 0 SAT" in text
    if expected:
        assert expected in text
    else:
        assert "Amount" not in text


def test_html_is_escaped():
    event = Event(
        kind=EventKind.WORKER_OFFLINE,
        account_id="<script>",
        occurred_at=T0,
        worker="a&b",
    )

    html = format_event(event).html

    assert "&lt;script&gt;" in html
    assert "a&amp;b" in html
    assert "<script>" not in html
