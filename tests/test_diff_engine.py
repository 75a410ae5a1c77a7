"""Tests for the diff engine."""

from datetime import timedelta

import pytest

from poolwatch.common.types import EventKind
from poolwatch.monitor.diff_engine import DiffEngine, DiffThresholds, HashrateTrend
from poolwatch.pool.models import WorkerState
from poolwatch.pool.parser import parse_snapshot

from conftest import T0


@pytest.fixture
def engine():
    """Diff engine with default thresholds."""
    return DiffEngine(DiffThresholds(stale_after_seconds=600, drop_fraction=0.5, drop_confirmations=2))


def later(minutes: int):
    return T0 + timedelta(minutes=minutes)


def test_first_observation_is_silent(engine, make_snapshot):
    """Test the first snapshot of an account only seeds state."""
    current = make_snapshot(
        active=["rig1"],
        confirmed_balance=0.5,
        last_block_found_at=T0 - timedelta(minutes=5),
    )

    result = engine.diff(None, current)

    assert result.events == []
    assert result.trend == HashrateTrend(baseline=current.total_hashrate)


def test_identical_snapshots_emit_nothing(engine, make_snapshot):
    """Test diffing a snapshot against itself."""
    snapshot = make_snapshot(active=["rig1", "rig2"], offline=["rig3"], paid_total=1.0)

    assert engine.diff(snapshot, snapshot).events == []


def test_unchanged_state_on_next_tick(engine, make_snapshot):
    """Test an unchanged account one minute later."""
    previous = make_snapshot(active=["rig1"], confirmed_balance=0.1)
    current = make_snapshot(taken_at=later(1), active=["rig1"], confirmed_balance=0.1)

    result = engine.diff(previous, current, HashrateTrend(baseline=previous.total_hashrate))

    assert result.events == []
    assert result.trend.low_count == 0


def test_mismatched_accounts_rejected(engine, make_snapshot):
    """Test snapshots of different accounts cannot be compared."""
    with pytest.raises(ValueError):
        engine.diff(make_snapshot(account_id="a"), make_snapshot(account_id="b"))


def test_block_found(engine, make_snapshot):
    """Test a newer block timestamp produces one event."""
    previous = make_snapshot(last_block_found_at=T0 - timedelta(hours=3))
    current = make_snapshot(taken_at=later(1), last_block_found_at=T0)

    events = engine.diff(previous, current).events

    assert [event.kind for event in events] == [EventKind.BLOCK_FOUND]
    assert events[0].new_value == T0
    assert events[0].occurred_at == later(1)


def test_same_block_not_repeated(engine, make_snapshot):
    """Test an unchanged block timestamp is ignored."""
    previous = make_snapshot(last_block_found_at=T0)
    current = make_snapshot(taken_at=later(1), last_block_found_at=T0)

    assert engine.diff(previous, current).events == []


def test_worker_transitions(engine, make_snapshot):
    """Test offline and online detection including vanished workers."""
    previous = make_snapshot(active=["rig1", "rig2", "rig3"], offline=["rig4"])
    # rig1 reports state off, rig2 disappeared, rig4 came back
    current = make_snapshot(
        taken_at=later(1),
        active=["rig3", "rig4"],
        offline=["rig1"],
    )

    events = engine.diff(previous, current).events

    assert [(event.kind, event.worker) for event in events] == [
        (EventKind.WORKER_OFFLINE, "rig1"),
        (EventKind.WORKER_OFFLINE, "rig2"),
        (EventKind.WORKER_ONLINE, "rig4"),
    ]


def test_stale_worker_goes_offline(engine, make_snapshot):
    """Test a worker without a recent share counts as offline."""
    previous = make_snapshot(active=["rig1"])
    last_share = previous.workers["rig1"].last_seen
    current = make_snapshot(taken_at=T0 + timedelta(minutes=11))
    current.workers["rig1"] = WorkerState(name="rig1", hashrate=0.0, last_seen=last_share, state="ok")

    events = engine.diff(previous, current).events

    assert [(event.kind, event.worker) for event in events] == [(EventKind.WORKER_OFFLINE, "rig1")]
    assert events[0].old_value == last_share


def test_worker_offline_then_online(engine, make_snapshot):
    """Test one offline and one online event across a flap."""
    up = make_snapshot(active=["rig1"])
    down = make_snapshot(taken_at=later(1), offline=["rig1"])
    back = make_snapshot(taken_at=later(2), active=["rig1"])

    first = engine.diff(up, down)
    second = engine.diff(down, back, first.trend)
    third = engine.diff(back, back, second.trend)

    assert [event.kind for event in first.events] == [EventKind.WORKER_OFFLINE]
    assert [event.kind for event in second.events] == [EventKind.WORKER_ONLINE]
    assert third.events == []


def test_hashrate_drop_needs_two_ticks(engine, make_snapshot):
    """Test the drop alert fires on the second low tick only once."""
    baseline = make_snapshot(total_hashrate=100_000.0)
    low1 = make_snapshot(taken_at=later(1), total_hashrate=40_000.0)
    low2 = make_snapshot(taken_at=later(2), total_hashrate=40_000.0)
    low3 = make_snapshot(taken_at=later(3), total_hashrate=30_000.0)

    trend = engine.diff(None, baseline).trend
    first = engine.diff(baseline, low1, trend)
    second = engine.diff(low1, low2, first.trend)
    third = engine.diff(low2, low3, second.trend)

    assert first.events == []
    assert first.trend == HashrateTrend(baseline=100_000.0, low_count=1)

    assert [event.kind for event in second.events] == [EventKind.HASHRATE_DROP]
    assert second.events[0].old_value == 100_000.0
    assert second.events[0].new_value == 40_000.0
    assert second.trend.alerted is True

    assert third.events == []
    assert third.trend.baseline == 100_000.0


def test_single_low_tick_is_ignored(engine, make_snapshot):
    """Test a one tick dip followed by recovery emits nothing."""
    baseline = make_snapshot(total_hashrate=100_000.0)
    low = make_snapshot(taken_at=later(1), total_hashrate=10_000.0)
    recovered = make_snapshot(taken_at=later(2), total_hashrate=95_000.0)

    first = engine.diff(baseline, low, HashrateTrend(baseline=100_000.0))
    second = engine.diff(low, recovered, first.trend)

    assert first.events == []
    assert second.events == []
    assert second.trend == HashrateTrend(baseline=95_000.0)


def test_hashrate_drop_rearms_after_recovery(engine, make_snapshot):
    """Test a second drop after recovery is announced again."""
    trend = HashrateTrend(baseline=100_000.0)
    totals = [40_000.0, 40_000.0, 100_000.0, 20_000.0, 20_000.0]
    previous = make_snapshot(total_hashrate=100_000.0)
    kinds = []

    for minute, total in enumerate(totals, start=1):
        current = make_snapshot(taken_at=later(minute), total_hashrate=total)
        result = engine.diff(previous, current, trend)
        kinds.append([event.kind for event in result.events])
        previous, trend = current, result.trend

    assert kinds == [[], [EventKind.HASHRATE_DROP], [], [], [EventKind.HASHRATE_DROP]]


def test_zero_baseline_never_alerts(engine, make_snapshot):
    """Test an account without hashrate cannot drop."""
    previous = make_snapshot(total_hashrate=0.0)
    current = make_snapshot(taken_at=later(1), total_hashrate=0.0)

    result = engine.diff(previous, current, HashrateTrend(baseline=0.0, low_count=5))

    assert result.events == []
    assert result.trend.low_count == 0


def test_payout_from_paid_total(engine, make_snapshot):
    """Test a payout detected from the balance and lifetime paid total."""
    previous = make_snapshot(confirmed_balance=0.01, paid_total=0.5)
    current = make_snapshot(taken_at=later(1), confirmed_balance=0.0, paid_total=0.51)

    events = engine.diff(previous, current).events

    assert [event.kind for event in events] == [EventKind.PAYOUT]
    assert events[0].amount == pytest.approx(0.01)
    assert events[0].old_value == 0.01
    assert events[0].new_value == 0.0


def test_payout_from_balance_decrease(engine, make_snapshot):
    """Test the balance decrease is the amount when no paid total is known."""
    previous = make_snapshot(confirmed_balance=0.02)
    current = make_snapshot(taken_at=later(1), confirmed_balance=0.005)

    events = engine.diff(previous, current).events

    assert [event.kind for event in events] == [EventKind.PAYOUT]
    assert events[0].amount == pytest.approx(0.015)


def test_payout_amount_from_braiins_profiles(engine, account):
    """Test the withdrawn amount includes the reward credited in the same tick."""
    before = parse_snapshot(
        {"btc": {"confirmed_reward": "0.0100", "all_time_reward": "0.1000"}}, account, taken_at=T0
    )
    after = parse_snapshot(
        {"btc": {"confirmed_reward": "0.0001", "all_time_reward": "0.1001"}}, account, taken_at=later(1)
    )

    events = engine.diff(before, after).events

    assert [event.kind for event in events] == [EventKind.PAYOUT]
    assert events[0].amount == pytest.approx(0.01)


def test_earned_total_growth_is_not_a_payout(engine, make_snapshot):
    previous = make_snapshot(confirmed_balance=0.01, earned_total=0.1)
    current = make_snapshot(taken_at=later(1), confirmed_balance=0.0101, earned_total=0.1001)

    assert engine.diff(previous, current).events == []


def test_payout_from_timestamp(engine, make_snapshot):
    """Test a newer payout timestamp is a payout even if the balance grew."""
    previous = make_snapshot(confirmed_balance=0.01, last_payout_at=T0 - timedelta(days=1))
    current = make_snapshot(
        taken_at=later(1),
        confirmed_balance=0.02,
        last_payout_at=T0,
    )

    events = engine.diff(previous, current).events

    assert [event.kind for event in events] == [EventKind.PAYOUT]
    assert events[0].amount is None


def test_balance_growth_is_not_a_payout(engine, make_snapshot):
    """Test accruing rewards produce no event."""
    previous = make_snapshot(confirmed_balance=0.01, paid_total=0.5)
    current = make_snapshot(taken_at=later(1), confirmed_balance=0.011, paid_total=0.5)

    assert engine.diff(previous, current).events == []


def test_event_order_within_cycle(engine, make_snapshot):
    """Test events are ordered by kind then worker name."""
    previous = make_snapshot(
        total_hashrate=100_000.0,
        active=["w2", "w1"],
        confirmed_balance=0.01,
        last_block_found_at=T0 - timedelta(days=1),
    )
    current = make_snapshot(
        taken_at=later(1),
        total_hashrate=10_000.0,
        offline=["w2", "w1"],
        confirmed_balance=0.0,
        last_block_found_at=T0,
    )
    trend = HashrateTrend(baseline=100_000.0, low_count=1)

    events = engine.diff(previous, current, trend).events

    assert [(event.kind, event.worker) for event in events] == [
        (EventKind.BLOCK_FOUND, None),
        (EventKind.WORKER_OFFLINE, "w1"),
        (EventKind.WORKER_OFFLINE, "w2"),
        (EventKind.HASHRATE_DROP, None),
        (EventKind.PAYOUT, None),
    ]


def test_event_ids_are_unique(engine, make_snapshot):
    """Test every event gets its own id."""
    previous = make_snapshot(active=["w1", "w2"])
    current = make_snapshot(taken_at=later(1), offline=["w1", "w2"])

    events = engine.diff(previous, current).events

    assert len({event.event_id for event in events}) == 2
