"""Change detection between consecutive snapshots.

This module implements the DiffEngine which handles:
- Seed suppression on the first observation of an account
- Block, worker, hashrate and payout change rules
- Deterministic ordering of the events of one cycle

Rules are evaluated in a fixed order and the result is sorted by event
kind, then worker name. The engine holds no state of its own; hashrate
drop tracking is carried in a HashrateTrend that the caller stores next
to the snapshot.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog

from poolwatch.common.types import EventKind
from poolwatch.pool.models import Snapshot
from .events import Event

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DiffThresholds:
    """Thresholds used by the change rules."""

    stale_after_seconds: float = 600.0
    drop_fraction: float = 0.5
    drop_confirmations: int = 2

    @classmethod
    def from_config(cls, config: Any) -> "DiffThresholds":
        """Create thresholds from a ThresholdsConfig."""
        return cls(
            stale_after_seconds=config.stale_after_seconds,
            drop_fraction=config.drop_fraction,
            drop_confirmations=config.drop_confirmations,
        )


@dataclass(frozen=True)
class HashrateTrend:
    """Hashrate drop tracking state of one account.

    Attributes:
        baseline: Last healthy total hashrate
        low_count: Consecutive cycles below the drop threshold
        alerted: Whether the current drop has been announced
    """

    baseline: float = 0.0
    low_count: int = 0
    alerted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"baseline": self.baseline, "low_count": self.low_count, "alerted": self.alerted}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["HashrateTrend"]:
        if not data:
            return None
        return cls(
            baseline=float(data.get("baseline") or 0.0),
            low_count=int(data.get("low_count") or 0),
            alerted=bool(data.get("alerted")),
        )


@dataclass(frozen=True)
class DiffResult:
    """Events of one diff cycle and the trend to store with the snapshot."""

    events: List[Event] = field(default_factory=list)
    trend: HashrateTrend = field(default_factory=HashrateTrend)


def _newer(current: Optional[datetime], previous: Optional[datetime]) -> bool:
    if current is None:
        return False
    return previous is None or current > previous


class DiffEngine:
    """Compares snapshots and emits notification events."""

    def __init__(self, thresholds: Optional[DiffThresholds] = None) -> None:
        self.thresholds = thresholds or DiffThresholds()

    def diff(
        self,
        previous: Optional[Snapshot],
        current: Snapshot,
        trend: Optional[HashrateTrend] = None,
    ) -> DiffResult:
        """Compute the events between the stored and the new snapshot.

        Args:
            previous: Stored snapshot, None on first observation
            current: Newly fetched snapshot
            trend: Stored hashrate trend, None to start from ``previous``

        Returns:
            DiffResult: Ordered events and the updated trend
        """
        if previous is None:
            return DiffResult(events=[], trend=HashrateTrend(baseline=current.total_hashrate))

        if previous.account_id != current.account_id:
            raise ValueError(
                f"Cannot diff snapshots of different accounts: "
                f"{previous.account_id} != {current.account_id}"
            )

        if trend is None:
            trend = HashrateTrend(baseline=previous.total_hashrate)

        events: List[Event] = []
        events.extend(self._block_found(previous, current))
        events.extend(self._worker_transitions(previous, current))
        drop_events, new_trend = self._hashrate_drop(current, trend)
        events.extend(drop_events)
        events.extend(self._payout(previous, current))

        events.sort(key=Event.sort_key)

        if events:
            logger.debug(
                "diff_computed",
                account_id=current.account_id,
                events=[event.kind.name for event in events],
            )
        return DiffResult(events=events, trend=new_trend)

    def _block_found(self, previous: Snapshot, current: Snapshot) -> List[Event]:
        if not _newer(current.last_block_found_at, previous.last_block_found_at):
            return []
        return [
            Event(
                kind=EventKind.BLOCK_FOUND,
                account_id=current.account_id,
                occurred_at=current.taken_at,
                old_value=previous.last_block_found_at,
                new_value=current.last_block_found_at,
            )
        ]

    def _worker_transitions(self, previous: Snapshot, current: Snapshot) -> List[Event]:
        stale_after = self.thresholds.stale_after_seconds
        was_active = previous.active_workers(stale_after)
        is_active = current.active_workers(stale_after)
        events = []

        for name in sorted(set(was_active) - set(is_active)):
            gone = current.workers.get(name)
            events.append(
                Event(
                    kind=EventKind.WORKER_OFFLINE,
                    account_id=current.account_id,
                    occurred_at=current.taken_at,
                    worker=name,
                    old_value=was_active[name].last_seen,
                    new_value=gone.last_seen if gone else None,
                )
            )

        for name in sorted(set(is_active) - set(was_active)):
            before = previous.workers.get(name)
            events.append(
                Event(
                    kind=EventKind.WORKER_ONLINE,
                    account_id=current.account_id,
                    occurred_at=current.taken_at,
                    worker=name,
                    old_value=before.last_seen if before else None,
                    new_value=is_active[name].last_seen,
                )
            )

        return events

    def _hashrate_drop(
        self, current: Snapshot, trend: HashrateTrend
    ) -> Tuple[List[Event], HashrateTrend]:
        threshold = self.thresholds.drop_fraction * trend.baseline

        if trend.baseline <= 0 or current.total_hashrate >= threshold:
            # Healthy (or recovered): the baseline follows the current value
            return [], HashrateTrend(baseline=current.total_hashrate)

        low_count = trend.low_count + 1
        if low_count >= self.thresholds.drop_confirmations and not trend.alerted:
            event = Event(
                kind=EventKind.HASHRATE_DROP,
                account_id=current.account_id,
                occurred_at=current.taken_at,
                old_value=trend.baseline,
                new_value=current.total_hashrate,
            )
            return [event], HashrateTrend(baseline=trend.baseline, low_count=low_count, alerted=True)

        return [], HashrateTrend(
            baseline=trend.baseline, low_count=low_count, alerted=trend.alerted
        )

    def _payout(self, previous: Snapshot, current: Snapshot) -> List[Event]:
        balance_dropped = current.confirmed_balance < previous.confirmed_balance
        paid_known = previous.paid_total is not None and current.paid_total is not None

        if balance_dropped and (not paid_known or current.paid_total >= previous.paid_total):
            paid_out = True
        else:
            paid_out = _newer(current.last_payout_at, previous.last_payout_at)

        if not paid_out:
            return []

        amount = None
        if paid_known and current.paid_total > previous.paid_total:
            amount = current.paid_total - previous.paid_total
        elif balance_dropped:
            # Reward credited in the same cycle was paid out with the balance
            amount = previous.confirmed_balance - current.confirmed_balance
            if previous.earned_total is not None and current.earned_total is not None:
                amount += max(current.earned_total - previous.earned_total, 0.0)

        return [
            Event(
                kind=EventKind.PAYOUT,
                account_id=current.account_id,
                occurred_at=current.taken_at,
                old_value=previous.confirmed_balance,
                new_value=current.confirmed_balance,
                amount=amount,
            )
        ]
