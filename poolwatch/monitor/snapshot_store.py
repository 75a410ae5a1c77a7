"""Last observed state per account.

The store keeps at most one snapshot per account together with its
hashrate trend. Writers hold the account's lock for the whole
read-diff-enqueue-write sequence so two cycles of the same account never
interleave. There is no global lock across accounts.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

import structlog

from poolwatch.pool.models import Snapshot
from .diff_engine import HashrateTrend

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StoredState:
    """Snapshot and trend stored for one account."""

    snapshot: Snapshot
    trend: HashrateTrend

    @property
    def account_id(self) -> str:
        return self.snapshot.account_id


class SnapshotStore:
    """Keyed store of the last successfully diffed snapshot per account."""

    def __init__(self) -> None:
        self._states: Dict[str, StoredState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, account_id: str) -> asyncio.Lock:
        """Get the mutual exclusion scope of an account."""
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    def get(self, account_id: str) -> Optional[StoredState]:
        return self._states.get(account_id)

    def put(self, account_id: str, snapshot: Snapshot, trend: HashrateTrend) -> StoredState:
        """Replace the stored state of an account.

        Args:
            account_id: Account key
            snapshot: Snapshot that was just diffed
            trend: Trend returned by the diff

        Returns:
            StoredState: The new stored state
        """
        if snapshot.account_id != account_id:
            raise ValueError(
                f"Snapshot of {snapshot.account_id} cannot be stored under {account_id}"
            )
        state = StoredState(snapshot=snapshot, trend=trend)
        self._states[account_id] = state
        return state

    def seed(self, states: Iterable[StoredState]) -> int:
        """Fill the store from checkpoints without overwriting live state.

        Returns:
            int: Number of accounts seeded
        """
        seeded = 0
        for state in states:
            if state.account_id in self._states:
                continue
            self._states[state.account_id] = state
            seeded += 1
        logger.info("snapshot_store_seeded", accounts=seeded)
        return seeded

    def items(self) -> Iterator[Tuple[str, StoredState]]:
        return iter(list(self._states.items()))

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._states

    def __len__(self) -> int:
        return len(self._states)
