"""Pytest configuration and common fixtures.

This module contains pytest configuration and common fixtures used across
test modules. It also ensures the poolwatch package is in the Python path.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import pytest

# Add the project root directory to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from poolwatch.chat.client import ChatClient  # noqa: E402
from poolwatch.pool.models import Account, Snapshot, WorkerState  # noqa: E402

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# Configure pytest-asyncio
def pytest_configure(config):
    """Configure pytest-asyncio to use function scope for event loops."""
    config.option.asyncio_mode = "strict"
    config.option.asyncio_default_fixture_loop_scope = "function"


def build_snapshot(
    account_id: str = "acc1",
    taken_at: datetime = T0,
    total_hashrate: float = 100_000.0,
    active: Iterable[str] = (),
    offline: Iterable[str] = (),
    confirmed_balance: float = 0.0,
    unconfirmed_balance: float = 0.0,
    paid_total: Optional[float] = None,
    earned_total: Optional[float] = None,
    last_payout_at: Optional[datetime] = None,
    last_block_found_at: Optional[datetime] = None,
) -> Snapshot:
    """Build a snapshot with active workers (recent share) and offline ones."""
    workers = {}
    for name in active:
        workers[name] = WorkerState(
            name=name,
            hashrate=10_000.0,
            last_seen=taken_at - timedelta(seconds=30),
            state="ok",
        )
    for name in offline:
        workers[name] = WorkerState(
            name=name,
            hashrate=0.0,
            last_seen=taken_at - timedelta(hours=2),
            state="off",
        )
    return Snapshot(
        account_id=account_id,
        taken_at=taken_at,
        total_hashrate=total_hashrate,
        workers=workers,
        unconfirmed_balance=unconfirmed_balance,
        confirmed_balance=confirmed_balance,
        paid_total=paid_total,
        earned_total=earned_total,
        last_payout_at=last_payout_at,
        last_block_found_at=last_block_found_at,
    )


@pytest.fixture
def make_snapshot():
    """Factory fixture for snapshots."""
    return build_snapshot


@pytest.fixture
def account():
    """A monitored account with a token."""
    return Account(account_id="acc1", token="secret-token")


class FakeChatClient(ChatClient):
    """Chat client recording sends; ``outcomes`` are raised in order (None = success)."""

    def __init__(self, outcomes: Optional[List[Optional[Exception]]] = None):
        self.outcomes = list(outcomes or [])
        self.sent: List[dict] = []
        self.logged_in = False
        self.joined: List[str] = []

    async def login(self) -> None:
        self.logged_in = True

    async def join_room(self, room_id: str) -> str:
        self.joined.append(room_id)
        return room_id

    async def send_message(self, room_id, text, html=None, txn_id=None):
        self.sent.append({"room_id": room_id, "text": text, "html": html, "txn_id": txn_id})
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome


@pytest.fixture
def chat_client():
    """Chat client that accepts every message."""
    return FakeChatClient()
