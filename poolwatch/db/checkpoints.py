"""Durable checkpoints of the snapshot store.

This module provides:
- CheckpointStore: load and save StoredState records
- SessionPersistence: chat session persistence for the Matrix client
"""

import json
from typing import Iterable, List, Optional, Tuple

import structlog

from poolwatch.monitor.diff_engine import HashrateTrend
from poolwatch.monitor.snapshot_store import StoredState
from poolwatch.pool.models import Snapshot
from .connection import DatabaseConnection
from .repositories.checkpoint import ChatSessionRepository, CheckpointRepository

logger = structlog.get_logger(__name__)


class CheckpointStore:
    """Reads and writes per-account checkpoints."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def load(self) -> List[StoredState]:
        """Load every readable checkpoint.

        Unreadable records are skipped and logged; the account is then
        seeded by its first fetch instead.
        """
        async with self.db.session() as session:
            records = await CheckpointRepository(session).get_all()

        states = []
        for record in records:
            try:
                snapshot = Snapshot.from_dict(json.loads(record.snapshot))
                trend = HashrateTrend.from_dict(json.loads(record.trend or "{}"))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(
                    "checkpoint_unreadable",
                    account_id=record.account_id,
                    error=str(e),
                )
                continue
            if trend is None:
                trend = HashrateTrend(baseline=snapshot.total_hashrate)
            states.append(StoredState(snapshot=snapshot, trend=trend))

        logger.info("checkpoints_loaded", count=len(states))
        return states

    async def save(self, state: StoredState) -> None:
        await self.save_many([state])

    async def save_many(self, states: Iterable[StoredState]) -> int:
        """Upsert checkpoints in one transaction.

        Returns:
            int: Number of checkpoints written
        """
        count = 0
        async with self.db.session() as session:
            repository = CheckpointRepository(session)
            for state in states:
                await repository.save(
                    account_id=state.account_id,
                    fingerprint=state.snapshot.fingerprint(),
                    snapshot=json.dumps(state.snapshot.to_dict()),
                    trend=json.dumps(state.trend.to_dict()),
                )
                count += 1
        logger.debug("checkpoints_saved", count=count)
        return count


class SessionPersistence:
    """Chat session storage backed by the checkpoint database."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def get_session(self, user_id: str) -> Optional[Tuple[str, str]]:
        async with self.db.session() as session:
            return await ChatSessionRepository(session).get_session(user_id)

    async def save_session(self, user_id: str, access_token: str, device_id: str) -> None:
        async with self.db.session() as session:
            await ChatSessionRepository(session).save_session(user_id, access_token, device_id)
