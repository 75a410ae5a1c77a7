"""Poll scheduling module.

This module implements the Scheduler class which handles:
- One polling task per account with a jittered interval
- The fetch, diff, enqueue, store sequence of a diff cycle
- Checkpointing after every cycle
- Graceful shutdown: stop polling, drain the queue, persist checkpoints
"""

import asyncio
import random
from typing import Dict, List, Optional, Protocol, Sequence

import structlog

from poolwatch.common.errors import PermanentError, TransientError
from poolwatch.common.types import AccountState
from poolwatch.notify.notifier import Notifier
from poolwatch.pool.client import PoolClient
from poolwatch.pool.models import Account
from .diff_engine import DiffEngine
from .event_queue import EventQueue
from .events import Event
from .snapshot_store import SnapshotStore, StoredState

logger = structlog.get_logger(__name__)


class Checkpointer(Protocol):
    """Durable storage of stored states."""

    async def save(self, state: StoredState) -> None:
        ...

    async def save_many(self, states: Sequence[StoredState]) -> int:
        ...


class Scheduler:
    """Drives diff cycles for all accounts and coordinates shutdown."""

    def __init__(
        self,
        accounts: Sequence[Account],
        pool_client: PoolClient,
        store: SnapshotStore,
        diff_engine: DiffEngine,
        queue: EventQueue,
        notifier: Notifier,
        checkpoints: Optional[Checkpointer] = None,
        interval_seconds: float = 60.0,
        jitter_fraction: float = 0.1,
        shutdown_grace_seconds: float = 30.0,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the scheduler.

        Args:
            accounts: Accounts to poll
            pool_client: Client used to fetch snapshots
            store: Snapshot store shared by all accounts
            diff_engine: Change detection rules
            queue: Queue events are written to
            notifier: Consumer draining the queue
            checkpoints: Optional durable checkpoint storage
            interval_seconds: Mean time between two cycles of an account
            jitter_fraction: Relative random spread of the interval
            shutdown_grace_seconds: Time allowed to drain the queue on shutdown
            rng: Random source for jitter
        """
        self.accounts = list(accounts)
        self.pool_client = pool_client
        self.store = store
        self.diff_engine = diff_engine
        self.queue = queue
        self.notifier = notifier
        self.checkpoints = checkpoints
        self.interval = interval_seconds
        self.jitter_fraction = jitter_fraction
        self.shutdown_grace = shutdown_grace_seconds
        self._rng = rng or random.Random()

        self._states: Dict[str, AccountState] = {
            account.account_id: AccountState.IDLE for account in self.accounts
        }
        self._poll_tasks: List[asyncio.Task] = []
        self._notifier_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._stopped = asyncio.Event()
        self.running = False

    def state_of(self, account_id: str) -> AccountState:
        return self._states[account_id]

    def _set_state(self, account_id: str, state: AccountState) -> None:
        self._states[account_id] = state

    def next_delay(self) -> float:
        """Interval with uniform jitter."""
        spread = self.interval * self.jitter_fraction
        return max(0.0, self.interval + self._rng.uniform(-spread, spread))

    async def run_cycle(self, account: Account) -> List[Event]:
        """Run one fetch, diff, enqueue cycle for an account.

        The stored snapshot is only replaced after every event of the
        cycle is in the queue, so a failed cycle is simply repeated.

        Args:
            account: Account to process

        Returns:
            List[Event]: Events produced by the cycle

        Raises:
            TransientError: Fetch failed or returned a malformed body
            PermanentError: Pool rejected the account
        """
        account_id = account.account_id
        self._set_state(account_id, AccountState.POLLING)
        snapshot = await self.pool_client.fetch(account)

        async with self.store.lock(account_id):
            self._set_state(account_id, AccountState.DIFFING)
            stored = self.store.get(account_id)
            result = self.diff_engine.diff(
                stored.snapshot if stored else None,
                snapshot,
                stored.trend if stored else None,
            )

            self._set_state(account_id, AccountState.ENQUEUING)
            await self.queue.put_many(result.events)
            state = self.store.put(account_id, snapshot, result.trend)

            if self.checkpoints is not None:
                try:
                    await self.checkpoints.save(state)
                except Exception as e:
                    logger.error("checkpoint_save_failed", account_id=account_id, error=str(e))

        self._set_state(account_id, AccountState.IDLE)
        logger.info(
            "diff_cycle_completed",
            account_id=account_id,
            seeded=stored is None,
            events=len(result.events),
        )
        return result.events

    async def _poll_loop(self, account: Account) -> None:
        """Poll one account until shutdown."""
        account_id = account.account_id

        # Spread the first fetch of each account over the jitter window
        initial_delay = self._rng.uniform(0, self.interval * self.jitter_fraction)
        if await self._wait_stopping(initial_delay):
            return

        while not self._stopping.is_set():
            try:
                await self.run_cycle(account)
            except TransientError as e:
                logger.warning("poll_cycle_failed", account_id=account_id, transient=True, error=str(e))
            except PermanentError as e:
                logger.error("poll_cycle_failed", account_id=account_id, transient=False, error=str(e))
            except Exception as e:
                logger.error("poll_cycle_error", account_id=account_id, error=str(e), exc_info=True)
            finally:
                if not self._stopping.is_set():
                    self._set_state(account_id, AccountState.IDLE)

            if await self._wait_stopping(self.next_delay()):
                return

    async def _wait_stopping(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def start(self) -> None:
        """Start the notifier and one polling task per account."""
        if self.running:
            logger.warning("scheduler_already_running")
            return

        self.running = True
        self._notifier_task = asyncio.create_task(self.notifier.run(self.queue))
        self._poll_tasks = [
            asyncio.create_task(self._poll_loop(account)) for account in self.accounts
        ]
        logger.info(
            "scheduler_started",
            accounts=len(self.accounts),
            interval=self.interval,
            jitter_fraction=self.jitter_fraction,
        )

    def request_shutdown(self) -> None:
        """Ask the scheduler to stop; safe to call from a signal handler."""
        if not self._stopping.is_set():
            logger.info("shutdown_requested")
            self._stopping.set()

    async def run(self) -> None:
        """Start, wait for a shutdown request, then shut down."""
        await self.start()
        await self._stopping.wait()
        await self.shutdown()

    async def shutdown(self) -> None:
        """Stop polling, drain the queue within the grace period, checkpoint."""
        if self._stopped.is_set():
            return

        self._stopping.set()
        for account_id in self._states:
            self._set_state(account_id, AccountState.DRAINING)

        for task in self._poll_tasks:
            task.cancel()
        await asyncio.gather(*self._poll_tasks, return_exceptions=True)
        self._poll_tasks = []

        if self._notifier_task is not None:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=self.shutdown_grace)
                logger.info("queue_drained")
            except asyncio.TimeoutError:
                logger.warning(
                    "queue_drain_timeout",
                    grace_seconds=self.shutdown_grace,
                    pending=self.queue.qsize(),
                )
            self._notifier_task.cancel()
            await asyncio.gather(self._notifier_task, return_exceptions=True)
            self._notifier_task = None

        if self.checkpoints is not None:
            try:
                saved = await self.checkpoints.save_many([state for _, state in self.store.items()])
                logger.info("checkpoints_persisted", count=saved)
            except Exception as e:
                logger.error("checkpoint_persist_failed", error=str(e))

        for account_id in self._states:
            self._set_state(account_id, AccountState.STOPPED)
        self.running = False
        self._stopped.set()
        logger.info(
            "scheduler_stopped",
            queue=self.queue.get_queue_stats(),
            delivery=self.notifier.get_stats(),
        )

    async def wait_stopped(self) -> None:
        await self._stopped.wait()
