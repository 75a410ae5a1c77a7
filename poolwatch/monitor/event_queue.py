"""Event queue module decoupling change detection from delivery.

This module implements the EventQueue class which is responsible for:
- Keeping events in production order (FIFO)
- Bounding memory with a fixed capacity
- Backpressure: producers wait while the queue is full
- Delivery statistics
"""

import asyncio
from typing import Any, Dict, Iterable, Optional

import structlog

from .events import Event

logger = structlog.get_logger(__name__)


class EventQueue:
    """Bounded, process-wide FIFO of notification events.

    All accounts share one queue and one consumer. Events of one account
    keep their insertion order; nothing is reordered or dropped on a
    full queue.
    """

    def __init__(self, max_queue_size: int = 1000):
        """Initialize the event queue.

        Args:
            max_queue_size: Maximum number of events waiting for delivery
        """
        self.max_queue_size = max_queue_size
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=max_queue_size)

        # Statistics
        self.total_queued = 0
        self.total_delivered = 0
        self.total_dropped = 0

    async def put(self, event: Event) -> None:
        """Add an event, waiting for a free slot if the queue is full.

        Args:
            event: Event to deliver
        """
        if self._queue.full():
            logger.warning(
                "queue_full",
                max_size=self.max_queue_size,
                account_id=event.account_id,
            )
        await self._queue.put(event)
        self.total_queued += 1

        logger.debug(
            "event_queued",
            event_id=event.event_id,
            kind=event.kind.name,
            account_id=event.account_id,
            queue_size=self._queue.qsize(),
        )

    async def put_many(self, events: Iterable[Event]) -> int:
        """Add the events of one diff cycle in order.

        Returns:
            int: Number of events queued
        """
        count = 0
        for event in events:
            await self.put(event)
            count += 1
        return count

    async def get(self) -> Event:
        """Wait for and return the next event."""
        return await self._queue.get()

    def get_nowait(self) -> Optional[Event]:
        """Return the next event, or None if the queue is empty."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def task_done(self, delivered: bool = True) -> None:
        """Mark the event returned by the last get() as finished.

        Args:
            delivered: False if the event was dropped
        """
        if delivered:
            self.total_delivered += 1
        else:
            self.total_dropped += 1
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been finished."""
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def full(self) -> bool:
        return self._queue.full()

    def get_queue_stats(self) -> Dict[str, Any]:
        """Get current queue statistics."""
        return {
            "total_queued": self.total_queued,
            "total_delivered": self.total_delivered,
            "total_dropped": self.total_dropped,
            "current_size": self._queue.qsize(),
            "max_size": self.max_queue_size,
        }
