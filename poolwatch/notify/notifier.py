"""Event delivery module.

This module implements the Notifier class which handles:
- Formatting events into chat messages
- Sending them to every target room
- Exponential backoff on transient failures
- Dropping and reporting an event on permanent failure or exhausted retries

Delivery is at-least-once: a resend after an ambiguous failure reuses the
same transaction id, so the homeserver can deduplicate it.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Mapping, Optional, Sequence

import structlog

from poolwatch.chat.client import ChatClient
from poolwatch.common.errors import (
    DeliveryError,
    PermanentChatError,
    PoolWatchError,
    TransientChatError,
)
from poolwatch.monitor.event_queue import EventQueue
from poolwatch.monitor.events import Event
from .formatter import FormattedMessage, format_event

logger = structlog.get_logger(__name__)

ErrorCallback = Callable[[Event, PoolWatchError], Awaitable[None]]


@dataclass
class DeliveryTask:
    """An event in flight to one room."""

    event: Event
    room_id: str
    txn_id: str
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None


class Notifier:
    """Delivers events to chat rooms with bounded retries."""

    def __init__(
        self,
        chat_client: ChatClient,
        rooms: Sequence[str],
        account_rooms: Optional[Mapping[str, Sequence[str]]] = None,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 60.0,
        max_attempts: int = 6,
        error_callback: Optional[ErrorCallback] = None,
        formatter: Callable[[Event], FormattedMessage] = format_event,
    ):
        """Initialize the notifier.

        Args:
            chat_client: Connected chat client
            rooms: Default target rooms
            account_rooms: Per-account room overrides
            base_delay_seconds: Delay before the first retry
            max_delay_seconds: Cap of the retry delay
            max_attempts: Send attempts per room before giving up
            error_callback: Awaited with the event and error when an event is dropped
            formatter: Event to message renderer
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.chat_client = chat_client
        self.rooms = list(rooms)
        self.account_rooms = {key: list(value) for key, value in (account_rooms or {}).items()}
        self.base_delay = base_delay_seconds
        self.max_delay = max_delay_seconds
        self.max_attempts = max_attempts
        self.error_callback = error_callback
        self.formatter = formatter

        # Statistics
        self.total_delivered = 0
        self.total_dropped = 0
        self.total_retried = 0

    def rooms_for(self, event: Event) -> Sequence[str]:
        return self.account_rooms.get(event.account_id) or self.rooms

    def backoff_delay(self, attempts: int) -> float:
        """Delay before the next attempt after ``attempts`` failed ones."""
        return min(self.base_delay * (2 ** max(attempts - 1, 0)), self.max_delay)

    async def deliver(self, event: Event) -> None:
        """Deliver an event to all of its rooms.

        Args:
            event: Event to deliver

        Raises:
            DeliveryError: If any room could not be served
        """
        message = self.formatter(event)
        failures: Dict[str, Exception] = {}

        for index, room_id in enumerate(self.rooms_for(event)):
            task = DeliveryTask(
                event=event,
                room_id=room_id,
                txn_id=f"{event.event_id}-{index}",
            )
            try:
                await self._run_task(task, message)
            except (PermanentChatError, TransientChatError) as e:
                failures[room_id] = e

        if failures:
            raise DeliveryError(
                f"Event {event.event_id} not delivered to {', '.join(failures)}",
                failures=failures,
            )

    async def _run_task(self, task: DeliveryTask, message: FormattedMessage) -> None:
        while True:
            task.attempts += 1
            try:
                await self.chat_client.send_message(
                    task.room_id,
                    message.text,
                    html=message.html,
                    txn_id=task.txn_id,
                )
                logger.info(
                    "event_delivered",
                    event_id=task.event.event_id,
                    kind=task.event.kind.name,
                    account_id=task.event.account_id,
                    room_id=task.room_id,
                    attempts=task.attempts,
                )
                return
            except PermanentChatError as e:
                task.last_error = str(e)
                logger.error(
                    "delivery_failed_permanently",
                    event_id=task.event.event_id,
                    room_id=task.room_id,
                    code=e.code,
                    attempts=task.attempts,
                    error=task.last_error,
                )
                raise
            except TransientChatError as e:
                task.last_error = str(e)
                if task.attempts >= self.max_attempts:
                    logger.error(
                        "delivery_retries_exhausted",
                        event_id=task.event.event_id,
                        room_id=task.room_id,
                        attempts=task.attempts,
                        error=task.last_error,
                        last_retry_at=task.next_attempt_at.isoformat() if task.next_attempt_at else None,
                    )
                    raise

                delay = self.backoff_delay(task.attempts)
                if e.retry_after and e.retry_after > delay:
                    delay = e.retry_after
                task.next_attempt_at = datetime.now(tz=timezone.utc) + timedelta(seconds=delay)
                self.total_retried += 1

                logger.warning(
                    "delivery_retry_scheduled",
                    event_id=task.event.event_id,
                    room_id=task.room_id,
                    attempt=task.attempts,
                    max_attempts=self.max_attempts,
                    delay=delay,
                    next_attempt_at=task.next_attempt_at.isoformat(),
                    error=task.last_error,
                )
                await asyncio.sleep(delay)

    async def run(self, queue: EventQueue) -> None:
        """Drain the queue sequentially until cancelled."""
        logger.info("notifier_started", rooms=self.rooms)
        while True:
            event = await queue.get()
            delivered = False
            try:
                await self.deliver(event)
                delivered = True
                self.total_delivered += 1
            except DeliveryError as e:
                self.total_dropped += 1
                logger.error(
                    "event_dropped",
                    event_id=event.event_id,
                    kind=event.kind.name,
                    account_id=event.account_id,
                    error=str(e),
                )
                await self._report(event, e)
            except asyncio.CancelledError:
                logger.warning(
                    "delivery_abandoned",
                    event_id=event.event_id,
                    kind=event.kind.name,
                    account_id=event.account_id,
                )
                raise
            except Exception as e:
                self.total_dropped += 1
                logger.error(
                    "delivery_error",
                    event_id=event.event_id,
                    kind=event.kind.name,
                    account_id=event.account_id,
                    error=str(e),
                    exc_info=True,
                )
                await self._report(event, DeliveryError(str(e)))
            finally:
                queue.task_done(delivered=delivered)

    async def _report(self, event: Event, error: PoolWatchError) -> None:
        if self.error_callback is None:
            return
        try:
            await self.error_callback(event, error)
        except Exception as e:
            logger.error("error_callback_failed", event_id=event.event_id, error=str(e))

    def get_stats(self) -> Dict[str, int]:
        """Get delivery statistics."""
        return {
            "total_delivered": self.total_delivered,
            "total_dropped": self.total_dropped,
            "total_retried": self.total_retried,
        }
