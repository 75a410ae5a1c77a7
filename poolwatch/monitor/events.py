"""Notification event definitions."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Tuple
from uuid import uuid4

from poolwatch.common.types import EventKind


@dataclass(frozen=True)
class Event:
    """A single detected state change of an account.

    Attributes:
        kind: Which kind of change this is
        account_id: Account the change belongs to
        occurred_at: Time of the snapshot that revealed the change
        worker: Affected worker for worker events
        old_value: Value before the change (kind specific)
        new_value: Value after the change (kind specific)
        amount: Paid amount for payout events
        event_id: Unique id, also used as the chat transaction id
    """

    kind: EventKind
    account_id: str
    occurred_at: datetime
    worker: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    amount: Optional[float] = None
    event_id: str = field(default_factory=lambda: uuid4().hex, compare=False)

    def sort_key(self) -> Tuple[int, str]:
        """Ordering within one diff cycle: by kind, then worker name."""
        return (self.kind.value, self.worker or "")
