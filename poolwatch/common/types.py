"""Common type definitions for the notification relay.

This module contains shared enums used across different components
of the system.
"""

from enum import Enum


class EventKind(Enum):
    """Kinds of notification events.

    The declaration order is the delivery order of events produced
    in the same diff cycle.
    """

    BLOCK_FOUND = 0
    WORKER_OFFLINE = 1
    WORKER_ONLINE = 2
    HASHRATE_DROP = 3
    PAYOUT = 4

    def __str__(self) -> str:
        """Return string representation."""
        return self.name.replace("_", " ").capitalize()


class FailureKind(Enum):
    """Retry eligibility of a failure."""

    TRANSIENT = "TRANSIENT"  # Network errors, timeouts, 5xx, rate limits
    PERMANENT = "PERMANENT"  # Auth rejected, unknown room, bad config


class AccountState(Enum):
    """Per-account scheduler state."""

    IDLE = "IDLE"
    POLLING = "POLLING"
    DIFFING = "DIFFING"
    ENQUEUING = "ENQUEUING"
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"
