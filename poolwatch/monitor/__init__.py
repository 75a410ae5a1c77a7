"""Monitor module for change detection.

This module provides functionality for:
- Comparing snapshots and producing events
- Keeping the last snapshot per account
- Queueing events for delivery

The Scheduler lives in ``poolwatch.monitor.scheduler``.
"""

from .events import Event
from .diff_engine import DiffEngine, DiffResult, DiffThresholds, HashrateTrend
from .event_queue import EventQueue
from .snapshot_store import SnapshotStore, StoredState

__all__ = [
    'Event',
    'DiffEngine',
    'DiffResult',
    'DiffThresholds',
    'HashrateTrend',
    'EventQueue',
    'SnapshotStore',
    'StoredState'
]
