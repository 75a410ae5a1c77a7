"""Pool module for fetching account state.

This module provides functionality for:
- Fetching account status from the pool API
- Parsing responses into typed snapshots
"""

from .models import Account, Snapshot, WorkerState
from .parser import parse_snapshot
from .client import PoolClient

__all__ = [
    'Account',
    'Snapshot',
    'WorkerState',
    'parse_snapshot',
    'PoolClient'
]
