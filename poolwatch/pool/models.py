"""Pool data models.

This module defines:
- Account: an immutable monitoring target loaded from configuration
- WorkerState: one worker's pool-reported state
- Snapshot: a point-in-time view of an account's pool state
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from poolwatch.utils.formatting import to_utc_datetime

# Pool states that mean the worker is not hashing regardless of its last share
INACTIVE_STATES = frozenset({"off", "dis", "disabled", "offline"})


class Account(BaseModel):
    """A monitored pool account."""

    model_config = ConfigDict(frozen=True)

    account_id: str = Field(..., min_length=1)
    token: Optional[str] = None
    token_env: Optional[str] = None
    status_url: Optional[str] = None
    workers_url: Optional[str] = None
    blocks_url: Optional[str] = None
    workers: Tuple[str, ...] = ()
    room_ids: Tuple[str, ...] = ()

    @field_validator("workers", "room_ids")
    @classmethod
    def validate_unique(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Validate names are non-empty and unique."""
        if not all(isinstance(name, str) and name for name in v):
            raise ValueError("names must be non-empty strings")
        if len(set(v)) != len(v):
            raise ValueError("names must be unique")
        return v

    @field_validator("room_ids")
    @classmethod
    def validate_room_ids(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Validate room ids or aliases."""
        if not all(room.startswith(("!", "#")) for room in v):
            raise ValueError("room_ids must be room ids (!id:server) or aliases (#alias:server)")
        return v

    @field_validator("status_url", "workers_url", "blocks_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the URL scheme."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("pool URLs must be http(s) URLs")
        return v

    def monitors(self, worker_name: str) -> bool:
        """Check whether a worker is in scope for this account."""
        return not self.workers or worker_name in self.workers


@dataclass(frozen=True)
class WorkerState:
    """State of a single worker as reported by the pool."""

    name: str
    hashrate: float = 0.0
    last_seen: Optional[datetime] = None
    state: Optional[str] = None

    def is_active(self, now: datetime, stale_after_seconds: float) -> bool:
        """Check whether the worker reported recently enough to count as up.

        Args:
            now: Reference time, normally the snapshot's ``taken_at``
            stale_after_seconds: Maximum age of the last share

        Returns:
            bool: True if the worker is hashing
        """
        if self.state and self.state.lower() in INACTIVE_STATES:
            return False
        if self.last_seen is None:
            return False
        return (now - self.last_seen).total_seconds() <= stale_after_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "hashrate": self.hashrate,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkerState":
        last_seen = data.get("last_seen")
        return cls(
            name=data["name"],
            hashrate=float(data.get("hashrate") or 0.0),
            last_seen=to_utc_datetime(datetime.fromisoformat(last_seen)) if last_seen else None,
            state=data.get("state"),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return to_utc_datetime(datetime.fromisoformat(value)) if value else None


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time capture of an account's pool state.

    Attributes:
        account_id: Account the snapshot belongs to
        taken_at: When the snapshot was fetched (aware UTC)
        total_hashrate: Account hashrate as reported by the pool
        workers: Worker name to worker state
        unconfirmed_balance: Reward not yet confirmed
        confirmed_balance: Reward available for payout
        paid_total: Lifetime amount paid out, if the pool reports it
        earned_total: Lifetime amount earned, if the pool reports it
        last_payout_at: Time of the latest payout, if the pool reports it
        last_block_found_at: Time of the latest block found, if known
    """

    account_id: str
    taken_at: datetime
    total_hashrate: float = 0.0
    workers: Mapping[str, WorkerState] = field(default_factory=dict)
    unconfirmed_balance: float = 0.0
    confirmed_balance: float = 0.0
    paid_total: Optional[float] = None
    earned_total: Optional[float] = None
    last_payout_at: Optional[datetime] = None
    last_block_found_at: Optional[datetime] = None

    def active_workers(self, stale_after_seconds: float) -> Dict[str, WorkerState]:
        """Get the workers considered up at the time of this snapshot."""
        return {
            name: worker
            for name, worker in self.workers.items()
            if worker.is_active(self.taken_at, stale_after_seconds)
        }

    def to_dict(self, include_taken_at: bool = True) -> Dict[str, Any]:
        data = {
            "account_id": self.account_id,
            "total_hashrate": self.total_hashrate,
            "workers": {
                name: self.workers[name].to_dict() for name in sorted(self.workers)
            },
            "unconfirmed_balance": self.unconfirmed_balance,
            "confirmed_balance": self.confirmed_balance,
            "paid_total": self.paid_total,
            "earned_total": self.earned_total,
            "last_payout_at": _iso(self.last_payout_at),
            "last_block_found_at": _iso(self.last_block_found_at),
        }
        if include_taken_at:
            data["taken_at"] = self.taken_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        return cls(
            account_id=data["account_id"],
            taken_at=_from_iso(data["taken_at"]),
            total_hashrate=float(data.get("total_hashrate") or 0.0),
            workers={
                name: WorkerState.from_dict(worker)
                for name, worker in (data.get("workers") or {}).items()
            },
            unconfirmed_balance=float(data.get("unconfirmed_balance") or 0.0),
            confirmed_balance=float(data.get("confirmed_balance") or 0.0),
            paid_total=data.get("paid_total"),
            earned_total=data.get("earned_total"),
            last_payout_at=_from_iso(data.get("last_payout_at")),
            last_block_found_at=_from_iso(data.get("last_block_found_at")),
        )

    def fingerprint(self) -> str:
        """Stable hash of the pool-reported fields (fetch time excluded)."""
        payload = json.dumps(self.to_dict(include_taken_at=False), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
