"""Pool response parsing.

Turns pool status JSON bodies into a Snapshot. Only the fields needed for
change detection are read. Braiins-style names (``hash_rate_5m``,
``confirmed_reward``, ``last_share``) and a per-coin wrapper object
(``{"btc": {...}}``) are accepted next to the plain names.

Pools that split the account profile, the worker list and the found
blocks over several endpoints are supported: the worker and block bodies
are passed separately and merged into the same Snapshot.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from poolwatch.common.errors import MalformedSnapshotError
from .models import Account, Snapshot, WorkerState

TOTAL_HASHRATE_FIELDS = ("hashrate", "hash_rate_5m", "hash_rate")
CONFIRMED_FIELDS = ("confirmed_balance", "confirmed_reward")
UNCONFIRMED_FIELDS = ("unconfirmed_balance", "unconfirmed_reward")
PAID_TOTAL_FIELDS = ("paid_total",)
EARNED_TOTAL_FIELDS = ("earned_total", "all_time_reward")
LAST_PAYOUT_FIELDS = ("last_payout_at",)
LAST_BLOCK_FIELDS = ("last_block_found_at", "last_block_at")
BLOCK_FOUND_FIELDS = ("date_found", "found_at")
WORKER_HASHRATE_FIELDS = ("hashrate", "hash_rate_5m", "hash_rate")
WORKER_LAST_SEEN_FIELDS = ("last_seen", "last_share")

KNOWN_FIELDS = frozenset(
    TOTAL_HASHRATE_FIELDS
    + CONFIRMED_FIELDS
    + UNCONFIRMED_FIELDS
    + PAID_TOTAL_FIELDS
    + EARNED_TOTAL_FIELDS
    + LAST_PAYOUT_FIELDS
    + LAST_BLOCK_FIELDS
    + ("workers", "blocks")
)


def _first(data: Mapping[str, Any], fields: Iterable[str]) -> Tuple[Optional[str], Any]:
    for name in fields:
        if name in data and data[name] is not None:
            return name, data[name]
    return None, None


def _number(data: Mapping[str, Any], fields: Tuple[str, ...], default: Optional[float] = 0.0) -> Optional[float]:
    name, value = _first(data, fields)
    if name is None:
        return default
    if isinstance(value, bool):
        raise MalformedSnapshotError(f"Field {name} is not a number: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise MalformedSnapshotError(f"Field {name} is not a number: {value!r}") from e


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a unix timestamp or ISO-8601 string into an aware UTC datetime.

    Zero and empty values mean "never" and map to None.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as e:
            raise MalformedSnapshotError(f"Invalid timestamp: {value!r}") from e
    if isinstance(value, str):
        text = value.strip()
        try:
            return parse_timestamp(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise MalformedSnapshotError(f"Invalid timestamp: {value!r}") from e
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    raise MalformedSnapshotError(f"Invalid timestamp: {value!r}")


def _timestamp(data: Mapping[str, Any], fields: Tuple[str, ...]) -> Optional[datetime]:
    _, value = _first(data, fields)
    return parse_timestamp(value)


def normalize_worker_name(name: str) -> str:
    """Strip the ``username.`` prefix pools put in front of worker names."""
    if "." in name:
        return name.split(".", 1)[1]
    return name


def _unwrap(payload: Any, what: str = "Pool response") -> Mapping[str, Any]:
    """Descend into a single per-coin wrapper object if present."""
    if not isinstance(payload, Mapping):
        raise MalformedSnapshotError(f"{what} is not a JSON object")
    if KNOWN_FIELDS.intersection(payload):
        return payload
    nested = [value for value in payload.values() if isinstance(value, Mapping)]
    if len(nested) == 1:
        return nested[0]
    return payload


def _iter_entries(raw: Any, what: str) -> Iterable[Tuple[str, Mapping[str, Any]]]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        items = []
        for name, data in raw.items():
            if not isinstance(data, Mapping):
                raise MalformedSnapshotError(f"{what} {name!r} is not an object")
            items.append((str(name), data))
        return items
    if isinstance(raw, list):
        items = []
        for data in raw:
            if not isinstance(data, Mapping):
                raise MalformedSnapshotError(f"{what} entries must be objects")
            items.append((str(data.get("name", "")), data))
        return items
    raise MalformedSnapshotError(f"{what} list must be an object or a list")


def _parse_workers(raw: Any, account: Account) -> Dict[str, WorkerState]:
    workers: Dict[str, WorkerState] = {}
    for raw_name, data in _iter_entries(raw, "Worker"):
        if not raw_name:
            raise MalformedSnapshotError("Worker entries must have a name")
        name = normalize_worker_name(raw_name)
        if not account.monitors(name):
            continue
        state = data.get("state")
        worker = WorkerState(
            name=name,
            hashrate=_number(data, WORKER_HASHRATE_FIELDS),
            last_seen=_timestamp(data, WORKER_LAST_SEEN_FIELDS),
            state=state if isinstance(state, str) else None,
        )
        existing = workers.get(name)
        # Several connections may report under one name; keep the freshest
        if existing and existing.last_seen and (
            worker.last_seen is None or existing.last_seen >= worker.last_seen
        ):
            continue
        workers[name] = worker
    return workers


def _latest(*values: Optional[datetime]) -> Optional[datetime]:
    known = [value for value in values if value is not None]
    return max(known) if known else None


def parse_workers(payload: Any, account: Account) -> Dict[str, WorkerState]:
    """Parse a worker list body (``{"btc": {"workers": {...}}}`` or similar).

    Raises:
        MalformedSnapshotError: If the body has no worker list
    """
    data = _unwrap(payload, "Workers response")
    if "workers" not in data:
        raise MalformedSnapshotError("Workers response has no workers field")
    return _parse_workers(data["workers"], account)


def parse_last_block(payload: Any) -> Optional[datetime]:
    """Get the time of the most recent block from a block list body.

    Accepts a ``blocks`` object keyed by height (Braiins pool stats), a
    ``blocks`` list, or a plain ``last_block_found_at`` field.

    Raises:
        MalformedSnapshotError: If the body carries no block information
    """
    data = _unwrap(payload, "Blocks response")
    if "blocks" not in data and _first(data, LAST_BLOCK_FIELDS)[0] is None:
        raise MalformedSnapshotError("Blocks response has no blocks field")
    found = [_timestamp(block, BLOCK_FOUND_FIELDS) for _, block in _iter_entries(data.get("blocks"), "Block")]
    return _latest(_timestamp(data, LAST_BLOCK_FIELDS), *found)


def parse_snapshot(
    payload: Any,
    account: Account,
    taken_at: Optional[datetime] = None,
    workers_payload: Any = None,
    blocks_payload: Any = None,
) -> Snapshot:
    """Build a Snapshot from a pool status body.

    Args:
        payload: Decoded JSON body of the account profile
        account: Account the body belongs to
        taken_at: Fetch time. Defaults to now (UTC)
        workers_payload: Optional worker list body, replaces profile workers
        blocks_payload: Optional found blocks body

    Returns:
        Snapshot: Parsed snapshot

    Raises:
        MalformedSnapshotError: If a body does not have the expected shape
    """
    data = _unwrap(payload)
    if not KNOWN_FIELDS.intersection(data):
        raise MalformedSnapshotError("Pool response has none of the expected fields")

    if workers_payload is not None:
        workers = parse_workers(workers_payload, account)
    else:
        workers = _parse_workers(data.get("workers"), account)

    if "blocks" in data:
        last_block_found_at = parse_last_block(data)
    else:
        last_block_found_at = _timestamp(data, LAST_BLOCK_FIELDS)
    if blocks_payload is not None:
        last_block_found_at = _latest(last_block_found_at, parse_last_block(blocks_payload))

    total_hashrate = _number(data, TOTAL_HASHRATE_FIELDS, default=None)
    if total_hashrate is None:
        total_hashrate = sum(worker.hashrate for worker in workers.values())

    return Snapshot(
        account_id=account.account_id,
        taken_at=taken_at or datetime.now(tz=timezone.utc),
        total_hashrate=total_hashrate,
        workers=workers,
        unconfirmed_balance=_number(data, UNCONFIRMED_FIELDS),
        confirmed_balance=_number(data, CONFIRMED_FIELDS),
        paid_total=_number(data, PAID_TOTAL_FIELDS, default=None),
        earned_total=_number(data, EARNED_TOTAL_FIELDS, default=None),
        last_payout_at=_timestamp(data, LAST_PAYOUT_FIELDS),
        last_block_found_at=last_block_found_at,
    )
