"""Human readable formatting of pool figures.

Hashrates are reported by the pool in GH/s and balances in BTC; chat
messages show them as Th/s and satoshis with thousands separators.
"""

from datetime import datetime, timezone
from typing import Optional, Union

SATS_PER_BTC = 100_000_000


def format_number(num: int) -> str:
    """Format an integer with comma thousands separators."""
    return f"{int(num):,}"


def format_gh_to_th(amount: float) -> str:
    """Format a GH/s hashrate as whole Th/s."""
    return f"{format_number(int(amount / 1000))} Th/s"


def format_sats(amount: int) -> str:
    return f"{format_number(amount)} SAT"


def format_btc_to_sats(amount: float) -> str:
    """Format a BTC amount as satoshis."""
    return format_sats(round(amount * SATS_PER_BTC))


def to_utc_datetime(value: Union[int, float, datetime]) -> datetime:
    """Convert a unix timestamp or datetime to an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.fromtimestamp(value, tz=timezone.utc)


def format_date(value: Union[int, float, datetime], fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Format a unix timestamp or datetime in UTC."""
    return to_utc_datetime(value).strftime(fmt)


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration in seconds into a short human-readable string."""
    if seconds is None or seconds < 0:
        return "N/A"
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.0f}m"
    if seconds < 86400:
        h = int(seconds // 3600)
        m = int((seconds % 3600) // 60)
        return f"{h}h {m}m"
    d = int(seconds // 86400)
    h = int((seconds % 86400) // 3600)
    return f"{d}d {h}h"
