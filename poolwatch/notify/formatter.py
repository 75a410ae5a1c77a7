"""Message templates for notification events.

Every event kind has exactly one template. Messages are rendered twice:
a plain text body and an HTML body for clients that support it.
"""

from dataclasses import dataclass
from datetime import datetime
from html import escape as html_escape
from typing import Callable, Dict, List, Optional, Tuple

from poolwatch.common.types import EventKind
from poolwatch.monitor.events import Event
from poolwatch.utils.formatting import (
    format_btc_to_sats,
    format_date,
    format_duration,
    format_gh_to_th,
)

Field = Tuple[str, str]


@dataclass(frozen=True)
class FormattedMessage:
    """A rendered chat message."""

    text: str
    html: str


def _date(value: Optional[datetime]) -> str:
    return format_date(value) + " UTC" if value else "N/A"


def _render(title: str, fields: List[Field]) -> FormattedMessage:
    text_lines = [title, ""]
    html_lines = [f"<b>{html_escape(title)}</b>"]
    for label, value in fields:
        text_lines.append(f"{label}: {value}")
        html_lines.append(f"{html_escape(label)}: <b>{html_escape(value)}</b>")
    return FormattedMessage(text="\n".join(text_lines), html="<br>".join(html_lines))


def _block_found(event: Event) -> FormattedMessage:
    return _render("⛏️ Block found", [
        ("Account", event.account_id),
        ("Found at", _date(event.new_value)),
    ])


def _worker_offline(event: Event) -> FormattedMessage:
    return _render("🔴 Worker offline", [
        ("Account", event.account_id),
        ("Worker", event.worker or "unknown"),
        ("Last share", _date(event.old_value)),
    ])


def _worker_online(event: Event) -> FormattedMessage:
    fields = [
        ("Account", event.account_id),
        ("Worker", event.worker or "unknown"),
        ("Last share", _date(event.new_value)),
    ]
    if event.old_value and event.new_value:
        fields.append(
            ("Silent for", format_duration((event.new_value - event.old_value).total_seconds()))
        )
    return _render("🟢 Worker back online", fields)


def _hashrate_drop(event: Event) -> FormattedMessage:
    before = float(event.old_value or 0.0)
    now = float(event.new_value or 0.0)
    drop = (before - now) / before * 100 if before > 0 else 0.0
    return _render("📉 Hashrate drop", [
        ("Account", event.account_id),
        ("Before", format_gh_to_th(before)),
        ("Now", format_gh_to_th(now)),
        ("Drop", f"{drop:.1f}%"),
    ])


def _payout(event: Event) -> FormattedMessage:
    fields = [("Account", event.account_id)]
    if event.amount is not None:
        fields.append(("Amount", format_btc_to_sats(event.amount)))
    fields.append(("Confirmed reward", format_btc_to_sats(float(event.new_value or 0.0))))
    return _render("💰 Payout", fields)


TEMPLATES: Dict[EventKind, Callable[[Event], FormattedMessage]] = {
    EventKind.BLOCK_FOUND: _block_found,
    EventKind.WORKER_OFFLINE: _worker_offline,
    EventKind.WORKER_ONLINE: _worker_online,
    EventKind.HASHRATE_DROP: _hashrate_drop,
    EventKind.PAYOUT: _payout,
}


def format_event(event: Event) -> FormattedMessage:
    """Render an event with the template of its kind."""
    return TEMPLATES[event.kind](event)
