"""Notify module turning events into chat messages."""

from .formatter import FormattedMessage, format_event
from .notifier import DeliveryTask, Notifier

__all__ = ["FormattedMessage", "format_event", "DeliveryTask", "Notifier"]
