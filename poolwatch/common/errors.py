"""Error taxonomy for PoolWatch.

Every failure crossing a component boundary is classified as either
transient (retry eligible) or permanent (not retry eligible).
"""

from typing import Dict, Optional

from .types import FailureKind


class PoolWatchError(Exception):
    """Base class for all PoolWatch errors."""

    kind: FailureKind = FailureKind.PERMANENT

    @property
    def is_transient(self) -> bool:
        return self.kind is FailureKind.TRANSIENT


class TransientError(PoolWatchError):
    """Retry-eligible failure."""

    kind = FailureKind.TRANSIENT


class PermanentError(PoolWatchError):
    """Failure that must not be retried."""

    kind = FailureKind.PERMANENT


class ConfigError(PermanentError):
    """Invalid or missing configuration."""


class TransientFetchError(TransientError):
    """Pool API unreachable, timed out or answered with a server error."""


class PermanentFetchError(PermanentError):
    """Pool API rejected the account (auth failure, unknown account)."""


class MalformedSnapshotError(TransientFetchError):
    """Pool API answered with a body that cannot be turned into a snapshot."""


class ChatError(PoolWatchError):
    """Base class for chat delivery failures."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class TransientChatError(ChatError, TransientError):
    """Chat send failed in a way that may succeed later."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, code)
        self.retry_after = retry_after


class PermanentChatError(ChatError, PermanentError):
    """Chat send was refused (forbidden, unknown room, invalid token)."""


class DeliveryError(PermanentError):
    """An event could not be delivered to one or more rooms.

    Raised after the retry budget is exhausted or on a permanent chat
    failure. ``failures`` maps room id to the last error for that room.
    """

    def __init__(self, message: str, failures: Optional[Dict[str, Exception]] = None) -> None:
        super().__init__(message)
        self.failures = failures or {}
