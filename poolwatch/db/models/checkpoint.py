"""Checkpoint and chat session models.

Checkpoints hold the last diffed snapshot of each account so a restart
does not announce transitions that were already announced.
"""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class Checkpoint(TimestampMixin, Base):
    """Last diffed state of one account.

    Attributes:
        account_id: Account the checkpoint belongs to
        fingerprint: Hash of the snapshot's pool-reported fields
        snapshot: Snapshot serialized as JSON
        trend: Hashrate trend serialized as JSON
    """

    __tablename__ = "checkpoints"

    account_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    trend: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    def __repr__(self) -> str:
        return f"<Checkpoint {self.account_id} {self.fingerprint[:12]}>"


class ChatSession(TimestampMixin, Base):
    """Persisted chat login so restarts reuse the same device."""

    __tablename__ = "chat_sessions"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<ChatSession {self.user_id} {self.device_id}>"
