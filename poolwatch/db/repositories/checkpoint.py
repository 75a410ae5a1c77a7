"""Repositories for checkpoints and chat sessions."""

from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from poolwatch.db.models.checkpoint import ChatSession, Checkpoint
from .base import BaseRepository


class CheckpointRepository(BaseRepository[Checkpoint]):
    """Repository for account checkpoints."""

    def __init__(self, session: AsyncSession):
        super().__init__(Checkpoint, session)

    async def save(self, account_id: str, fingerprint: str, snapshot: str, trend: str) -> Checkpoint:
        return await self.upsert(account_id, {
            "account_id": account_id,
            "fingerprint": fingerprint,
            "snapshot": snapshot,
            "trend": trend,
        })


class ChatSessionRepository(BaseRepository[ChatSession]):
    """Repository for persisted chat logins."""

    def __init__(self, session: AsyncSession):
        super().__init__(ChatSession, session)

    async def get_session(self, user_id: str) -> Optional[Tuple[str, str]]:
        record = await self.get(user_id)
        if record is None:
            return None
        return record.access_token, record.device_id

    async def save_session(self, user_id: str, access_token: str, device_id: str) -> ChatSession:
        return await self.upsert(user_id, {
            "user_id": user_id,
            "access_token": access_token,
            "device_id": device_id,
        })
