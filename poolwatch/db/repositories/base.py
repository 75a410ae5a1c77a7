"""Base repository class with common database operations.

This module provides:
- Base repository class with get/list/upsert operations
- Transaction participation through a caller-owned session
"""

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from poolwatch.db.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository class with common database operations.

    Args:
        model: SQLAlchemy model class
        session: Database session
    """

    def __init__(
        self,
        model: Type[ModelType],
        session: AsyncSession
    ):
        """Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Database session
        """
        self.model = model
        self.session = session

    async def get(self, key: Any) -> Optional[ModelType]:
        """Get record by primary key.

        Args:
            key: Primary key value

        Returns:
            Optional[ModelType]: Model instance if found
        """
        return await self.session.get(self.model, key)

    async def get_all(self) -> List[ModelType]:
        """Get all records."""
        result = await self.session.execute(select(self.model))
        return list(result.scalars().all())

    async def upsert(self, key: Any, data: Dict[str, Any]) -> ModelType:
        """Update the record with this key or create it.

        Args:
            key: Primary key value
            data: Column values (must include the primary key for inserts)

        Returns:
            ModelType: Created or updated model instance
        """
        db_obj = await self.get(key)
        if db_obj is None:
            db_obj = self.model(**data)
            self.session.add(db_obj)
        else:
            db_obj.update(data)
        await self.session.flush()
        return db_obj
