"""
Base repository interface and implementation.

Provides common CRUD operations and patterns for all repositories.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, List, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=DeclarativeBase)


class BaseRepository(ABC, Generic[ModelType]):
    """
    Base repository interface defining common operations.

    This abstract base class provides a consistent interface for all repositories
    following the Repository pattern.
    """

    @abstractmethod
    async def get(self, session: AsyncSession, id: Any) -> Optional[ModelType]:
        """Get entity by ID."""
        pass

    @abstractmethod
    async def get_multi(
        self, session: AsyncSession, *, skip: int = 0, limit: int = 100
    ) -> List[ModelType]:
        """Get multiple entities with pagination."""
        pass

    @abstractmethod
    async def delete(self, session: AsyncSession, *, id: Any) -> Optional[ModelType]:
        """Delete an entity by ID."""
        pass


class BaseSQLAlchemyRepository(BaseRepository[ModelType]):
    """
    Base SQLAlchemy repository implementation.

    Provides common SQLAlchemy-based implementations that can be inherited by
    specific repository implementations.
    """

    def __init__(self, model: type[ModelType]):
        self.model = model

    async def get(self, session: AsyncSession, id: Any) -> Optional[ModelType]:
        """Get entity by primary key."""
        return await session.get(self.model, id)

    async def get_multi(
        self, session: AsyncSession, *, skip: int = 0, limit: int = 100
    ) -> List[ModelType]:
        """Get multiple entities with pagination."""
        result = await session.execute(select(self.model).offset(skip).limit(limit))
        return list(result.scalars().all())

    async def delete(self, session: AsyncSession, *, id: Any) -> Optional[ModelType]:
        """Delete an entity by ID."""
        db_obj = await self.get(session, id)
        if db_obj:
            await session.delete(db_obj)
            await session.flush()
        return db_obj

    async def exists(self, session: AsyncSession, id: Any) -> bool:
        """Check if entity exists by ID."""
        return await self.get(session, id) is not None

    async def count(self, session: AsyncSession) -> int:
        """Count total number of entities."""
        result = await session.execute(select(func.count()).select_from(self.model))
        return result.scalar() or 0
