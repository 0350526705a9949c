"""Generic base repository with async CRUD operations.

This module provides a generic repository pattern for SQLAlchemy models:
- BaseRepository[T]: Generic class for standard CRUD operations
- dialect_insert: INSERT construct that supports ON CONFLICT for the
  session's storage engine
- All methods are async and use SQLAlchemy 2.0 style

Usage:
    from cinemirror.repositories.base import BaseRepository
    from cinemirror.models.cache_entry import CacheEntry

    class CacheEntryRepository(BaseRepository[CacheEntry]):
        pass

    repo = CacheEntryRepository(session)
    total = await repo.count()
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from cinemirror.models.base import Base

# Type variable for model classes
T = TypeVar("T", bound=Base)


def dialect_insert(session: AsyncSession, model: type[Base]) -> Any:
    """Return an INSERT for ``model`` with ON CONFLICT support.

    PostgreSQL and SQLite both implement ``on_conflict_do_nothing`` and
    ``on_conflict_do_update`` with the same signature, so callers can
    build idempotent upserts without caring which engine is bound.

    Args:
        session: Session whose bind decides the dialect
        model: Mapped class to insert into

    Raises:
        NotImplementedError: For engines without ON CONFLICT support
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on '{dialect}'")


class BaseRepository(Generic[T]):
    """Generic repository providing async CRUD operations.

    This base class provides standard database operations that can be
    inherited by specific repositories. It uses SQLAlchemy 2.0 style
    async queries.

    Type Parameters:
        T: The SQLAlchemy model class

    Attributes:
        session: The async database session
        model_class: The model class for this repository
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository with a database session.

        Args:
            session: Async database session
        """
        self.session = session

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Extract model class from Generic type parameter."""
        super().__init_subclass__(**kwargs)
        for base in cls.__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__"):
                cls.model_class = base.__args__[0]
                break

    async def count(self) -> int:
        """Count total entities."""
        result = await self.session.execute(
            select(func.count()).select_from(self.model_class)
        )
        return result.scalar_one()

    async def create(self, entity: T) -> T:
        """Create a new entity.

        Args:
            entity: The entity to create

        Returns:
            The created entity with generated fields (id, timestamps)
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity
