"""Database connection utilities"""
from typing import AsyncGenerator, Optional, Type, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool, StaticPool
from contextlib import asynccontextmanager
from pydantic import BaseModel, ValidationError
import logging
import sqlalchemy as sa

from .config import get_config
from .exceptions import PersistenceError, SchemaMismatchError

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models"""
    pass


class DatabaseManager:
    """Database connection manager.

    One instance is created per process at startup and handed to every
    service that needs the store.
    """

    def __init__(self):
        self.engine = None
        self.session_factory = None
        self._initialized = False

    async def initialize(self, database_url: Optional[str] = None):
        """Initialize database connection"""
        if self._initialized:
            return

        config = get_config()
        db_url = database_url or config.database_url

        engine_kwargs = {"echo": config.log_level == "DEBUG"}
        if db_url.startswith("sqlite") and ":memory:" in db_url:
            # A single shared connection keeps the in-memory schema alive
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        elif config.environment == "test":
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_pre_ping"] = True
            engine_kwargs["pool_recycle"] = 3600

        self.engine = create_async_engine(db_url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self._initialized = True
        logger.info("Database connection initialized")

    async def create_all(self):
        """Create tables for every mapped model (tests and local dev)"""
        if not self._initialized:
            await self.initialize()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections"""
        if self.engine:
            await self.engine.dispose()
            self._initialized = False
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a transactional session; commits on success, rolls back on error"""
        if not self._initialized:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database operation failed: {e}")
                raise PersistenceError(str(e)) from e
            except Exception:
                await session.rollback()
                raise


def to_record(record_cls: Type[RecordT], row, entity: Optional[str] = None) -> RecordT:
    """Convert an ORM row into a typed DTO, failing loudly on unexpected shapes"""
    if row is None:
        raise SchemaMismatchError(entity or record_cls.__name__, "row is missing")
    try:
        return record_cls.model_validate(row, from_attributes=True)
    except ValidationError as e:
        raise SchemaMismatchError(entity or record_cls.__name__, str(e)) from e


class BaseRepository:
    """Base repository class with common CRUD operations"""

    def __init__(self, session: AsyncSession, model_class):
        self.session = session
        self.model_class = model_class

    async def create(self, **kwargs):
        """Create a new record"""
        instance = self.model_class(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id):
        """Get record by primary key"""
        return await self.session.get(self.model_class, id)

    async def list_where(self, *criteria, order_by=None, limit: Optional[int] = None):
        """List records matching all criteria"""
        stmt = sa.select(self.model_class).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def first_where(self, *criteria, order_by=None):
        """First record matching all criteria, or None"""
        rows = await self.list_where(*criteria, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def update(self, id, **kwargs):
        """Update record by primary key"""
        instance = await self.get_by_id(id)
        if instance:
            for key, value in kwargs.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            await self.session.flush()
        return instance

    async def count_where(self, *criteria) -> int:
        """Count records matching all criteria"""
        stmt = sa.select(sa.func.count()).select_from(self.model_class).where(*criteria)
        result = await self.session.execute(stmt)
        return result.scalar() or 0


async def check_database_health(db_manager: DatabaseManager) -> dict:
    """Check database connection health"""
    try:
        async with db_manager.get_session() as session:
            result = await session.execute(sa.text("SELECT 1"))
            result.scalar()

            return {
                "status": "healthy",
                "message": "Database connection successful"
            }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}"
        }
