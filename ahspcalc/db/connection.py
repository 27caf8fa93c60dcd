"""Database connection and session management for AHSPCalc.

Provides async SQLAlchemy session management with connection pooling, and
the unit-of-work helper every service uses so that one logical operation
commits or rolls back as a whole.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from ahspcalc.config import get_config
from ahspcalc.core.errors import ConflictError
from ahspcalc.db.models import Base

# Global engine instance
_engine: AsyncEngine | None = None
_session_factory: sessionmaker | None = None


def get_engine() -> AsyncEngine:
    """Get or create singleton async engine.

    Returns:
        AsyncEngine: SQLAlchemy async engine

    Raises:
        KeyError: If database URL is not configured
    """
    global _engine

    if _engine is None:
        config = get_config()
        db_config = config.db

        engine_kwargs = {"echo": db_config.echo}

        # SQLite doesn't support connection pooling parameters
        if "sqlite" not in db_config.url.lower():
            engine_kwargs.update({
                "pool_size": db_config.pool_size,
                "max_overflow": db_config.pool_max_overflow,
                "pool_timeout": db_config.pool_timeout,
                "pool_pre_ping": True,  # Verify connections before using
                "pool_recycle": 3600,  # Recycle connections after 1 hour
            })

        _engine = create_async_engine(db_config.url, **engine_kwargs)

    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create session factory.

    Returns:
        sessionmaker: Session factory for creating AsyncSession instances
    """
    global _session_factory

    if _session_factory is None:
        engine = get_engine()
        _session_factory = create_session_factory(engine)

    return _session_factory


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    """Build a session factory bound to ``engine``.

    Objects stay readable after commit so services can return them.
    """
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: sessionmaker | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Run one unit of work: commit on success, roll back on any error.

    Unique-key violations surface as ConflictError so callers can branch on
    them (for copy-on-write, "retry the fast path").

    Usage:
        async with session_scope(factory) as session:
            session.add(row)
    """
    factory = session_factory or get_session_factory()
    session = factory()

    try:
        yield session
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError(f"Constraint violated: {e.orig}") from e
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session from the global factory (context manager).

    Usage:
        async with get_session() as session:
            result = await session.execute(query)

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    async with session_scope() as session:
        yield session


async def init_db(engine: AsyncEngine | None = None, drop: bool = False) -> None:
    """Initialize database (create all tables).

    Note: For production, use migrations instead.
    This is a convenience function for development/testing.
    """
    engine = engine or get_engine()

    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database engine and dispose connections.

    Call this on application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
