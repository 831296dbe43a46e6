"""
Database Session Management

Provides the async engine, connection pooling and session management.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event, exc, pool, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import settings
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work on SQLite.

    The sqlite driver otherwise manages transactions on its own and
    breaks nested transactions.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str = None) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Args:
        database_url: SQLAlchemy URL, defaults to settings.database_url

    Returns:
        Configured AsyncEngine
    """
    database_url = database_url or settings.database_url

    if database_url.startswith("sqlite"):
        # File-backed SQLite for local runs and tests; no pooling so
        # connections never cross event loops.
        engine = create_async_engine(
            database_url,
            poolclass=pool.NullPool,
            echo=settings.database_echo,
        )
        _enable_sqlite_savepoints(engine)
    else:
        engine = create_async_engine(
            database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
            echo=settings.database_echo,
        )

    @event.listens_for(engine.sync_engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        logger.debug("database_connection_established")

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


# Create database engine with connection pooling
engine = build_engine()

# Create session factory
SessionLocal = build_session_factory(engine)


@asynccontextmanager
async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Get database session with automatic commit/rollback.

    Usage:
        async with get_db_session() as session:
            result = await session.execute(select(Model))

    Yields:
        Database session

    Raises:
        Exception: Re-raises any exception after rollback
    """
    session = (session_factory or SessionLocal)()
    try:
        logger.debug("database_session_created")
        yield session
        await session.commit()
        logger.debug("database_session_committed")
    except exc.SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "database_session_rollback",
            error=str(e),
            error_type=type(e).__name__
        )
        raise
    except Exception as e:
        await session.rollback()
        logger.error(
            "database_session_error",
            error=str(e),
            error_type=type(e).__name__
        )
        raise
    finally:
        await session.close()
        logger.debug("database_session_closed")


async def health_check(session_factory: async_sessionmaker[AsyncSession] = None) -> bool:
    """
    Check database connection health.

    Returns:
        True if database is accessible, False otherwise
    """
    try:
        async with get_db_session(session_factory) as session:
            await session.execute(text("SELECT 1"))
            logger.info("database_health_check_success")
            return True
    except exc.SQLAlchemyError as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        return False


async def close_connections(target: AsyncEngine = None):
    """
    Close all database connections and dispose of the engine.

    Should be called on application shutdown.
    """
    logger.info("closing_database_connections")
    await (target or engine).dispose()
    logger.info("database_connections_closed")


async def create_all_tables(target: AsyncEngine = None):
    """
    Create all database tables defined in models.

    WARNING: Use Alembic migrations instead in production.
    This is only for testing and initial setup.
    """
    from src.offerlookup.db.base import Base, import_all_models

    logger.info("creating_database_tables")

    import_all_models()

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("database_tables_created")


async def drop_all_tables(target: AsyncEngine = None):
    """
    Drop all database tables.

    WARNING: This will delete all data! Only use in development/testing.
    """
    from src.offerlookup.db.base import Base, import_all_models

    logger.warning("dropping_all_database_tables")

    import_all_models()

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    logger.warning("all_database_tables_dropped")
