"""
FastAPI Dependencies

Provides dependency injection for database sessions, ingestion services
and settings. Tests override get_session_factory and get_notifier.
"""
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.offerlookup.db.session import SessionLocal
from src.offerlookup.ingestion.job_tracker import JobTracker
from src.offerlookup.ingestion.progress import ProgressNotifier, progress_notifier


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return SessionLocal


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency.

    Yields:
        SQLAlchemy async session
    """
    async with session_factory() as session:
        yield session


def get_notifier() -> ProgressNotifier:
    return progress_notifier


def get_job_tracker(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JobTracker:
    return JobTracker(session_factory)


def get_settings():
    """
    Settings dependency.

    Returns:
        Application settings
    """
    return settings
