"""
Database Package

Database models, connection management, and data persistence layer.
"""
from src.offerlookup.db.base import Base
from src.offerlookup.db.session import (
    engine,
    SessionLocal,
    build_engine,
    build_session_factory,
    get_db_session,
    health_check,
    close_connections,
    create_all_tables,
    drop_all_tables,
)
from src.offerlookup.db.models import (
    Property,
    UploadJob,
    ActivityLog,
)
from src.offerlookup.db.repository import (
    BaseRepository,
    PropertyRepository,
    UploadJobRepository,
    ActivityLogRepository,
)

__all__ = [
    # Base
    "Base",
    # Session management
    "engine",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "get_db_session",
    "health_check",
    "close_connections",
    "create_all_tables",
    "drop_all_tables",
    # Models
    "Property",
    "UploadJob",
    "ActivityLog",
    # Repositories
    "BaseRepository",
    "PropertyRepository",
    "UploadJobRepository",
    "ActivityLogRepository",
]
