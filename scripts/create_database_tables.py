"""
Create Database Tables Using SQLAlchemy

This script creates all database tables directly using SQLAlchemy's create_all()
method. This bypasses Alembic migrations and is useful for local SQLite runs
and testing.
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.offerlookup.db.session import close_connections, create_all_tables, drop_all_tables
from src.offerlookup.db.base import Base
from src.offerlookup.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


async def run(reset: bool):
    if reset:
        logger.warning("dropping_existing_tables")
        await drop_all_tables()

    await create_all_tables()
    logger.info("tables_ready", tables=sorted(Base.metadata.tables.keys()))
    await close_connections()


def main():
    """Create all database tables."""
    parser = argparse.ArgumentParser(description="Create the offer lookup tables.")
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first.")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(run(args.reset))
    print("Database setup complete!")


if __name__ == "__main__":
    main()
