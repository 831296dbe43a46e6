"""
Shared test fixtures.

Tests run against a throwaway SQLite file per test and never touch Redis.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./offerlookup-test.db")
os.environ["REDIS_URL"] = ""

import pytest
import pytest_asyncio

from src.offerlookup.db.session import (
    build_engine,
    build_session_factory,
    create_all_tables,
)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def test_engine(database_url):
    """File-backed SQLite engine with all tables created."""
    engine = build_engine(database_url)
    await create_all_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


PROPERTY_HEADER = [
    "firstName",
    "lastName",
    "propertyAddress",
    "propertyCity",
    "propertyState",
    "propertyZip",
    "offer",
]


def make_row(index: int, offer="1000", **overrides):
    """A distinct, valid property row keyed by index."""
    row = {
        "firstName": f"Owner{index}",
        "lastName": "Smith",
        "propertyAddress": f"{index} Main St",
        "propertyCity": "Austin",
        "propertyState": "TX",
        "propertyZip": "78701",
        "offer": offer,
    }
    row.update(overrides)
    return row


def write_csv(path, rows, header=None):
    """Write rows (dicts) as a CSV file with a header line."""
    header = header or PROPERTY_HEADER
    lines = [",".join(header)]
    for row in rows:
        lines.append(",".join(str(row.get(column, "")) for column in header))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def row_factory():
    return make_row


@pytest.fixture
def csv_file(tmp_path):
    """Factory writing rows to a CSV file under tmp_path."""

    def _write(rows, name="offers.csv", header=None):
        return write_csv(tmp_path / name, rows, header)

    return _write
