"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from chainorm import Config, QueryResult, SQLiteDialect, reset_config


class RecordingConnection:
    """Reserved connection that records batches instead of running them."""

    def __init__(self, database):
        self.database = database
        self.autocommit = None
        self.closed = False

    async def set_autocommit(self, enabled):
        self.autocommit = enabled

    async def execute_batch(self, sql, rows):
        if self.database.batch_error is not None:
            raise self.database.batch_error
        self.database.batches.append((sql, [list(row) for row in rows]))
        return len(rows)

    async def close(self):
        self.closed = True


class RecordingDatabase:
    """Database client that records every statement.

    Queued ``results`` are returned in order; ``errors`` maps a call index
    to the exception that call raises.
    """

    def __init__(self):
        self.calls = []
        self.results = []
        self.errors = {}
        self.batches = []
        self.connections = []
        self.acquire_error = None
        self.batch_error = None

    async def execute(self, sql, params=None):
        self.calls.append((sql, list(params or [])))
        error = self.errors.get(len(self.calls) - 1)
        if error is not None:
            raise error
        if self.results:
            return self.results.pop(0)
        return QueryResult(rowcount=1)

    async def acquire(self):
        if self.acquire_error is not None:
            raise self.acquire_error
        connection = RecordingConnection(self)
        self.connections.append(connection)
        return connection


@pytest.fixture(autouse=True)
def clean_config():
    """Every test starts without a process-wide configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def recording_db():
    return RecordingDatabase()


@pytest.fixture
def config(recording_db):
    """Configuration dispatching to the recording database."""
    return Config(recording_db, dialect=SQLiteDialect())


@pytest_asyncio.fixture
async def sqlite_pool():
    """Create an in-memory SQLite connection pool."""
    from chainorm import create_pool

    pool = await create_pool("sqlite::memory:")
    yield pool
    await pool.close()


@pytest_asyncio.fixture
async def sqlite_config(sqlite_pool):
    """Configuration backed by a real SQLite database with a user table."""
    await sqlite_pool.execute(
        """
        CREATE TABLE user (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL,
            password TEXT,
            age INTEGER
        )
        """
    )
    return Config(sqlite_pool, dialect=SQLiteDialect())
