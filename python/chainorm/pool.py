"""Database client interface and the aiosqlite connection pool.

The builders only depend on the small ``Database`` protocol: run one
parameterized statement, or reserve a connection for a batch. Any async
driver can be plugged in by implementing it; ``ConnectionPool`` is the
bundled SQLite implementation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import aiosqlite

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Outcome of one statement: rows for queries, counts and keys for writes."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    last_insert_id: Any = None

    def all(self) -> list[dict[str, Any]]:
        return self.rows

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """First column of the first row, or None."""
        row = self.first()
        if not row:
            return None
        return next(iter(row.values()))


@runtime_checkable
class Connection(Protocol):
    """A connection reserved from a database for several statements."""

    async def set_autocommit(self, enabled: bool) -> None: ...

    async def execute_batch(self, sql: str, rows: Sequence[Sequence[Any]]) -> int: ...

    async def close(self) -> None: ...


@runtime_checkable
class Database(Protocol):
    """The asynchronous database client the builders dispatch to."""

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult: ...

    async def acquire(self) -> Connection: ...


class ConnectionPool:
    """SQLite database client backed by aiosqlite.

    SQLite allows one writer at a time, so the pool shares a single
    connection and serializes statements with a lock. A reserved connection
    keeps the lock until it is closed.

    Example:
        >>> pool = await create_pool("sqlite::memory:")
        >>> result = await pool.execute("SELECT 1 AS one")
        >>> result.scalar()
        1
    """

    def __init__(self, conn: aiosqlite.Connection, url: str) -> None:
        self._conn = conn
        self._conn.row_factory = aiosqlite.Row
        self._lock = asyncio.Lock()
        self._closed = False
        self.url = url

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run one statement and commit it."""
        self._check_open()
        async with self._lock:
            return await self._execute(sql, params)

    async def acquire(self) -> PooledConnection:
        """Reserve the connection until the returned handle is closed."""
        self._check_open()
        await self._lock.acquire()
        return PooledConnection(self)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._conn.close()
        logger.debug("Closed connection pool for %s", self.url)

    async def _execute(self, sql: str, params: Sequence[Any] | None, *, commit: bool = True) -> QueryResult:
        async with self._conn.execute(sql, list(params or [])) as cursor:
            rows = [dict(row) for row in await cursor.fetchall()]
            result = QueryResult(rows=rows, rowcount=cursor.rowcount, last_insert_id=cursor.lastrowid)
        if commit and self._conn.in_transaction:
            await self._conn.commit()
        return result

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Connection pool for {self.url} is closed")


class PooledConnection:
    """A reserved connection handed out by ``ConnectionPool.acquire``."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool
        self._autocommit = True
        self._released = False

    async def set_autocommit(self, enabled: bool) -> None:
        self._check_reserved()
        self._autocommit = enabled

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        self._check_reserved()
        return await self._pool._execute(sql, params, commit=self._autocommit)

    async def execute_batch(self, sql: str, rows: Sequence[Sequence[Any]]) -> int:
        """Run one statement once per parameter row and return the affected row total."""
        self._check_reserved()
        conn = self._pool._conn
        cursor = await conn.executemany(sql, [list(row) for row in rows])
        try:
            affected = cursor.rowcount
        finally:
            await cursor.close()
        if self._autocommit and conn.in_transaction:
            await conn.commit()
        return affected

    async def commit(self) -> None:
        self._check_reserved()
        await self._pool._conn.commit()

    async def rollback(self) -> None:
        self._check_reserved()
        await self._pool._conn.rollback()

    async def close(self) -> None:
        """Release the reservation. Uncommitted work is rolled back."""
        if self._released:
            return
        self._released = True
        try:
            if self._pool._conn.in_transaction:
                await self._pool._conn.rollback()
        finally:
            self._pool._lock.release()

    def _check_reserved(self) -> None:
        if self._released:
            raise RuntimeError("Connection has already been released")


def _sqlite_path(url: str) -> str:
    """Map ``sqlite::memory:`` / ``sqlite:///path`` URLs to an aiosqlite path."""
    if url in ("sqlite::memory:", "sqlite://:memory:", "sqlite:///:memory:", ":memory:"):
        return ":memory:"
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    if url.startswith("sqlite://"):
        return url[len("sqlite://"):]
    raise ValueError(f"Unsupported database URL: {url!r} (only sqlite URLs are supported)")


async def create_pool(url: str) -> ConnectionPool:
    """Open a connection pool for a SQLite URL."""
    conn = await aiosqlite.connect(_sqlite_path(url))
    logger.debug("Opened connection pool for %s", url)
    return ConnectionPool(conn, url)
