"""chainorm - a fluent async query builder mapping models to SQL rows."""

from __future__ import annotations

from chainorm.base import Base
from chainorm.config import Config, configure, get_config, reset_config
from chainorm.dialect import (
    Dialect,
    MySQLDialect,
    OracleDialect,
    PostgreSQLDialect,
    SQLiteDialect,
    SQLParams,
    SQLServerDialect,
    get_dialect,
)
from chainorm.errors import (
    ChainOrmError,
    ConfigurationError,
    DuplicateProjectionError,
    ErrorCode,
    MetadataResolutionError,
    StatementError,
    UnsafeStatementError,
)
from chainorm.fields import ColumnInfo, Mapped, mapped_column
from chainorm.metadata import MetadataCache
from chainorm.mutation import MutationBuilder, delete, save, save_batch, update
from chainorm.page import Page, PageRow
from chainorm.pool import Connection, ConnectionPool, Database, QueryResult, create_pool
from chainorm.query import OrderBy, QueryBuilder, ResultList, select

__version__ = "0.1.0"

__all__ = [
    # Core
    "create_engine",
    "create_pool",
    "configure",
    "get_config",
    "reset_config",
    "Config",
    "ConnectionPool",
    "Connection",
    "Database",
    "QueryResult",
    # Model definition
    "Base",
    "Mapped",
    "mapped_column",
    "ColumnInfo",
    "MetadataCache",
    # Query building
    "select",
    "update",
    "delete",
    "save",
    "save_batch",
    "QueryBuilder",
    "ResultList",
    "MutationBuilder",
    "OrderBy",
    "Page",
    "PageRow",
    # Dialects
    "Dialect",
    "SQLParams",
    "MySQLDialect",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "SQLServerDialect",
    "OracleDialect",
    "get_dialect",
    # Errors
    "ChainOrmError",
    "ConfigurationError",
    "DuplicateProjectionError",
    "ErrorCode",
    "MetadataResolutionError",
    "StatementError",
    "UnsafeStatementError",
]


async def create_engine(url: str, *, table_prefix: str | None = None, use_sql_limit: bool = True) -> Config:
    """Open a database and install it as the process-wide configuration.

    Args:
        url: Database connection URL.
            - SQLite: sqlite:///path/to/db.sqlite or sqlite::memory:
        table_prefix: Prefix for table names derived from class names.
        use_sql_limit: Fetch single rows with ``LIMIT ?``.

    Returns:
        The installed Config.

    Example:
        >>> config = await create_engine("sqlite:///app.db", table_prefix="t_")
    """
    pool = await create_pool(url)
    return configure(
        pool,
        dialect=SQLiteDialect(),
        table_prefix=table_prefix,
        use_sql_limit=use_sql_limit,
    )
