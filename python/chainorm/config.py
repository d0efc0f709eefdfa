"""Process-wide configuration consumed by the builders."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from chainorm.dialect import Dialect, MySQLDialect
from chainorm.errors import ConfigurationError, ErrorCode
from chainorm.metadata import MetadataCache

if TYPE_CHECKING:
    from chainorm.pool import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    """Everything a builder needs besides its own chain state.

    Example:
        >>> pool = await create_pool("sqlite::memory:")
        >>> config = Config(pool, dialect=SQLiteDialect(), table_prefix="t_")
        >>> rows = await QueryBuilder(User, config=config).all()
    """

    database: Database | None
    dialect: Dialect = field(default_factory=MySQLDialect)
    table_prefix: str | None = None
    use_sql_limit: bool = True
    metadata: MetadataCache = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MetadataCache(self.table_prefix))

    def require_database(self) -> Database:
        """Return the configured database or fail fast."""
        if self.database is None:
            raise ConfigurationError(code=ErrorCode.SQL_CLIENT_NOT_CONFIGURED)
        return self.database

    def with_options(self, **changes: Any) -> Config:
        """Return a copy with some options replaced."""
        return replace(self, **changes)


_config: Config | None = None


def configure(
    database: Database | None,
    *,
    dialect: Dialect | None = None,
    table_prefix: str | None = None,
    use_sql_limit: bool = True,
) -> Config:
    """Install the process-wide configuration.

    Call once during application startup, before the first builder runs.

    Example:
        >>> pool = await create_engine("sqlite:///app.db")
        >>> configure(pool, dialect=SQLiteDialect())
    """
    global _config
    if _config is not None:
        logger.warning("Replacing existing chainorm configuration")
    _config = Config(
        database,
        dialect=dialect if dialect is not None else MySQLDialect(),
        table_prefix=table_prefix,
        use_sql_limit=use_sql_limit,
    )
    return _config


def get_config() -> Config:
    """Return the process-wide configuration."""
    if _config is None:
        raise ConfigurationError(code=ErrorCode.NOT_INITIALIZED)
    return _config


def reset_config() -> None:
    """Drop the process-wide configuration (mainly for tests)."""
    global _config
    _config = None
