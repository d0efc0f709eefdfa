"""Exception types raised by chainorm."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Stable codes for configuration failures."""

    SQL_CLIENT_NOT_CONFIGURED = (
        1000,
        "Database client is not configured, check your database configuration",
    )
    FROM_NOT_SET = (1001, "Model class is not set, call from_() before executing")
    NOT_INITIALIZED = (1002, "chainorm is not initialized, call configure() first")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def message(self) -> str:
        return self.value[1]


class ChainOrmError(Exception):
    """Base class for all chainorm errors."""

    def __init__(self, message: str | None = None, *, code: ErrorCode | None = None) -> None:
        if message is None and code is not None:
            message = code.message
        super().__init__(message)
        self.code = code


class ConfigurationError(ChainOrmError):
    """Raised when a builder is used without the configuration it needs."""


class MetadataResolutionError(ChainOrmError, AttributeError):
    """Raised when a model field or column accessor cannot be resolved.

    This always points at a misconfigured model, never at bad data.
    """

    def __init__(self, model: Any, field: str | None, reason: str | None = None) -> None:
        model_name = getattr(model, "__name__", None) or str(model)
        message = f"Cannot resolve field {field!r} on {model_name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.model = model
        self.field = field


class StatementError(ChainOrmError, ValueError):
    """Raised when the accumulated builder state cannot form a valid statement."""


class DuplicateProjectionError(StatementError):
    """Raised when select() is called twice on one builder cycle."""


class UnsafeStatementError(StatementError):
    """Raised when an UPDATE or DELETE would run without a WHERE clause."""
