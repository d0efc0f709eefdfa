"""Column and field definitions for models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# Type alias for Mapped - indicates a database column
class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped column.

    Example:
        >>> class User(Base):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     username: Mapped[str]
        ...     age: Mapped[int | None]
    """

    pass


@dataclass(eq=False)
class ColumnInfo:
    """Stores metadata about a model field and the column behind it.

    Accessed on the model class (``User.username``) a ColumnInfo is the typed
    column accessor the builders accept in place of a column name string.
    Each model class owns one ColumnInfo per field, so an accessor compares
    and hashes by identity.
    """

    name: str | None = None
    python_type: type | None = None
    primary_key: bool = False
    nullable: bool = False
    default: Any = None
    column_name: str | None = None
    ignore: bool = False
    model: type | None = None

    @property
    def column(self) -> str | None:
        """The database column name: explicit override, else the field name."""
        return self.column_name or self.name

    def bind(self, model: type, name: str) -> ColumnInfo:
        """Return a copy of this column bound to a model class and field."""
        return ColumnInfo(
            name=name,
            python_type=self.python_type,
            primary_key=self.primary_key,
            nullable=self.nullable,
            default=self.default,
            column_name=self.column_name,
            ignore=self.ignore,
            model=model,
        )

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        # Instance values live in __dict__ and shadow this descriptor,
        # so reaching here means the field was never assigned.
        return None

    def __repr__(self) -> str:
        owner = self.model.__name__ if self.model is not None else "?"
        return f"<Column {owner}.{self.name}>"


def mapped_column(
    *,
    primary_key: bool = False,
    nullable: bool = False,
    default: Any = None,
    name: str | None = None,
    ignore: bool = False,
) -> Any:
    """Define a database column.

    Args:
        primary_key: Whether this is the primary key column
        nullable: Whether NULL values are allowed
        default: Default value (can be callable)
        name: Column name in the table when it differs from the field name
        ignore: Keep the field on the model but never write it to SQL

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> id: Mapped[int] = mapped_column(primary_key=True)
        >>> username: Mapped[str] = mapped_column(name="user_name")
        >>> cached_score: Mapped[float] = mapped_column(ignore=True)
    """
    # Primary keys are not nullable
    if primary_key:
        nullable = False

    return ColumnInfo(
        primary_key=primary_key,
        nullable=nullable,
        default=default,
        column_name=name,
        ignore=ignore,
    )
