"""Model metadata resolution.

The cache answers three questions about a model class: which table it maps
to, which column is its primary key, and which column a typed accessor such
as ``User.username`` refers to. Every answer is computed once and memoized.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Any, NamedTuple

from chainorm.errors import MetadataResolutionError
from chainorm.fields import ColumnInfo

DEFAULT_PK = "id"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake_case(name: str) -> str:
    """Convert a CamelCase class name to snake_case.

    Example:
        >>> to_snake_case("UserAccount")
        'user_account'
        >>> to_snake_case("HTTPLog")
        'http_log'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def to_table_name(class_name: str, prefix: str | None = None) -> str:
    """Derive a table name from a class name and an optional global prefix."""
    table = to_snake_case(class_name)
    return f"{prefix}{table}" if prefix else table


class ModelIdentity(NamedTuple):
    """Table-level identity of a model class."""

    table_name: str
    pk_column: str
    pk_field: str


@dataclass(frozen=True)
class FieldHandle:
    """Reads and writes one field on any instance of one model class."""

    model: type
    name: str

    def get(self, instance: Any) -> Any:
        return getattr(instance, self.name, None)

    def set(self, instance: Any, value: Any) -> None:
        setattr(instance, self.name, value)


class MetadataCache:
    """Memoizing resolver for model tables, primary keys and columns.

    One cache belongs to one configuration because derived table names depend
    on the configured table prefix.
    """

    def __init__(self, table_prefix: str | None = None) -> None:
        self.table_prefix = table_prefix
        self._lock = threading.Lock()
        self._table_names: dict[type, str] = {}
        self._pk_columns: dict[type, str] = {}
        self._pk_fields: dict[type, str] = {}
        self._accessor_columns: dict[ColumnInfo, str] = {}
        self._accessor_fields: dict[ColumnInfo, str] = {}
        self._field_handles: dict[str, FieldHandle] = {}

    # ========== Model identity ==========

    def resolve_table(self, model: type) -> str:
        """Return the table name for a model class.

        An explicit ``__tablename__`` wins; otherwise the snake-cased class
        name is used, prefixed by the configured table prefix.
        """
        table = self._table_names.get(model)
        if table is not None:
            return table
        explicit = getattr(model, "__tablename__", None)
        table = explicit if explicit else to_table_name(model.__name__, self.table_prefix)
        return self._remember(self._table_names, model, table)

    def resolve_pk_column(self, model: type) -> str:
        """Return the primary key column name for a model class."""
        pk_column = self._pk_columns.get(model)
        if pk_column is not None:
            return pk_column
        columns: dict[str, ColumnInfo] = getattr(model, "__columns__", {})
        pk_field = getattr(model, "__primary_key__", None)
        if pk_field is not None and pk_field in columns:
            pk_column = columns[pk_field].column or pk_field
        else:
            pk_column = getattr(model, "__pk__", None) or DEFAULT_PK
        return self._remember(self._pk_columns, model, pk_column)

    def resolve_pk_field(self, model: type) -> str:
        """Return the name of the field holding the primary key."""
        pk_field = self._pk_fields.get(model)
        if pk_field is not None:
            return pk_field
        pk_column = self.resolve_pk_column(model)
        columns: dict[str, ColumnInfo] = getattr(model, "__columns__", {})
        pk_field = next(
            (name for name, col in columns.items() if col.column == pk_column),
            pk_column,
        )
        return self._remember(self._pk_fields, model, pk_field)

    def identity(self, model: type) -> ModelIdentity:
        return ModelIdentity(
            self.resolve_table(model),
            self.resolve_pk_column(model),
            self.resolve_pk_field(model),
        )

    # ========== Accessors ==========

    def resolve_column(self, accessor: ColumnInfo) -> str:
        """Return the column name behind a typed accessor such as ``User.name``."""
        name = self._accessor_columns.get(accessor)
        if name is not None:
            return name
        field_name = self.resolve_field(accessor)
        declared = self._declared_column(accessor.model, field_name)
        return self._remember(self._accessor_columns, accessor, declared.column or field_name)

    def resolve_field(self, accessor: ColumnInfo) -> str:
        """Return the field name behind a typed accessor."""
        name = self._accessor_fields.get(accessor)
        if name is not None:
            return name
        if not isinstance(accessor, ColumnInfo) or accessor.model is None or not accessor.name:
            raise MetadataResolutionError(
                getattr(accessor, "model", None),
                getattr(accessor, "name", None),
                "accessor is not bound to a model class",
            )
        return self._remember(self._accessor_fields, accessor, accessor.name)

    def column_name(self, column: str | ColumnInfo) -> str:
        """Accept either a column name or an accessor and return the column name."""
        if isinstance(column, str):
            return column
        if isinstance(column, ColumnInfo):
            return self.resolve_column(column)
        raise MetadataResolutionError(None, repr(column), "expected a column name or accessor")

    # ========== Field handles ==========

    def resolve_field_handle(self, model: type, field_name: str) -> FieldHandle:
        """Return the cached handle used to read and write a model field."""
        key = f"{model.__module__}.{model.__qualname__}:{field_name}"
        handle = self._field_handles.get(key)
        if handle is not None:
            return handle
        self._declared_column(model, field_name)
        return self._remember(self._field_handles, key, FieldHandle(model, field_name))

    def fields(self, model: type, *, include_ignored: bool = False) -> list[tuple[ColumnInfo, FieldHandle]]:
        """Return ``(column, handle)`` for every field of a model in declaration order."""
        columns: dict[str, ColumnInfo] = getattr(model, "__columns__", {})
        return [
            (column, self.resolve_field_handle(model, name))
            for name, column in columns.items()
            if include_ignored or not column.ignore
        ]

    def clear(self) -> None:
        with self._lock:
            self._table_names.clear()
            self._pk_columns.clear()
            self._pk_fields.clear()
            self._accessor_columns.clear()
            self._accessor_fields.clear()
            self._field_handles.clear()

    # ========== Internal Methods ==========

    def _declared_column(self, model: type | None, field_name: str) -> ColumnInfo:
        columns: dict[str, ColumnInfo] | None = getattr(model, "__columns__", None)
        if columns is None:
            raise MetadataResolutionError(model, field_name, "not a model class")
        column = columns.get(field_name)
        if column is None:
            raise MetadataResolutionError(model, field_name, "no such field")
        return column

    def _remember(self, cache: dict[Any, Any], key: Any, value: Any) -> Any:
        # First writer wins so every caller sees the same value.
        with self._lock:
            return cache.setdefault(key, value)
