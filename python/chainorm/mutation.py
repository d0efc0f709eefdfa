"""Mutation builder for INSERT, UPDATE and DELETE statements."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from chainorm.config import Config, get_config
from chainorm.dialect import CONDITION_TOKEN, SQLParams, model_values
from chainorm.errors import ConfigurationError, ErrorCode, StatementError, UnsafeStatementError
from chainorm.fields import ColumnInfo

if TYPE_CHECKING:
    from chainorm.base import Base
    from chainorm.pool import QueryResult

logger = logging.getLogger(__name__)

_MISSING: Any = object()

Column = str | ColumnInfo


class MutationBuilder[T: "Base"]:
    """Fluent INSERT / UPDATE / DELETE builder bound to one model class.

    ``set()`` calls accumulate the SET map and ``where()`` calls the
    condition fragment. Every terminal call renders through the configured
    dialect, runs the statement and clears the accumulated state, whether the
    statement succeeded or not.

    Example:
        >>> await update(User).set(User.password, "new").where(User.id, 1).update()
        >>> await delete(User).where("age < ?", 18).delete()
        >>> key = await MutationBuilder(User).save(User(username="bob"))
    """

    def __init__(self, model: type[T] | None = None, *, config: Config | None = None) -> None:
        self._config = config
        self.model_class: type[T] | None = None
        self.table_name: str | None = None
        self.primary_key_column: str | None = None
        self._reset()
        if model is not None:
            self.from_(model)

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = get_config()
        return self._config

    def from_(self, model: type[T]) -> MutationBuilder[T]:
        """Bind the model class whose table is written."""
        identity = self.config.metadata.identity(model)
        self.model_class = model
        self.table_name = identity.table_name
        self.primary_key_column = identity.pk_column
        return self

    # ========== Chain ==========

    def set(self, column: Column, value: Any) -> MutationBuilder[T]:
        """Add ``column = ?`` to the SET list."""
        self._update_columns[self._column(column)] = value
        return self

    def where(self, statement: Column, value: Any) -> MutationBuilder[T]:
        """Add an AND condition.

        ``where("age > ?", 18)`` uses the statement as is; ``where("age", 18)``
        and ``where(User.age, 18)`` become ``age = ?``.
        """
        if isinstance(statement, ColumnInfo):
            statement = f"{self._column(statement)} = ?"
        elif "?" not in statement:
            statement = f"{statement} = ?"
        self._condition_sql += f"{CONDITION_TOKEN}{statement}"
        self._param_values.append(value)
        return self

    def and_(self, statement: Column, value: Any) -> MutationBuilder[T]:
        """Alias of ``where``."""
        return self.where(statement, value)

    # ========== Terminal operations ==========

    async def save(self, model: T) -> Any:
        """Insert a model and return the generated primary key.

        Every non-ignored field is written, None values as NULL. When the
        model's primary key field is empty the generated key is stored on it.
        """
        try:
            self._bind_model(model)
            params = self._sql_params(model=model)
            sql = self.config.dialect.insert(params)
            values = [value for _, value in model_values(params, skip_null=False)]
            result = await self._execute(sql, values)
            key = result.last_insert_id
            self._write_back_key(model, key)
            return key
        finally:
            self._reset()

    async def update(self) -> int:
        """Run ``UPDATE ... SET <set columns> [WHERE <conditions>]``.

        Returns the number of affected rows.
        """
        try:
            self._before_check()
            if not self._update_columns:
                raise StatementError("update() requires at least one set() column")
            sql = self.config.dialect.update(self._sql_params(update_columns=dict(self._update_columns)))
            values = [*self._update_columns.values(), *self._param_values]
            return await self._execute_update(sql, values)
        finally:
            self._reset()

    async def update_by_model(self, model: T, *, allow_unconditional: bool = False) -> int:
        """Update from a model's non-null fields, keyed by its primary key.

        The primary key is taken out of the SET list and becomes the last
        WHERE condition. A model without a primary key value would update
        every row, which requires ``allow_unconditional=True`` unless other
        conditions were added with ``where()``.
        """
        try:
            self._bind_model(model)
            pk_field = self.config.metadata.resolve_pk_field(self.model_class)  # type: ignore[arg-type]
            pk_value = getattr(model, pk_field, None)
            if pk_value is not None:
                self.where(self.primary_key_column, pk_value)  # type: ignore[arg-type]
            elif not self._condition_sql and not allow_unconditional:
                raise UnsafeStatementError(
                    f"{type(model).__name__} has no primary key value; "
                    "pass allow_unconditional=True to update every row"
                )
            params = self._sql_params(model=model, skip_fields=frozenset({pk_field}))
            sql = self.config.dialect.update(params)
            values = [value for _, value in model_values(params, skip_null=True)]
            return await self._execute_update(sql, values + self._param_values)
        finally:
            self._reset()

    async def update_by_id(self, model_or_id: Any, id: Any = _MISSING) -> int:
        """Update the row with the given primary key.

        ``update_by_id(model, 1)`` writes the model's non-null fields;
        ``set(...).update_by_id(1)`` writes the accumulated SET columns.
        """
        if id is _MISSING:
            self._before_check()
            self.where(self.primary_key_column, model_or_id)  # type: ignore[arg-type]
            return await self.update()
        model = model_or_id
        try:
            self._bind_model(model)
            self.where(self.primary_key_column, id)  # type: ignore[arg-type]
            params = self._sql_params(model=model)
            sql = self.config.dialect.update(params)
            values = [value for _, value in model_values(params, skip_null=True)]
            return await self._execute_update(sql, values + self._param_values)
        finally:
            self._reset()

    async def delete_by_model(self, model: T, *, allow_unconditional: bool = False) -> int:
        """Delete rows matching the explicit conditions, or every non-null model field."""
        try:
            self._bind_model(model)
            params = self._sql_params(model=model)
            if self._condition_sql:
                values = list(self._param_values)
            else:
                values = [value for _, value in model_values(params, skip_null=True)]
                if not values and not allow_unconditional:
                    raise UnsafeStatementError(
                        f"{type(model).__name__} has no field values to match; "
                        "pass allow_unconditional=True to delete every row"
                    )
            sql = self.config.dialect.delete(params)
            return await self._execute_update(sql, values)
        finally:
            self._reset()

    async def delete(self, *, allow_unconditional: bool = False) -> int:
        """Delete the rows matching the ``where()`` conditions."""
        try:
            self._before_check()
            if not self._condition_sql and not allow_unconditional:
                raise UnsafeStatementError(
                    "delete() without conditions; pass allow_unconditional=True to delete every row"
                )
            sql = self.config.dialect.delete(self._sql_params())
            return await self._execute_update(sql, list(self._param_values))
        finally:
            self._reset()

    async def delete_by_id(self, id: Any) -> int:
        """Delete the row with the given primary key."""
        self._before_check()
        self.where(self.primary_key_column, id)  # type: ignore[arg-type]
        return await self.delete()

    async def save_batch(self, models: Sequence[T], model_type: type[T] | None = None) -> int:
        """Insert many models on one reserved connection.

        The INSERT is rendered once from the first model's class; every model
        contributes one parameter row. The connection is released whether the
        batch succeeds or fails; if it cannot be acquired nothing is executed.
        Returns the total number of inserted rows.
        """
        try:
            if not models:
                return 0
            self.from_(model_type or type(models[0]))
            template = self._sql_params(model=models[0])
            sql = self.config.dialect.insert(template)
            rows = [
                [value for _, value in model_values(replace(template, model=model), skip_null=False)]
                for model in models
            ]
            database = self.config.require_database()
            connection = await database.acquire()
            try:
                await connection.set_autocommit(True)
                logger.debug("Execute batch SQL: %s, rows: %d", sql, len(rows))
                return await connection.execute_batch(sql, rows)
            except Exception:
                logger.error("Batch insert into %s failed", self.table_name, exc_info=True)
                raise
            finally:
                await connection.close()
        finally:
            self._reset()

    # ========== Internal Methods ==========

    def _sql_params(self, **overrides: Any) -> SQLParams:
        values: dict[str, Any] = {
            "table_name": self.table_name or "",
            "pk_name": self.primary_key_column,
            "model_class": self.model_class,
            "fields": tuple(self.config.metadata.fields(self.model_class)) if self.model_class else (),
            "condition_sql": self._condition_sql,
        }
        values.update(overrides)
        return SQLParams(**values)

    async def _execute(self, sql: str, params: list[Any]) -> QueryResult:
        database = self.config.require_database()
        logger.debug("Execute SQL: %s, params: %s", sql, params)
        return await database.execute(sql, params)

    async def _execute_update(self, sql: str, params: list[Any]) -> int:
        result = await self._execute(sql, params)
        return result.rowcount

    def _bind_model(self, model: T) -> None:
        if self.model_class is None:
            self.from_(type(model))

    def _write_back_key(self, model: T, key: Any) -> None:
        if key is None or self.model_class is None:
            return
        metadata = self.config.metadata
        pk_field = metadata.resolve_pk_field(self.model_class)
        if pk_field not in getattr(self.model_class, "__columns__", {}):
            return
        handle = metadata.resolve_field_handle(self.model_class, pk_field)
        if handle.get(model) is None:
            handle.set(model, key)

    def _column(self, column: Column) -> str:
        return self.config.metadata.column_name(column)

    def _before_check(self) -> None:
        if self.model_class is None:
            self._reset()
            raise ConfigurationError(code=ErrorCode.FROM_NOT_SET)

    def _reset(self) -> None:
        """Clear all per-statement state so the builder can start over."""
        self._condition_sql = ""
        self._param_values: list[Any] = []
        self._update_columns: dict[str, Any] = {}


def update[T: "Base"](model: type[T], *, config: Config | None = None) -> MutationBuilder[T]:
    """Open an UPDATE on a model's table.

    Example:
        >>> await update(User).set("age", 30).where(User.username, "alice").update()
    """
    return MutationBuilder(model, config=config)


def delete[T: "Base"](model: type[T], *, config: Config | None = None) -> MutationBuilder[T]:
    """Open a DELETE on a model's table.

    Example:
        >>> await delete(User).where(User.id, 3).delete()
    """
    return MutationBuilder(model, config=config)


async def save[T: "Base"](model: T, *, config: Config | None = None) -> Any:
    """Insert one model and return its generated key."""
    return await MutationBuilder(type(model), config=config).save(model)


async def save_batch[T: "Base"](
    models: Sequence[T],
    model_type: type[T] | None = None,
    *,
    config: Config | None = None,
) -> int:
    """Insert many models on one reserved connection."""
    return await MutationBuilder(model_type, config=config).save_batch(models, model_type)
