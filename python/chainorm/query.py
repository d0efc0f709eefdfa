"""Query builder for SELECT statements."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from chainorm.config import Config, get_config
from chainorm.dialect import CONDITION_TOKEN, SQLParams
from chainorm.errors import ConfigurationError, DuplicateProjectionError, ErrorCode
from chainorm.fields import ColumnInfo
from chainorm.page import Page, PageRow

if TYPE_CHECKING:
    from chainorm.base import Base
    from chainorm.pool import QueryResult

logger = logging.getLogger(__name__)

_MISSING: Any = object()

Column = str | ColumnInfo


class OrderBy(StrEnum):
    ASC = "ASC"
    DESC = "DESC"


class QueryBuilder[T: "Base"]:
    """Fluent SELECT builder bound to one model class.

    Chained calls accumulate conditions, ordering and projection; a terminal
    call (``one``, ``all``, ``count``, ``page``, ``by_id``, ``by_ids``)
    renders the statement through the configured dialect, runs it and then
    clears the accumulated state, whether the statement succeeded or not.

    Conditions are kept as one fragment in which every predicate starts with
    `` AND `` (or `` OR (``); parameters are kept in the order predicates
    were added.

    Example:
        >>> await select().from_(User).where(User.age).gt(18).order("id desc").all()
        >>> await select("username, age").from_(User).like(User.username, "jo%").one()
        >>> await User.query().between(User.age, 18, 30).page(2, 10)
    """

    def __init__(
        self,
        model: type[T] | None = None,
        *,
        config: Config | None = None,
    ) -> None:
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

    def from_(self, model: type[T]) -> QueryBuilder[T]:
        """Bind the model class whose table is queried."""
        identity = self.config.metadata.identity(model)
        self.model_class = model
        self.table_name = identity.table_name
        self.primary_key_column = identity.pk_column
        return self

    # ========== Projection ==========

    def select(self, *columns: Column) -> QueryBuilder[T]:
        """Restrict the selected columns. Allowed once per statement.

        Example:
            >>> User.query().select(User.id, User.username)
            >>> User.query().select("id, username")
        """
        if self._select_columns is not None:
            raise DuplicateProjectionError("select() can only be called once per statement")
        self._select_columns = ", ".join(self._column(c) for c in columns)
        return self

    def exclude(self, *columns: Column) -> QueryBuilder[T]:
        """Select every column except the given ones."""
        self._excluded_columns.extend(self._column(c) for c in columns)
        return self

    # ========== Conditions ==========

    def where(self, statement: Column | Base, value: Any = _MISSING) -> QueryBuilder[T]:
        """Add an AND condition.

        ``where("age > ?", 18)`` uses the statement as is; ``where("age", 18)``
        and ``where(User.age, 18)`` become ``age = ?``. Without a value the
        column or statement is appended alone, ready for an operator such as
        ``gt()`` or ``like()``. Passing a model instance adds an equality
        condition for each of its non-empty fields.
        """
        from chainorm.base import Base

        if isinstance(statement, Base):
            return self._where_model(statement)
        if isinstance(statement, ColumnInfo):
            column = self._column(statement)
            if value is _MISSING:
                self._condition_sql += f"{CONDITION_TOKEN}{column}"
                self._pending_column = True
                return self
            return self._append(f"{CONDITION_TOKEN}{column} = ?", value)
        if value is _MISSING:
            self._condition_sql += f"{CONDITION_TOKEN}{statement}"
            self._pending_column = "?" not in statement
            return self
        if "?" not in statement:
            statement = f"{statement} = ?"
        return self._append(f"{CONDITION_TOKEN}{statement}", value)

    def and_(self, statement: Column | Base, value: Any = _MISSING) -> QueryBuilder[T]:
        """Alias of ``where``."""
        return self.where(statement, value)

    def or_(self, statement: Column, value: Any) -> QueryBuilder[T]:
        """Add an OR condition: ``... OR (statement)``."""
        if not self._condition_sql:
            return self.where(statement, value)
        statement = self._column(statement)
        if "?" not in statement:
            statement = f"{statement} = ?"
        return self._append(f" OR ({statement})", value)

    def eq(self, value: Any) -> QueryBuilder[T]:
        """Complete a pending ``where(column)`` with ``= ?``."""
        return self._append(" = ?", value)

    def not_eq(self, column: Column, value: Any = _MISSING) -> QueryBuilder[T]:
        if value is _MISSING:
            return self._append(" != ?", column)
        return self._append(f"{CONDITION_TOKEN}{self._column(column)} != ?", value)

    def like(self, column: Column, value: Any = _MISSING) -> QueryBuilder[T]:
        """``column LIKE ?``; the caller supplies the wildcards."""
        if value is _MISSING:
            return self._append(" LIKE ?", column)
        return self._append(f"{CONDITION_TOKEN}{self._column(column)} LIKE ?", value)

    def between(self, *args: Any) -> QueryBuilder[T]:
        """``between(column, low, high)``, or ``between(low, high)`` after ``where(column)``."""
        if len(args) == 2:
            return self._append(" BETWEEN ? AND ?", *args)
        if len(args) != 3:
            raise TypeError(f"between() takes 2 or 3 arguments ({len(args)} given)")
        column, low, high = args
        return self._append(f"{CONDITION_TOKEN}{self._column(column)} BETWEEN ? AND ?", low, high)

    def gt(self, column: Column, value: Any = _MISSING) -> QueryBuilder[T]:
        return self._compare(">", column, value)

    def gte(self, column: Column, value: Any = _MISSING) -> QueryBuilder[T]:
        return self._compare(">=", column, value)

    def lt(self, column: Column, value: Any = _MISSING) -> QueryBuilder[T]:
        return self._compare("<", column, value)

    def lte(self, column: Column, value: Any = _MISSING) -> QueryBuilder[T]:
        return self._compare("<=", column, value)

    def not_null(self, column: Column | None = None) -> QueryBuilder[T]:
        if column is None:
            self._condition_sql += " IS NOT NULL"
        else:
            self._condition_sql += f"{CONDITION_TOKEN}{self._column(column)} IS NOT NULL"
        self._pending_column = False
        return self

    def not_empty(self, column: Column | None = None) -> QueryBuilder[T]:
        if column is None:
            self._condition_sql += " != ''"
        else:
            self._condition_sql += f"{CONDITION_TOKEN}{self._column(column)} != ''"
        self._pending_column = False
        return self

    def in_(self, column: Any, *values: Any) -> QueryBuilder[T]:
        """``column IN (?, ...)``.

        Values may be given as arguments or as one list. After a pending
        ``where(column)`` pass the values only: ``where(User.id).in_(1, 2)`` or
        ``where(User.id).in_([1, 2])``. An empty value list leaves the
        statement untouched.
        """
        if isinstance(column, (list, tuple, set, frozenset)):
            prefix = " IN ("
            args = [*column, *values]
        elif self._pending_column:
            prefix = " IN ("
            args = [column, *values]
        else:
            prefix = f"{CONDITION_TOKEN}{self._column(column)} IN ("
            args = _flatten(values)
        if not args:
            logger.warning("Column: %s, IN query params are empty, condition skipped", column)
            return self
        placeholders = ", ".join("?" for _ in args)
        return self._append(f"{prefix}{placeholders})", *args)

    # ========== Ordering / limiting ==========

    def order(self, column: Column, direction: OrderBy | str | None = None) -> QueryBuilder[T]:
        """Append an ORDER BY term.

        Example:
            >>> query.order("id desc")
            >>> query.order(User.age, OrderBy.DESC)
        """
        term = self._column(column)
        if direction is not None:
            term = f"{term} {OrderBy(str(direction).upper())}"
        self._order_by_sql = f"{self._order_by_sql}, {term}" if self._order_by_sql else term
        return self

    def limit(self, n: int) -> QueryBuilder[T]:
        """Limit rows returned by ``all()`` with a SQL ``LIMIT``."""
        self._sql_limit = True
        self._limit = n
        return self

    # ========== Terminal operations ==========

    async def by_id(self, pk: Any) -> dict[str, Any] | None:
        """Fetch one row by primary key."""
        self._before_check()
        self.where(self.primary_key_column, pk)  # type: ignore[arg-type]
        return await self.one()

    async def by_ids(self, *pks: Any) -> list[dict[str, Any]]:
        """Fetch the rows whose primary key is in ``pks``."""
        self._before_check()
        pks = tuple(_flatten(pks))
        if not pks:
            self._reset()
            return []
        self.in_(self.primary_key_column, *pks)
        return await self.all()

    async def one(self) -> dict[str, Any] | None:
        """Return the first matching row, or None when nothing matches."""
        try:
            self._before_check()
            if self.config.use_sql_limit:
                self._sql_limit = True
                self._limit = 1
            sql, params = self._build_select()
            result = await self._execute(sql, params)
            return result.first()
        finally:
            self._reset()

    async def all(self) -> list[dict[str, Any]]:
        """Return every matching row."""
        try:
            self._before_check()
            sql, params = self._build_select()
            result = await self._execute(sql, params)
            return result.all()
        finally:
            self._reset()

    async def count(self) -> int:
        """Return the number of matching rows."""
        try:
            self._before_check()
            sql = self.config.dialect.count(self._sql_params())
            result = await self._execute(sql, list(self._param_values))
            return int(result.scalar() or 0)
        finally:
            self._reset()

    async def exists(self) -> bool:
        return await self.count() > 0

    async def page(
        self,
        page: int | PageRow | str,
        page_size: int | PageRow | None = None,
    ) -> Page[dict[str, Any]]:
        """Return one page of rows and the total count.

        Accepts ``page(2, 10)``, ``page(PageRow(2, 10))`` or
        ``page("SELECT ...", PageRow(2, 10))``. The row query only runs once
        the count query succeeded.
        """
        try:
            if isinstance(page, str):
                if not isinstance(page_size, PageRow):
                    raise TypeError("page(sql, page_row) requires a PageRow")
                return await self.page_sql(page, page_size, list(self._param_values))
            page_row = page if isinstance(page, PageRow) else PageRow(page, int(page_size))  # type: ignore[arg-type]
            self._before_check()
            params = list(self._param_values)
            dialect = self.config.dialect
            count_result = await self._execute(dialect.count(self._sql_params()), params)
            total = int(count_result.scalar() or 0)
            sql, page_params = dialect.paginate(self._sql_params(page_row=page_row))
            rows = await self._execute(sql, params + page_params)
            return Page(total, page_row.page_number, page_row.page_size, rows.all())
        finally:
            self._reset()

    async def page_sql(
        self,
        sql: str,
        page_row: PageRow,
        params: Sequence[Any] | None = None,
    ) -> Page[dict[str, Any]]:
        """Paginate a caller-supplied SELECT.

        The count runs as ``SELECT COUNT(*) FROM (<sql>) tmp``; rows are
        fetched with the dialect's pagination applied to the same SQL.
        """
        try:
            params = list(params or [])
            count_result = await self._execute(f"SELECT COUNT(*) FROM ({sql}) tmp", params)
            total = int(count_result.scalar() or 0)
            paged_sql, page_params = self.config.dialect.paginate(
                self._sql_params(page_row=page_row, custom_sql=sql)
            )
            rows = await self._execute(paged_sql, params + page_params)
            return Page(total, page_row.page_number, page_row.page_size, rows.all())
        finally:
            self._reset()

    async def query_one(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        """Run a caller-supplied SELECT and return its first row.

        The SQL limit clause is appended when ``use_sql_limit`` is on.
        """
        try:
            params = list(params or [])
            if self.config.use_sql_limit:
                sql += self.config.dialect.limit_clause(SQLParams(table_name="", custom_sql=sql))
                params.append(1)
            result = await self._execute(sql, params)
            return result.first()
        finally:
            self._reset()

    async def query_list(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run a caller-supplied SELECT and return every row."""
        try:
            result = await self._execute(sql, list(params or []))
            return result.all()
        finally:
            self._reset()

    def raw(self, sql: str, *params: Any) -> ResultList:
        """Wrap caller-supplied SQL for a later ``one()``, ``all()`` or ``page()``.

        Example:
            >>> rows = await User.query().raw("SELECT * FROM user WHERE age > ?", 18).all()
        """
        return ResultList(sql, _flatten(params), model=self.model_class, config=self._config)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Render the SELECT without executing it or clearing state."""
        self._before_check()
        return self._build_select()

    # ========== Internal Methods ==========

    def _build_select(self) -> tuple[str, list[Any]]:
        sql = self.config.dialect.select(self._sql_params())
        params = list(self._param_values)
        if self._sql_limit:
            params.append(self._limit)
        return sql, params

    def _sql_params(self, **overrides: Any) -> SQLParams:
        values: dict[str, Any] = {
            "table_name": self.table_name or "",
            "pk_name": self.primary_key_column,
            "model_class": self.model_class,
            "fields": tuple(self.config.metadata.fields(self.model_class)) if self.model_class else (),
            "condition_sql": self._condition_sql,
            "select_columns": self._select_columns,
            "excluded_columns": tuple(self._excluded_columns),
            "order_by": self._order_by_sql,
            "sql_limit": self._sql_limit,
        }
        values.update(overrides)
        return SQLParams(**values)

    async def _execute(self, sql: str, params: list[Any]) -> QueryResult:
        database = self.config.require_database()
        logger.debug("Execute SQL: %s, params: %s", sql, params)
        return await database.execute(sql, params)

    def _where_model(self, model: Base) -> QueryBuilder[T]:
        for column, handle in self.config.metadata.fields(type(model)):
            value = handle.get(model)
            if value is None or (isinstance(value, str) and not value):
                continue
            self._append(f"{CONDITION_TOKEN}{column.column} = ?", value)
        return self

    def _compare(self, operator: str, column: Column, value: Any) -> QueryBuilder[T]:
        if value is _MISSING:
            return self._append(f" {operator} ?", column)
        return self._append(f"{CONDITION_TOKEN}{self._column(column)} {operator} ?", value)

    def _append(self, fragment: str, *values: Any) -> QueryBuilder[T]:
        self._condition_sql += fragment
        self._pending_column = False
        self._param_values.extend(values)
        return self

    def _column(self, column: Column) -> str:
        return self.config.metadata.column_name(column)

    def _before_check(self) -> None:
        if self.model_class is None:
            self._reset()
            raise ConfigurationError(code=ErrorCode.FROM_NOT_SET)

    def _reset(self) -> None:
        """Clear all per-statement state so the builder can start over."""
        self._select_columns: str | None = None
        self._excluded_columns: list[str] = []
        self._condition_sql = ""
        self._order_by_sql = ""
        self._param_values: list[Any] = []
        self._pending_column = False
        self._sql_limit = False
        self._limit: int | None = None


class ResultList:
    """Caller-supplied SQL and its parameters, run on demand.

    Every call opens a fresh builder, so one ResultList can be run any number
    of times.
    """

    def __init__(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        model: type[Base] | None = None,
        config: Config | None = None,
    ) -> None:
        self.sql = sql
        self.params = list(params)
        self.model = model
        self._config = config

    async def one(self) -> dict[str, Any] | None:
        return await self._query().query_one(self.sql, self.params)

    async def all(self) -> list[dict[str, Any]]:
        return await self._query().query_list(self.sql, self.params)

    async def page(self, page: int | PageRow, page_size: int | None = None) -> Page[dict[str, Any]]:
        page_row = page if isinstance(page, PageRow) else PageRow(page, int(page_size))  # type: ignore[arg-type]
        return await self._query().page_sql(self.sql, page_row, self.params)

    def _query(self) -> QueryBuilder[Any]:
        return QueryBuilder(self.model, config=self._config)


def _flatten(values: Sequence[Any]) -> list[Any]:
    """Accept ``f(1, 2, 3)`` as well as ``f([1, 2, 3])``."""
    if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
        return list(values[0])
    return list(values)


def select[T: "Base"](*columns: Column, config: Config | None = None) -> QueryBuilder[T]:
    """Open a query, optionally restricted to some columns.

    Example:
        >>> rows = await select().from_(User).where("age > ?", 18).all()
        >>> row = await select(User.username).from_(User).by_id(1)
    """
    query: QueryBuilder[T] = QueryBuilder(config=config)
    if columns:
        query.select(*columns)
    return query
