"""SQL dialects.

A dialect turns one ``SQLParams`` snapshot of builder state into SQL text.
SELECT, COUNT, INSERT, UPDATE and DELETE share a portable default rendering;
pagination syntax differs between engines, so every concrete dialect
implements ``paginate`` itself.

All dialects emit ``?`` positional placeholders.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from chainorm.errors import StatementError

if TYPE_CHECKING:
    from chainorm.fields import ColumnInfo
    from chainorm.metadata import FieldHandle
    from chainorm.page import PageRow

# Every condition fragment starts with this token; consumers strip it.
CONDITION_TOKEN = " AND "
CONDITION_TOKEN_WIDTH = len(CONDITION_TOKEN)

_ORDER_BY = re.compile(r"\border\s+by\b", re.IGNORECASE)
_PLAIN_COLUMN = re.compile(r"^\w+$")


@dataclass(frozen=True)
class SQLParams:
    """Everything a dialect may read to render one statement."""

    table_name: str
    pk_name: str | None = None
    model_class: type | None = None
    model: Any = None
    fields: tuple[tuple[ColumnInfo, FieldHandle], ...] = ()
    condition_sql: str = ""
    select_columns: str | None = None
    excluded_columns: tuple[str, ...] = ()
    order_by: str = ""
    update_columns: Mapping[str, Any] | None = None
    skip_fields: frozenset[str] = field(default_factory=frozenset)
    page_row: PageRow | None = None
    custom_sql: str | None = None
    sql_limit: bool = False


def strip_condition(condition_sql: str) -> str:
    """Remove the leading conjunction token from a condition fragment."""
    return condition_sql[CONDITION_TOKEN_WIDTH:]


def model_values(
    params: SQLParams,
    *,
    skip_null: bool,
) -> list[tuple[str, Any]]:
    """Return ``(column, value)`` pairs read from ``params.model``.

    Fields are visited in declaration order; ignored fields never appear.
    Builders use the same function to collect parameters so placeholders
    and values always line up.
    """
    pairs: list[tuple[str, Any]] = []
    if params.model is None:
        return pairs
    for column, handle in params.fields:
        if column.ignore or handle.name in params.skip_fields:
            continue
        value = handle.get(params.model)
        if skip_null and value is None:
            continue
        pairs.append((column.column or handle.name, value))
    return pairs


class Dialect:
    """Default SQL rendering shared by all engines."""

    name = "generic"

    def select(self, params: SQLParams) -> str:
        if params.custom_sql:
            sql = params.custom_sql
        else:
            sql = f"SELECT {self._projection(params)} FROM {params.table_name}"
            if params.condition_sql:
                sql += f" WHERE {strip_condition(params.condition_sql)}"
        if params.order_by:
            sql += f" ORDER BY {params.order_by}"
        if params.sql_limit:
            sql += self.limit_clause(params)
        return sql

    def count(self, params: SQLParams) -> str:
        sql = f"SELECT COUNT(*) FROM {params.table_name}"
        if params.condition_sql:
            sql += f" WHERE {strip_condition(params.condition_sql)}"
        return sql

    def insert(self, params: SQLParams) -> str:
        columns = [column.column or handle.name for column, handle in params.fields if not column.ignore]
        if not columns:
            raise StatementError(f"No insertable fields on table {params.table_name}")
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {params.table_name} ({', '.join(columns)}) VALUES ({placeholders})"

    def update(self, params: SQLParams) -> str:
        if params.update_columns:
            set_columns: Iterable[str] = params.update_columns.keys()
        else:
            set_columns = [col for col, _ in model_values(params, skip_null=True)]
        set_sql = ", ".join(f"{col} = ?" for col in set_columns)
        if not set_sql:
            raise StatementError(f"No columns to update on table {params.table_name}")
        sql = f"UPDATE {params.table_name} SET {set_sql}"
        if params.condition_sql:
            sql += f" WHERE {strip_condition(params.condition_sql)}"
        return sql

    def delete(self, params: SQLParams) -> str:
        sql = f"DELETE FROM {params.table_name}"
        if params.condition_sql:
            sql += f" WHERE {strip_condition(params.condition_sql)}"
        else:
            conditions = [f"{col} = ?" for col, _ in model_values(params, skip_null=True)]
            if conditions:
                sql += " WHERE " + " AND ".join(conditions)
        return sql

    def paginate(self, params: SQLParams) -> tuple[str, list[Any]]:
        """Render a page query.

        Returns the SQL and the page parameters, which belong after every
        predicate parameter.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support pagination")

    def limit_clause(self, params: SQLParams) -> str:
        """Clause appended to a SELECT when SQL-side row limiting is on."""
        return " LIMIT ?"

    def _projection(self, params: SQLParams) -> str:
        if params.select_columns:
            return params.select_columns
        if params.excluded_columns:
            excluded = set(params.excluded_columns)
            kept = [
                column.column or handle.name
                for column, handle in params.fields
                if not column.ignore
                and (column.column or handle.name) not in excluded
                and handle.name not in excluded
            ]
            if kept:
                return ", ".join(kept)
        return "*"

    def _page_source(self, params: SQLParams) -> str:
        return self.select(replace(params, sql_limit=False))

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class MySQLDialect(Dialect):
    """MySQL / MariaDB: ``LIMIT offset, size``."""

    name = "mysql"

    def paginate(self, params: SQLParams) -> tuple[str, list[Any]]:
        page_row = _require_page_row(params)
        return f"{self._page_source(params)} LIMIT ?, ?", [page_row.offset, page_row.page_size]


class PostgreSQLDialect(Dialect):
    """PostgreSQL: ``LIMIT size OFFSET offset``."""

    name = "postgresql"

    def paginate(self, params: SQLParams) -> tuple[str, list[Any]]:
        page_row = _require_page_row(params)
        return f"{self._page_source(params)} LIMIT ? OFFSET ?", [page_row.page_size, page_row.offset]


class SQLiteDialect(PostgreSQLDialect):
    """SQLite shares the PostgreSQL ``LIMIT ... OFFSET`` form."""

    name = "sqlite"


class SQLServerDialect(Dialect):
    """SQL Server 2012+: ``OFFSET ... ROWS FETCH NEXT ... ROWS ONLY``.

    OFFSET/FETCH is only legal after an ORDER BY, so a neutral ordering is
    added when the query has none.
    """

    name = "sqlserver"

    def paginate(self, params: SQLParams) -> tuple[str, list[Any]]:
        page_row = _require_page_row(params)
        sql = self._page_source(params)
        if not _is_ordered(params):
            sql += " ORDER BY (SELECT NULL)"
        return f"{sql} OFFSET ? ROWS FETCH NEXT ? ROWS ONLY", [page_row.offset, page_row.page_size]

    def limit_clause(self, params: SQLParams) -> str:
        prefix = "" if _is_ordered(params) else " ORDER BY (SELECT NULL)"
        return f"{prefix} OFFSET 0 ROWS FETCH NEXT ? ROWS ONLY"


class OracleDialect(Dialect):
    """Oracle: ROW_NUMBER() windowing over the unordered query.

    The outer query names the projected columns when they are known, so the
    row number column stays out of the result.
    """

    name = "oracle"

    def paginate(self, params: SQLParams) -> tuple[str, list[Any]]:
        page_row = _require_page_row(params)
        inner = self.select(replace(params, sql_limit=False, order_by=""))
        order = params.order_by or "NULL"
        sql = (
            f"SELECT {self._outer_columns(params)} FROM (SELECT tmp.*, ROW_NUMBER() OVER (ORDER BY {order}) rn__ "
            f"FROM ({inner}) tmp) WHERE rn__ > ? AND rn__ <= ?"
        )
        return sql, [page_row.offset, page_row.offset + page_row.page_size]

    def _outer_columns(self, params: SQLParams) -> str:
        if params.custom_sql:
            return "*"
        columns = [c.strip() for c in self._projection(params).split(",")]
        if columns == ["*"]:
            columns = [column.column or handle.name for column, handle in params.fields if not column.ignore]
        if columns and all(_PLAIN_COLUMN.match(c) for c in columns):
            return ", ".join(columns)
        return "*"

    def limit_clause(self, params: SQLParams) -> str:
        return " FETCH FIRST ? ROWS ONLY"


def _is_ordered(params: SQLParams) -> bool:
    if params.order_by:
        return True
    return bool(params.custom_sql and _ORDER_BY.search(params.custom_sql))


def _require_page_row(params: SQLParams) -> PageRow:
    if params.page_row is None:
        raise StatementError("Pagination requires a page row")
    return params.page_row


_DIALECTS: dict[str, type[Dialect]] = {
    "mysql": MySQLDialect,
    "mariadb": MySQLDialect,
    "postgresql": PostgreSQLDialect,
    "postgres": PostgreSQLDialect,
    "sqlite": SQLiteDialect,
    "sqlserver": SQLServerDialect,
    "mssql": SQLServerDialect,
    "oracle": OracleDialect,
}


def get_dialect(name: str) -> Dialect:
    """Return a dialect instance by engine name.

    Example:
        >>> get_dialect("sqlite")
        <SQLiteDialect>
    """
    try:
        return _DIALECTS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown dialect: {name!r}") from None
