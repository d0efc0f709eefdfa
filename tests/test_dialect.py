"""Tests for SQL rendering in each dialect."""

import pytest

from chainorm import (
    Base,
    Mapped,
    MetadataCache,
    MySQLDialect,
    OracleDialect,
    PageRow,
    PostgreSQLDialect,
    SQLiteDialect,
    SQLParams,
    SQLServerDialect,
    StatementError,
    get_dialect,
    mapped_column,
)


class User(Base):
    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str]
    password: Mapped[str | None]
    age: Mapped[int | None]
    session_token: Mapped[str] = mapped_column(ignore=True)


CACHE = MetadataCache()
FIELDS = tuple(CACHE.fields(User))


def params(**kwargs):
    kwargs.setdefault("table_name", "user")
    kwargs.setdefault("pk_name", "id")
    kwargs.setdefault("model_class", User)
    kwargs.setdefault("fields", FIELDS)
    return SQLParams(**kwargs)


def test_select_all():
    assert SQLiteDialect().select(params()) == "SELECT * FROM user"


def test_select_with_condition_and_order():
    sql = SQLiteDialect().select(params(condition_sql=" AND age > ? AND username = ?", order_by="id desc"))
    assert sql == "SELECT * FROM user WHERE age > ? AND username = ? ORDER BY id desc"


def test_select_projection_and_exclusion():
    dialect = SQLiteDialect()
    assert dialect.select(params(select_columns="id, username")) == "SELECT id, username FROM user"
    assert dialect.select(params(excluded_columns=("password",))) == "SELECT id, username, age FROM user"


def test_select_custom_sql_is_verbatim():
    sql = SQLiteDialect().select(params(custom_sql="SELECT id FROM user WHERE age > ?", condition_sql=" AND x = ?"))
    assert sql == "SELECT id FROM user WHERE age > ?"


def test_select_limit_clause():
    assert MySQLDialect().select(params(sql_limit=True)) == "SELECT * FROM user LIMIT ?"
    assert OracleDialect().select(params(sql_limit=True)) == "SELECT * FROM user FETCH FIRST ? ROWS ONLY"
    assert (
        SQLServerDialect().select(params(sql_limit=True))
        == "SELECT * FROM user ORDER BY (SELECT NULL) OFFSET 0 ROWS FETCH NEXT ? ROWS ONLY"
    )


def test_count():
    sql = SQLiteDialect().count(params(condition_sql=" AND age > ?", order_by="id"))
    assert sql == "SELECT COUNT(*) FROM user WHERE age > ?"


def test_insert_lists_every_writable_field():
    sql = SQLiteDialect().insert(params(model=User(username="bob")))
    assert sql == "INSERT INTO user (id, username, password, age) VALUES (?, ?, ?, ?)"


def test_update_from_set_columns():
    sql = SQLiteDialect().update(params(update_columns={"password": "x", "age": 3}, condition_sql=" AND id = ?"))
    assert sql == "UPDATE user SET password = ?, age = ? WHERE id = ?"


def test_update_from_model_skips_nulls_and_skipped_fields():
    model = User(id=5, username="bob", age=30)
    sql = SQLiteDialect().update(params(model=model, skip_fields=frozenset({"id"}), condition_sql=" AND id = ?"))
    assert sql == "UPDATE user SET username = ?, age = ? WHERE id = ?"


def test_update_without_columns_raises():
    with pytest.raises(StatementError):
        SQLiteDialect().update(params(model=User(), condition_sql=" AND id = ?"))


def test_delete_from_model_fields():
    sql = SQLiteDialect().delete(params(model=User(username="bob", age=3)))
    assert sql == "DELETE FROM user WHERE username = ? AND age = ?"


def test_delete_prefers_condition():
    sql = SQLiteDialect().delete(params(model=User(username="bob"), condition_sql=" AND age < ?"))
    assert sql == "DELETE FROM user WHERE age < ?"


# ========== Pagination ==========


def page_params():
    return params(condition_sql=" AND age > ?", order_by="id desc", page_row=PageRow(3, 10))


def test_paginate_mysql():
    sql, page_args = MySQLDialect().paginate(page_params())
    assert sql == "SELECT * FROM user WHERE age > ? ORDER BY id desc LIMIT ?, ?"
    assert page_args == [20, 10]


def test_paginate_postgresql_and_sqlite():
    for dialect in (PostgreSQLDialect(), SQLiteDialect()):
        sql, page_args = dialect.paginate(page_params())
        assert sql == "SELECT * FROM user WHERE age > ? ORDER BY id desc LIMIT ? OFFSET ?"
        assert page_args == [10, 20]


def test_paginate_sqlserver():
    sql, page_args = SQLServerDialect().paginate(page_params())
    assert sql == "SELECT * FROM user WHERE age > ? ORDER BY id desc OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"
    assert page_args == [20, 10]


def test_paginate_sqlserver_adds_ordering():
    sql, _ = SQLServerDialect().paginate(params(page_row=PageRow(1, 5)))
    assert sql == "SELECT * FROM user ORDER BY (SELECT NULL) OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"


def test_paginate_oracle():
    sql, page_args = OracleDialect().paginate(page_params())
    assert sql == (
        "SELECT id, username, password, age FROM (SELECT tmp.*, ROW_NUMBER() OVER (ORDER BY id desc) rn__ "
        "FROM (SELECT * FROM user WHERE age > ?) tmp) WHERE rn__ > ? AND rn__ <= ?"
    )
    assert page_args == [20, 30]


def test_paginate_sqlserver_keeps_raw_ordering():
    raw = "SELECT id FROM user ORDER BY id DESC"
    sql, _ = SQLServerDialect().paginate(params(custom_sql=raw, page_row=PageRow(1, 5)))
    assert sql == "SELECT id FROM user ORDER BY id DESC OFFSET ? ROWS FETCH NEXT ? ROWS ONLY"
    assert sql.upper().count("ORDER BY") == 1


def test_paginate_oracle_with_projection():
    sql, _ = OracleDialect().paginate(params(select_columns="id, username", page_row=PageRow(1, 5)))
    assert sql.startswith("SELECT id, username FROM (SELECT tmp.*, ROW_NUMBER() OVER (ORDER BY NULL) rn__ ")
    assert "FROM (SELECT id, username FROM user) tmp)" in sql


def test_paginate_custom_sql():
    sql, page_args = SQLiteDialect().paginate(params(custom_sql="SELECT id FROM user", page_row=PageRow(1, 5)))
    assert sql == "SELECT id FROM user LIMIT ? OFFSET ?"
    assert page_args == [5, 0]


def test_paginate_placeholder_count_matches():
    for name in ("mysql", "postgresql", "sqlite", "sqlserver", "oracle"):
        sql, page_args = get_dialect(name).paginate(page_params())
        assert sql.count("?") == 1 + len(page_args)


def test_paginate_without_page_row_raises():
    with pytest.raises(StatementError):
        SQLiteDialect().paginate(params())


def test_get_dialect():
    assert isinstance(get_dialect("MySQL"), MySQLDialect)
    assert isinstance(get_dialect("mssql"), SQLServerDialect)
    with pytest.raises(ValueError, match="Unknown dialect"):
        get_dialect("db2")
