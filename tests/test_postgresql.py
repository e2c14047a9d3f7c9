"""Tests for the PostgreSQL family adapters against a fake psycopg2 connection."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable

import pytest

from fakes import make_descriptor
from polydb.adapters.cockroachdb import CockroachDB
from polydb.adapters.postgresql import PostgreSQL
from polydb.adapters.supabase import Supabase
from polydb.core.base import DatabaseType, TableColumn
from polydb.core.context import OperationContext
from polydb.exceptions import OperationTimeout, ValidationError

psycopg2 = pytest.importorskip("psycopg2")
import psycopg2.extensions  # noqa: E402
import psycopg2.sql  # noqa: E402

Responder = Callable[[str], "tuple[list[str], list[tuple]]"]


class _FakeCursor:
    def __init__(self, conn: "_FakeConnection") -> None:
        self.conn = conn
        self.description = None
        self._rows: list[tuple] = []

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, statement: Any, params: Any = None) -> None:
        text = statement if isinstance(statement, str) else repr(statement)
        self.conn.statements.append(text)
        if text.startswith("SET statement_timeout"):
            self.description = None
            return
        columns, rows = self.conn.responder(text)
        self.description = [SimpleNamespace(name=c) for c in columns] if columns else None
        self._rows = rows

    def fetchall(self) -> list[tuple]:
        return self._rows


class _FakeConnection:
    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.statements: list[str] = []
        self.autocommit = False
        self.closed = False

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def close(self) -> None:
        self.closed = True


def _default_responder(text: str):
    if text == "SELECT 1":
        return ["?column?"], [(1,)]
    return [], []


@pytest.fixture()
def pg(monkeypatch: pytest.MonkeyPatch):
    state: dict[str, Any] = {"responder": _default_responder, "connect_kwargs": None, "conn": None}

    def connect(**kwargs: Any) -> _FakeConnection:
        state["connect_kwargs"] = kwargs
        state["conn"] = _FakeConnection(lambda text: state["responder"](text))
        return state["conn"]

    module = SimpleNamespace(connect=connect, sql=psycopg2.sql, extensions=psycopg2.extensions)
    monkeypatch.setattr(PostgreSQL, "_import_driver", lambda self: module)
    return state


def _ctx() -> OperationContext:
    return OperationContext(10.0)


def _connected(adapter_class: type = PostgreSQL, **kwargs: Any):
    adapter = adapter_class()
    adapter.connect(_ctx(), make_descriptor(type=adapter_class.db_type, **kwargs))
    return adapter


def test_connect_builds_libpq_parameters(pg: dict[str, Any]) -> None:
    adapter = _connected(username="admin", password="pw", ssl=True)

    kwargs = pg["connect_kwargs"]
    assert kwargs["port"] == 5432
    assert kwargs["dbname"] == "postgres"
    assert kwargs["sslmode"] == "require"
    assert 1 <= kwargs["connect_timeout"] <= 10
    assert pg["conn"].autocommit is True

    adapter.disconnect()
    assert pg["conn"].closed


def test_query_rows_are_keyed_by_column_and_bytes_become_hex(pg: dict[str, Any]) -> None:
    adapter = _connected()
    pg["responder"] = lambda text: (["id", "blob"], [(1, b"\x01\xff"), (2, memoryview(b"\x00"))])

    result = adapter.execute_query(_ctx(), "SELECT id, blob FROM files")

    assert result.columns == ["id", "blob"]
    assert result.rows == [{"id": 1, "blob": "01ff"}, {"id": 2, "blob": "00"}]
    assert result.row_count == 2
    assert any(s.startswith("SET statement_timeout") for s in pg["conn"].statements)


def test_statement_timeout_raises_operation_timeout(pg: dict[str, Any]) -> None:
    adapter = _connected()

    def cancel(text: str):
        raise psycopg2.extensions.QueryCanceledError("canceling statement due to statement timeout")

    pg["responder"] = cancel
    with pytest.raises(OperationTimeout):
        adapter.execute_query(_ctx(), "SELECT pg_sleep(60)")


def test_syntax_error_is_reported_in_band(pg: dict[str, Any]) -> None:
    adapter = _connected()

    def reject(text: str):
        raise psycopg2.ProgrammingError('syntax error at or near "SELEC"')

    pg["responder"] = reject
    result = adapter.execute_query(_ctx(), "SELEC 1")
    assert "syntax error" in result.error


def test_list_databases_and_tables(pg: dict[str, Any]) -> None:
    adapter = _connected(database="shop")

    def respond(text: str):
        if "pg_database" in text:
            return ["name", "owner", "size", "encoding", "collation"], [("shop", "admin", "8 MB", "UTF8", "en_US.UTF-8")]
        if "information_schema.tables" in text:
            return ["table_name", "database_name", "size", "row_count"], [("orders", "shop", "16 kB", -1)]
        if "information_schema.columns" in text:
            return ["table_name", "column_name", "data_type", "nullable", "primary_key", "is_unique"], [
                ("orders", "id", "integer", False, True, False),
                ("orders", "email", "text", True, False, True),
            ]
        return [], []

    pg["responder"] = respond

    databases = adapter.list_databases(_ctx())
    assert databases[0].to_dict() == {
        "name": "shop", "owner": "admin", "size": "8 MB", "encoding": "UTF8", "collation": "en_US.UTF-8",
    }

    [table] = adapter.list_tables(_ctx())
    assert table.name == "orders"
    assert table.rows == 0
    assert [c.name for c in table.columns] == ["id", "email"]
    assert table.columns[0].primary_key and not table.columns[0].nullable
    assert table.columns[1].unique


def test_create_table_quotes_identifiers_and_checks_types(pg: dict[str, Any]) -> None:
    adapter = _connected()

    adapter.create_table(_ctx(), "users", [
        TableColumn("id", "serial", primary_key=True),
        TableColumn("email", "varchar(255)", nullable=False, unique=True),
    ])
    statement = pg["conn"].statements[-1]
    assert "Identifier('users')" in statement
    assert "SQL('varchar(255)')" in statement

    with pytest.raises(ValidationError):
        adapter.create_table(_ctx(), "bad", [TableColumn("id", "int); DROP TABLE users; --")])
    with pytest.raises(ValidationError):
        adapter.create_table(_ctx(), "empty", [])


def test_list_users_maps_role_memberships(pg: dict[str, Any]) -> None:
    adapter = _connected()
    pg["responder"] = lambda text: (["username", "is_superuser", "permissions"], [("postgres", True, []), ("app", False, ["readers"])])

    users = adapter.list_users(_ctx())

    assert [u.to_dict() for u in users] == [
        {"username": "postgres", "permissions": [], "isSuperuser": True},
        {"username": "app", "permissions": ["readers"], "isSuperuser": False},
    ]


def test_cockroachdb_fills_its_own_endpoint_defaults(pg: dict[str, Any]) -> None:
    adapter = _connected(CockroachDB)

    kwargs = pg["connect_kwargs"]
    assert kwargs["port"] == 26257
    assert kwargs["user"] == "root"
    assert kwargs["dbname"] == "defaultdb"
    assert adapter.is_connected(_ctx())
    assert CockroachDB.capabilities() == PostgreSQL.capabilities()

    adapter.disconnect()
    assert not adapter.is_connected(_ctx())


def test_supabase_forces_tls_and_postgres_defaults(pg: dict[str, Any]) -> None:
    adapter = _connected(Supabase, host="db.abc.supabase.co")

    kwargs = pg["connect_kwargs"]
    assert kwargs["sslmode"] == "require"
    assert kwargs["user"] == "postgres"
    assert kwargs["dbname"] == "postgres"
    assert adapter.descriptor.ssl is True
    assert adapter.db_type is DatabaseType.SUPABASE
