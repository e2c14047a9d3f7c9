"""Tests for the descriptor, result types and the adapter template."""

from __future__ import annotations

import time
from datetime import datetime, timezone

import pytest

from fakes import FakeAdapter, FakeFactory, make_descriptor
from polydb.core.base import (
    CONTRACT_OPERATIONS, ConnectionDescriptor, DatabaseType, QueryResult, TableColumn,
    UserInfo, ordered_columns
)
from polydb.core.context import OperationContext
from polydb.exceptions import (
    BackendError, ConnectionError, OperationTimeout, UnsupportedOperationError, ValidationError
)


def _ctx() -> OperationContext:
    return OperationContext(5.0)


# ==================== Descriptor ====================

def test_database_type_parses_value_or_name_case_insensitively() -> None:
    assert DatabaseType.parse("postgresql") is DatabaseType.POSTGRESQL
    assert DatabaseType.parse("RabbitMQ") is DatabaseType.RABBITMQ
    assert DatabaseType.parse("ZOOKEEPER") is DatabaseType.ZOOKEEPER
    with pytest.raises(ValidationError):
        DatabaseType.parse("Oracle")


def test_descriptor_dict_round_trip_hides_password_by_default() -> None:
    created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    descriptor = make_descriptor(port=5433, username="admin", password="s3cret", created_at=created)

    public = descriptor.to_dict()
    assert public["password"] == ""
    assert public["port"] == "5433"
    assert public["createdAt"] == "2024-01-02T03:04:05+00:00"

    restored = ConnectionDescriptor.from_dict(descriptor.to_dict(reveal_password=True))
    assert restored.password == "s3cret"
    assert restored.port == 5433
    assert restored.created_at == created


def test_descriptor_rejects_bad_port() -> None:
    with pytest.raises(ValidationError):
        ConnectionDescriptor.from_dict({"id": "x", "name": "n", "type": "Redis", "port": "99999"})


def test_merge_keeps_blank_fields_including_password() -> None:
    original = make_descriptor(username="admin", password="s3cret", database="shop", ssl=True)

    merged = original.merged_with({"name": "renamed", "password": "", "username": None, "ssl": False})

    assert merged.name == "renamed"
    assert merged.password == "s3cret"
    assert merged.username == "admin"
    assert merged.database == "shop"
    assert merged.ssl is False
    assert merged.id == original.id
    assert merged.created_at == original.created_at
    assert merged.updated_at >= original.updated_at


def test_redacted_and_repr_never_show_password() -> None:
    descriptor = make_descriptor(password="s3cret")
    assert descriptor.redacted().password == ""
    assert "s3cret" not in repr(descriptor)


# ==================== Results ====================

def test_ordered_columns_keeps_first_seen_order_with_pinned_columns() -> None:
    rows = [{"name": "a"}, {"age": 3, "_id": 1}, {"name": "b", "email": "x"}]
    assert ordered_columns(rows, first=("_id",)) == ["_id", "name", "age", "email"]
    assert ordered_columns([], first=("_id",)) == []


def test_query_result_counts_rows_and_serializes_error_only_when_set() -> None:
    result = QueryResult.build(["a"], [{"a": 1}, {"a": 2}], 7)
    assert result.row_count == 2
    assert result.ok
    assert "error" not in result.to_dict()

    failed = QueryResult.failed("boom", 3)
    assert not failed.ok
    assert failed.to_dict() == {"columns": [], "rows": [], "rowCount": 0, "executionTime": 3, "error": "boom"}


def test_normalized_objects_use_wire_names() -> None:
    column = TableColumn.from_dict({"name": "id", "type": "int", "primaryKey": True})
    assert column.primary_key
    assert column.to_dict()["primaryKey"] is True
    assert UserInfo("root", is_superuser=True).to_dict() == {"username": "root", "permissions": [], "isSuperuser": True}
    with pytest.raises(ValidationError):
        TableColumn.from_dict({"type": "int"})


# ==================== Adapter template ====================

def test_connect_applies_default_port_and_opens_session() -> None:
    adapter = FakeAdapter()
    adapter.connect(_ctx(), make_descriptor())
    assert adapter.descriptor.port == 5432
    assert adapter.is_connected(_ctx())


def test_failed_connect_raises_connection_error_without_password() -> None:
    factory = FakeFactory()
    factory.fail_hosts.add("down.local")
    adapter = FakeAdapter(factory)

    with pytest.raises(ConnectionError) as info:
        adapter.connect(_ctx(), make_descriptor(host="down.local", username="admin", password="s3cret"))

    assert info.value.details["host"] == "down.local"
    assert info.value.details["user"] == "admin"
    assert "s3cret" not in str(info.value.to_dict())
    assert adapter._client is None


def test_disconnect_is_idempotent_and_is_connected_reprobes() -> None:
    adapter = FakeAdapter()
    adapter.disconnect()
    adapter.connect(_ctx(), make_descriptor())

    adapter.alive = False
    assert adapter.is_connected(_ctx()) is False

    adapter.disconnect()
    adapter.disconnect()
    assert adapter.close_calls == 1
    assert adapter.is_connected(_ctx()) is False


def test_operations_without_session_raise_backend_error() -> None:
    adapter = FakeAdapter()
    with pytest.raises(BackendError):
        adapter.execute_query(_ctx(), "SELECT 1")


def test_execute_query_normalizes_rows_and_times_the_call() -> None:
    adapter = FakeAdapter()
    adapter.connect(_ctx(), make_descriptor())

    result = adapter.execute_query(_ctx(), "SELECT a, b")

    assert result.columns == ["a", "b"]
    assert result.row_count == 2
    assert isinstance(result.execution_time, int)
    assert result.execution_time >= 0


def test_execution_time_ignores_wall_clock_jumps(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = FakeAdapter()
    adapter.connect(_ctx(), make_descriptor())
    wall = [2_000_000_000.0]

    def rewinding_clock() -> float:
        wall[0] -= 3600
        return wall[0]

    monkeypatch.setattr(time, "time", rewinding_clock)

    result = adapter.execute_query(_ctx(), "SELECT a, b")

    assert 0 <= result.execution_time < 60_000


def test_execute_query_reports_backend_rejection_in_band() -> None:
    adapter = FakeAdapter()
    adapter.connect(_ctx(), make_descriptor())

    result = adapter.execute_query(_ctx(), "bad")

    assert result.error.startswith("syntax error")
    assert result.rows == []


def test_execute_query_raises_on_timeout_and_rejects_empty_query() -> None:
    adapter = FakeAdapter()
    adapter.connect(_ctx(), make_descriptor())

    with pytest.raises(OperationTimeout):
        adapter.execute_query(_ctx(), "slow")
    with pytest.raises(ValidationError):
        adapter.execute_query(_ctx(), "   ")


def test_unsupported_operation_carries_suggestion() -> None:
    adapter = FakeAdapter()
    adapter.connect(_ctx(), make_descriptor())

    with pytest.raises(UnsupportedOperationError) as info:
        adapter.create_user(_ctx(), "bob", "pw")

    assert info.value.suggestion == "create users with the backend's own tooling"
    assert info.value.operation == "create_user"


def test_capabilities_reflect_overrides_and_unsupported_map() -> None:
    caps = FakeAdapter.capabilities()
    assert set(caps) == set(CONTRACT_OPERATIONS)
    assert caps["execute_query"] is True
    assert caps["list_databases"] is True
    assert caps["create_user"] is False
    assert caps["create_table"] is False
