"""Tests for the ZooKeeper adapter."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from fakes import make_descriptor, table_names
from polydb.adapters.zookeeper import Zookeeper, znode_path
from polydb.core.base import DatabaseType
from polydb.core.context import OperationContext
from polydb.exceptions import BackendError, ConnectionError, OperationTimeout, UnsupportedOperationError, ValidationError


class _KazooTimeout(Exception):
    pass


class _NoNodeError(Exception):
    pass


class _AsyncResult:
    def __init__(self, client: "_FakeKazoo", path: str) -> None:
        self.client = client
        self.path = path

    def get(self, timeout: float | None = None):
        self.client.probe_timeouts.append(timeout)
        return self.client.exists(self.path)


class _FakeKazoo:
    instances: list["_FakeKazoo"] = []
    start_fails = False

    def __init__(self, hosts: str, auth_data: Any = None, use_ssl: bool = False) -> None:
        self.hosts = hosts
        self.auth_data = auth_data
        self.use_ssl = use_ssl
        self.nodes: dict[str, bytes] = {"/": b"", "/zookeeper": b"", "/app": b"", "/app/config": b"abc", "/app/.lock": b""}
        self.created: list[tuple[str, bytes, dict]] = []
        self.stopped = False
        self.closed = False
        self.hang = False
        self.probe_timeouts: list[float] = []
        _FakeKazoo.instances.append(self)

    def start(self, timeout: float = 15) -> None:
        self.start_timeout = timeout
        if self.start_fails:
            raise _KazooTimeout("Connection time-out")

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True

    def exists(self, path: str):
        if self.hang:
            raise _KazooTimeout("request timed out")
        if path not in self.nodes:
            return None
        return SimpleNamespace(dataLength=len(self.nodes[path]))

    def exists_async(self, path: str) -> "_AsyncResult":
        return _AsyncResult(self, path)

    def get_children(self, path: str) -> list[str]:
        if path not in self.nodes:
            raise _NoNodeError(path)
        prefix = path.rstrip("/") + "/"
        return [p[len(prefix):] for p in self.nodes if p.startswith(prefix) and "/" not in p[len(prefix):] and p != prefix]

    def create(self, path: str, value: bytes = b"", **kwargs: Any) -> str:
        self.created.append((path, value, kwargs))
        self.nodes[path] = value
        return path

    def delete(self, path: str) -> None:
        if path not in self.nodes:
            raise _NoNodeError(path)
        del self.nodes[path]


@pytest.fixture(autouse=True)
def kazoo(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeKazoo.instances = []
    _FakeKazoo.start_fails = False
    monkeypatch.setattr(Zookeeper, "_import_driver", lambda self: (_FakeKazoo, _KazooTimeout))


def _ctx() -> OperationContext:
    return OperationContext(10.0)


def _connect(**kwargs: Any) -> Zookeeper:
    adapter = Zookeeper()
    adapter.connect(_ctx(), make_descriptor(type=DatabaseType.ZOOKEEPER, **kwargs))
    return adapter


@pytest.mark.parametrize("name,parent,expected", [
    ("app", "/", "/app"),
    ("/app/", "/", "/app"),
    ("config", "/app", "/app/config"),
    ("config", "/app/", "/app/config"),
    ("/", "/app", "/"),
])
def test_znode_path(name: str, parent: str, expected: str) -> None:
    assert znode_path(name, parent) == expected


def test_znode_path_rejects_empty_name() -> None:
    with pytest.raises(ValidationError):
        znode_path("")


def test_connect_passes_digest_auth_and_deadline() -> None:
    adapter = _connect(username="admin", password="pw", ssl=True)

    client = _FakeKazoo.instances[0]
    assert client.hosts == "db.local:2181"
    assert client.auth_data == [("digest", "admin:pw")]
    assert client.use_ssl is True
    assert 0 < client.start_timeout <= 10

    adapter.disconnect()
    assert client.stopped and client.closed


def test_connect_timeout_releases_the_client() -> None:
    _FakeKazoo.start_fails = True

    with pytest.raises((OperationTimeout, ConnectionError)):
        _connect()
    assert _FakeKazoo.instances[0].closed


def test_top_level_znodes_are_databases() -> None:
    adapter = _connect()

    assert [d.name for d in adapter.list_databases(_ctx())] == ["/app", "/zookeeper"]

    adapter.create_database(_ctx(), "jobs", {"data": "v1", "ephemeral": True})
    path, value, flags = _FakeKazoo.instances[0].created[-1]
    assert (path, value) == ("/jobs", b"v1")
    assert flags == {"ephemeral": True, "sequence": False}

    adapter.delete_database(_ctx(), "/jobs")
    assert "/jobs" not in _FakeKazoo.instances[0].nodes

    with pytest.raises(BackendError):
        adapter.delete_database(_ctx(), "missing")


def test_children_of_the_target_path_are_tables() -> None:
    adapter = _connect(database="app")

    tables = adapter.list_tables(_ctx())
    assert table_names(tables) == ["config"]
    assert tables[0].size == "3 bytes"
    assert tables[0].database == "/app"

    adapter.create_table(_ctx(), "flags", [])
    assert "/app/flags" in _FakeKazoo.instances[0].nodes
    adapter.delete_table(_ctx(), "flags")
    assert "/app/flags" not in _FakeKazoo.instances[0].nodes


def test_request_timeout_is_reported_as_timeout() -> None:
    adapter = _connect()
    _FakeKazoo.instances[0].hang = True

    with pytest.raises(OperationTimeout):
        adapter.list_tables(_ctx())
    assert adapter.is_connected(_ctx()) is False


def test_unsupported_operations() -> None:
    adapter = _connect()

    with pytest.raises(UnsupportedOperationError) as info:
        adapter.execute_query(_ctx(), "ls /")
    assert "no query language" in info.value.suggestion

    caps = Zookeeper.capabilities()
    assert caps["create_database"] and caps["list_tables"] and caps["delete_table"]
    assert not caps["update_table"] and not caps["list_users"]


def test_ping_waits_no_longer_than_the_deadline() -> None:
    adapter = _connect()
    client = _FakeKazoo.instances[0]

    assert adapter.is_connected(OperationContext(2.0)) is True
    assert 0 < client.probe_timeouts[-1] <= 2


def test_created_znode_is_listed_until_deleted() -> None:
    adapter = _connect()

    adapter.create_database(_ctx(), "orders")
    assert "/orders" in [d.name for d in adapter.list_databases(_ctx())]

    adapter.delete_database(_ctx(), "orders")
    assert "/orders" not in [d.name for d in adapter.list_databases(_ctx())]
