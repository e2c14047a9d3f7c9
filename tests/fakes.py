"""In-process stand-ins for backends and client libraries used across the tests."""

from __future__ import annotations

import threading
from typing import Any, Callable
from urllib.parse import urlsplit

from polydb.core.base import BaseAdapter, ConnectionDescriptor, DatabaseInfo, DatabaseType, TableInfo


def make_descriptor(
    id: str = "c1",
    host: str = "db.local",
    type: DatabaseType = DatabaseType.POSTGRESQL,
    connected: bool = False,
    **kwargs: Any,
) -> ConnectionDescriptor:
    return ConnectionDescriptor(id=id, name=kwargs.pop("name", f"conn {id}"), type=type, host=host, connected=connected, **kwargs)


class FakeClient:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeAdapter(BaseAdapter):
    """Adapter whose backend is a flag on the factory that built it."""

    db_type = DatabaseType.POSTGRESQL
    driver_name = "fake"
    install_command = "pip install fake"
    default_port = 5432
    unsupported = {"create_user": "create users with the backend's own tooling"}

    def __init__(self, factory: "FakeFactory | None" = None) -> None:
        super().__init__()
        self.factory = factory
        self.close_calls = 0
        self.alive = True

    def _open(self, ctx) -> None:
        if self.factory is not None and self.descriptor.host in self.factory.fail_hosts:
            raise OSError("connection refused")
        self._client = FakeClient()

    def _ping(self, ctx) -> None:
        if not self.alive:
            raise OSError("server closed the connection")

    def _close(self) -> None:
        self.close_calls += 1
        if self.factory is not None and self.descriptor.host in self.factory.hang_hosts:
            self.factory.release.wait(5)

    def _run_query(self, ctx, query: str):
        if query == "bad":
            raise RuntimeError("syntax error at or near \"bad\"")
        if query == "slow":
            raise TimeoutError("read timed out")
        return [{"a": 1}, {"a": 2, "b": 3}]

    def list_databases(self, ctx):
        return [DatabaseInfo(name="main")]

    def list_tables(self, ctx):
        return []

    def delete_table(self, ctx, name):
        self.factory.deleted.append(name)


class FakeFactory:
    """Stands in for DriverFactory; remembers every adapter it built."""

    def __init__(self) -> None:
        self.created: list[FakeAdapter] = []
        self.fail_hosts: set[str] = set()
        self.hang_hosts: set[str] = set()
        self.unknown: set[DatabaseType] = set()
        self.deleted: list[str] = []
        self.release = threading.Event()

    def create(self, db_type: Any) -> FakeAdapter | None:
        if DatabaseType.parse(db_type) in self.unknown:
            return None
        adapter = FakeAdapter(self)
        self.created.append(adapter)
        return adapter


# ==================== requests ====================

class FakeTimeout(Exception):
    pass


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, text: str = "", headers: dict | None = None) -> None:
        import json

        self.status_code = status_code
        self.headers = headers or {}
        if json_data is not None:
            text = json.dumps(json_data)
        self.text = text
        self.content = text.encode("utf-8")
        self._json = json_data

    def json(self) -> Any:
        return self._json


class FakeSession:
    """requests.Session double routing (METHOD, path) to canned responses."""

    def __init__(self, routes: dict[tuple[str, str], Any]) -> None:
        self.routes = routes
        self.headers: dict[str, str] = {}
        self.auth = None
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, timeout: float | None = None, **kwargs: Any) -> FakeResponse:
        path = urlsplit(url).path
        self.calls.append({"method": method, "path": path, "url": url, "timeout": timeout, **kwargs})
        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(404, text=f"no route for {method} {path}")
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(**kwargs)
        return route

    def close(self) -> None:
        self.closed = True


class FakeRequests:
    """Module double exposing Session and Timeout."""

    Timeout = FakeTimeout

    def __init__(self, routes: dict[tuple[str, str], Any]) -> None:
        self.routes = routes
        self.sessions: list[FakeSession] = []

    def Session(self) -> FakeSession:
        session = FakeSession(self.routes)
        self.sessions.append(session)
        return session

    @property
    def session(self) -> FakeSession:
        return self.sessions[-1]


def install_requests(monkeypatch, adapter_class: type, routes: dict[tuple[str, str], Any]) -> FakeRequests:
    fake = FakeRequests(routes)
    monkeypatch.setattr(adapter_class, "_import_driver", lambda self: fake)
    return fake


def calls_to(session: FakeSession, method: str, path: str) -> list[dict[str, Any]]:
    return [c for c in session.calls if c["method"] == method and c["path"] == path]


def table_names(tables: list[TableInfo]) -> list[str]:
    return [t.name for t in tables]


def always(value: Any) -> Callable[..., Any]:
    return lambda *args, **kwargs: value
