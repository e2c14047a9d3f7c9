"""Tests for the HTTP API."""

from __future__ import annotations

import pytest

from fakes import FakeFactory
from polydb.config import AppConfig
from polydb.core.manager import ConnectionManager
from polydb.core.service import ConnectionService
from polydb.core.store import MemoryDescriptorStore
from polydb.exceptions import OperationTimeout
from polydb.web import create_app
from polydb.web.app import status_for


@pytest.fixture()
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture()
def service(factory: FakeFactory) -> ConnectionService:
    service = ConnectionService(ConnectionManager(factory=factory), MemoryDescriptorStore())
    yield service
    service.shutdown()


@pytest.fixture()
def client(service: ConnectionService):
    app = create_app(service, AppConfig(config_dir="/tmp"))
    app.config["TESTING"] = True
    return app.test_client()


def _create(client, **overrides: object) -> str:
    body = {"name": "primary", "type": "PostgreSQL", "host": "db.local", "password": "s3cret"}
    body.update(overrides)
    response = client.post("/api/connections", json=body)
    assert response.status_code == 201
    return response.get_json()["connection"]["id"]


def test_register_list_and_fetch_connection(client) -> None:
    connection_id = _create(client)

    listing = client.get("/api/connections").get_json()
    assert [c["id"] for c in listing] == [connection_id]
    assert listing[0]["password"] == ""
    assert listing[0]["connected"] is False

    assert client.get(f"/api/connections/{connection_id}").get_json()["password"] == ""
    assert client.get(f"/api/connections/{connection_id}?edit=true").get_json()["password"] == "s3cret"


def test_register_with_unreachable_backend_returns_warning(client, factory: FakeFactory) -> None:
    factory.fail_hosts.add("down.local")
    response = client.post("/api/connections", json={"name": "x", "type": "Redis", "host": "down.local"})

    assert response.status_code == 201
    assert response.get_json()["warning"].startswith("saved but not connected")


def test_validation_errors_map_to_400(client) -> None:
    response = client.post("/api/connections", json={"name": "x", "type": "Oracle", "host": "h"})
    assert response.status_code == 400
    assert response.get_json()["kind"] == "validation"

    assert client.post("/api/connections", data="not json").status_code == 400
    assert client.get("/api/databases").status_code == 400


def test_unknown_connection_maps_to_404(client) -> None:
    assert client.get("/api/connections/missing").status_code == 404
    response = client.get("/api/databases?connectionId=missing")
    assert response.status_code == 404
    assert response.get_json()["message"] == "connection not found"


def test_connect_query_and_disconnect(client) -> None:
    connection_id = _create(client)

    assert client.post(f"/api/connections/{connection_id}/connect").get_json()["connected"] is True
    assert client.get(f"/api/connections/{connection_id}/status").get_json()["connected"] is True

    result = client.post("/api/query", json={"connectionId": connection_id, "query": "SELECT"}).get_json()
    assert result["rowCount"] == 2
    assert result["columns"] == ["a", "b"]

    rejected = client.post("/api/query", json={"connectionId": connection_id, "query": "bad"})
    assert rejected.status_code == 200
    assert "syntax error" in rejected.get_json()["error"]

    assert client.get(f"/api/databases?connectionId={connection_id}").get_json() == [{"name": "main"}]

    client.post(f"/api/connections/{connection_id}/disconnect")
    assert client.get(f"/api/connections/{connection_id}/status").get_json()["connected"] is False


def test_unsupported_maps_to_422_with_suggestion(client) -> None:
    connection_id = _create(client)
    client.post(f"/api/connections/{connection_id}/connect")

    response = client.post("/api/users", json={"connectionId": connection_id, "username": "bob", "password": "pw"})

    assert response.status_code == 422
    body = response.get_json()
    assert body["kind"] == "unsupported"
    assert body["suggestion"] == "create users with the backend's own tooling"

    caps = client.get(f"/api/connections/{connection_id}/capabilities").get_json()
    assert caps["create_user"] is False


def test_delete_routes_use_query_parameters(client, factory: FakeFactory) -> None:
    connection_id = _create(client)
    client.post(f"/api/connections/{connection_id}/connect")

    response = client.delete(f"/api/tables/delete?connectionId={connection_id}&name=orders")

    assert response.status_code == 200
    assert factory.deleted == ["orders"]
    assert client.delete(f"/api/connections/{connection_id}").status_code == 200
    assert client.get("/api/connections").get_json() == []


def test_timeout_maps_to_504() -> None:
    assert status_for(OperationTimeout("list_tables", 30)) == 504


def test_api_token_is_enforced_when_configured(service: ConnectionService) -> None:
    app = create_app(service, AppConfig(config_dir="/tmp", api_token="t0k"))
    client = app.test_client()

    assert client.get("/api/connections").status_code == 401
    assert client.get("/api/connections", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/api/connections", headers={"Authorization": "Bearer t0k"}).status_code == 200


def test_custom_authorizer_hook(service: ConnectionService) -> None:
    app = create_app(service, AppConfig(config_dir="/tmp"))
    app.config["POLYDB_AUTHORIZER"] = lambda req: req.headers.get("X-Role") == "admin"
    client = app.test_client()

    assert client.get("/api/connections").status_code == 401
    assert client.get("/api/connections", headers={"X-Role": "admin"}).status_code == 200
