"""
REST API routes.
"""

from typing import Any, Dict, List

from flask import Flask, current_app, jsonify, request

from ..core.base import TableColumn
from ..core.service import ConnectionService
from ..exceptions import ValidationError


def _service() -> ConnectionService:
    return current_app.config["POLYDB_SERVICE"]


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("request body must be JSON", field="body")
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object", field="body")
    return data


def _arg(name: str) -> str:
    value = request.args.get(name, "")
    if not value:
        raise ValidationError(f"{name} is required", field=name)
    return value


def _connection_id(data: Dict[str, Any]) -> str:
    value = data.get("connectionId")
    if not value:
        raise ValidationError("connectionId is required", field="connectionId")
    return str(value)


def _columns(data: Dict[str, Any]) -> List[TableColumn]:
    columns = data.get("columns") or []
    if not isinstance(columns, list):
        raise ValidationError("columns must be a list", field="columns")
    return [TableColumn.from_dict(c) for c in columns]


def register_api(app: Flask):
    """Register API routes."""

    # ==================== Connections ====================

    @app.route("/api/connections", methods=["GET"])
    def list_connections():
        return jsonify([status.to_dict() for status in _service().list_connections()])

    @app.route("/api/connections", methods=["POST"])
    def create_connection():
        result = _service().register(_body())
        return jsonify(result.to_dict()), 201

    @app.route("/api/connections/<connection_id>", methods=["GET"])
    def get_connection(connection_id):
        reveal = request.args.get("edit") == "true"
        return jsonify(_service().get_connection(connection_id, reveal_password=reveal).to_dict(reveal_password=reveal))

    @app.route("/api/connections/<connection_id>", methods=["PUT"])
    def update_connection(connection_id):
        result = _service().update(connection_id, _body())
        return jsonify(result.to_dict())

    @app.route("/api/connections/<connection_id>", methods=["DELETE"])
    def delete_connection(connection_id):
        _service().delete(connection_id)
        return jsonify({"success": True, "id": connection_id})

    @app.route("/api/connections/<connection_id>/connect", methods=["POST"])
    def connect(connection_id):
        descriptor = _service().connect(connection_id)
        return jsonify({"success": True, "connected": True, "connection": descriptor.to_dict()})

    @app.route("/api/connections/<connection_id>/disconnect", methods=["POST"])
    def disconnect(connection_id):
        descriptor = _service().disconnect(connection_id)
        return jsonify({"success": True, "connected": False, "connection": descriptor.to_dict()})

    @app.route("/api/connections/<connection_id>/status", methods=["GET"])
    def connection_status(connection_id):
        return jsonify({"id": connection_id, "connected": _service().status(connection_id)})

    @app.route("/api/connections/<connection_id>/capabilities", methods=["GET"])
    def capabilities(connection_id):
        return jsonify(_service().capabilities(connection_id))

    # ==================== Query ====================

    @app.route("/api/query", methods=["POST"])
    def execute_query():
        data = _body()
        result = _service().execute_query(_connection_id(data), str(data.get("query") or ""))
        return jsonify(result.to_dict())

    # ==================== Databases ====================

    @app.route("/api/databases", methods=["GET"])
    def list_databases():
        databases = _service().list_databases(_arg("connectionId"))
        return jsonify([d.to_dict() for d in databases])

    @app.route("/api/databases", methods=["POST"])
    def create_database():
        data = _body()
        name = data.get("name", "")
        _service().create_database(_connection_id(data), name, data.get("options"))
        return jsonify({"success": True, "name": name}), 201

    @app.route("/api/databases/update", methods=["PUT"])
    def update_database():
        data = _body()
        _service().update_database(
            _connection_id(data), data.get("oldName", ""), data.get("newName", ""), data.get("options")
        )
        return jsonify({"success": True, "name": data.get("newName") or data.get("oldName")})

    @app.route("/api/databases/delete", methods=["DELETE"])
    def delete_database():
        name = _arg("name")
        _service().delete_database(_arg("connectionId"), name)
        return jsonify({"success": True, "name": name})

    # ==================== Tables ====================

    @app.route("/api/tables", methods=["GET"])
    def list_tables():
        tables = _service().list_tables(_arg("connectionId"))
        return jsonify([t.to_dict() for t in tables])

    @app.route("/api/tables", methods=["POST"])
    def create_table():
        data = _body()
        name = data.get("name", "")
        _service().create_table(_connection_id(data), name, _columns(data))
        return jsonify({"success": True, "name": name}), 201

    @app.route("/api/tables/update", methods=["PUT"])
    def update_table():
        data = _body()
        _service().update_table(
            _connection_id(data), data.get("oldName", ""), data.get("newName", ""), _columns(data)
        )
        return jsonify({"success": True, "name": data.get("newName") or data.get("oldName")})

    @app.route("/api/tables/delete", methods=["DELETE"])
    def delete_table():
        name = _arg("name")
        _service().delete_table(_arg("connectionId"), name)
        return jsonify({"success": True, "name": name})

    # ==================== Users ====================

    @app.route("/api/users", methods=["GET"])
    def list_users():
        users = _service().list_users(_arg("connectionId"))
        return jsonify([u.to_dict() for u in users])

    @app.route("/api/users", methods=["POST"])
    def create_user():
        data = _body()
        username = data.get("username", "")
        _service().create_user(
            _connection_id(data),
            username,
            data.get("password", ""),
            data.get("database") or None,
            data.get("permissions") or [],
        )
        return jsonify({"success": True, "username": username}), 201

    @app.route("/api/users/update", methods=["PUT"])
    def update_user():
        data = _body()
        username = data.get("username", "")
        permissions = data.get("permissions")
        _service().update_user(
            _connection_id(data),
            username,
            data.get("password") or None,
            list(permissions) if permissions is not None else None,
        )
        return jsonify({"success": True, "username": username})

    @app.route("/api/users/delete", methods=["DELETE"])
    def delete_user():
        username = _arg("username")
        _service().delete_user(_arg("connectionId"), username)
        return jsonify({"success": True, "username": username})

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})
