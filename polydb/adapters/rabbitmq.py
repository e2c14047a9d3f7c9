"""
RabbitMQ Adapter.
Management HTTP API: vhosts are databases, queues are tables.
"""

from typing import Any, Dict, List
from urllib.parse import quote

from .http import HttpAdapter
from ..core.base import DatabaseInfo, DatabaseType, TableInfo, UserInfo
from ..core.context import OperationContext

DEFAULT_VHOST = "/"
SUPERUSER_TAG = "administrator"


def _segment(value: str) -> str:
    """URL-encode one path segment; the default vhost ``/`` becomes ``%2F``."""
    return quote(value, safe="")


def _tags(value: Any) -> List[str]:
    # older servers send a comma separated string, newer ones a list
    if isinstance(value, str):
        return [tag for tag in value.split(",") if tag]
    return list(value or [])


class RabbitMQ(HttpAdapter):
    """
    RabbitMQ adapter over the management plugin.

    ``database`` on the descriptor names the vhost used for queue
    operations (default ``/``). User permissions are management tags
    (``administrator``, ``monitoring``...); a user created with a
    database gets full configure/write/read rights on that vhost.

    Install:
        pip install requests
    """

    db_type = DatabaseType.RABBITMQ
    default_port = 15672
    base_path = "/api"
    unsupported = {
        "execute_query": "Publish and consume through an AMQP client such as pika",
        "update_database": "Vhosts cannot be renamed; create a new vhost and move definitions",
        "update_table": "Queues cannot be renamed or altered; declare a new queue and rebind it",
    }

    @property
    def vhost(self) -> str:
        return (self.descriptor.database if self.descriptor else "") or DEFAULT_VHOST

    def _ping(self, ctx: OperationContext) -> None:
        self._request(ctx, "GET", "/overview")

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        body: Dict[str, Any] = {}
        if options and options.get("description"):
            body["description"] = str(options["description"])
        self._json(ctx, "create_database", "PUT", f"/vhosts/{_segment(name or DEFAULT_VHOST)}", json=body)

    def list_databases(self, ctx):
        vhosts = self._json(ctx, "list_databases", "GET", "/vhosts") or []
        return [
            DatabaseInfo(name=item["name"], size=f"{item.get('messages', 0)} messages")
            for item in sorted(vhosts, key=lambda v: v["name"])
        ]

    def delete_database(self, ctx, name):
        self._json(ctx, "delete_database", "DELETE", f"/vhosts/{_segment(name)}")

    # ==================== Table Methods ====================

    def create_table(self, ctx, name, columns):
        body = {"auto_delete": False, "durable": True}
        self._json(ctx, "create_table", "PUT", f"/queues/{_segment(self.vhost)}/{_segment(name)}", json=body)

    def list_tables(self, ctx):
        queues = self._json(ctx, "list_tables", "GET", f"/queues/{_segment(self.vhost)}") or []
        return [
            TableInfo(name=queue["name"], database=self.vhost, rows=int(queue.get("messages") or 0))
            for queue in sorted(queues, key=lambda q: q["name"])
        ]

    def delete_table(self, ctx, name):
        self._json(ctx, "delete_table", "DELETE", f"/queues/{_segment(self.vhost)}/{_segment(name)}")

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        body = {"password": password, "tags": ",".join(permissions or [])}
        self._json(ctx, "create_user", "PUT", f"/users/{_segment(username)}", json=body)
        if database:
            self._json(
                ctx, "create_user", "PUT",
                f"/permissions/{_segment(database)}/{_segment(username)}",
                json={"configure": ".*", "write": ".*", "read": ".*"},
            )

    def list_users(self, ctx):
        users = self._json(ctx, "list_users", "GET", "/users") or []
        result = []
        for user in sorted(users, key=lambda u: u["name"]):
            tags = _tags(user.get("tags"))
            result.append(UserInfo(username=user["name"], permissions=tags, is_superuser=SUPERUSER_TAG in tags))
        return result

    def update_user(self, ctx, username, password=None, permissions=None):
        current = self._json(ctx, "update_user", "GET", f"/users/{_segment(username)}") or {}
        body: Dict[str, Any] = {
            "tags": ",".join(permissions) if permissions is not None else ",".join(_tags(current.get("tags"))),
        }
        if password:
            body["password"] = password
        else:
            body["password_hash"] = current.get("password_hash", "")
            if current.get("hashing_algorithm"):
                body["hashing_algorithm"] = current["hashing_algorithm"]
        self._json(ctx, "update_user", "PUT", f"/users/{_segment(username)}", json=body)

    def delete_user(self, ctx, username):
        self._json(ctx, "delete_user", "DELETE", f"/users/{_segment(username)}")
