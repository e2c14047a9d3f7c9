"""
Apache Kafka Adapter.
Talks to a Kafka REST proxy: topics are databases, partitions are tables.
"""

from typing import Any, Dict, List
from urllib.parse import quote

from .http import HttpAdapter
from ..core.base import DatabaseInfo, DatabaseType, TableInfo
from ..core.context import OperationContext
from ..exceptions import ValidationError

_NO_USERS = "Kafka ACLs are managed with kafka-acls.sh or the admin API, not through the REST proxy"
_NO_QUERY = "Consume messages with a consumer instance of the REST proxy or kafka-console-consumer"


def _topic_names(payload: Any) -> List[str]:
    """Topic names from either proxy dialect (v2 list or v3 ``data`` envelope)."""
    if isinstance(payload, list):
        return [str(name) for name in payload]
    if not isinstance(payload, dict):
        return []
    if isinstance(payload.get("topics"), list):
        return [str(name) for name in payload["topics"]]
    names = []
    for item in payload.get("data") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("topic_name") or item.get("name")
        if name:
            names.append(str(name))
    return names


class Kafka(HttpAdapter):
    """
    Kafka adapter over the Confluent REST proxy.

    ``database`` on the descriptor names the topic whose partitions are
    listed as tables. Topics are created with
    ``{"partitions": n, "replicationFactor": n}`` options (both default 1).

    Install:
        pip install requests
    """

    db_type = DatabaseType.KAFKA
    default_port = 8082
    unsupported = {
        "execute_query": _NO_QUERY,
        "update_database": "Topics cannot be renamed; create a new topic and mirror the data",
        "create_table": "Partitions are added by raising the partition count of the topic",
        "update_table": "Partitions cannot be altered individually",
        "delete_table": "Partitions cannot be deleted; delete the topic instead",
        "create_user": _NO_USERS,
        "list_users": _NO_USERS,
        "update_user": _NO_USERS,
        "delete_user": _NO_USERS,
    }

    def _ping(self, ctx: OperationContext) -> None:
        self._request(ctx, "GET", "/topics")

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        options = options or {}
        body: Dict[str, Any] = {
            "partitions": int(options.get("partitions", 1)),
            "replication_factor": int(options.get("replicationFactor", options.get("replication_factor", 1))),
        }
        self._json(ctx, "create_database", "POST", f"/topics/{quote(name, safe='')}", json=body)

    def list_databases(self, ctx):
        payload = self._json(ctx, "list_databases", "GET", "/topics")
        return [DatabaseInfo(name=name) for name in sorted(_topic_names(payload))]

    def delete_database(self, ctx, name):
        self._json(ctx, "delete_database", "DELETE", f"/topics/{quote(name, safe='')}")

    # ==================== Table Methods ====================

    def list_tables(self, ctx):
        topic = self.descriptor.database if self.descriptor else ""
        if not topic:
            raise ValidationError("set the topic in the connection's database field", field="database")
        payload = self._json(ctx, "list_tables", "GET", f"/topics/{quote(topic, safe='')}/partitions")
        if isinstance(payload, dict):
            partitions = payload.get("partitions") or payload.get("data") or []
        else:
            partitions = payload or []
        tables = []
        for item in partitions:
            if isinstance(item, dict) and "partition" in item:
                tables.append(TableInfo(name=f"partition-{int(item['partition'])}", database=topic))
            elif isinstance(item, dict) and "partition_id" in item:
                tables.append(TableInfo(name=f"partition-{int(item['partition_id'])}", database=topic))
        return tables
