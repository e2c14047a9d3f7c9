"""
Elasticsearch Adapter.
Indices are databases; there is no table layer.
"""

from typing import Any, Dict, List, Optional
import json

from ..core.base import BaseAdapter, DatabaseInfo, DatabaseType, UserInfo, ordered_columns
from ..core.context import QUERY_TIMEOUT, OperationContext
from ..exceptions import DriverNotInstalledError, ValidationError

_NO_TABLES = "Elasticsearch has no tables; documents live directly in an index, manage indices as databases"
SUPERUSER_ROLES = ("superuser", "all")


def _body(response: Any) -> Any:
    return getattr(response, "body", response)


class Elasticsearch(BaseAdapter):
    """
    Elasticsearch adapter.

    Queries are search bodies run against the descriptor's index (or
    every index). An ``_index`` key in the body picks another target::

        {"_index": "logs-*", "query": {"match": {"level": "error"}}, "size": 50}

    Users map to the security API and need X-Pack security enabled.

    Install:
        pip install elasticsearch
    """

    db_type = DatabaseType.ELASTICSEARCH
    driver_name = "elasticsearch"
    install_command = "pip install elasticsearch"
    default_port = 9200
    unsupported = {
        "create_table": _NO_TABLES,
        "list_tables": _NO_TABLES,
        "update_table": _NO_TABLES,
        "delete_table": _NO_TABLES,
    }

    def __init__(self):
        super().__init__()
        self._es = None

    def _import_driver(self):
        try:
            import elasticsearch
            return elasticsearch
        except ImportError:
            raise DriverNotInstalledError("elasticsearch", self.install_command)

    def _api(self, ctx: OperationContext):
        """Client bound to the context deadline."""
        remaining = ctx.remaining()
        return self._require_session().options(
            request_timeout=remaining if remaining is not None else QUERY_TIMEOUT
        )

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        self._es = self._import_driver()
        d = self.descriptor
        scheme = "https" if d.ssl else "http"
        auth = None
        if d.username:
            auth = (d.username, d.password)
        self._client = self._es.Elasticsearch(
            hosts=[f"{scheme}://{d.host}:{d.port}"],
            basic_auth=auth,
            request_timeout=QUERY_TIMEOUT,
        )

    def _ping(self, ctx: OperationContext) -> None:
        self._api(ctx).info()

    def _is_timeout(self, exc: Exception) -> bool:
        if self._es is not None and isinstance(exc, self._es.ConnectionTimeout):
            return True
        return super()._is_timeout(exc)

    # ==================== Query Methods ====================

    def _run_query(self, ctx: OperationContext, query: str) -> List[Dict[str, Any]]:
        try:
            body = json.loads(query)
        except ValueError as e:
            raise ValidationError(f"query is not valid JSON: {e}", field="query")
        if not isinstance(body, dict):
            raise ValidationError("query must be a JSON object", field="query")
        index = body.pop("_index", None) or self.descriptor.database or "_all"
        response = _body(self._api(ctx).search(index=index, body=body))
        return response.get("hits", {}).get("hits", [])

    def _normalize_query(self, raw):
        rows = []
        for hit in raw:
            row = {"_id": hit.get("_id")}
            row.update(hit.get("_source") or {})
            rows.append(row)
        return ordered_columns(rows, first=("_id",)), rows

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        options = options or {}
        settings = {
            "number_of_shards": int(options.get("shards", 1)),
            "number_of_replicas": int(options.get("replicas", 1)),
        }
        with self._backend_call(ctx, "create_database"):
            self._api(ctx).indices.create(index=name, settings=settings)

    def list_databases(self, ctx):
        with self._backend_call(ctx, "list_databases"):
            indices = _body(self._api(ctx).cat.indices(format="json", h="index,store.size"))
        return [
            DatabaseInfo(name=item["index"], size=item.get("store.size"))
            for item in sorted(indices, key=lambda i: i["index"])
        ]

    def update_database(self, ctx, old_name, new_name, options=None):
        """Rename by reindexing into ``new_name`` and dropping ``old_name``."""
        if not new_name or new_name == old_name:
            return
        with self._backend_call(ctx, "update_database"):
            api = self._api(ctx)
            api.reindex(
                source={"index": old_name},
                dest={"index": new_name},
                wait_for_completion=True,
                refresh=True,
            )
            api.indices.delete(index=old_name)

    def delete_database(self, ctx, name):
        with self._backend_call(ctx, "delete_database"):
            self._api(ctx).indices.delete(index=name)

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        with self._backend_call(ctx, "create_user"):
            self._api(ctx).security.put_user(
                username=username, password=password, roles=list(permissions or [])
            )

    def list_users(self, ctx):
        with self._backend_call(ctx, "list_users"):
            users = _body(self._api(ctx).security.get_user())
        result = []
        for username in sorted(users):
            roles = list(users[username].get("roles") or [])
            result.append(UserInfo(
                username=username,
                permissions=roles,
                is_superuser=any(r in SUPERUSER_ROLES for r in roles),
            ))
        return result

    def update_user(self, ctx, username, password=None, permissions=None):
        with self._backend_call(ctx, "update_user"):
            api = self._api(ctx)
            if password:
                api.security.change_password(username=username, password=password)
            if permissions is not None:
                current = _body(api.security.get_user(username=username)).get(username, {})
                api.security.put_user(
                    username=username,
                    roles=list(permissions),
                    full_name=current.get("full_name"),
                    email=current.get("email"),
                    metadata=current.get("metadata"),
                )

    def delete_user(self, ctx, username):
        with self._backend_call(ctx, "delete_user"):
            self._api(ctx).security.delete_user(username=username)
