"""
MongoDB Adapter.
Document strategy: collections are tables, documents are rows.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.base import (
    BaseAdapter, DatabaseInfo, DatabaseType, TableInfo, UserInfo, ordered_columns
)
from ..core.context import OperationContext
from ..exceptions import DriverNotInstalledError, UnsupportedOperationError, ValidationError

SYSTEM_DATABASES = ("admin", "local", "config")
SUPERUSER_ROLES = ("root", "userAdminAnyDatabase")
DEFAULT_LIMIT = 1000


class MongoDB(BaseAdapter):
    """
    MongoDB adapter.

    Queries are Extended JSON. A document with a ``collection`` key runs
    a find::

        {"collection": "users", "filter": {"age": {"$gt": 25}}, "limit": 10}

    Anything else is sent as a database command::

        {"collStats": "users"}

    Install:
        pip install pymongo
    """

    db_type = DatabaseType.MONGODB
    driver_name = "pymongo"
    install_command = "pip install pymongo"
    default_port = 27017

    def __init__(self):
        super().__init__()
        self._pymongo = None
        self._json_util = None

    def _import_driver(self):
        """Import pymongo driver."""
        try:
            import pymongo
            import pymongo.errors
            from bson import json_util
            return pymongo, json_util
        except ImportError:
            raise DriverNotInstalledError("pymongo", self.install_command)

    @property
    def _db(self):
        return self._require_session()[self.descriptor.database or "admin"]

    def _timeout(self, ctx: OperationContext):
        return self._pymongo.timeout(ctx.remaining())

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        self._pymongo, self._json_util = self._import_driver()
        d = self.descriptor
        params: Dict[str, Any] = {
            "host": d.host,
            "port": d.port,
            "tls": d.ssl,
            "appname": "polydb",
        }
        remaining = ctx.remaining()
        if remaining is not None:
            params["serverSelectionTimeoutMS"] = int(remaining * 1000)
            params["connectTimeoutMS"] = int(remaining * 1000)
        if d.username:
            params["username"] = d.username
            params["password"] = d.password
            params["authSource"] = "admin"
        self._client = self._pymongo.MongoClient(**params)

    def _ping(self, ctx: OperationContext) -> None:
        with self._timeout(ctx):
            self._client.admin.command("ping")

    def _is_timeout(self, exc: Exception) -> bool:
        if self._pymongo is not None and isinstance(exc, self._pymongo.errors.PyMongoError):
            return bool(exc.timeout)
        return super()._is_timeout(exc)

    # ==================== Query Methods ====================

    def _run_query(self, ctx: OperationContext, query: str) -> List[Dict[str, Any]]:
        try:
            spec = self._json_util.loads(query)
        except ValueError as e:
            raise ValidationError(f"query is not valid JSON: {e}", field="query")
        if not isinstance(spec, dict) or not spec:
            raise ValidationError("query must be a JSON object", field="query")

        with self._timeout(ctx):
            if "collection" in spec:
                collection = self._db[spec["collection"]]
                cursor = collection.find(
                    spec.get("filter") or {},
                    projection=spec.get("projection"),
                    limit=int(spec.get("limit", DEFAULT_LIMIT)),
                    skip=int(spec.get("skip", 0)),
                    sort=_sort_spec(spec.get("sort")),
                )
                return list(cursor)
            return [self._db.command(spec)]

    def _normalize_query(self, raw):
        rows = [_plain(doc) for doc in raw]
        return ordered_columns(rows, first=("_id",)), rows

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        # Databases exist once they hold data
        with self._backend_call(ctx, "create_database"), self._timeout(ctx):
            self._require_session()[name]["init"].insert_one({"init": True})

    def list_databases(self, ctx):
        result = []
        with self._backend_call(ctx, "list_databases"), self._timeout(ctx):
            for name in self._require_session().list_database_names():
                if name in SYSTEM_DATABASES:
                    continue
                stats = self._require_session()[name].command("dbStats")
                result.append(DatabaseInfo(name=name, size=_megabytes(stats.get("dataSize"))))
        return result

    def update_database(self, ctx, old_name, new_name, options=None):
        if not new_name or new_name == old_name:
            return
        with self._backend_call(ctx, "update_database"), self._timeout(ctx):
            source = self._require_session()[old_name]
            target = self._require_session()[new_name]
            for coll_name in source.list_collection_names():
                docs = list(source[coll_name].find({}))
                if docs:
                    target[coll_name].insert_many(docs)
                else:
                    target.create_collection(coll_name)
            self._require_session().drop_database(old_name)

    def delete_database(self, ctx, name):
        with self._backend_call(ctx, "delete_database"), self._timeout(ctx):
            self._require_session().drop_database(name)

    # ==================== Table Methods ====================

    def create_table(self, ctx, name, columns):
        with self._backend_call(ctx, "create_table"), self._timeout(ctx):
            self._db.create_collection(name)

    def list_tables(self, ctx):
        db = self._db
        tables = []
        with self._backend_call(ctx, "list_tables"), self._timeout(ctx):
            for coll_name in sorted(db.list_collection_names()):
                stats = db.command("collStats", coll_name)
                tables.append(TableInfo(
                    name=coll_name,
                    database=db.name,
                    size=_megabytes(stats.get("size")),
                    rows=int(stats.get("count", 0)),
                ))
        return tables

    def update_table(self, ctx, old_name, new_name, columns=None):
        if columns:
            raise UnsupportedOperationError(
                self.db_type.value, "update_table",
                "Collections have no fixed schema; migrate documents with an update query instead"
            )
        if not new_name or new_name == old_name:
            return
        with self._backend_call(ctx, "update_table"), self._timeout(ctx):
            self._db[old_name].rename(new_name)

    def delete_table(self, ctx, name):
        with self._backend_call(ctx, "delete_table"), self._timeout(ctx):
            self._db.drop_collection(name)

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        db_name = database or self.descriptor.database or "admin"
        roles = [{"role": p, "db": db_name} for p in permissions or []]
        with self._backend_call(ctx, "create_user"), self._timeout(ctx):
            self._require_session()[db_name].command("createUser", username, pwd=password, roles=roles)

    def list_users(self, ctx):
        with self._backend_call(ctx, "list_users"), self._timeout(ctx):
            result = self._db.command("usersInfo", 1)
        users = []
        for entry in result.get("users", []):
            permissions = [r["role"] for r in entry.get("roles", []) if r.get("role")]
            users.append(UserInfo(
                username=entry["user"],
                permissions=permissions,
                is_superuser=any(p in SUPERUSER_ROLES for p in permissions),
            ))
        return users

    def update_user(self, ctx, username, password=None, permissions=None):
        db = self._db
        with self._backend_call(ctx, "update_user"), self._timeout(ctx):
            if password:
                db.command("updateUser", username, pwd=password)
            if permissions is not None:
                roles = [{"role": p, "db": db.name} for p in permissions]
                db.command("updateUser", username, roles=roles)

    def delete_user(self, ctx, username):
        with self._backend_call(ctx, "delete_user"), self._timeout(ctx):
            self._db.command("dropUser", username)


def _sort_spec(sort: Any) -> Optional[List[tuple]]:
    if not sort:
        return None
    if isinstance(sort, dict):
        return [(key, int(direction)) for key, direction in sort.items()]
    return [tuple(item) for item in sort]


def _megabytes(size: Any) -> str:
    if size is None:
        return "N/A"
    return f"{float(size) / (1024 * 1024):.2f} MB"


def _plain(value: Any) -> Any:
    """BSON values to JSON-friendly Python values."""
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool, datetime)):
        return value
    return str(value)
