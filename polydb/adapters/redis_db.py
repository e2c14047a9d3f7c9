"""
Redis Adapter.
Key-value strategy: numbered databases, keys stand in for tables.
"""

from typing import Any, Dict, List, Optional
import shlex

from ..core.base import BaseAdapter, DatabaseInfo, DatabaseType, TableColumn, TableInfo
from ..core.context import QUERY_TIMEOUT, OperationContext
from ..exceptions import DriverNotInstalledError, UnsupportedOperationError, ValidationError

QUERY_COLUMNS = ["key", "value", "type"]
DEFAULT_DATABASES = 16
MAX_KEYS = 1000

_USERS_HINT = "Manage users with ACL SETUSER / ACL DELUSER through a query"


def parse_db_number(name: Any) -> int:
    """Accept ``3`` or ``db3``."""
    text = str(name or "0").strip().lower()
    if text.startswith("db"):
        text = text[2:]
    try:
        number = int(text)
    except ValueError:
        raise ValidationError(f"invalid Redis database name: {name!r}", field="name")
    if number < 0:
        raise ValidationError(f"invalid Redis database name: {name!r}", field="name")
    return number


class Redis(BaseAdapter):
    """
    Redis adapter.

    Queries are raw commands (``HGETALL user:1``) and come back as
    key/value/type rows. Keys are listed as tables with their Redis type
    as the single ``value`` column.

    Install:
        pip install redis
    """

    db_type = DatabaseType.REDIS
    driver_name = "redis"
    install_command = "pip install redis"
    default_port = 6379
    unsupported = {
        "create_database": "Redis has a fixed set of numbered databases; select one by number instead",
        "update_database": "Numbered databases cannot be renamed; MOVE keys between them instead",
        "create_table": "Keys are created by writing to them, e.g. SET key value",
        "create_user": _USERS_HINT,
        "list_users": "List users with ACL LIST through a query",
        "update_user": _USERS_HINT,
        "delete_user": _USERS_HINT,
    }

    def __init__(self):
        super().__init__()
        self._redis = None

    def _import_driver(self):
        """Import redis driver."""
        try:
            import redis
            return redis
        except ImportError:
            raise DriverNotInstalledError("redis", self.install_command)

    def _new_client(self, db: int, connect_timeout: Optional[float], socket_timeout: float = QUERY_TIMEOUT):
        d = self.descriptor
        return self._redis.Redis(
            host=d.host,
            port=d.port,
            db=db,
            username=d.username or None,
            password=d.password or None,
            ssl=d.ssl,
            socket_timeout=socket_timeout,
            socket_connect_timeout=connect_timeout,
            decode_responses=True,
        )

    @property
    def db_number(self) -> int:
        return parse_db_number(self.descriptor.database)

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        self._redis = self._import_driver()
        self._client = self._new_client(self.db_number, ctx.remaining())

    def _ping(self, ctx: OperationContext) -> None:
        remaining = ctx.remaining()
        if remaining is None:
            self._client.ping()
            return
        # The shared client reads with QUERY_TIMEOUT; ping on a short-lived one
        pinger = self._new_client(self.db_number, remaining, socket_timeout=remaining)
        try:
            pinger.ping()
        finally:
            pinger.close()

    def _is_timeout(self, exc: Exception) -> bool:
        if self._redis is not None and isinstance(exc, self._redis.exceptions.TimeoutError):
            return True
        return super()._is_timeout(exc)

    # ==================== Query Methods ====================

    def _run_query(self, ctx: OperationContext, query: str) -> Any:
        try:
            parts = shlex.split(query)
        except ValueError as e:
            raise ValidationError(f"cannot parse command: {e}", field="query")
        return self._require_session().execute_command(*parts)

    def _normalize_query(self, raw):
        return list(QUERY_COLUMNS), _rows(raw)

    # ==================== Database Methods ====================

    def list_databases(self, ctx):
        client = self._require_session()
        with self._backend_call(ctx, "list_databases"):
            try:
                count = int(client.config_get("databases").get("databases", DEFAULT_DATABASES))
            except self._redis.exceptions.ResponseError:
                # CONFIG is often disabled on managed instances
                count = DEFAULT_DATABASES
            keyspace = client.info("keyspace")
        result = []
        for number in range(count):
            stats = keyspace.get(f"db{number}", {})
            result.append(DatabaseInfo(name=f"db{number}", size=f"{stats.get('keys', 0)} keys"))
        return result

    def delete_database(self, ctx, name):
        number = parse_db_number(name)
        self._require_session()
        with self._backend_call(ctx, "delete_database"):
            client = self._new_client(number, ctx.remaining())
            try:
                client.flushdb()
            finally:
                client.close()

    # ==================== Table Methods ====================

    def list_tables(self, ctx):
        client = self._require_session()
        with self._backend_call(ctx, "list_tables"):
            keys = []
            for key in client.scan_iter(count=MAX_KEYS):
                keys.append(key)
                if len(keys) >= MAX_KEYS:
                    break
            pipe = client.pipeline(transaction=False)
            for key in keys:
                pipe.type(key)
            types = pipe.execute()
        database = f"db{self.db_number}"
        return [
            TableInfo(name=key, database=database, columns=[TableColumn(name="value", type=key_type)])
            for key, key_type in sorted(zip(keys, types))
        ]

    def update_table(self, ctx, old_name, new_name, columns=None):
        if columns:
            raise UnsupportedOperationError(
                self.db_type.value, "update_table", "Redis values have no columns to alter"
            )
        if not new_name or new_name == old_name:
            return
        client = self._require_session()
        with self._backend_call(ctx, "update_table"):
            client.rename(old_name, new_name)

    def delete_table(self, ctx, name):
        client = self._require_session()
        with self._backend_call(ctx, "delete_table"):
            client.delete(name)


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


def _rows(result: Any) -> List[Dict[str, Any]]:
    """Shape a command reply as key/value/type rows."""
    if result is None:
        return []
    if isinstance(result, dict):
        return [
            {"key": str(k), "value": v if isinstance(v, (str, int, float, bool)) else str(v), "type": _type_name(v)}
            for k, v in result.items()
        ]
    if isinstance(result, (list, tuple, set)):
        rows = []
        for item in result:
            if isinstance(item, str):
                rows.append({"key": item, "value": "", "type": "string"})
            else:
                rows.append({"key": "item", "value": str(item), "type": _type_name(item)})
        return rows
    return [{"key": "result", "value": result, "type": _type_name(result)}]
