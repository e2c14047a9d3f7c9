"""
Apache Cassandra Adapter.
Columnar strategy: keyspaces are databases, roles are users.
"""

from typing import Any, Dict, List, Optional, Tuple
import re
import uuid

from ..core.base import (
    BaseAdapter, DatabaseInfo, DatabaseType, TableColumn, TableInfo, UserInfo
)
from ..core.context import OperationContext
from ..exceptions import DriverNotInstalledError, UnsupportedOperationError, ValidationError

SYSTEM_KEYSPACES = ("system", "system_schema", "system_auth", "system_distributed", "system_traces", "system_views", "system_virtual_schema")
DEFAULT_REPLICATION_FACTOR = 3
PERMISSIONS = ("ALL", "ALL PERMISSIONS", "CREATE", "ALTER", "DROP", "SELECT", "MODIFY", "AUTHORIZE", "DESCRIBE", "EXECUTE")
_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_<>, ]*$")


def quote(name: str) -> str:
    """Quote a CQL identifier."""
    if not name:
        raise ValidationError("identifier must not be empty")
    return '"' + name.replace('"', '""') + '"'


class Cassandra(BaseAdapter):
    """
    Apache Cassandra adapter.

    Keyspaces are created with SimpleStrategy; pass
    ``{"replication_factor": n}`` to override the default of 3.

    Install:
        pip install cassandra-driver
    """

    db_type = DatabaseType.CASSANDRA
    driver_name = "cassandra-driver"
    install_command = "pip install cassandra-driver"
    default_port = 9042

    def __init__(self):
        super().__init__()
        self._cluster = None
        self._driver = None

    def _import_driver(self):
        try:
            import cassandra
            from cassandra.auth import PlainTextAuthProvider
            from cassandra.cluster import Cluster
            from cassandra.query import dict_factory
            return cassandra, Cluster, PlainTextAuthProvider, dict_factory
        except ImportError:
            raise DriverNotInstalledError("cassandra-driver", self.install_command)

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        cassandra, Cluster, PlainTextAuthProvider, dict_factory = self._import_driver()
        self._driver = cassandra
        d = self.descriptor

        auth_provider = None
        if d.username and d.password:
            auth_provider = PlainTextAuthProvider(username=d.username, password=d.password)

        ssl_context = None
        if d.ssl:
            import ssl
            ssl_context = ssl.create_default_context()

        timeout = ctx.remaining() or 10.0
        self._cluster = Cluster(
            contact_points=[d.host],
            port=d.port,
            auth_provider=auth_provider,
            ssl_context=ssl_context,
            connect_timeout=timeout,
            control_connection_timeout=timeout,
        )
        try:
            self._client = self._cluster.connect(d.database or None)
        except Exception:
            # No session yet, so disconnect() would skip the cluster
            self._cluster.shutdown()
            self._cluster = None
            raise
        self._client.row_factory = dict_factory

    def _close(self) -> None:
        try:
            self._client.shutdown()
        finally:
            if self._cluster is not None:
                self._cluster.shutdown()
                self._cluster = None

    def _ping(self, ctx: OperationContext) -> None:
        self._execute(ctx, "SELECT now() FROM system.local")

    def _is_timeout(self, exc: Exception) -> bool:
        if self._driver is not None and isinstance(exc, (self._driver.OperationTimedOut, self._driver.Timeout)):
            return True
        return super()._is_timeout(exc)

    def _execute(self, ctx: OperationContext, statement: str, params: Optional[tuple] = None):
        session = self._require_session()
        return session.execute(statement, params, timeout=ctx.remaining())

    def _run(self, ctx: OperationContext, operation: str, statement: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        with self._backend_call(ctx, operation):
            return list(self._execute(ctx, statement, params))

    @property
    def keyspace(self) -> Optional[str]:
        return self.descriptor.database or self._require_session().keyspace

    # ==================== Query Methods ====================

    def _run_query(self, ctx: OperationContext, query: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        result = self._execute(ctx, query)
        rows = list(result)
        return list(result.column_names or []), rows

    def _normalize_query(self, raw):
        columns, records = raw
        rows = [{k: _plain(v) for k, v in record.items()} for record in records]
        if not columns and rows:
            columns = list(rows[0])
        return columns, rows

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        options = options or {}
        factor = int(options.get("replication_factor", DEFAULT_REPLICATION_FACTOR))
        self._run(
            ctx, "create_database",
            f"CREATE KEYSPACE IF NOT EXISTS {quote(name)} WITH replication = "
            f"{{'class': 'SimpleStrategy', 'replication_factor': {factor}}}"
        )

    def list_databases(self, ctx):
        rows = self._run(ctx, "list_databases", "SELECT keyspace_name, durable_writes FROM system_schema.keyspaces")
        return [
            DatabaseInfo(name=row["keyspace_name"])
            for row in sorted(rows, key=lambda r: r["keyspace_name"])
            if row["keyspace_name"] not in SYSTEM_KEYSPACES
        ]

    def update_database(self, ctx, old_name, new_name, options=None):
        if new_name and new_name != old_name:
            raise UnsupportedOperationError(
                self.db_type.value, "update_database",
                "Keyspaces cannot be renamed; create a new keyspace and copy the tables"
            )
        options = options or {}
        if "replication_factor" in options:
            factor = int(options["replication_factor"])
            self._run(
                ctx, "update_database",
                f"ALTER KEYSPACE {quote(old_name)} WITH replication = "
                f"{{'class': 'SimpleStrategy', 'replication_factor': {factor}}}"
            )

    def delete_database(self, ctx, name):
        self._run(ctx, "delete_database", f"DROP KEYSPACE IF EXISTS {quote(name)}")

    # ==================== Table Methods ====================

    def _qualified(self, name: str) -> str:
        keyspace = self.keyspace
        if keyspace:
            return f"{quote(keyspace)}.{quote(name)}"
        return quote(name)

    def create_table(self, ctx, name, columns):
        if not columns:
            raise ValidationError("at least one column is required", field="columns")
        definitions = [f"{quote(c.name)} {_column_type(c)}" for c in columns]
        keys = [c.name for c in columns if c.primary_key] or [columns[0].name]
        self._run(
            ctx, "create_table",
            f"CREATE TABLE IF NOT EXISTS {self._qualified(name)} "
            f"({', '.join(definitions)}, PRIMARY KEY ({', '.join(quote(k) for k in keys)}))"
        )

    def list_tables(self, ctx):
        keyspace = self.keyspace
        if keyspace:
            tables = self._run(
                ctx, "list_tables",
                "SELECT keyspace_name, table_name FROM system_schema.tables WHERE keyspace_name = %s",
                (keyspace,)
            )
            columns = self._run(
                ctx, "list_tables",
                "SELECT table_name, column_name, type, kind FROM system_schema.columns WHERE keyspace_name = %s",
                (keyspace,)
            )
        else:
            tables = [
                row for row in self._run(ctx, "list_tables", "SELECT keyspace_name, table_name FROM system_schema.tables")
                if row["keyspace_name"] not in SYSTEM_KEYSPACES
            ]
            columns = []

        by_table: Dict[str, List[TableColumn]] = {}
        for row in columns:
            by_table.setdefault(row["table_name"], []).append(TableColumn(
                name=row["column_name"],
                type=row["type"],
                nullable=row["kind"] == "regular",
                primary_key=row["kind"] in ("partition_key", "clustering"),
            ))
        return [
            TableInfo(name=row["table_name"], database=row["keyspace_name"], columns=by_table.get(row["table_name"], []))
            for row in sorted(tables, key=lambda r: (r["keyspace_name"], r["table_name"]))
        ]

    def update_table(self, ctx, old_name, new_name, columns=None):
        if new_name and new_name != old_name:
            raise UnsupportedOperationError(
                self.db_type.value, "update_table",
                "Tables cannot be renamed; create a new table and copy the rows"
            )
        for column in columns or []:
            self._run(
                ctx, "update_table",
                f"ALTER TABLE {self._qualified(old_name)} ADD {quote(column.name)} {_column_type(column)}"
            )

    def delete_table(self, ctx, name):
        self._run(ctx, "delete_table", f"DROP TABLE IF EXISTS {self._qualified(name)}")

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        self._run(
            ctx, "create_user",
            f"CREATE ROLE IF NOT EXISTS {quote(username)} WITH PASSWORD = %s AND LOGIN = true",
            (password,)
        )
        self._grant(ctx, "create_user", username, database or self.descriptor.database, permissions or [])

    def list_users(self, ctx):
        rows = self._run(ctx, "list_users", "SELECT role, is_superuser, can_login, member_of FROM system_auth.roles")
        return [
            UserInfo(
                username=row["role"],
                permissions=sorted(row.get("member_of") or []),
                is_superuser=bool(row["is_superuser"]),
            )
            for row in sorted(rows, key=lambda r: r["role"])
        ]

    def update_user(self, ctx, username, password=None, permissions=None):
        if password:
            self._run(ctx, "update_user", f"ALTER ROLE {quote(username)} WITH PASSWORD = %s", (password,))
        if permissions is not None:
            self._run(ctx, "update_user", f"REVOKE ALL PERMISSIONS ON ALL KEYSPACES FROM {quote(username)}")
            self._grant(ctx, "update_user", username, self.descriptor.database, permissions)

    def delete_user(self, ctx, username):
        self._run(ctx, "delete_user", f"DROP ROLE IF EXISTS {quote(username)}")

    def _grant(self, ctx, operation, username, keyspace, permissions):
        target = f"KEYSPACE {quote(keyspace)}" if keyspace else "ALL KEYSPACES"
        for permission in permissions:
            permission = permission.strip().upper()
            if permission not in PERMISSIONS:
                raise ValidationError(f"unknown Cassandra permission: {permission}", field="permissions")
            self._run(ctx, operation, f"GRANT {permission} ON {target} TO {quote(username)}")


def _column_type(column: TableColumn) -> str:
    if not _TYPE_RE.match(column.type or ""):
        raise ValidationError(f"invalid column type for {column.name}: {column.type!r}", field="columns")
    return column.type


def _plain(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (set, frozenset)) or type(value).__name__ == "SortedSet":
        return sorted(value, key=str)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict) or type(value).__name__ == "OrderedMapSerializedKey":
        return {str(k): _plain(v) for k, v in value.items()}
    return value
