"""
Neo4j Graph Database Adapter.
"""

from typing import Any, Dict, List, Optional, Tuple

from ..core.base import BaseAdapter, DatabaseInfo, DatabaseType, TableInfo, UserInfo
from ..core.context import OperationContext
from ..exceptions import DriverNotInstalledError, ValidationError

SYSTEM_DATABASE = "system"
DEFAULT_DATABASE = "neo4j"
SUPERUSER_ROLE = "admin"


def quote(name: str) -> str:
    """Backtick-quote a label, database or user name."""
    if not name:
        raise ValidationError("name must not be empty")
    return "`" + name.replace("`", "``") + "`"


class Neo4j(BaseAdapter):
    """
    Neo4j graph database adapter.

    Labels stand in for tables: listing them calls ``db.labels()``,
    renaming relabels every node, deleting detaches and removes every
    node carrying the label. Databases and users are managed through
    the ``system`` database and need an Enterprise server for anything
    beyond the default database.

    Usage:
        result = adapter.execute_query(ctx, '''
            MATCH (p:Person)-[:KNOWS]->(friend)
            RETURN p.name AS name, friend.name AS friend
        ''')

    Install:
        pip install neo4j
    """

    db_type = DatabaseType.NEO4J
    driver_name = "neo4j"
    install_command = "pip install neo4j"
    default_port = 7687
    unsupported = {
        "create_table": "Labels exist once a node carries them, e.g. CREATE (:Label {key: 'value'})",
    }

    def __init__(self):
        super().__init__()
        self._neo4j = None

    def _import_driver(self):
        try:
            import neo4j
            return neo4j
        except ImportError:
            raise DriverNotInstalledError("neo4j", self.install_command)

    @property
    def database(self) -> str:
        return self.descriptor.database or DEFAULT_DATABASE

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        self._neo4j = self._import_driver()
        d = self.descriptor
        scheme = "bolt+s" if d.ssl else "bolt"
        auth = None
        if d.username and d.password:
            auth = (d.username, d.password)
        kwargs = {"auth": auth}
        if ctx.remaining() is not None:
            kwargs["connection_timeout"] = ctx.remaining()
        self._client = self._neo4j.GraphDatabase.driver(f"{scheme}://{d.host}:{d.port}", **kwargs)

    def _ping(self, ctx: OperationContext) -> None:
        self._run(ctx, "RETURN 1")

    def _is_timeout(self, exc: Exception) -> bool:
        if "TimedOut" in str(getattr(exc, "code", "") or ""):
            return True
        return super()._is_timeout(exc)

    def _run(
        self,
        ctx: OperationContext,
        statement: str,
        params: Optional[Dict[str, Any]] = None,
        database: Optional[str] = None
    ) -> Tuple[List[str], List[Dict[str, Any]]]:
        driver = self._require_session()
        query = self._neo4j.Query(statement, timeout=ctx.remaining())
        with driver.session(database=database or self.database) as session:
            result = session.run(query, params or {})
            keys = list(result.keys())
            records = [record.data() for record in result]
        return keys, records

    def _call(self, ctx, operation, statement, params=None, database=None) -> List[Dict[str, Any]]:
        with self._backend_call(ctx, operation):
            return self._run(ctx, statement, params, database)[1]

    # ==================== Query Methods ====================

    def _run_query(self, ctx: OperationContext, query: str):
        return self._run(ctx, query)

    def _normalize_query(self, raw):
        keys, records = raw
        return keys, [{k: _plain(v) for k, v in record.items()} for record in records]

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        self._call(ctx, "create_database", f"CREATE DATABASE {quote(name)} IF NOT EXISTS", database=SYSTEM_DATABASE)

    def list_databases(self, ctx):
        rows = self._call(ctx, "list_databases", "SHOW DATABASES", database=SYSTEM_DATABASE)
        seen = {}
        for row in rows:
            # clustered servers report one row per member
            seen.setdefault(row["name"], DatabaseInfo(name=row["name"]))
        return [seen[name] for name in sorted(seen)]

    def update_database(self, ctx, old_name, new_name, options=None):
        """Rename through an alias; Neo4j cannot rename a database in place."""
        if not new_name or new_name == old_name:
            return
        self._call(
            ctx, "update_database",
            f"CREATE ALIAS {quote(new_name)} IF NOT EXISTS FOR DATABASE {quote(old_name)}",
            database=SYSTEM_DATABASE,
        )

    def delete_database(self, ctx, name):
        self._call(ctx, "delete_database", f"DROP DATABASE {quote(name)} IF EXISTS", database=SYSTEM_DATABASE)

    # ==================== Table Methods ====================

    def list_tables(self, ctx):
        rows = self._call(ctx, "list_tables", "CALL db.labels() YIELD label RETURN label")
        return [TableInfo(name=row["label"], database=self.database) for row in sorted(rows, key=lambda r: r["label"])]

    def update_table(self, ctx, old_name, new_name, columns=None):
        if not new_name or new_name == old_name:
            return
        self._call(
            ctx, "update_table",
            f"MATCH (n:{quote(old_name)}) SET n:{quote(new_name)} REMOVE n:{quote(old_name)}",
        )

    def delete_table(self, ctx, name):
        self._call(ctx, "delete_table", f"MATCH (n:{quote(name)}) DETACH DELETE n")

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        self._call(
            ctx, "create_user",
            f"CREATE USER {quote(username)} IF NOT EXISTS SET PASSWORD $password CHANGE NOT REQUIRED",
            {"password": password},
            database=SYSTEM_DATABASE,
        )
        self._grant(ctx, "create_user", username, permissions or [])

    def list_users(self, ctx):
        rows = self._call(ctx, "list_users", "SHOW USERS", database=SYSTEM_DATABASE)
        result = []
        for row in sorted(rows, key=lambda r: r["user"]):
            roles = sorted(row.get("roles") or [])
            result.append(UserInfo(username=row["user"], permissions=roles, is_superuser=SUPERUSER_ROLE in roles))
        return result

    def update_user(self, ctx, username, password=None, permissions=None):
        if password:
            self._call(
                ctx, "update_user",
                f"ALTER USER {quote(username)} SET PASSWORD $password CHANGE NOT REQUIRED",
                {"password": password},
                database=SYSTEM_DATABASE,
            )
        if permissions is not None:
            rows = self._call(ctx, "update_user", "SHOW USERS", database=SYSTEM_DATABASE)
            current = next((row.get("roles") or [] for row in rows if row["user"] == username), [])
            for role in current:
                if role == "PUBLIC":
                    continue
                self._call(
                    ctx, "update_user",
                    f"REVOKE ROLE {quote(role)} FROM {quote(username)}",
                    database=SYSTEM_DATABASE,
                )
            self._grant(ctx, "update_user", username, permissions)

    def delete_user(self, ctx, username):
        self._call(ctx, "delete_user", f"DROP USER {quote(username)} IF EXISTS", database=SYSTEM_DATABASE)

    def _grant(self, ctx, operation, username, roles):
        for role in roles:
            self._call(ctx, operation, f"GRANT ROLE {quote(role)} TO {quote(username)}", database=SYSTEM_DATABASE)


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if hasattr(value, "iso_format"):
        return value.iso_format()
    return value
