"""
PostgreSQL Adapter.
Relational strategy over psycopg2; CockroachDB and Supabase reuse it.
"""

from typing import Any, Dict, List, Optional, Tuple
import re

from ..core.base import (
    BaseAdapter, DatabaseInfo, DatabaseType, TableColumn, TableInfo, UserInfo
)
from ..core.context import OperationContext
from ..exceptions import DriverNotInstalledError, ValidationError

# Column types are spliced into DDL verbatim, so only allow type syntax
_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_ ]*(\(\s*\d+(\s*,\s*\d+)?\s*\))?(\[\])?$")

_LIST_DATABASES = """
    SELECT
        datname AS name,
        pg_catalog.pg_get_userbyid(datdba) AS owner,
        pg_size_pretty(pg_database_size(datname)) AS size,
        pg_encoding_to_char(encoding) AS encoding,
        datcollate AS collation
    FROM pg_catalog.pg_database
    WHERE datistemplate = false
    ORDER BY datname
"""

_LIST_TABLES = """
    SELECT
        t.table_name,
        current_database() AS database_name,
        pg_size_pretty(pg_total_relation_size(
            quote_ident(t.table_schema) || '.' || quote_ident(t.table_name))) AS size,
        (SELECT reltuples::bigint FROM pg_class WHERE relname = t.table_name LIMIT 1) AS row_count
    FROM information_schema.tables t
    WHERE t.table_schema = 'public'
        AND t.table_type = 'BASE TABLE'
    ORDER BY t.table_name
"""

_LIST_COLUMNS = """
    SELECT
        c.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable = 'YES' AS nullable,
        EXISTS (
            SELECT 1
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage k
                ON tc.constraint_name = k.constraint_name AND tc.table_schema = k.table_schema
            WHERE tc.table_schema = c.table_schema AND tc.table_name = c.table_name
                AND k.column_name = c.column_name AND tc.constraint_type = 'PRIMARY KEY'
        ) AS primary_key,
        EXISTS (
            SELECT 1
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage k
                ON tc.constraint_name = k.constraint_name AND tc.table_schema = k.table_schema
            WHERE tc.table_schema = c.table_schema AND tc.table_name = c.table_name
                AND k.column_name = c.column_name AND tc.constraint_type = 'UNIQUE'
        ) AS is_unique
    FROM information_schema.columns c
    WHERE c.table_schema = 'public'
    ORDER BY c.table_name, c.ordinal_position
"""

_LIST_USERS = """
    SELECT
        rolname AS username,
        rolsuper AS is_superuser,
        ARRAY(
            SELECT b.rolname
            FROM pg_catalog.pg_auth_members m
            JOIN pg_catalog.pg_roles b ON (m.roleid = b.oid)
            WHERE m.member = r.oid
        ) AS permissions
    FROM pg_catalog.pg_roles r
    WHERE rolcanlogin = true
    ORDER BY rolname
"""


class PostgreSQL(BaseAdapter):
    """
    PostgreSQL adapter.

    Databases, tables in the ``public`` schema and login roles map
    directly. Permissions are role memberships (``GRANT role TO user``).

    Usage:
        adapter = PostgreSQL()
        adapter.connect(ctx, descriptor)
        adapter.create_table(ctx, "users", [TableColumn("id", "serial", primary_key=True)])

    Install:
        pip install psycopg2-binary
    """

    db_type = DatabaseType.POSTGRESQL
    driver_name = "psycopg2"
    install_command = "pip install psycopg2-binary"
    default_port = 5432

    def __init__(self):
        super().__init__()
        self._driver = None

    def _import_driver(self):
        """Import psycopg2 driver."""
        try:
            import psycopg2
            import psycopg2.extensions
            import psycopg2.sql
            return psycopg2
        except ImportError:
            raise DriverNotInstalledError(self.driver_name, self.install_command)

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        psycopg2 = self._import_driver()
        self._driver = psycopg2
        d = self.descriptor
        conn_params = {
            "host": d.host,
            "port": d.port,
            "dbname": d.database or "postgres",
            "user": d.username or None,
            "password": d.password or None,
            "sslmode": "require" if d.ssl else "prefer",
            "application_name": "polydb",
        }
        remaining = ctx.remaining()
        if remaining is not None:
            conn_params["connect_timeout"] = max(1, int(remaining))
        self._client = psycopg2.connect(**conn_params)
        self._client.autocommit = True

    def _ping(self, ctx: OperationContext) -> None:
        self._fetch(ctx, "SELECT 1")

    def _is_timeout(self, exc: Exception) -> bool:
        if self._driver is not None and isinstance(exc, self._driver.extensions.QueryCanceledError):
            return True
        return super()._is_timeout(exc)

    # ==================== Query Methods ====================

    def _cursor(self, ctx: OperationContext):
        cur = self._require_session().cursor()
        remaining = ctx.remaining()
        if remaining is not None:
            cur.execute("SET statement_timeout = %s", (max(1, int(remaining * 1000)),))
        return cur

    def _fetch(self, ctx: OperationContext, statement: Any, params: Optional[tuple] = None) -> Tuple[List[str], List[tuple]]:
        with self._cursor(ctx) as cur:
            cur.execute(statement, params)
            if cur.description is None:
                return [], []
            columns = [col.name for col in cur.description]
            return columns, cur.fetchall()

    def _exec(self, ctx: OperationContext, operation: str, statement: Any, params: Optional[tuple] = None) -> None:
        with self._backend_call(ctx, operation):
            with self._cursor(ctx) as cur:
                cur.execute(statement, params)

    def _run_query(self, ctx: OperationContext, query: str) -> Tuple[List[str], List[tuple]]:
        return self._fetch(ctx, query)

    def _normalize_query(self, raw):
        columns, records = raw
        rows = [
            {col: _plain(value) for col, value in zip(columns, record)}
            for record in records
        ]
        return columns, rows

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        sql = self._driver.sql
        options = options or {}
        parts = [sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name))]
        if options.get("owner"):
            parts.append(sql.SQL("OWNER = {}").format(sql.Identifier(options["owner"])))
        if options.get("encoding"):
            parts.append(sql.SQL("ENCODING = {}").format(sql.Literal(options["encoding"])))
        if options.get("locale"):
            locale = sql.Literal(options["locale"])
            parts.append(sql.SQL("LC_COLLATE = {} LC_CTYPE = {}").format(locale, locale))
        self._exec(ctx, "create_database", sql.SQL(" ").join(parts))

    def list_databases(self, ctx):
        with self._backend_call(ctx, "list_databases"):
            _, records = self._fetch(ctx, _LIST_DATABASES)
        return [
            DatabaseInfo(name=r[0], owner=r[1], size=r[2], encoding=r[3], collation=r[4])
            for r in records
        ]

    def update_database(self, ctx, old_name, new_name, options=None):
        sql = self._driver.sql
        options = options or {}
        target = old_name
        if new_name and new_name != old_name:
            self._exec(
                ctx, "update_database",
                sql.SQL("ALTER DATABASE {} RENAME TO {}").format(sql.Identifier(old_name), sql.Identifier(new_name))
            )
            target = new_name
        if options.get("owner"):
            self._exec(
                ctx, "update_database",
                sql.SQL("ALTER DATABASE {} OWNER TO {}").format(sql.Identifier(target), sql.Identifier(options["owner"]))
            )

    def delete_database(self, ctx, name):
        sql = self._driver.sql
        self._exec(ctx, "delete_database", sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(name)))

    # ==================== Table Methods ====================

    def _column_sql(self, column: TableColumn):
        sql = self._driver.sql
        if not _TYPE_RE.match(column.type or ""):
            raise ValidationError(f"invalid column type for {column.name}: {column.type!r}", field="columns")
        definition = sql.SQL("{} {}").format(sql.Identifier(column.name), sql.SQL(column.type))
        if column.primary_key:
            definition = sql.SQL("{} PRIMARY KEY").format(definition)
        if not column.nullable:
            definition = sql.SQL("{} NOT NULL").format(definition)
        if column.unique and not column.primary_key:
            definition = sql.SQL("{} UNIQUE").format(definition)
        return definition

    def create_table(self, ctx, name, columns):
        if not columns:
            raise ValidationError("at least one column is required", field="columns")
        sql = self._driver.sql
        statement = sql.SQL("CREATE TABLE {} ({})").format(
            sql.Identifier(name),
            sql.SQL(", ").join(self._column_sql(c) for c in columns)
        )
        self._exec(ctx, "create_table", statement)

    def list_tables(self, ctx):
        with self._backend_call(ctx, "list_tables"):
            _, tables = self._fetch(ctx, _LIST_TABLES)
            _, columns = self._fetch(ctx, _LIST_COLUMNS)
        by_table: Dict[str, List[TableColumn]] = {}
        for table_name, col_name, data_type, nullable, primary_key, unique in columns:
            by_table.setdefault(table_name, []).append(
                TableColumn(col_name, data_type, bool(nullable), bool(primary_key), bool(unique))
            )
        return [
            TableInfo(
                name=name,
                database=database or self.descriptor.database or None,
                columns=by_table.get(name, []),
                size=size,
                rows=max(int(row_count), 0) if row_count is not None else None,
            )
            for name, database, size, row_count in tables
        ]

    def update_table(self, ctx, old_name, new_name, columns=None):
        sql = self._driver.sql
        target = old_name
        if new_name and new_name != old_name:
            self._exec(
                ctx, "update_table",
                sql.SQL("ALTER TABLE {} RENAME TO {}").format(sql.Identifier(old_name), sql.Identifier(new_name))
            )
            target = new_name
        for column in columns or []:
            self._exec(
                ctx, "update_table",
                sql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {}").format(
                    sql.Identifier(target), self._column_sql(column)
                )
            )

    def delete_table(self, ctx, name):
        sql = self._driver.sql
        self._exec(ctx, "delete_table", sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(sql.Identifier(name)))

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        sql = self._driver.sql
        self._exec(
            ctx, "create_user",
            sql.SQL("CREATE USER {} WITH PASSWORD {}").format(sql.Identifier(username), sql.Literal(password))
        )
        if permissions:
            self._grant(ctx, "create_user", username, permissions)

    def list_users(self, ctx):
        with self._backend_call(ctx, "list_users"):
            _, records = self._fetch(ctx, _LIST_USERS)
        return [
            UserInfo(username=r[0], is_superuser=bool(r[1]), permissions=list(r[2] or []))
            for r in records
        ]

    def update_user(self, ctx, username, password=None, permissions=None):
        sql = self._driver.sql
        if password:
            self._exec(
                ctx, "update_user",
                sql.SQL("ALTER USER {} WITH PASSWORD {}").format(sql.Identifier(username), sql.Literal(password))
            )
        if permissions is not None:
            database = self.descriptor.database or "postgres"
            self._exec(
                ctx, "update_user",
                sql.SQL("REVOKE ALL PRIVILEGES ON DATABASE {} FROM {}").format(
                    sql.Identifier(database), sql.Identifier(username)
                )
            )
            if permissions:
                self._grant(ctx, "update_user", username, permissions)

    def delete_user(self, ctx, username):
        sql = self._driver.sql
        self._exec(ctx, "delete_user", sql.SQL("DROP USER IF EXISTS {}").format(sql.Identifier(username)))

    def _grant(self, ctx, operation, username, roles):
        sql = self._driver.sql
        self._exec(
            ctx, operation,
            sql.SQL("GRANT {} TO {}").format(
                sql.SQL(", ").join(sql.Identifier(r) for r in roles), sql.Identifier(username)
            )
        )


def _plain(value: Any) -> Any:
    if isinstance(value, memoryview):
        return value.tobytes().hex()
    if isinstance(value, bytes):
        return value.hex()
    return value
