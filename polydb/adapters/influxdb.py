"""
InfluxDB Adapter.
Serves both API generations; the generation is detected once at connect.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import csv
import io
import re

from ..core.base import DatabaseInfo, DatabaseType, TableInfo, UserInfo, ordered_columns
from ..core.context import OperationContext
from ..exceptions import BackendError, UnsupportedOperationError, ValidationError
from .http import HttpAdapter

VERSION_HEADER = "X-Influxdb-Version"
PRIVILEGES = ("READ", "WRITE", "ALL")
_DURATION_RE = re.compile(r"^(INF|\d+[smhdw])$", re.IGNORECASE)


class InfluxVersion(Enum):
    V1 = "1"
    V2 = "2"

    @classmethod
    def from_header(cls, value: Optional[str]) -> "InfluxVersion":
        """``2.x`` is the v2 API; anything else, or no header, is v1."""
        if value and value.strip().lower().lstrip("v").startswith("2."):
            return cls.V2
        return cls.V1


def quote_ident(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def quote_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def parse_annotated_csv(text: str) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Parse Flux annotated CSV.

    Each table in the reply starts with its own header row; annotation
    rows (``#datatype`` ...) and the leading blank column are dropped.
    """
    rows: List[Dict[str, Any]] = []
    header: Optional[List[str]] = None
    for record in csv.reader(io.StringIO(text)):
        if not record or all(not cell for cell in record):
            header = None
            continue
        if record[0].startswith("#"):
            continue
        if header is None:
            header = record
            continue
        rows.append({
            name: value
            for name, value in zip(header, record)
            if name
        })
    return ordered_columns(rows), rows


class InfluxQueryError(Exception):
    """InfluxQL statement rejected by the server."""


class _InfluxV1:
    """InfluxQL over /query."""

    unsupported = {
        "update_database": "InfluxDB 1.x cannot rename databases; SELECT INTO a new database instead",
        "create_table": "Measurements are created by writing points to them",
        "update_table": "Measurements cannot be renamed; SELECT INTO a new measurement instead",
    }

    def __init__(self, adapter: "InfluxDB"):
        self.adapter = adapter

    def influxql(self, ctx: OperationContext, statement: str, database: Optional[str] = None) -> Dict[str, Any]:
        data = {"q": statement}
        database = database if database is not None else self.adapter.descriptor.database
        if database:
            data["db"] = database
        payload = self.adapter._request(ctx, "POST", "/query", data=data).json()
        for result in payload.get("results", []):
            if result.get("error"):
                raise InfluxQueryError(result["error"])
        if payload.get("error"):
            raise InfluxQueryError(payload["error"])
        return payload

    def run(self, ctx, operation, statement, database=None):
        with self.adapter._backend_call(ctx, operation):
            return self.influxql(ctx, statement, database)

    def query(self, ctx, query):
        return self.influxql(ctx, query)

    def normalize(self, payload):
        rows = []
        columns: List[str] = []
        for result in payload.get("results", []):
            for series in result.get("series", []):
                names = series.get("columns", [])
                for name in names:
                    if name not in columns:
                        columns.append(name)
                tags = series.get("tags") or {}
                for values in series.get("values", []):
                    row = dict(tags)
                    row.update(zip(names, values))
                    rows.append(row)
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        return columns, rows

    def series_values(self, payload) -> List[list]:
        values = []
        for result in payload.get("results", []):
            for series in result.get("series", []):
                values.extend(series.get("values", []))
        return values

    def create_database(self, ctx, name, options):
        statement = f"CREATE DATABASE {quote_ident(name)}"
        retention = options.get("retention")
        if retention:
            if not _DURATION_RE.match(str(retention)):
                raise ValidationError(f"invalid retention duration: {retention!r}", field="retention")
            statement += f" WITH DURATION {retention}"
        self.run(ctx, "create_database", statement, database="")

    def list_databases(self, ctx):
        payload = self.run(ctx, "list_databases", "SHOW DATABASES", database="")
        return [DatabaseInfo(name=v[0]) for v in self.series_values(payload) if v and v[0] != "_internal"]

    def delete_database(self, ctx, name):
        self.run(ctx, "delete_database", f"DROP DATABASE {quote_ident(name)}", database="")

    def list_tables(self, ctx):
        payload = self.run(ctx, "list_tables", "SHOW MEASUREMENTS")
        database = self.adapter.descriptor.database or None
        return [TableInfo(name=v[0], database=database) for v in self.series_values(payload) if v]

    def delete_table(self, ctx, name):
        self.run(ctx, "delete_table", f"DROP MEASUREMENT {quote_ident(name)}")

    def create_user(self, ctx, username, password, database, permissions):
        statement = f"CREATE USER {quote_ident(username)} WITH PASSWORD {quote_string(password)}"
        privileges = _privileges(permissions)
        if "ALL" in privileges and not database:
            statement += " WITH ALL PRIVILEGES"
            privileges = []
        self.run(ctx, "create_user", statement, database="")
        self._grant(ctx, "create_user", username, database or self.adapter.descriptor.database, privileges)

    def list_users(self, ctx):
        payload = self.run(ctx, "list_users", "SHOW USERS", database="")
        users = []
        for username, is_admin in (v[:2] for v in self.series_values(payload)):
            grants = self.run(ctx, "list_users", f"SHOW GRANTS FOR {quote_ident(username)}", database="")
            permissions = [f"{priv} ON {db}" for db, priv in (g[:2] for g in self.series_values(grants))]
            users.append(UserInfo(username=username, permissions=permissions, is_superuser=bool(is_admin)))
        return users

    def update_user(self, ctx, username, password, permissions):
        if password:
            self.run(
                ctx, "update_user",
                f"SET PASSWORD FOR {quote_ident(username)} = {quote_string(password)}", database=""
            )
        if permissions is not None:
            database = self.adapter.descriptor.database
            if not database:
                raise ValidationError("a database is required to change InfluxDB grants", field="database")
            self.run(ctx, "update_user", f"REVOKE ALL ON {quote_ident(database)} FROM {quote_ident(username)}", database="")
            self._grant(ctx, "update_user", username, database, _privileges(permissions))

    def delete_user(self, ctx, username):
        self.run(ctx, "delete_user", f"DROP USER {quote_ident(username)}", database="")

    def _grant(self, ctx, operation, username, database, privileges):
        if privileges and not database:
            raise ValidationError("a database is required to grant InfluxDB privileges", field="database")
        for privilege in privileges:
            self.run(
                ctx, operation,
                f"GRANT {privilege} ON {quote_ident(database)} TO {quote_ident(username)}", database=""
            )


class _InfluxV2:
    """Flux and buckets over /api/v2. The descriptor's database is the organization."""

    _USERS = "Manage InfluxDB 2.x users and API tokens in the InfluxDB UI or the influx CLI"
    _TABLES = "Query measurements with schema.measurements() in a Flux query"
    unsupported = {
        "create_table": "Measurements are created by writing points to them",
        "list_tables": _TABLES,
        "update_table": _TABLES,
        "delete_table": "Delete points with the /api/v2/delete predicate API",
        "create_user": _USERS,
        "list_users": _USERS,
        "update_user": _USERS,
        "delete_user": _USERS,
    }

    def __init__(self, adapter: "InfluxDB"):
        self.adapter = adapter
        self._org_id: Optional[str] = None

    @property
    def org(self) -> str:
        org = self.adapter.descriptor.database
        if not org:
            raise ValidationError("InfluxDB 2.x needs the organization name in the database field", field="database")
        return org

    def org_id(self, ctx) -> str:
        if self._org_id is None:
            orgs = self.adapter._request(ctx, "GET", "/api/v2/orgs", params={"org": self.org}).json()
            found = orgs.get("orgs") or []
            if not found:
                raise BackendError(f"organization {self.org!r} not found", **self.adapter._error_context())
            self._org_id = found[0]["id"]
        return self._org_id

    def query(self, ctx, query):
        response = self.adapter._request(
            ctx, "POST", "/api/v2/query",
            params={"org": self.org},
            json={"query": query, "type": "flux"},
            headers={"Accept": "application/csv", "Content-Type": "application/json"},
        )
        return response.text

    def normalize(self, text):
        return parse_annotated_csv(text)

    def buckets(self, ctx) -> List[Dict[str, Any]]:
        payload = self.adapter._request(
            ctx, "GET", "/api/v2/buckets", params={"orgID": self.org_id(ctx), "limit": 100}
        ).json()
        return payload.get("buckets", [])

    def bucket_id(self, ctx, name) -> str:
        for bucket in self.buckets(ctx):
            if bucket.get("name") == name:
                return bucket["id"]
        raise BackendError(f"bucket {name!r} not found", **self.adapter._error_context())

    def create_database(self, ctx, name, options):
        body: Dict[str, Any] = {"name": name, "orgID": None, "retentionRules": []}
        with self.adapter._backend_call(ctx, "create_database"):
            body["orgID"] = self.org_id(ctx)
            if options.get("retention_seconds"):
                body["retentionRules"] = [{"type": "expire", "everySeconds": int(options["retention_seconds"])}]
            self.adapter._request(ctx, "POST", "/api/v2/buckets", json=body)

    def list_databases(self, ctx):
        with self.adapter._backend_call(ctx, "list_databases"):
            buckets = self.buckets(ctx)
        return [DatabaseInfo(name=b["name"]) for b in sorted(buckets, key=lambda b: b["name"])]

    def update_database(self, ctx, old_name, new_name, options):
        if not new_name or new_name == old_name:
            return
        with self.adapter._backend_call(ctx, "update_database"):
            bucket_id = self.bucket_id(ctx, old_name)
            self.adapter._request(ctx, "PATCH", f"/api/v2/buckets/{bucket_id}", json={"name": new_name})

    def delete_database(self, ctx, name):
        with self.adapter._backend_call(ctx, "delete_database"):
            bucket_id = self.bucket_id(ctx, name)
            self.adapter._request(ctx, "DELETE", f"/api/v2/buckets/{bucket_id}")


class InfluxDB(HttpAdapter):
    """
    InfluxDB adapter.

    1.x: the database field names the database, username/password are
    basic auth, queries are InfluxQL.
    2.x: the database field names the organization, the password holds
    an API token, queries are Flux and buckets are the databases.

    Install:
        pip install requests
    """

    db_type = DatabaseType.INFLUXDB
    default_port = 8086

    def __init__(self):
        super().__init__()
        self.version: Optional[InfluxVersion] = None
        self._handler = None

    def _open(self, ctx: OperationContext) -> None:
        super()._open(ctx)
        response = self._request(ctx, "GET", "/ping", expected=(200, 204))
        self.version = InfluxVersion.from_header(response.headers.get(VERSION_HEADER))
        if self.version is InfluxVersion.V2:
            self._client.auth = None
            if self.descriptor.password:
                self._client.headers["Authorization"] = f"Token {self.descriptor.password}"
            self._handler = _InfluxV2(self)
        else:
            self._handler = _InfluxV1(self)

    def _close(self) -> None:
        super()._close()
        self._handler = None

    def _ping(self, ctx: OperationContext) -> None:
        self._request(ctx, "GET", "/ping", expected=(200, 204))

    def _for(self, operation: str):
        if self._handler is None:
            self._require_session()
        hint = self._handler.unsupported.get(operation)
        if hint is not None:
            raise UnsupportedOperationError(f"{self.db_type.value} {self.version.value}.x", operation, hint)
        return self._handler

    def connection_capabilities(self) -> Dict[str, bool]:
        caps = self.capabilities()
        if self._handler is not None:
            for operation in self._handler.unsupported:
                caps[operation] = False
        return caps

    # ==================== Query Methods ====================

    def _run_query(self, ctx, query):
        return self._for("execute_query").query(ctx, query)

    def _normalize_query(self, raw):
        return self._handler.normalize(raw)

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        self._for("create_database").create_database(ctx, name, options or {})

    def list_databases(self, ctx):
        return self._for("list_databases").list_databases(ctx)

    def update_database(self, ctx, old_name, new_name, options=None):
        self._for("update_database").update_database(ctx, old_name, new_name, options or {})

    def delete_database(self, ctx, name):
        self._for("delete_database").delete_database(ctx, name)

    # ==================== Table Methods ====================

    def create_table(self, ctx, name, columns):
        self._for("create_table")

    def list_tables(self, ctx):
        return self._for("list_tables").list_tables(ctx)

    def update_table(self, ctx, old_name, new_name, columns=None):
        self._for("update_table")

    def delete_table(self, ctx, name):
        self._for("delete_table").delete_table(ctx, name)

    # ==================== User Methods ====================

    def create_user(self, ctx, username, password, database=None, permissions=None):
        self._for("create_user").create_user(ctx, username, password, database, permissions or [])

    def list_users(self, ctx):
        return self._for("list_users").list_users(ctx)

    def update_user(self, ctx, username, password=None, permissions=None):
        self._for("update_user").update_user(ctx, username, password, permissions)

    def delete_user(self, ctx, username):
        self._for("delete_user").delete_user(ctx, username)


def _privileges(permissions: Optional[List[str]]) -> List[str]:
    result = []
    for permission in permissions or []:
        privilege = permission.strip().upper()
        if privilege not in PRIVILEGES:
            raise ValidationError(f"unknown InfluxDB privilege: {permission}", field="permissions")
        result.append(privilege)
    return result
