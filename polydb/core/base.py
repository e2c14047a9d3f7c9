"""
Base adapter class and connection descriptor.
All backend adapters inherit from BaseAdapter.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging
import time

from .context import OperationContext
from ..exceptions import (
    BackendError, ConnectionError, DriverNotInstalledError, OperationTimeout,
    PolyDBError, UnsupportedOperationError, ValidationError
)

logger = logging.getLogger("polydb")


class DatabaseType(Enum):
    """Closed set of backend variants."""
    POSTGRESQL = "PostgreSQL"
    MONGODB = "MongoDB"
    ELASTICSEARCH = "Elasticsearch"
    MEILISEARCH = "Meilisearch"
    CLICKHOUSE = "ClickHouse"
    CASSANDRA = "Cassandra"
    AEROSPIKE = "Aerospike"
    REDIS = "Redis"
    INFLUXDB = "InfluxDB"
    NEO4J = "Neo4j"
    COUCHBASE = "Couchbase"
    SUPABASE = "Supabase"
    DRUID = "Druid"
    COCKROACHDB = "CockroachDB"
    KAFKA = "Kafka"
    RABBITMQ = "RabbitMQ"
    ZOOKEEPER = "Zookeeper"

    @classmethod
    def parse(cls, value: Any) -> "DatabaseType":
        """Resolve a tag case-insensitively by value or member name."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(f"unknown database type: {value!r}", field="type")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_port(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid port: {value!r}", field="port")
    if not 0 < port < 65536:
        raise ValidationError(f"port out of range: {port}", field="port")
    return port


@dataclass
class ConnectionDescriptor:
    """
    Persistent record describing how to reach one backend.

    Attributes:
        id: Stable identifier, assigned at registration
        name: Display name
        type: Backend variant
        host: Backend host
        port: Backend port (None means the adapter default)
        database: Logical target (database, keyspace, index, org, vhost, znode path)
        username: Login name
        password: Secret, never logged or returned unless asked for
        ssl: Use TLS
        connected: Whether the connection should be live after restart
        created_at: Registration time (UTC)
        updated_at: Last edit time (UTC)
    """
    id: str
    name: str
    type: DatabaseType
    host: str = "localhost"
    port: Optional[int] = None
    database: str = ""
    username: str = ""
    password: str = ""
    ssl: bool = False
    connected: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionDescriptor":
        """Build from the persisted or request JSON shape."""
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            type=DatabaseType.parse(data.get("type")),
            host=str(data.get("host") or "localhost"),
            port=_parse_port(data.get("port")),
            database=str(data.get("database") or ""),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            ssl=bool(data.get("ssl", False)),
            connected=bool(data.get("connected", False)),
            created_at=_parse_time(data.get("createdAt") or data.get("created_at")),
            updated_at=_parse_time(data.get("updatedAt") or data.get("updated_at")),
        )

    def to_dict(self, reveal_password: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "host": self.host,
            "port": "" if self.port is None else str(self.port),
            "database": self.database,
            "username": self.username,
            "password": self.password if reveal_password else "",
            "ssl": self.ssl,
            "connected": self.connected,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def redacted(self) -> "ConnectionDescriptor":
        return replace(self, password="")

    def merged_with(self, changes: Dict[str, Any]) -> "ConnectionDescriptor":
        """
        Apply an edit.

        Empty fields inherit the stored value, the password included.
        ``ssl`` is taken as given whenever present. ``id`` and
        ``created_at`` never change.
        """
        merged = replace(self, updated_at=utcnow())
        for name in ("name", "host", "database", "username", "password"):
            value = changes.get(name)
            if value not in (None, ""):
                setattr(merged, name, str(value))
        if changes.get("type") not in (None, ""):
            merged.type = DatabaseType.parse(changes["type"])
        if changes.get("port") not in (None, ""):
            merged.port = _parse_port(changes["port"])
        if "ssl" in changes and changes["ssl"] is not None:
            merged.ssl = bool(changes["ssl"])
        return merged

    @property
    def address(self) -> str:
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}"

    def __repr__(self) -> str:
        return (
            f"ConnectionDescriptor(id={self.id!r}, name={self.name!r}, "
            f"type={self.type.value}, address={self.address!r})"
        )


def _compact(obj: Any) -> Dict[str, Any]:
    """Dataclass to dict without unset fields."""
    out = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if value is None:
            continue
        out[f.metadata.get("json", f.name)] = value
    return out


@dataclass
class DatabaseInfo:
    name: str
    owner: Optional[str] = None
    size: Optional[str] = None
    encoding: Optional[str] = None
    collation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass
class TableColumn:
    """Column definition used both for listing and for create/alter requests."""
    name: str
    type: str = ""
    nullable: bool = True
    primary_key: bool = field(default=False, metadata={"json": "primaryKey"})
    unique: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableColumn":
        if not data.get("name"):
            raise ValidationError("column name is required", field="columns")
        return cls(
            name=str(data["name"]),
            type=str(data.get("type") or ""),
            nullable=bool(data.get("nullable", True)),
            primary_key=bool(data.get("primaryKey", data.get("primary_key", False))),
            unique=bool(data.get("unique", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass
class TableInfo:
    name: str
    database: Optional[str] = None
    columns: List[TableColumn] = field(default_factory=list)
    size: Optional[str] = None
    rows: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = _compact(self)
        data["columns"] = [c.to_dict() for c in self.columns]
        return data


@dataclass
class UserInfo:
    username: str
    permissions: List[str] = field(default_factory=list)
    is_superuser: bool = field(default=False, metadata={"json": "isSuperuser"})

    def to_dict(self) -> Dict[str, Any]:
        return _compact(self)


@dataclass
class QueryResult:
    """
    Normalized query result.

    Attributes:
        columns: Ordered column names
        rows: One dict per row, a missing column is an absent key
        row_count: Number of rows after normalization
        execution_time: Backend call duration in whole milliseconds
        error: Backend's rejection message, if any
    """
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    execution_time: int = 0
    error: Optional[str] = None

    @classmethod
    def build(cls, columns: List[str], rows: List[Dict[str, Any]], execution_time: int) -> "QueryResult":
        return cls(
            columns=list(columns),
            rows=rows,
            row_count=len(rows),
            execution_time=execution_time,
        )

    @classmethod
    def failed(cls, message: str, execution_time: int = 0) -> "QueryResult":
        return cls(error=message, execution_time=execution_time)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.rows)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "columns": self.columns,
            "rows": self.rows,
            "rowCount": self.row_count,
            "executionTime": self.execution_time,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def ordered_columns(rows: List[Dict[str, Any]], first: Tuple[str, ...] = ()) -> List[str]:
    """Union of row keys in first-seen order, with ``first`` pinned to the front."""
    seen = {name: None for name in first if any(name in row for row in rows)}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


CONTRACT_OPERATIONS = (
    "execute_query",
    "create_database", "list_databases", "update_database", "delete_database",
    "create_table", "list_tables", "update_table", "delete_table",
    "create_user", "list_users", "update_user", "delete_user",
)


class BaseAdapter(ABC):
    """
    Abstract base class for all backend adapters.

    An adapter owns one client session and a copy of the descriptor it
    was connected with. Subclasses implement ``_open``, ``_close`` and
    ``_ping`` plus whichever contract operations the backend has a
    concept for. Operations listed in ``unsupported`` raise
    UnsupportedOperationError with the mapped suggestion.

    Example:
        class Memcached(BaseAdapter):
            def _open(self, ctx):
                self._client = memcache.Client(...)
    """

    db_type: DatabaseType
    driver_name: str
    install_command: str
    default_port: Optional[int] = None
    unsupported: Dict[str, str] = {}

    def __init__(self):
        self.descriptor: Optional[ConnectionDescriptor] = None
        self._client = None
        logger.debug(f"Initialized {self.__class__.__name__} adapter")

    # ==================== Connection Methods ====================

    def connect(self, ctx: OperationContext, descriptor: ConnectionDescriptor) -> None:
        """
        Open a session and verify it with a ping.

        On any failure the partially opened session is released and the
        error is raised; the adapter is left unconnected.
        """
        ctx.check()
        if descriptor.port is None and self.default_port is not None:
            descriptor = replace(descriptor, port=self.default_port)
        self.descriptor = descriptor
        try:
            self._open(ctx)
            self.ping(ctx)
        except Exception as exc:
            self._release()
            if isinstance(exc, (
                OperationTimeout, ConnectionError, DriverNotInstalledError, UnsupportedOperationError
            )):
                raise
            if isinstance(exc, PolyDBError):
                raise ConnectionError(
                    f"failed to connect to {self.db_type.value} at {descriptor.address}: {exc.message}",
                    **self._error_context()
                ) from exc
            raise self._translate(exc, ctx, "connect", ConnectionError) from exc
        logger.debug(f"Connected {self.db_type.value} adapter to {descriptor.address}")

    def disconnect(self, ctx: Optional[OperationContext] = None) -> None:
        """Close the session. Safe to call twice or before connect."""
        if self._client is None:
            return
        try:
            self._close()
        except Exception as exc:
            raise BackendError(
                f"failed to close {self.db_type.value} session: {exc}",
                **self._error_context()
            ) from exc
        finally:
            self._client = None

    def is_connected(self, ctx: OperationContext) -> bool:
        """Re-probe the backend. Never raises."""
        if self._client is None:
            return False
        try:
            self.ping(ctx)
        except Exception as exc:
            logger.debug(f"{self.db_type.value} probe failed: {exc}")
            return False
        return True

    def ping(self, ctx: OperationContext) -> None:
        """Raise unless the backend answers."""
        self._require_session()
        with self._backend_call(ctx, "ping"):
            self._ping(ctx)

    @abstractmethod
    def _open(self, ctx: OperationContext) -> None:
        """Create the client and store it on ``self._client``."""

    @abstractmethod
    def _ping(self, ctx: OperationContext) -> None:
        pass

    def _close(self) -> None:
        self._client.close()

    def _release(self) -> None:
        try:
            self.disconnect()
        except PolyDBError as exc:
            logger.debug(f"Ignoring close failure after aborted connect: {exc}")

    # ==================== Query Methods ====================

    def execute_query(self, ctx: OperationContext, query: str) -> QueryResult:
        """
        Run a native query.

        Elapsed time covers only the backend call. Backend rejections are
        returned in ``QueryResult.error``; deadlines raise OperationTimeout.
        """
        self._check_supported("execute_query")
        self._require_session()
        ctx.check()
        if not query or not query.strip():
            raise ValidationError("query is required", field="query")
        started = time.monotonic()
        try:
            raw = self._run_query(ctx, query)
        except ValidationError as exc:
            return QueryResult.failed(exc.message, elapsed_ms(started))
        except PolyDBError:
            raise
        except Exception as exc:
            if self._is_timeout(exc) or ctx.expired:
                raise OperationTimeout("execute_query", ctx.timeout) from exc
            return QueryResult.failed(self._query_error(exc), elapsed_ms(started))
        execution_time = elapsed_ms(started)
        columns, rows = self._normalize_query(raw)
        return QueryResult.build(columns, rows, execution_time)

    def _run_query(self, ctx: OperationContext, query: str) -> Any:
        raise UnsupportedOperationError(self.db_type.value, "execute_query")

    def _normalize_query(self, raw: Any) -> Tuple[List[str], List[Dict[str, Any]]]:
        rows = list(raw or [])
        return ordered_columns(rows), rows

    def _query_error(self, exc: Exception) -> str:
        return str(exc).strip() or exc.__class__.__name__

    # ==================== Database Methods ====================

    def create_database(self, ctx: OperationContext, name: str, options: Optional[Dict[str, Any]] = None) -> None:
        self._check_supported("create_database", force=True)

    def list_databases(self, ctx: OperationContext) -> List[DatabaseInfo]:
        self._check_supported("list_databases", force=True)

    def update_database(
        self,
        ctx: OperationContext,
        old_name: str,
        new_name: str,
        options: Optional[Dict[str, Any]] = None
    ) -> None:
        self._check_supported("update_database", force=True)

    def delete_database(self, ctx: OperationContext, name: str) -> None:
        self._check_supported("delete_database", force=True)

    # ==================== Table Methods ====================

    def create_table(self, ctx: OperationContext, name: str, columns: List[TableColumn]) -> None:
        self._check_supported("create_table", force=True)

    def list_tables(self, ctx: OperationContext) -> List[TableInfo]:
        self._check_supported("list_tables", force=True)

    def update_table(
        self,
        ctx: OperationContext,
        old_name: str,
        new_name: str,
        columns: Optional[List[TableColumn]] = None
    ) -> None:
        self._check_supported("update_table", force=True)

    def delete_table(self, ctx: OperationContext, name: str) -> None:
        self._check_supported("delete_table", force=True)

    # ==================== User Methods ====================

    def create_user(
        self,
        ctx: OperationContext,
        username: str,
        password: str,
        database: Optional[str] = None,
        permissions: Optional[List[str]] = None
    ) -> None:
        self._check_supported("create_user", force=True)

    def list_users(self, ctx: OperationContext) -> List[UserInfo]:
        self._check_supported("list_users", force=True)

    def update_user(
        self,
        ctx: OperationContext,
        username: str,
        password: Optional[str] = None,
        permissions: Optional[List[str]] = None
    ) -> None:
        self._check_supported("update_user", force=True)

    def delete_user(self, ctx: OperationContext, username: str) -> None:
        self._check_supported("delete_user", force=True)

    # ==================== Utility Methods ====================

    @classmethod
    def capabilities(cls) -> Dict[str, bool]:
        """Which contract operations this backend can perform."""
        result = {}
        for op in CONTRACT_OPERATIONS:
            overridden = getattr(cls, op) is not getattr(BaseAdapter, op)
            if op == "execute_query":
                overridden = cls._run_query is not BaseAdapter._run_query
            result[op] = overridden and op not in cls.unsupported
        return result

    def connection_capabilities(self) -> Dict[str, bool]:
        """Capabilities of the connected backend; may narrow ``capabilities()``."""
        return self.capabilities()

    def _check_supported(self, operation: str, force: bool = False) -> None:
        if force or operation in self.unsupported:
            raise UnsupportedOperationError(
                self.db_type.value, operation, self.unsupported.get(operation, "")
            )

    def _require_session(self):
        if self._client is None:
            raise BackendError(
                f"{self.db_type.value} session is not connected", **self._error_context()
            )
        return self._client

    def _error_context(self) -> Dict[str, Any]:
        d = self.descriptor
        if d is None:
            return {}
        return {"host": d.host, "port": d.port, "database": d.database or None, "user": d.username or None}

    def _is_timeout(self, exc: Exception) -> bool:
        """Whether a library exception means the deadline was hit."""
        return isinstance(exc, TimeoutError)

    def _translate(
        self,
        exc: Exception,
        ctx: OperationContext,
        operation: str,
        error_class: type = BackendError
    ) -> PolyDBError:
        if self._is_timeout(exc) or ctx.expired:
            return OperationTimeout(operation, ctx.timeout)
        message = str(exc).strip() or exc.__class__.__name__
        return error_class(f"{operation} failed: {message}", **self._error_context())

    @contextmanager
    def _backend_call(self, ctx: OperationContext, operation: str):
        """Map library exceptions raised inside the block to PolyDB errors."""
        ctx.check()
        try:
            yield
        except PolyDBError:
            raise
        except Exception as exc:
            raise self._translate(exc, ctx, operation) from exc

    def __repr__(self) -> str:
        target = self.descriptor.address if self.descriptor else None
        return f"{self.__class__.__name__}(target={target!r}, connected={self._client is not None})"


class DelegatingAdapter(BaseAdapter):
    """
    Adapter that forwards every call to an inner adapter.

    Subclasses set ``delegate_class`` and override ``prepare`` to adjust
    endpoint defaults before the inner adapter connects.
    """

    delegate_class: type

    def __init__(self):
        super().__init__()
        self.inner: BaseAdapter = self.delegate_class()

    def prepare(self, descriptor: ConnectionDescriptor) -> ConnectionDescriptor:
        return descriptor

    def connect(self, ctx: OperationContext, descriptor: ConnectionDescriptor) -> None:
        ctx.check()
        self.descriptor = self.prepare(descriptor)
        self.inner.connect(ctx, self.descriptor)
        self._client = self.inner

    def disconnect(self, ctx: Optional[OperationContext] = None) -> None:
        try:
            self.inner.disconnect(ctx)
        finally:
            self._client = None

    def is_connected(self, ctx: OperationContext) -> bool:
        return self.inner.is_connected(ctx)

    def ping(self, ctx: OperationContext) -> None:
        self.inner.ping(ctx)

    def _open(self, ctx: OperationContext) -> None:
        pass

    def _ping(self, ctx: OperationContext) -> None:
        pass

    def execute_query(self, ctx, query):
        return self.inner.execute_query(ctx, query)

    def create_database(self, ctx, name, options=None):
        return self.inner.create_database(ctx, name, options)

    def list_databases(self, ctx):
        return self.inner.list_databases(ctx)

    def update_database(self, ctx, old_name, new_name, options=None):
        return self.inner.update_database(ctx, old_name, new_name, options)

    def delete_database(self, ctx, name):
        return self.inner.delete_database(ctx, name)

    def create_table(self, ctx, name, columns):
        return self.inner.create_table(ctx, name, columns)

    def list_tables(self, ctx):
        return self.inner.list_tables(ctx)

    def update_table(self, ctx, old_name, new_name, columns=None):
        return self.inner.update_table(ctx, old_name, new_name, columns)

    def delete_table(self, ctx, name):
        return self.inner.delete_table(ctx, name)

    def create_user(self, ctx, username, password, database=None, permissions=None):
        return self.inner.create_user(ctx, username, password, database, permissions)

    def list_users(self, ctx):
        return self.inner.list_users(ctx)

    def update_user(self, ctx, username, password=None, permissions=None):
        return self.inner.update_user(ctx, username, password, permissions)

    def delete_user(self, ctx, username):
        return self.inner.delete_user(ctx, username)

    @classmethod
    def capabilities(cls) -> Dict[str, bool]:
        return cls.delegate_class.capabilities()

    def connection_capabilities(self) -> Dict[str, bool]:
        return self.inner.connection_capabilities()
