"""
Connection service.
Connection lifecycle (register, edit, delete, connect, disconnect) on top
of the manager and the descriptor store, plus forwarding of normalized
operations to live adapters.
"""

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging
import threading
import uuid

from .base import (
    BaseAdapter, ConnectionDescriptor, DatabaseInfo, DatabaseType, QueryResult,
    TableColumn, TableInfo, UserInfo, utcnow
)
from .context import CONNECT_TIMEOUT, QUERY_TIMEOUT, OperationContext
from .manager import ConnectionManager
from .store import DescriptorStore
from ..exceptions import NotFoundError, PolyDBError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RegistrationResult:
    """
    Outcome of register/update.

    ``warning`` is set when the descriptor was saved but the validation
    connect failed; ``error`` carries that failure's message.
    """
    descriptor: ConnectionDescriptor
    warning: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"connection": self.descriptor.to_dict()}
        if self.warning:
            data["warning"] = self.warning
            data["error"] = self.error
        return data


@dataclass
class ConnectionStatus:
    descriptor: ConnectionDescriptor
    connected: bool

    def to_dict(self) -> Dict[str, Any]:
        data = self.descriptor.to_dict()
        data["connected"] = self.connected
        return data


class ConnectionService:
    """
    Front door for everything a caller can do with a connection id.

    Usage:
        service = ConnectionService(ConnectionManager(), JsonDescriptorStore(path))
        service.start()
        result = service.register({"name": "pg", "type": "PostgreSQL", "host": "db"})
        service.connect(result.descriptor.id)
        tables = service.list_tables(result.descriptor.id)
        service.shutdown()
    """

    REQUIRED_FIELDS = ("name", "type", "host")

    def __init__(
        self,
        manager: ConnectionManager,
        store: DescriptorStore,
        query_timeout: float = QUERY_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT
    ):
        self.manager = manager
        self.store = store
        self.query_timeout = query_timeout
        self.connect_timeout = connect_timeout
        self._lock = threading.RLock()

    # ==================== Lifecycle ====================

    def start(self) -> List[str]:
        """Reconnect every descriptor that was live when last saved."""
        return self.manager.restore(self.store.load_descriptors(), self.connect_timeout)

    def shutdown(self) -> None:
        self.manager.close_all()

    # ==================== Descriptors ====================

    def list_connections(self) -> List[ConnectionStatus]:
        return [
            ConnectionStatus(d.redacted(), self.manager.is_connected(d.id))
            for d in self.store.load_descriptors()
        ]

    def get_connection(self, connection_id: str, reveal_password: bool = False) -> ConnectionDescriptor:
        descriptor = self._find(connection_id)
        return descriptor if reveal_password else descriptor.redacted()

    def register(self, data: Dict[str, Any]) -> RegistrationResult:
        """
        Validate and persist a new descriptor.

        The descriptor is saved even when the test connect fails; the
        result then carries a warning. New registrations start disconnected.
        """
        self._validate(data)
        now = utcnow()
        payload = dict(data, id=str(uuid.uuid4()), connected=False)
        payload.pop("createdAt", None)
        payload.pop("updatedAt", None)
        descriptor = replace(ConnectionDescriptor.from_dict(payload), created_at=now, updated_at=now)

        warning, error = self._probe(descriptor)
        with self._lock:
            descriptors = self.store.load_descriptors()
            descriptors.append(descriptor)
            self.store.save_descriptors(descriptors)
        logger.info(f"Registered connection {descriptor.id} ({descriptor.type.value})")
        return RegistrationResult(descriptor.redacted(), warning, error)

    def update(self, connection_id: str, changes: Dict[str, Any]) -> RegistrationResult:
        """Merge ``changes`` into the stored descriptor and re-validate it."""
        current = self._find(connection_id)
        merged = current.merged_with(changes)
        self._validate(merged.to_dict(reveal_password=True))

        self.manager.disconnect(connection_id)
        merged.connected = False
        warning, error = self._probe(merged)
        self._replace(merged)
        logger.info(f"Updated connection {connection_id}")
        return RegistrationResult(merged.redacted(), warning, error)

    def delete(self, connection_id: str) -> None:
        with self._lock:
            descriptors = self.store.load_descriptors()
            remaining = [d for d in descriptors if d.id != connection_id]
            if len(remaining) == len(descriptors):
                raise NotFoundError(connection_id)
            self.manager.disconnect(connection_id)
            self.store.save_descriptors(remaining)
        logger.info(f"Deleted connection {connection_id}")

    def connect(self, connection_id: str) -> ConnectionDescriptor:
        descriptor = self._find(connection_id)
        self.manager.connect(descriptor, OperationContext(self.connect_timeout, operation="connect"))
        try:
            return self._set_connected(connection_id, True)
        except PolyDBError:
            # Deleted meanwhile; drop the session that has no descriptor left
            self.manager.disconnect(connection_id)
            raise

    def disconnect(self, connection_id: str) -> ConnectionDescriptor:
        self._find(connection_id)
        self.manager.disconnect(connection_id)
        return self._set_connected(connection_id, False)

    def status(self, connection_id: str) -> bool:
        return self.manager.is_connected(connection_id)

    # ==================== Forwarded Operations ====================

    def capabilities(self, connection_id: str) -> Dict[str, bool]:
        return self.manager.get_driver(connection_id).connection_capabilities()

    def execute_query(self, connection_id: str, query: str) -> QueryResult:
        return self._forward(connection_id, "execute_query", lambda a, ctx: a.execute_query(ctx, query))

    def create_database(self, connection_id: str, name: str, options: Optional[Dict[str, Any]] = None) -> None:
        _require(name, "name")
        self._forward(connection_id, "create_database", lambda a, ctx: a.create_database(ctx, name, options or {}))

    def list_databases(self, connection_id: str) -> List[DatabaseInfo]:
        return self._forward(connection_id, "list_databases", lambda a, ctx: a.list_databases(ctx))

    def update_database(
        self,
        connection_id: str,
        old_name: str,
        new_name: str,
        options: Optional[Dict[str, Any]] = None
    ) -> None:
        _require(old_name, "oldName")
        self._forward(
            connection_id, "update_database",
            lambda a, ctx: a.update_database(ctx, old_name, new_name, options or {})
        )

    def delete_database(self, connection_id: str, name: str) -> None:
        _require(name, "name")
        self._forward(connection_id, "delete_database", lambda a, ctx: a.delete_database(ctx, name))

    def create_table(self, connection_id: str, name: str, columns: List[TableColumn]) -> None:
        _require(name, "name")
        self._forward(connection_id, "create_table", lambda a, ctx: a.create_table(ctx, name, columns))

    def list_tables(self, connection_id: str) -> List[TableInfo]:
        return self._forward(connection_id, "list_tables", lambda a, ctx: a.list_tables(ctx))

    def update_table(
        self,
        connection_id: str,
        old_name: str,
        new_name: str,
        columns: Optional[List[TableColumn]] = None
    ) -> None:
        _require(old_name, "oldName")
        self._forward(
            connection_id, "update_table",
            lambda a, ctx: a.update_table(ctx, old_name, new_name, columns or [])
        )

    def delete_table(self, connection_id: str, name: str) -> None:
        _require(name, "name")
        self._forward(connection_id, "delete_table", lambda a, ctx: a.delete_table(ctx, name))

    def create_user(
        self,
        connection_id: str,
        username: str,
        password: str,
        database: Optional[str] = None,
        permissions: Optional[List[str]] = None
    ) -> None:
        _require(username, "username")
        self._forward(
            connection_id, "create_user",
            lambda a, ctx: a.create_user(ctx, username, password, database, permissions or [])
        )

    def list_users(self, connection_id: str) -> List[UserInfo]:
        return self._forward(connection_id, "list_users", lambda a, ctx: a.list_users(ctx))

    def update_user(
        self,
        connection_id: str,
        username: str,
        password: Optional[str] = None,
        permissions: Optional[List[str]] = None
    ) -> None:
        _require(username, "username")
        self._forward(
            connection_id, "update_user",
            lambda a, ctx: a.update_user(ctx, username, password, permissions)
        )

    def delete_user(self, connection_id: str, username: str) -> None:
        _require(username, "username")
        self._forward(connection_id, "delete_user", lambda a, ctx: a.delete_user(ctx, username))

    # ==================== Internals ====================

    def _forward(self, connection_id: str, operation: str, call: Callable[[BaseAdapter, OperationContext], T]) -> T:
        adapter = self.manager.get_driver(connection_id)
        return call(adapter, OperationContext(self.query_timeout, operation=operation))

    def _probe(self, descriptor: ConnectionDescriptor):
        """Connect then disconnect. Returns (warning, error) on failure."""
        try:
            self.manager.connect(descriptor, OperationContext(self.connect_timeout, operation="connect"))
        except PolyDBError as exc:
            logger.info(f"Connection {descriptor.id} saved without a successful connect: {exc}")
            return "saved but not connected: " + exc.message, exc.message
        self.manager.disconnect(descriptor.id)
        return None, None

    def _find(self, connection_id: str) -> ConnectionDescriptor:
        for descriptor in self.store.load_descriptors():
            if descriptor.id == connection_id:
                return descriptor
        raise NotFoundError(connection_id)

    def _replace(self, descriptor: ConnectionDescriptor) -> None:
        with self._lock:
            descriptors = self.store.load_descriptors()
            for i, existing in enumerate(descriptors):
                if existing.id == descriptor.id:
                    descriptors[i] = descriptor
                    break
            else:
                raise NotFoundError(descriptor.id)
            self.store.save_descriptors(descriptors)

    def _set_connected(self, connection_id: str, connected: bool) -> ConnectionDescriptor:
        with self._lock:
            descriptor = replace(self._find(connection_id), connected=connected, updated_at=utcnow())
            self._replace(descriptor)
        return descriptor.redacted()

    def _validate(self, data: Dict[str, Any]) -> None:
        for name in self.REQUIRED_FIELDS:
            if not data.get(name):
                raise ValidationError(f"{name} is required", field=name)
        DatabaseType.parse(data["type"])


def _require(value: Any, field: str) -> None:
    if not value:
        raise ValidationError(f"{field} is required", field=field)
