"""
Apache ZooKeeper Adapter.
Hierarchical strategy: top-level znodes are databases, children of the
target path are tables.
"""

from typing import List

from ..core.base import BaseAdapter, DatabaseInfo, DatabaseType, TableInfo
from ..core.context import CONNECT_TIMEOUT, OperationContext
from ..exceptions import DriverNotInstalledError, ValidationError

_NO_USERS = "ZooKeeper has no users; set digest ACLs on znodes with zkCli.sh setAcl"


def znode_path(name: str, parent: str = "/") -> str:
    """Absolute znode path; relative names are resolved under ``parent``."""
    if not name:
        raise ValidationError("znode path must not be empty", field="name")
    if name.startswith("/"):
        return name.rstrip("/") or "/"
    parent = parent.rstrip("/")
    return f"{parent}/{name}"


class Zookeeper(BaseAdapter):
    """
    ZooKeeper adapter built on kazoo.

    ``database`` on the descriptor is the znode whose children are listed
    as tables (default ``/``). Nodes are created with
    ``{"data": "...", "ephemeral": bool, "sequence": bool}`` options.

    Install:
        pip install kazoo
    """

    db_type = DatabaseType.ZOOKEEPER
    driver_name = "kazoo"
    install_command = "pip install kazoo"
    default_port = 2181
    unsupported = {
        "execute_query": "ZooKeeper has no query language; browse znodes as databases and tables",
        "update_database": "Znodes cannot be renamed; create the new path and delete the old one",
        "update_table": "Znodes cannot be renamed; create the new path and delete the old one",
        "create_user": _NO_USERS,
        "list_users": _NO_USERS,
        "update_user": _NO_USERS,
        "delete_user": _NO_USERS,
    }

    def __init__(self):
        super().__init__()
        self._timeout_errors = ()

    def _import_driver(self):
        try:
            from kazoo.client import KazooClient
            from kazoo.handlers.threading import KazooTimeoutError
            return KazooClient, KazooTimeoutError
        except ImportError:
            raise DriverNotInstalledError("kazoo", self.install_command)

    @property
    def base_path(self) -> str:
        database = self.descriptor.database if self.descriptor else ""
        return znode_path(database) if database else "/"

    # ==================== Connection Methods ====================

    def _open(self, ctx: OperationContext) -> None:
        KazooClient, KazooTimeoutError = self._import_driver()
        self._timeout_errors = (KazooTimeoutError,)
        d = self.descriptor
        auth_data = None
        if d.username:
            auth_data = [("digest", f"{d.username}:{d.password}")]
        client = KazooClient(hosts=f"{d.host}:{d.port}", auth_data=auth_data, use_ssl=d.ssl)
        self._client = client
        client.start(timeout=ctx.remaining() or CONNECT_TIMEOUT)

    def _close(self) -> None:
        try:
            self._client.stop()
        finally:
            self._client.close()

    def _ping(self, ctx: OperationContext) -> None:
        self._client.exists_async("/").get(timeout=ctx.remaining() or CONNECT_TIMEOUT)

    def _is_timeout(self, exc: Exception) -> bool:
        if self._timeout_errors and isinstance(exc, self._timeout_errors):
            return True
        return super()._is_timeout(exc)

    # ==================== Database Methods ====================

    def create_database(self, ctx, name, options=None):
        options = options or {}
        client = self._require_session()
        data = str(options.get("data") or "").encode("utf-8")
        with self._backend_call(ctx, "create_database"):
            client.create(
                znode_path(name),
                data,
                ephemeral=bool(options.get("ephemeral", False)),
                sequence=bool(options.get("sequence", False)),
            )

    def list_databases(self, ctx):
        client = self._require_session()
        with self._backend_call(ctx, "list_databases"):
            children = client.get_children("/")
        return [DatabaseInfo(name=f"/{child}") for child in sorted(children) if not child.startswith(".")]

    def delete_database(self, ctx, name):
        client = self._require_session()
        with self._backend_call(ctx, "delete_database"):
            client.delete(znode_path(name))

    # ==================== Table Methods ====================

    def create_table(self, ctx, name, columns):
        client = self._require_session()
        with self._backend_call(ctx, "create_table"):
            client.create(znode_path(name, self.base_path), b"")

    def list_tables(self, ctx) -> List[TableInfo]:
        client = self._require_session()
        base = self.base_path
        tables = []
        with self._backend_call(ctx, "list_tables"):
            for child in sorted(client.get_children(base)):
                if child.startswith("."):
                    continue
                stat = client.exists(znode_path(child, base))
                size = f"{stat.dataLength} bytes" if stat is not None else None
                tables.append(TableInfo(name=child, database=base, size=size))
        return tables

    def delete_table(self, ctx, name):
        client = self._require_session()
        with self._backend_call(ctx, "delete_table"):
            client.delete(znode_path(name, self.base_path))
