"""
Connection Manager.
Owns the registry of live adapters, keyed by connection id.
"""

from typing import Dict, Iterable, List, Optional
import logging
import threading

from .base import BaseAdapter, ConnectionDescriptor
from .context import (
    CONNECT_TIMEOUT, DISCONNECT_TIMEOUT, PROBE_TIMEOUT, SHUTDOWN_TIMEOUT,
    OperationContext
)
from .factory import DriverFactory
from .locks import ReadWriteLock
from ..exceptions import AdapterNotFoundError, NotFoundError

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Registry of live adapters.

    Backend I/O (connect, probe, close) always happens outside the
    registry lock; the lock only guards the dict.

    Example:
        manager = ConnectionManager()
        manager.connect(descriptor)
        adapter = manager.get_driver(descriptor.id)
        adapter.list_tables(OperationContext(30))
        manager.close_all()
    """

    def __init__(self, factory: type = DriverFactory):
        self._factory = factory
        self._drivers: Dict[str, BaseAdapter] = {}
        self._lock = ReadWriteLock()

    def connect(self, descriptor: ConnectionDescriptor, ctx: Optional[OperationContext] = None) -> BaseAdapter:
        """
        Materialize and register a live adapter for ``descriptor``.

        A previous adapter under the same id is replaced and closed.

        Raises:
            AdapterNotFoundError: No adapter for the backend type
            ConnectionError: The backend could not be reached
        """
        ctx = ctx or OperationContext(CONNECT_TIMEOUT, operation="connect")
        adapter = self._factory.create(descriptor.type)
        if adapter is None:
            raise AdapterNotFoundError(descriptor.type.value)

        adapter.connect(ctx, descriptor)

        with self._lock.write():
            previous = self._drivers.get(descriptor.id)
            self._drivers[descriptor.id] = adapter

        if previous is not None and previous is not adapter:
            logger.info(f"Replaced live adapter for connection {descriptor.id}")
            self._close(descriptor.id, previous, DISCONNECT_TIMEOUT)
        logger.info(f"Connection {descriptor.id} ({descriptor.type.value}) is live")
        return adapter

    def disconnect(self, connection_id: str, timeout: float = DISCONNECT_TIMEOUT) -> bool:
        """
        Remove and close the adapter for ``connection_id``.

        Idempotent. Close failures are logged, never raised.

        Returns:
            True if an adapter was registered
        """
        with self._lock.write():
            adapter = self._drivers.pop(connection_id, None)
        if adapter is None:
            return False
        self._close(connection_id, adapter, timeout)
        logger.info(f"Connection {connection_id} disconnected")
        return True

    def get_driver(self, connection_id: str) -> BaseAdapter:
        with self._lock.read():
            adapter = self._drivers.get(connection_id)
        if adapter is None:
            raise NotFoundError(connection_id)
        return adapter

    def is_connected(self, connection_id: str, timeout: float = PROBE_TIMEOUT) -> bool:
        """Probe the live adapter. Unknown ids and probe errors read as False."""
        with self._lock.read():
            adapter = self._drivers.get(connection_id)
        if adapter is None:
            return False
        return adapter.is_connected(OperationContext(timeout, operation="probe"))

    def restore(self, descriptors: Iterable[ConnectionDescriptor], timeout: float = CONNECT_TIMEOUT) -> List[str]:
        """
        Replay ``connect`` for every descriptor flagged as connected.

        Failures are logged and skipped.

        Returns:
            Ids that are live afterwards
        """
        restored = []
        for descriptor in descriptors:
            if not descriptor.connected:
                continue
            try:
                self.connect(descriptor, OperationContext(timeout, operation="restore"))
            except Exception as exc:
                logger.warning(
                    f"Could not restore connection {descriptor.id} ({descriptor.name}): {exc}"
                )
                continue
            restored.append(descriptor.id)
        logger.info(f"Restored {len(restored)} connection(s)")
        return restored

    def close_all(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """
        Disconnect every adapter concurrently.

        Each close gets its own ``timeout`` budget; a hung backend does
        not hold up the others.
        """
        with self._lock.write():
            drained = list(self._drivers.items())
            self._drivers.clear()
        threads = [
            self._spawn_close(connection_id, adapter, timeout)
            for connection_id, adapter in drained
        ]
        for connection_id, thread in threads:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Close of connection {connection_id} did not finish within {timeout:g}s")
        if drained:
            logger.info(f"Closed {len(drained)} connection(s)")

    def connection_ids(self) -> List[str]:
        with self._lock.read():
            return list(self._drivers)

    def _close(self, connection_id: str, adapter: BaseAdapter, timeout: float) -> None:
        _, thread = self._spawn_close(connection_id, adapter, timeout)
        thread.join(timeout)
        if thread.is_alive():
            logger.warning(f"Close of connection {connection_id} did not finish within {timeout:g}s")

    def _spawn_close(self, connection_id: str, adapter: BaseAdapter, timeout: float):
        def run():
            try:
                adapter.disconnect(OperationContext(timeout, operation="disconnect"))
            except Exception as exc:
                logger.warning(f"Error closing connection {connection_id}: {exc}")

        thread = threading.Thread(target=run, name=f"polydb-close-{connection_id}", daemon=True)
        thread.start()
        return connection_id, thread

    def __contains__(self, connection_id: str) -> bool:
        with self._lock.read():
            return connection_id in self._drivers

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._drivers)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close_all()
