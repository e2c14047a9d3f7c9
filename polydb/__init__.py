"""
PolyDB - administer many kinds of databases through one contract.

Usage:
    from polydb import ConnectionManager, ConnectionService, JsonDescriptorStore

    service = ConnectionService(ConnectionManager(), JsonDescriptorStore("connections.json"))
    service.start()
    result = service.register({"name": "pg", "type": "PostgreSQL", "host": "localhost"})
    service.connect(result.descriptor.id)
    for table in service.list_tables(result.descriptor.id):
        print(table.name)

Install options:
    pip install polydb              # Core, every backend driver and the web API
    pip install polydb[test]        # With the test suite requirements
"""

__version__ = "0.3.0"
__license__ = "MIT"

# Core imports
from .core.base import (
    BaseAdapter,
    ConnectionDescriptor,
    DatabaseInfo,
    DatabaseType,
    DelegatingAdapter,
    QueryResult,
    TableColumn,
    TableInfo,
    UserInfo,
)
from .core.context import OperationContext
from .core.factory import DriverFactory
from .core.manager import ConnectionManager
from .core.service import ConnectionService, RegistrationResult
from .core.store import JsonDescriptorStore, MemoryDescriptorStore

# Exceptions
from .exceptions import (
    PolyDBError,
    NotFoundError,
    UnsupportedOperationError,
    BackendError,
    ConnectionError,
    OperationTimeout,
    OperationCancelled,
    AdapterNotFoundError,
    DriverNotInstalledError,
    ValidationError,
    StorageError,
)


def __getattr__(name: str):
    """Lazy import adapters."""
    from . import adapters
    if name in adapters.__all__:
        return getattr(adapters, name)
    raise AttributeError(f"module 'polydb' has no attribute '{name}'")


__all__ = [
    # Version
    "__version__",
    # Core
    "BaseAdapter",
    "DelegatingAdapter",
    "ConnectionDescriptor",
    "DatabaseType",
    "DatabaseInfo",
    "TableColumn",
    "TableInfo",
    "UserInfo",
    "QueryResult",
    "OperationContext",
    "DriverFactory",
    "ConnectionManager",
    "ConnectionService",
    "RegistrationResult",
    "JsonDescriptorStore",
    "MemoryDescriptorStore",
    # Exceptions
    "PolyDBError",
    "NotFoundError",
    "UnsupportedOperationError",
    "BackendError",
    "ConnectionError",
    "OperationTimeout",
    "OperationCancelled",
    "AdapterNotFoundError",
    "DriverNotInstalledError",
    "ValidationError",
    "StorageError",
]
