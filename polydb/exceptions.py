from typing import Any, Optional


class PolyDBError(Exception):

    kind = "error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "kind": self.kind,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(PolyDBError):
    """Connection id is not registered."""

    kind = "not_found"

    def __init__(self, connection_id: str, message: str = "connection not found", **kwargs):
        super().__init__(
            message, code="NOT_FOUND", details={"id": connection_id}, **kwargs
        )
        self.connection_id = connection_id


class UnsupportedOperationError(PolyDBError):
    """The backend has no equivalent of the requested operation."""

    kind = "unsupported"

    def __init__(self, backend: str, operation: str, suggestion: str = "", **kwargs):
        message = f"{operation} is not supported for {backend}"
        if suggestion:
            message = f"{message}. {suggestion}"
        details = {"backend": backend, "operation": operation, "suggestion": suggestion}
        super().__init__(message, code="UNSUPPORTED", details=details, **kwargs)
        self.backend = backend
        self.operation = operation
        self.suggestion = suggestion


class BackendError(PolyDBError):
    """The backend rejected or failed an operation."""

    kind = "backend_error"

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        user: Optional[str] = None,
        code: str = "BACKEND_ERR",
        **kwargs
    ):
        details = {"host": host, "port": port, "database": database, "user": user}
        super().__init__(message, code=code, details=details, **kwargs)


class ConnectionError(BackendError):
    """Failed to connect to database."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="CONN_ERR", **kwargs)


class OperationTimeout(PolyDBError):
    """Operation exceeded its deadline."""

    kind = "timeout"

    def __init__(self, operation: str, timeout: Optional[float] = None, **kwargs):
        if timeout is not None:
            message = f"{operation} timed out after {timeout:g}s"
        else:
            message = f"{operation} timed out"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, code="TIMEOUT", details=details, **kwargs)


class OperationCancelled(OperationTimeout):
    """Operation was cancelled by its caller."""

    def __init__(self, operation: str, **kwargs):
        super().__init__(operation, **kwargs)
        self.message = f"{operation} was cancelled"


class AdapterNotFoundError(PolyDBError):
    """Requested backend type has no adapter."""

    def __init__(self, adapter_name: Any, **kwargs):
        message = f"unsupported backend type: {adapter_name}"
        super().__init__(
            message, code="ADAPTER_404", details={"type": str(adapter_name)}, **kwargs
        )


class DriverNotInstalledError(PolyDBError):
    """Database driver not installed."""

    def __init__(self, driver_name: str, install_command: str, **kwargs):
        message = (
            f"Driver '{driver_name}' is not installed. "
            f"Install with: {install_command}"
        )
        details = {"driver": driver_name, "install_command": install_command}
        super().__init__(message, code="DRIVER_404", details=details, **kwargs)


class ValidationError(PolyDBError):
    """Data validation error."""

    kind = "validation"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = {"field": field}
        super().__init__(message, code="VALID_ERR", details=details, **kwargs)


class StorageError(PolyDBError):
    """Descriptor store could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, code="STORE_ERR", details={"path": path}, **kwargs)
