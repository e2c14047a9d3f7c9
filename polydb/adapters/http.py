"""
Shared plumbing for adapters that talk to an HTTP management API.
"""

from typing import Any, Iterable, Optional

from ..core.base import BaseAdapter
from ..core.context import OperationContext
from ..exceptions import DriverNotInstalledError

BODY_EXCERPT = 300


class HttpStatusError(Exception):
    """Non-2xx reply from the backend."""

    def __init__(self, method: str, url: str, status: int, body: str):
        excerpt = (body or "").strip()[:BODY_EXCERPT]
        super().__init__(f"{method} {url} returned {status}: {excerpt}" if excerpt else f"{method} {url} returned {status}")
        self.status = status
        self.body = body


class HttpAdapter(BaseAdapter):
    """
    Base for adapters built on a ``requests.Session``.

    Subclasses set ``default_port`` and implement ``_ping``; everything
    else goes through ``_request`` / ``_json`` which apply the context
    deadline as the request timeout and raise on non-2xx replies.
    """

    driver_name = "requests"
    install_command = "pip install requests"
    base_path = ""

    def __init__(self):
        super().__init__()
        self._requests = None

    def _import_driver(self):
        try:
            import requests
            return requests
        except ImportError:
            raise DriverNotInstalledError("requests", self.install_command)

    @property
    def base_url(self) -> str:
        d = self.descriptor
        scheme = "https" if d.ssl else "http"
        return f"{scheme}://{d.host}:{d.port}{self.base_path}"

    def _open(self, ctx: OperationContext) -> None:
        self._requests = self._import_driver()
        session = self._requests.Session()
        session.headers.update({"Accept": "application/json", "User-Agent": "polydb"})
        d = self.descriptor
        if d.username:
            session.auth = (d.username, d.password)
        self._client = session

    def _is_timeout(self, exc: Exception) -> bool:
        if self._requests is not None and isinstance(exc, self._requests.Timeout):
            return True
        return super()._is_timeout(exc)

    def _request(
        self,
        ctx: OperationContext,
        method: str,
        path: str,
        expected: Optional[Iterable[int]] = None,
        **kwargs: Any
    ):
        """Send a request; raise HttpStatusError unless the status is expected (default: any 2xx)."""
        session = self._require_session()
        url = f"{self.base_url}{path}"
        response = session.request(method, url, timeout=ctx.remaining(), **kwargs)
        ok = response.status_code in expected if expected is not None else 200 <= response.status_code < 300
        if not ok:
            raise HttpStatusError(method, url, response.status_code, response.text)
        return response

    def _json(self, ctx: OperationContext, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        with self._backend_call(ctx, operation):
            response = self._request(ctx, method, path, **kwargs)
            if not response.content:
                return None
            return response.json()
