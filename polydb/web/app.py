"""
Flask application for the PolyDB HTTP API.
"""

from typing import Any, Callable, Optional
import hmac
import logging
import os

try:
    from flask import Flask, jsonify, request
    from flask_cors import CORS
except ImportError:
    raise ImportError(
        "Flask not installed. Install with: pip install flask flask-cors"
    )

from ..config import AppConfig
from ..core.manager import ConnectionManager
from ..core.service import ConnectionService
from ..core.store import JsonDescriptorStore
from ..exceptions import (
    BackendError, NotFoundError, OperationTimeout, PolyDBError,
    UnsupportedOperationError, ValidationError
)

logger = logging.getLogger(__name__)

# Exception class -> HTTP status, most specific first
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (UnsupportedOperationError, 422),
    (OperationTimeout, 504),
    (BackendError, 502),
    (PolyDBError, 500),
)


def status_for(exc: PolyDBError) -> int:
    for error_class, status in ERROR_STATUS:
        if isinstance(exc, error_class):
            return status
    return 500


def token_authorizer(token: Optional[str]) -> Callable[[Any], bool]:
    """Accept requests carrying ``Authorization: Bearer <token>``; allow all when no token is set."""
    def authorize(req) -> bool:
        if not token:
            return True
        header = req.headers.get("Authorization", "")
        scheme, _, value = header.partition(" ")
        return scheme.lower() == "bearer" and hmac.compare_digest(value.strip(), token)
    return authorize


def create_app(service: Optional[ConnectionService] = None, config: Optional[AppConfig] = None) -> Flask:
    """
    Create and configure Flask application.

    Args:
        service: Connection service to expose; built from ``config`` when omitted
        config: Application configuration (defaults apply when omitted)

    Returns:
        Flask application instance
    """
    config = config or AppConfig()
    if service is None:
        service = ConnectionService(ConnectionManager(), JsonDescriptorStore(config.connections_path))

    app = Flask(__name__)
    app.config.update({
        "SECRET_KEY": os.environ.get("POLYDB_SECRET", "dev-secret-key"),
        "POLYDB_SERVICE": service,
        "POLYDB_AUTHORIZER": token_authorizer(config.api_token),
    })

    # Enable CORS
    CORS(app, origins=config.cors_origins)

    @app.before_request
    def authorize():
        if request.method == "OPTIONS":
            return None
        if not app.config["POLYDB_AUTHORIZER"](request):
            return jsonify({"error": "Unauthorized", "kind": "unauthorized", "message": "unauthorized"}), 401
        return None

    @app.errorhandler(PolyDBError)
    def handle_error(exc: PolyDBError):
        status = status_for(exc)
        if status >= 500:
            logger.warning(f"{request.method} {request.path} failed: {exc}")
        body = exc.to_dict()
        if isinstance(exc, UnsupportedOperationError):
            body["suggestion"] = exc.suggestion
        return jsonify(body), status

    # Register API
    from .api import register_api
    register_api(app)

    return app
