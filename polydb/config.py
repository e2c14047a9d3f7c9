"""
Application configuration.
Read from ``app.json`` in the config directory, then overridden by
``POLYDB_*`` environment variables.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional
import json
import logging
import os

from .exceptions import ValidationError

SYSTEM_CONFIG_DIR = "/etc/polydb"
LOCAL_CONFIG_DIR = "./config"
CONFIG_FILE = "app.json"
CONNECTIONS_FILE = "connections.json"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Environment variable -> AppConfig field
ENV_OVERRIDES = {
    "POLYDB_HOST": "host",
    "POLYDB_PORT": "port",
    "POLYDB_CONFIG_DIR": "config_dir",
    "POLYDB_CONNECTIONS_FILE": "connections_file",
    "POLYDB_API_TOKEN": "api_token",
    "POLYDB_LOG_LEVEL": "log_level",
    "POLYDB_CORS_ORIGINS": "cors_origins",
}


def default_config_dir() -> str:
    return SYSTEM_CONFIG_DIR if os.path.isdir(SYSTEM_CONFIG_DIR) else LOCAL_CONFIG_DIR


@dataclass
class AppConfig:
    """
    Settings for the HTTP service.

    Attributes:
        host: Bind address
        port: Bind port
        config_dir: Directory holding app.json and the connections file
        connections_file: Descriptor store path; relative paths resolve under config_dir
        api_token: Bearer token required on every request when set
        log_level: Root level for the ``polydb`` logger
        cors_origins: Allowed CORS origins
    """
    host: str = "0.0.0.0"
    port: int = 8081
    config_dir: str = field(default_factory=default_config_dir)
    connections_file: str = CONNECTIONS_FILE
    api_token: Optional[str] = None
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def connections_path(self) -> str:
        if os.path.isabs(self.connections_file):
            return self.connections_file
        return os.path.join(self.config_dir, self.connections_file)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"unknown configuration keys: {', '.join(unknown)}", field=unknown[0])
        config = cls(**{k: v for k, v in data.items() if k in known})
        config.port = _port(config.port)
        config.cors_origins = _origins(config.cors_origins)
        config.log_level = str(config.log_level).upper()
        return config


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load configuration.

    Args:
        path: Explicit app.json path; defaults to ``<config dir>/app.json``
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        AppConfig with file values and environment overrides applied

    Raises:
        ValidationError: The file is not valid JSON or holds bad values
    """
    environ = os.environ if environ is None else environ
    config_dir = environ.get("POLYDB_CONFIG_DIR") or default_config_dir()
    path = path or os.path.join(config_dir, CONFIG_FILE)

    data: Dict[str, Any] = {"config_dir": config_dir}
    data.update(_read_json(path))
    for variable, name in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value:
            data[name] = value
    return AppConfig.from_dict(data)


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the ``polydb`` logger once."""
    logger = logging.getLogger("polydb")
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValidationError(f"invalid log level: {level!r}", field="log_level")
    logger.setLevel(resolved)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


def _read_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return {}
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ValidationError(f"malformed configuration file {path}: {e}", field="config")
    if not isinstance(data, dict):
        raise ValidationError(f"configuration file {path} must hold a JSON object", field="config")
    return data


def _port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid port: {value!r}", field="port")
    if not 0 < port < 65536:
        raise ValidationError(f"port out of range: {port}", field="port")
    return port


def _origins(value: Any) -> List[str]:
    if isinstance(value, str):
        return [origin.strip() for origin in value.split(",") if origin.strip()]
    return [str(origin) for origin in value or []]
