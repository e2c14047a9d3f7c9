"""
Run the PolyDB HTTP API.

    python -m polydb [--config PATH] [--host HOST] [--port PORT]
"""

import argparse
import logging
import sys

from .config import configure_logging, load_config
from .core.manager import ConnectionManager
from .core.service import ConnectionService
from .core.store import JsonDescriptorStore
from .exceptions import PolyDBError
from .web import create_app

logger = logging.getLogger("polydb")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="polydb", description="Multi-backend database administration API")
    parser.add_argument("--config", help="path to app.json")
    parser.add_argument("--host", help="bind address")
    parser.add_argument("--port", type=int, help="bind port")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except PolyDBError as e:
        print(f"polydb: {e}", file=sys.stderr)
        return 2
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    configure_logging(config.log_level)

    service = ConnectionService(ConnectionManager(), JsonDescriptorStore(config.connections_path))
    restored = service.start()
    logger.info(f"Restored {len(restored)} live connection(s) from {config.connections_path}")

    app = create_app(service, config)
    try:
        logger.info(f"Serving on {config.host}:{config.port}")
        app.run(host=config.host, port=config.port, threaded=True)
    finally:
        service.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
