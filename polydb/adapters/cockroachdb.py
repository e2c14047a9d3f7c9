"""
CockroachDB Adapter.
Speaks the PostgreSQL wire protocol, so every call goes to the PostgreSQL adapter.
"""

from dataclasses import replace

from ..core.base import ConnectionDescriptor, DatabaseType, DelegatingAdapter
from .postgresql import PostgreSQL


class CockroachDB(DelegatingAdapter):
    """
    CockroachDB adapter.

    Only the endpoint defaults differ from PostgreSQL: port 26257,
    user ``root``, database ``defaultdb``.

    Install:
        pip install psycopg2-binary
    """

    db_type = DatabaseType.COCKROACHDB
    driver_name = "psycopg2"
    install_command = "pip install psycopg2-binary"
    delegate_class = PostgreSQL
    default_port = 26257

    def prepare(self, descriptor: ConnectionDescriptor) -> ConnectionDescriptor:
        return replace(
            descriptor,
            port=descriptor.port or self.default_port,
            username=descriptor.username or "root",
            database=descriptor.database or "defaultdb",
        )
