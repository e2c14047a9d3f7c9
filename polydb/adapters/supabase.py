"""
Supabase Adapter.
"""

from dataclasses import replace

from ..core.base import ConnectionDescriptor, DatabaseType, DelegatingAdapter
from .postgresql import PostgreSQL


class Supabase(DelegatingAdapter):
    """
    Supabase adapter.

    A hosted PostgreSQL; TLS is always on and the database and user
    default to ``postgres``.
    """

    db_type = DatabaseType.SUPABASE
    driver_name = "psycopg2"
    install_command = "pip install psycopg2-binary"
    delegate_class = PostgreSQL
    default_port = 5432

    def prepare(self, descriptor: ConnectionDescriptor) -> ConnectionDescriptor:
        return replace(
            descriptor,
            port=descriptor.port or self.default_port,
            username=descriptor.username or "postgres",
            database=descriptor.database or "postgres",
            ssl=True,
        )
