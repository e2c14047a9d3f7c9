"""
Driver factory.
Maps a backend variant tag to a fresh, unconnected adapter.
"""

from typing import Any, Dict, List, Optional, Tuple, Type
import importlib
import logging

from .base import BaseAdapter, DatabaseType
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


class DriverFactory:
    """
    Stateless variant-to-adapter mapping.

    Usage:
        adapter = DriverFactory.create("PostgreSQL")
        if adapter is None:
            ...  # no adapter for this backend
    """

    # Variant -> (module, class), imported on first use
    IMPORT_MAP: Dict[DatabaseType, Tuple[str, str]] = {
        DatabaseType.POSTGRESQL: ("polydb.adapters.postgresql", "PostgreSQL"),
        DatabaseType.COCKROACHDB: ("polydb.adapters.cockroachdb", "CockroachDB"),
        DatabaseType.SUPABASE: ("polydb.adapters.supabase", "Supabase"),
        DatabaseType.MONGODB: ("polydb.adapters.mongodb", "MongoDB"),
        DatabaseType.CASSANDRA: ("polydb.adapters.cassandra_db", "Cassandra"),
        DatabaseType.REDIS: ("polydb.adapters.redis_db", "Redis"),
        DatabaseType.ELASTICSEARCH: ("polydb.adapters.elasticsearch_db", "Elasticsearch"),
        DatabaseType.INFLUXDB: ("polydb.adapters.influxdb", "InfluxDB"),
        DatabaseType.NEO4J: ("polydb.adapters.neo4j_db", "Neo4j"),
        DatabaseType.KAFKA: ("polydb.adapters.kafka", "Kafka"),
        DatabaseType.RABBITMQ: ("polydb.adapters.rabbitmq", "RabbitMQ"),
        DatabaseType.ZOOKEEPER: ("polydb.adapters.zookeeper", "Zookeeper"),
    }

    @classmethod
    def adapter_class(cls, db_type: Any) -> Optional[Type[BaseAdapter]]:
        """Adapter class for a tag, or None when the tag is unknown or unimplemented."""
        try:
            variant = DatabaseType.parse(db_type)
        except ValidationError:
            return None
        if variant not in cls.IMPORT_MAP:
            return None
        module_path, class_name = cls.IMPORT_MAP[variant]
        module = importlib.import_module(module_path)
        return getattr(module, class_name)

    @classmethod
    def create(cls, db_type: Any) -> Optional[BaseAdapter]:
        """
        Build a new adapter for ``db_type``.

        Args:
            db_type: DatabaseType member or its tag string

        Returns:
            Unconnected adapter, or None for an unknown tag
        """
        adapter_class = cls.adapter_class(db_type)
        if adapter_class is None:
            logger.debug(f"No adapter for backend type {db_type!r}")
            return None
        return adapter_class()

    @classmethod
    def supported_types(cls) -> List[DatabaseType]:
        return [t for t in DatabaseType if t in cls.IMPORT_MAP]
