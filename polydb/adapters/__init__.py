"""
Backend adapters for PolyDB.
Each adapter maps one backend onto the normalized capability contract.
"""

__all__ = [
    "PostgreSQL",
    "CockroachDB",
    "Supabase",
    "MongoDB",
    "Cassandra",
    "Redis",
    "Elasticsearch",
    "InfluxDB",
    "Neo4j",
    "Kafka",
    "RabbitMQ",
    "Zookeeper",
]


def __getattr__(name: str):
    """Lazy load adapters on demand."""
    adapters = {
        "PostgreSQL": ".postgresql",
        "CockroachDB": ".cockroachdb",
        "Supabase": ".supabase",
        "MongoDB": ".mongodb",
        "Cassandra": ".cassandra_db",
        "Redis": ".redis_db",
        "Elasticsearch": ".elasticsearch_db",
        "InfluxDB": ".influxdb",
        "Neo4j": ".neo4j_db",
        "Kafka": ".kafka",
        "RabbitMQ": ".rabbitmq",
        "Zookeeper": ".zookeeper",
    }

    if name in adapters:
        import importlib
        module = importlib.import_module(adapters[name], package="polydb.adapters")
        return getattr(module, name)

    raise AttributeError(f"module 'polydb.adapters' has no attribute '{name}'")
