"""DBPulse - Multi-engine database observability.

DBPulse exposes one read-only telemetry contract over PostgreSQL, Microsoft
SQL Server and MySQL: top queries, query details and plans, running
queries, a classified health snapshot, size growth, connection and resource
statistics, and server configuration.

Modules:
    core: Base classes, exceptions and the monitoring contracts
    config: Configuration management
    logging: Structured logging, timing and statement audit
    database: Telemetry model, connectors, registry and factory
    monitoring: Classification helpers and engine adapters

Example:
    >>> from dbpulse.config import DBPulseConfig
    >>> from dbpulse.database import create_monitors
    >>> from dbpulse.logging import configure_logging
    >>>
    >>> config = DBPulseConfig.from_yaml("dbpulse.yaml")
    >>> configure_logging(level=config.logging.level, format=config.logging.format)
    >>> async with create_monitors(
    ...     config.get_database_config("primary"), monitoring=config.monitoring
    ... ) as session:
    ...     health = await session.health.get_health()
"""

from . import core, config, logging, database, monitoring

__version__ = "0.1.0"
__title__ = "DBPulse"
__description__ = "Multi-engine database observability layer"
__license__ = "MIT"

__all__ = [
    "core",
    "config",
    "logging",
    "database",
    "monitoring",
    "__version__",
    "__title__",
    "__description__",
    "__license__",
]
