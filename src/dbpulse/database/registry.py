# src/dbpulse/database/registry.py
"""Registry mapping a platform name to its connector and monitor adapters."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from dbpulse.config.models import DatabaseConfig
from dbpulse.core.base import AsyncComponent
from dbpulse.core.exceptions import ConfigurationError, ErrorCodes
from dbpulse.logging import get_logger
from dbpulse.logging.audit import StatementAuditor

_MONITOR_METHODS = {
    "query monitor": (
        "get_top_queries",
        "get_query_details",
        "get_execution_plan",
        "get_query_statistics",
        "get_running_queries",
    ),
    "health monitor": (
        "get_health",
        "get_database_size",
        "get_connection_stats",
        "get_resource_utilization",
        "get_configuration",
    ),
}


@dataclass(frozen=True)
class MonitorRegistration:
    """Classes serving one platform.

    Attributes:
        platform: Platform identifier, e.g. ``"postgresql"``
        connector_class: Connector implementing the read-only statement channel
        query_monitor_class: Adapter implementing the query monitor contract
        health_monitor_class: Adapter implementing the health monitor contract
        description: Human-readable description
    """
    platform: str
    connector_class: Type[Any]
    query_monitor_class: Type[Any]
    health_monitor_class: Type[Any]
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "platform": self.platform,
            "connector_class": self.connector_class.__name__,
            "query_monitor_class": self.query_monitor_class.__name__,
            "health_monitor_class": self.health_monitor_class.__name__,
            "description": self.description,
            "version": getattr(self.connector_class, "version", "unknown"),
        }


class MonitorRegistry:
    """Registry of supported platforms.

    Consumers select adapters by platform name and only ever see the
    protocol types, never a concrete adapter.
    """

    def __init__(self) -> None:
        self.logger = get_logger("database.registry")
        self._registrations: Dict[str, MonitorRegistration] = {}

    def register(
        self,
        platform: str,
        connector_class: Type[Any],
        query_monitor_class: Type[Any],
        health_monitor_class: Type[Any],
        description: Optional[str] = None,
    ) -> MonitorRegistration:
        """Register the classes serving ``platform``.

        Raises:
            ConfigurationError: If a class does not satisfy its contract
        """
        if not (isinstance(connector_class, type) and issubclass(connector_class, AsyncComponent)):
            raise ConfigurationError(
                f"Connector class {getattr(connector_class, '__name__', connector_class)} "
                "must extend AsyncComponent",
                code=ErrorCodes.CONFIG_INVALID,
                context={"platform": platform},
            )

        for role, monitor_class in (
            ("query monitor", query_monitor_class),
            ("health monitor", health_monitor_class),
        ):
            missing = [
                name for name in _MONITOR_METHODS[role]
                if not callable(getattr(monitor_class, name, None))
            ]
            if missing:
                raise ConfigurationError(
                    f"{role.capitalize()} class {monitor_class.__name__} is missing {', '.join(missing)}",
                    code=ErrorCodes.CONFIG_INVALID,
                    context={"platform": platform, "missing": missing},
                )

        if platform in self._registrations:
            self.logger.warning(
                "Overriding existing monitor registration",
                platform=platform,
                existing_class=self._registrations[platform].connector_class.__name__,
                new_class=connector_class.__name__,
            )

        registration = MonitorRegistration(
            platform=platform,
            connector_class=connector_class,
            query_monitor_class=query_monitor_class,
            health_monitor_class=health_monitor_class,
            description=description or f"{platform} monitoring",
        )
        self._registrations[platform] = registration

        self.logger.info(
            "Monitor registered",
            platform=platform,
            connector_class=connector_class.__name__,
            version=getattr(connector_class, "version", "unknown"),
        )
        return registration

    def get(self, platform: str) -> MonitorRegistration:
        """Registration for ``platform``.

        Raises:
            ConfigurationError: If the platform is not registered
        """
        if platform not in self._registrations:
            raise ConfigurationError(
                f"No monitor registered for platform: {platform}",
                code=ErrorCodes.CONFIG_NOT_FOUND,
                context={
                    "platform": platform,
                    "available_platforms": self.get_available_platforms(),
                },
            )
        return self._registrations[platform]

    def create_connector(
        self, config: DatabaseConfig, *, auditor: Optional[StatementAuditor] = None
    ) -> Any:
        """Construct, without connecting, the connector for ``config``."""
        registration = self.get(config.platform)
        connector = registration.connector_class(config, auditor=auditor)
        self.logger.debug(
            "Connector created",
            platform=config.platform,
            database_id=config.id,
            host=config.host,
            port=config.effective_port,
        )
        return connector

    def get_available_platforms(self) -> List[str]:
        return list(self._registrations.keys())

    def is_platform_supported(self, platform: str) -> bool:
        return platform in self._registrations

    def list_registrations(self) -> Dict[str, Dict[str, str]]:
        return {
            platform: registration.to_dict()
            for platform, registration in self._registrations.items()
        }

    def unregister(self, platform: str) -> None:
        """Remove a platform.

        Raises:
            ConfigurationError: If the platform is not registered
        """
        self.get(platform)
        del self._registrations[platform]
        self.logger.info("Monitor unregistered", platform=platform)

    def clear(self) -> None:
        platforms = self.get_available_platforms()
        self._registrations.clear()
        self.logger.info("Registry cleared", unregistered_platforms=platforms)


def register_builtin_monitors(registry: MonitorRegistry) -> MonitorRegistry:
    """Register the PostgreSQL, SQL Server and MySQL adapters."""
    # Imported here: the adapters depend on this package's models
    from dbpulse.database.connectors import MSSQLConnector, MySQLConnector, PostgreSQLConnector
    from dbpulse.monitoring.adapters import (
        MSSQLHealthMonitor,
        MSSQLQueryMonitor,
        MySQLHealthMonitor,
        MySQLQueryMonitor,
        PostgreSQLHealthMonitor,
        PostgreSQLQueryMonitor,
    )

    registry.register(
        "postgresql", PostgreSQLConnector, PostgreSQLQueryMonitor, PostgreSQLHealthMonitor,
        description="PostgreSQL via asyncpg and pg_stat_statements",
    )
    registry.register(
        "mssql", MSSQLConnector, MSSQLQueryMonitor, MSSQLHealthMonitor,
        description="Microsoft SQL Server via aioodbc, DMVs and Query Store",
    )
    registry.register(
        "mysql", MySQLConnector, MySQLQueryMonitor, MySQLHealthMonitor,
        description="MySQL via aiomysql and performance_schema",
    )
    return registry


# Global registry instance
_global_registry: Optional[MonitorRegistry] = None


def get_global_registry() -> MonitorRegistry:
    """Process-wide registry with the built-in platforms registered."""
    global _global_registry
    if _global_registry is None:
        _global_registry = register_builtin_monitors(MonitorRegistry())
    return _global_registry


def get_available_platforms() -> List[str]:
    return get_global_registry().get_available_platforms()
