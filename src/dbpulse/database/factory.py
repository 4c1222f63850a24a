# src/dbpulse/database/factory.py
"""Construction of monitor sessions from database configuration."""

from typing import Any, Dict, Optional

from dbpulse.config.models import DatabaseConfig, MonitoringConfig
from dbpulse.core.exceptions import ConfigurationError, ErrorCodes
from dbpulse.core.protocols import HealthMonitor, QueryMonitor
from dbpulse.database.registry import MonitorRegistry, get_global_registry
from dbpulse.logging import get_logger
from dbpulse.logging.audit import StatementAuditor


class MonitorSession:
    """A connector and both monitor adapters for one database.

    The connector connects lazily on the first statement. Leaving the
    ``async with`` block closes it.

    Example:
        >>> async with create_monitors(config) as session:
        ...     top = await session.queries.get_top_queries(10)
        ...     health = await session.health.get_health()
    """

    def __init__(
        self,
        config: DatabaseConfig,
        connector: Any,
        queries: QueryMonitor,
        health: HealthMonitor,
    ) -> None:
        self.config = config
        self.connector = connector
        self.queries = queries
        self.health = health

    @property
    def platform(self) -> str:
        return self.config.platform

    async def close(self) -> None:
        await self.connector.close()

    async def __aenter__(self) -> "MonitorSession":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"MonitorSession(platform={self.platform!r}, database_id={self.config.id!r})"


class MonitorFactory:
    """Builds monitor sessions through a registry."""

    def __init__(self, registry: Optional[MonitorRegistry] = None) -> None:
        self.logger = get_logger("database.factory")
        self._registry = registry or get_global_registry()

    @property
    def registry(self) -> MonitorRegistry:
        return self._registry

    def create_session(
        self,
        config: DatabaseConfig,
        *,
        monitoring: Optional[MonitoringConfig] = None,
        auditor: Optional[StatementAuditor] = None,
    ) -> MonitorSession:
        """Create the connector and both adapters for ``config``.

        Raises:
            ConfigurationError: If the platform is not registered
        """
        registration = self._registry.get(config.platform)
        monitoring = monitoring or MonitoringConfig()

        connector = self._registry.create_connector(config, auditor=auditor)
        session = MonitorSession(
            config=config,
            connector=connector,
            queries=registration.query_monitor_class(
                connector, monitoring=monitoring, database_id=config.id
            ),
            health=registration.health_monitor_class(
                connector, monitoring=monitoring, database_id=config.id
            ),
        )

        self.logger.info(
            "Monitor session created",
            platform=config.platform,
            database_id=config.id,
            connection=config.connection_string,
        )
        return session

    def create_session_from_dict(
        self,
        config_dict: Dict[str, Any],
        *,
        monitoring: Optional[MonitoringConfig] = None,
        auditor: Optional[StatementAuditor] = None,
    ) -> MonitorSession:
        """Validate a raw configuration mapping and create a session.

        Raises:
            ConfigurationError: If the mapping is not a valid database configuration
        """
        try:
            config = DatabaseConfig(**config_dict)
        except ConfigurationError:
            raise
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid database configuration: {e}",
                code=ErrorCodes.CONFIG_INVALID,
                context={"database_id": config_dict.get("id")},
                cause=e,
            ) from e
        return self.create_session(config, monitoring=monitoring, auditor=auditor)

    def get_supported_platforms(self) -> Dict[str, Dict[str, str]]:
        return self._registry.list_registrations()

    def is_platform_supported(self, platform: str) -> bool:
        return self._registry.is_platform_supported(platform)


def create_monitors(
    config: DatabaseConfig,
    *,
    monitoring: Optional[MonitoringConfig] = None,
    registry: Optional[MonitorRegistry] = None,
    auditor: Optional[StatementAuditor] = None,
) -> MonitorSession:
    """Create a monitor session for ``config``.

    Raises:
        ConfigurationError: If no adapter is registered for the platform
    """
    return MonitorFactory(registry).create_session(
        config, monitoring=monitoring, auditor=auditor
    )
