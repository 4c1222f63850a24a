"""DBPulse configuration.

Example:
    >>> from dbpulse.config import DBPulseConfig
    >>> config = DBPulseConfig.from_yaml("dbpulse.yaml")
    >>> db_config = config.get_database_config("primary")
"""

from .models import (
    BaseConfig,
    CredentialConfig,
    DatabaseConfig,
    DBPulseConfig,
    LoggingConfig,
    MonitoringConfig,
    PoolConfig,
    SSLConfig,
)

__all__ = [
    "BaseConfig",
    "CredentialConfig",
    "DatabaseConfig",
    "DBPulseConfig",
    "LoggingConfig",
    "MonitoringConfig",
    "PoolConfig",
    "SSLConfig",
]
