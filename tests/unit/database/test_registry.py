"""Unit tests for the platform registry."""

import pytest

from dbpulse.core.exceptions import ConfigurationError, ErrorCodes
from dbpulse.database.connectors import MSSQLConnector, MySQLConnector, PostgreSQLConnector
from dbpulse.database.registry import (
    MonitorRegistry,
    get_available_platforms,
    get_global_registry,
    register_builtin_monitors,
)
from dbpulse.logging.audit import StatementAuditor
from dbpulse.monitoring.adapters import (
    MySQLHealthMonitor,
    MySQLQueryMonitor,
    PostgreSQLHealthMonitor,
    PostgreSQLQueryMonitor,
)


class IncompleteQueryMonitor:
    async def get_top_queries(self, limit=50):
        return []


class TestMonitorRegistry:
    """Test registration and lookup."""

    @pytest.fixture
    def registry(self):
        return MonitorRegistry()

    def test_register_and_get(self, registry):
        registration = registry.register(
            "postgresql", PostgreSQLConnector, PostgreSQLQueryMonitor, PostgreSQLHealthMonitor
        )

        assert registry.get("postgresql") is registration
        assert registration.description == "postgresql monitoring"
        assert registry.is_platform_supported("postgresql")
        assert registry.get_available_platforms() == ["postgresql"]

    def test_unknown_platform(self, registry):
        with pytest.raises(ConfigurationError) as exc_info:
            registry.get("oracle")

        assert exc_info.value.code == ErrorCodes.CONFIG_NOT_FOUND
        assert exc_info.value.context["platform"] == "oracle"

    def test_connector_must_be_component(self, registry):
        with pytest.raises(ConfigurationError) as exc_info:
            registry.register("postgresql", object, PostgreSQLQueryMonitor, PostgreSQLHealthMonitor)
        assert exc_info.value.code == ErrorCodes.CONFIG_INVALID

    def test_monitor_must_satisfy_contract(self, registry):
        with pytest.raises(ConfigurationError) as exc_info:
            registry.register(
                "postgresql", PostgreSQLConnector, IncompleteQueryMonitor, PostgreSQLHealthMonitor
            )

        assert exc_info.value.code == ErrorCodes.CONFIG_INVALID
        assert "get_running_queries" in exc_info.value.context["missing"]

    def test_override_replaces(self, registry):
        registry.register("mysql", MySQLConnector, MySQLQueryMonitor, MySQLHealthMonitor)
        registry.register(
            "mysql", MySQLConnector, MySQLQueryMonitor, MySQLHealthMonitor, description="custom"
        )

        assert registry.get("mysql").description == "custom"
        assert len(registry.get_available_platforms()) == 1

    def test_list_registrations(self, registry):
        registry.register("mysql", MySQLConnector, MySQLQueryMonitor, MySQLHealthMonitor)

        listing = registry.list_registrations()

        assert listing["mysql"]["connector_class"] == "MySQLConnector"
        assert listing["mysql"]["query_monitor_class"] == "MySQLQueryMonitor"
        assert listing["mysql"]["version"] == "1.0.0"

    def test_unregister(self, registry):
        registry.register("mysql", MySQLConnector, MySQLQueryMonitor, MySQLHealthMonitor)

        registry.unregister("mysql")

        assert not registry.is_platform_supported("mysql")
        with pytest.raises(ConfigurationError):
            registry.unregister("mysql")

    def test_clear(self, registry):
        register_builtin_monitors(registry)
        registry.clear()
        assert registry.get_available_platforms() == []

    def test_create_connector_does_not_connect(self, registry, database_config):
        register_builtin_monitors(registry)
        auditor = StatementAuditor("test_db")

        connector = registry.create_connector(database_config, auditor=auditor)

        assert isinstance(connector, PostgreSQLConnector)
        assert connector.auditor is auditor
        assert connector.is_connected is False


class TestBuiltinRegistrations:

    def test_builtin_platforms(self):
        registry = register_builtin_monitors(MonitorRegistry())

        assert sorted(registry.get_available_platforms()) == ["mssql", "mysql", "postgresql"]
        assert registry.get("mssql").connector_class is MSSQLConnector

    def test_global_registry_is_shared(self):
        assert get_global_registry() is get_global_registry()
        assert set(get_available_platforms()) == {"postgresql", "mssql", "mysql"}

