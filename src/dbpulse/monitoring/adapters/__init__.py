"""Engine adapters: one query monitor and one health monitor per platform."""

from .mssql import MSSQLHealthMonitor, MSSQLQueryMonitor
from .mysql import MySQLHealthMonitor, MySQLQueryMonitor
from .postgresql import PostgreSQLHealthMonitor, PostgreSQLQueryMonitor

__all__ = [
    "MSSQLHealthMonitor",
    "MSSQLQueryMonitor",
    "MySQLHealthMonitor",
    "MySQLQueryMonitor",
    "PostgreSQLHealthMonitor",
    "PostgreSQLQueryMonitor",
]
