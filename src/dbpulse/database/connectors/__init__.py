"""Engine connectors, one per supported platform."""

from .mssql import MSSQLConnector
from .mysql import MySQLConnector
from .postgresql import PostgreSQLConnector

__all__ = [
    "MSSQLConnector",
    "MySQLConnector",
    "PostgreSQLConnector",
]
