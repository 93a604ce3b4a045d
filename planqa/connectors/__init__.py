"""
Database Connectors

The SQL execution collaborator and its error types.
"""

from planqa.connectors.base import (
    BaseConnector,
    ConnectionError,
    ConnectorError,
    DiagnosticsReport,
    QueryError,
    QueryResult,
    SchemaError,
    TableAccess,
    extract_invalid_column,
)
from planqa.connectors.mssql import MSSQLConnector

__all__ = [
    "BaseConnector",
    "ConnectionError",
    "ConnectorError",
    "DiagnosticsReport",
    "MSSQLConnector",
    "QueryError",
    "QueryResult",
    "SchemaError",
    "TableAccess",
    "extract_invalid_column",
]
