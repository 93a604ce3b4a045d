"""
Base Database Connector

Abstract base class for the SQL execution collaborator. The pipeline hands
it one validated SQL string and gets rows back, or a QueryError carrying
the driver message.

All connectors must implement:
- connect(): Establish the connection pool
- execute(): Run one statement with a fixed timeout (single attempt)
- list_tables(): Enumerate tables in a schema
- get_columns(): Introspect columns for the schema snapshot
- close(): Clean up connections and pools
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

INVALID_COLUMN_PATTERN = re.compile(r"Invalid column name '([^']+)'", re.IGNORECASE)


# ============================================================================
# Data Models
# ============================================================================


class QueryResult(BaseModel):
    """Result from query execution."""

    rows: list[dict[str, Any]] = Field(..., description="Query result rows")
    row_count: int = Field(..., description="Number of rows returned")
    columns: list[str] = Field(..., description="Column names")
    execution_time_ms: float = Field(..., description="Query execution time in ms")


class TableAccess(BaseModel):
    """Access check result for one table."""

    table: str = Field(..., description="Table name")
    accessible: bool = Field(..., description="Whether a zero-row SELECT succeeded")
    error: str | None = Field(None, description="Sanitized failure reason")


class DiagnosticsReport(BaseModel):
    """Access check results across a schema."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    total_tables: int = Field(..., serialization_alias="totalTables")
    accessible: int = Field(...)
    failed: int = Field(...)
    tables: list[TableAccess] = Field(default_factory=list)


class ConnectorError(Exception):
    """Base exception for connector errors."""

    pass


class ConnectionError(ConnectorError):
    """Error establishing or managing database connection."""

    pass


class QueryError(ConnectorError):
    """
    Error executing a database query.

    Attributes:
        invalid_column: Column named by an "Invalid column name" driver error
    """

    def __init__(self, message: str, invalid_column: str | None = None):
        super().__init__(message)
        self.invalid_column = invalid_column

    @classmethod
    def from_driver_message(cls, message: str) -> "QueryError":
        return cls(message, invalid_column=extract_invalid_column(message))


class SchemaError(ConnectorError):
    """Error introspecting database schema."""

    pass


def extract_invalid_column(message: str) -> str | None:
    """Column name from a SQL Server "Invalid column name 'X'" message."""
    match = INVALID_COLUMN_PATTERN.search(message or "")
    return match.group(1) if match else None


def sanitize_access_error(message: str) -> str:
    """Map driver errors to messages safe to return to clients."""
    lowered = (message or "").lower()
    if "invalid object name" in lowered:
        return "Table not found"
    if "permission" in lowered:
        return "Permission denied"
    return "Access denied"


def quote_identifier(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


# ============================================================================
# Base Connector
# ============================================================================


class BaseConnector(ABC):
    """
    Abstract base class for database connectors.

    Usage:
        connector = MSSQLConnector.from_settings(settings.database)
        async with connector:
            result = await connector.execute("SELECT TOP (10) * FROM [publish].[DASHt_Planning]")
            print(f"Found {result.row_count} rows")
    """

    def __init__(self, timeout: int = 30, pool_size: int = 5):
        self.timeout = timeout
        self.pool_size = pool_size
        self._connected = False

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the database connection pool. Idempotent.

        Raises:
            ConnectionError: If connection fails
        """
        pass

    @abstractmethod
    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        """
        Execute a SQL statement once, with no retry.

        Raises:
            QueryError: If query execution fails
            ConnectionError: If not connected
        """
        pass

    @abstractmethod
    async def list_tables(self, schema_name: str, prefix: str = "") -> list[str]:
        """Table names in a schema, optionally restricted to a name prefix."""
        pass

    @abstractmethod
    async def get_columns(self, schema_name: str, prefix: str = "") -> dict[str, list[dict[str, Any]]]:
        """
        Columns per fully-qualified table, in ordinal order.

        Raises:
            SchemaError: If schema introspection fails
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close database connection and clean up pool. Idempotent."""
        pass

    async def diagnose_tables(self, schema_name: str, prefix: str = "") -> DiagnosticsReport:
        """Try each table with a zero-row SELECT and report which are readable."""
        results: list[TableAccess] = []
        for table in await self.list_tables(schema_name, prefix):
            check_sql = f"SELECT TOP (0) * FROM {quote_identifier(schema_name)}.{quote_identifier(table)}"
            try:
                await self.execute(check_sql)
                results.append(TableAccess(table=table, accessible=True))
            except QueryError as exc:
                logger.warning(f"Failed to access table {table}: {exc}")
                results.append(
                    TableAccess(table=table, accessible=False, error=sanitize_access_error(str(exc)))
                )
        accessible = sum(1 for result in results if result.accessible)
        logger.info(f"Diagnostics complete: {accessible}/{len(results)} tables accessible")
        return DiagnosticsReport(
            total_tables=len(results),
            accessible=accessible,
            failed=len(results) - accessible,
            tables=results,
        )

    @property
    def is_connected(self) -> bool:
        """Check if connector is connected."""
        return self._connected

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
