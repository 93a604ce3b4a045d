"""
SQL Server Connector

Executes validated SELECT statements against the analytical SQL Server
database through a SQLAlchemy engine (mssql+pyodbc dialect).

The driver is synchronous, so every call runs in a worker thread via
asyncio.to_thread. Execution is single-attempt with a fixed timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from planqa.config import DatabaseSettings
from planqa.connectors.base import (
    BaseConnector,
    ConnectionError,
    QueryError,
    QueryResult,
    SchemaError,
)

logger = logging.getLogger(__name__)

LIST_TABLES_SQL = """
    SELECT t.name
    FROM sys.tables t
    INNER JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema_name AND t.name LIKE :pattern ESCAPE '\\'
    ORDER BY t.name
"""

COLUMNS_SQL = """
    SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME, DATA_TYPE, IS_NULLABLE
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = :schema_name AND TABLE_NAME LIKE :pattern ESCAPE '\\'
    ORDER BY TABLE_NAME, ORDINAL_POSITION
"""


def like_prefix(prefix: str) -> str:
    """LIKE pattern matching names that start with prefix literally."""
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_").replace("[", "\\[")
    return escaped + "%"


def driver_message(exc: Exception) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


class MSSQLConnector(BaseConnector):
    """SQL Server connector backed by a pooled SQLAlchemy engine."""

    def __init__(self, url: str, timeout: int = 30, pool_size: int = 5, **engine_kwargs: Any):
        super().__init__(timeout=timeout, pool_size=pool_size)
        self.url = url
        self.engine_kwargs = engine_kwargs
        self._engine: Engine | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> MSSQLConnector:
        url = settings.sqlalchemy_url()
        if url is None:
            raise ConnectionError("Database is not configured. Set SQL_URL or SQL_SERVER/SQL_DATABASE.")
        return cls(url=url, timeout=settings.query_timeout, pool_size=settings.pool_size)

    async def connect(self) -> None:
        """Create the engine and verify connectivity."""
        if self._connected:
            return
        try:
            self._engine = create_engine(
                self.url,
                pool_size=self.pool_size,
                pool_pre_ping=True,
                **self.engine_kwargs,
            )
            await asyncio.to_thread(self._ping_sync)
            self._connected = True
            logger.info("Connected to SQL Server")
        except (SQLAlchemyError, ImportError) as exc:
            logger.error(f"SQL Server connection failed: {exc}")
            raise ConnectionError(f"Failed to connect to SQL Server: {driver_message(exc)}") from exc

    async def execute(self, query: str, timeout: int | None = None) -> QueryResult:
        """Execute one statement and return its rows."""
        if not self._connected:
            raise ConnectionError("Not connected to database. Call connect() first.")

        start_time = time.perf_counter()
        try:
            rows, columns = await asyncio.to_thread(self._execute_sync, query, timeout or self.timeout)
        except SQLAlchemyError as exc:
            message = driver_message(exc)
            logger.error(f"SQL Server query failed: {message}", extra={"stage": "execution"})
            raise QueryError.from_driver_message(message) from exc
        return QueryResult(
            rows=rows,
            row_count=len(rows),
            columns=columns,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    async def list_tables(self, schema_name: str, prefix: str = "") -> list[str]:
        if not self._connected:
            raise ConnectionError("Not connected to database. Call connect() first.")
        try:
            rows = await asyncio.to_thread(
                self._fetch_sync,
                LIST_TABLES_SQL,
                {"schema_name": schema_name, "pattern": like_prefix(prefix)},
            )
        except SQLAlchemyError as exc:
            raise SchemaError(f"Failed to list tables: {driver_message(exc)}") from exc
        return [row["name"] for row in rows]

    async def get_columns(self, schema_name: str, prefix: str = "") -> dict[str, list[dict[str, Any]]]:
        if not self._connected:
            raise ConnectionError("Not connected to database. Call connect() first.")
        try:
            rows = await asyncio.to_thread(
                self._fetch_sync,
                COLUMNS_SQL,
                {"schema_name": schema_name, "pattern": like_prefix(prefix)},
            )
        except SQLAlchemyError as exc:
            raise SchemaError(f"Failed to introspect schema: {driver_message(exc)}") from exc

        tables: dict[str, list[dict[str, Any]]] = {}
        for row in rows:
            name = f"{row['TABLE_SCHEMA']}.{row['TABLE_NAME']}"
            tables.setdefault(name, []).append(
                {
                    "name": row["COLUMN_NAME"],
                    "data_type": row["DATA_TYPE"],
                    "nullable": str(row["IS_NULLABLE"]).upper() == "YES",
                }
            )
        return tables

    async def close(self) -> None:
        if self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)
            self._engine = None
        self._connected = False

    def _ping_sync(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def _execute_sync(self, query: str, query_timeout: int) -> tuple[list[dict[str, Any]], list[str]]:
        with self._engine.connect() as conn:
            driver_conn = conn.connection.driver_connection
            if hasattr(driver_conn, "timeout"):
                driver_conn.timeout = query_timeout
            result = conn.exec_driver_sql(query)
            if not result.returns_rows:
                return [], []
            columns = list(result.keys())
            return [dict(row) for row in result.mappings()], columns

    def _fetch_sync(self, query: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        with self._engine.connect() as conn:
            return [dict(row) for row in conn.execute(text(query), params).mappings()]
