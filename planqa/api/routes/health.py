"""
Health and Diagnostics Routes

Service health, the validator self-check, database connectivity and the
table access diagnostics.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Header, HTTPException, status
from fastapi.responses import JSONResponse

from planqa import __version__
from planqa.config import get_settings
from planqa.connectors.base import ConnectorError
from planqa.models.api import DbCheckResponse, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()

DB_CHECK_TABLE = "DASHt_Planning"


def _app_state() -> dict[str, Any]:
    from planqa.api.main import app_state

    return app_state


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
async def health() -> HealthResponse:
    """Liveness plus a summary of which collaborators are configured."""
    state = _app_state()
    settings = state.get("settings") or get_settings()
    catalog = state.get("catalog")
    schema_tables = len(catalog) if catalog is not None else 0
    degraded = state.get("pipeline") is None or schema_tables == 0
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        version=__version__,
        environment=settings.environment,
        schema_tables=schema_tables,
        database_configured=state.get("connector") is not None,
        llm_configured=state.get("generator") is not None,
    )


@router.get("/validator-check")
async def validator_check() -> dict[str, Any]:
    """Run the shape validator's fixture battery."""
    shape_validator = _app_state().get("shape_validator")
    if shape_validator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Validator not initialized")
    report = shape_validator.run_self_check()
    return {**report.model_dump(), "timestamp": datetime.now(UTC).isoformat()}


@router.get("/db-check", response_model=DbCheckResponse, response_model_by_alias=True)
async def db_check() -> DbCheckResponse | JSONResponse:
    """Read one row from the planning table to prove connectivity."""
    state = _app_state()
    connector = state.get("connector")
    if connector is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=DbCheckResponse(ok=False, error="Database is not configured").model_dump(by_alias=True),
        )
    settings = state.get("settings") or get_settings()
    query = f"SELECT TOP (1) * FROM [{settings.guardrails.allowed_schema}].[{DB_CHECK_TABLE}]"
    try:
        result = await connector.execute(query)
    except ConnectorError as e:
        logger.error(f"Database check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=DbCheckResponse(ok=False, error=str(e) or "Database connection failed").model_dump(
                by_alias=True
            ),
        )
    return DbCheckResponse(
        ok=True,
        row_count=result.row_count,
        sample=result.rows[0] if result.rows else None,
    )


@router.get("/db/diagnostics")
async def db_diagnostics(x_diagnostics_token: str | None = Header(default=None)) -> dict[str, Any]:
    """
    Check read access to every curated table.

    Open outside production; in production the ``x-diagnostics-token`` header
    must match DIAGNOSTICS_TOKEN.
    """
    state = _app_state()
    settings = state.get("settings") or get_settings()
    if settings.is_production and (
        not settings.diagnostics_token or x_diagnostics_token != settings.diagnostics_token
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Diagnostics are only available in development or with a valid x-diagnostics-token header",
        )
    connector = state.get("connector")
    if connector is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database is not configured")

    logger.info("Running database diagnostics...")
    try:
        report = await connector.diagnose_tables(
            settings.guardrails.allowed_schema, settings.guardrails.table_prefix
        )
    except ConnectorError as e:
        logger.error(f"Database diagnostics failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database diagnostics failed"
        ) from e
    return report.model_dump(by_alias=True, mode="json")
