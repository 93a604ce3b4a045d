"""
FastAPI Application

Main FastAPI application for PlanQA with:
- Lifespan management for service construction and cleanup
- CORS middleware for the report frontend
- Exception handlers mapping pipeline stages to HTTP status codes

Usage:
    uvicorn planqa.api.main:app --reload --port 8000
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from planqa import __version__
from planqa.api.routes import admin, analytics, ask, catalog, health
from planqa.config import get_settings
from planqa.connectors.base import ConnectionError as ConnectorConnectionError
from planqa.initialization import build_app_state, connect_database, log_self_check
from planqa.models.api import DeclinedResponse
from planqa.models.errors import ClassificationAmbiguous, PipelineError

logger = logging.getLogger(__name__)

# Services built at startup; routes read them per request
app_state: dict[str, Any] = {
    "settings": None,
    "catalog": None,
    "classifier": None,
    "shape_validator": None,
    "column_validator": None,
    "permission_store": None,
    "rewriter": None,
    "quick_questions": [],
    "query_logger": None,
    "feedback_store": None,
    "generator": None,
    "connector": None,
    "pipeline": None,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services, warm the mode caches and open the database pool; close it on shutdown."""
    config = get_settings()
    logger.info("Starting PlanQA API server...")

    try:
        app_state.update(build_app_state(config))

        if config.guardrails.self_check_on_startup and not config.is_production:
            logger.info("Running validator self-check...")
            log_self_check(app_state["shape_validator"].run_self_check())

        app_state["catalog"].prefetch_modes()
        await connect_database(app_state)

        logger.info("PlanQA API server started successfully")

        yield

    finally:
        connector = app_state.get("connector")
        if connector is not None:
            try:
                await connector.close()
            except Exception as e:
                logger.error(f"Connector did not close cleanly: {e}")
        logger.info("PlanQA API server stopped")


app = FastAPI(
    title="PlanQA API",
    description="Natural language questions over manufacturing planning data",
    version=__version__,
    lifespan=lifespan,
)

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5000"]


def allowed_origins(raw: str | None) -> list[str]:
    """Comma-separated CORS_ORIGINS, falling back to the local report frontends."""
    origins = [origin.strip() for origin in (raw or "").split(",") if origin.strip()]
    return origins or list(DEFAULT_CORS_ORIGINS)


app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(os.getenv("CORS_ORIGINS")),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(ClassificationAmbiguous)
async def declined_handler(request: Request, exc: ClassificationAmbiguous) -> JSONResponse:
    """Out-of-scope questions are answered with a help message, not an error."""
    body = DeclinedResponse(
        answer=exc.message,
        question=exc.question,
        mode=exc.context.get("mode", ""),
        available_modes=exc.context.get("available_modes", []),
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(by_alias=True))


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Map stage failures to 400/403/500 with the stage-tagged payload."""
    logger.info(f"Pipeline error: {exc}", extra={"stage": exc.stage})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(ConnectorConnectionError)
async def connection_error_handler(request: Request, exc: ConnectorConnectionError) -> JSONResponse:
    """Handle database connection errors."""
    logger.error(f"Database connection error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "Database connection failed. Please try again later.",
            "stage": "execution",
        },
    )


# Include routers
app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(ask.router, prefix="/api", tags=["ask"])
app.include_router(catalog.router, prefix="/api", tags=["catalog"])
app.include_router(analytics.router, prefix="/api", tags=["analytics"])
app.include_router(admin.router, prefix="/api", tags=["permissions"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "name": "PlanQA API",
        "version": __version__,
        "description": "Natural language questions over manufacturing planning data",
        "docs": "/docs",
    }
