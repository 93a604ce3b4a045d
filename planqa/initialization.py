"""
Service Initialization

Builds the explicitly constructed services (catalog, classifier, validators,
stores, generator, connector, pipeline) from settings. The API lifespan and
the CLI both start from here.
"""

from __future__ import annotations

import logging
from typing import Any

from planqa.catalog import (
    SchemaCatalog,
    load_analytics_reference,
    load_quick_questions,
    load_semantic_catalog,
)
from planqa.classification import TableRelevanceClassifier
from planqa.config import Settings
from planqa.connectors import ConnectionError, MSSQLConnector
from planqa.guardrails import ColumnReferenceValidator, PermissionRewriter, SqlShapeValidator
from planqa.llm import OpenAIProvider, SQLGenerator
from planqa.models.validation import SelfCheckReport
from planqa.pipeline import QueryPipeline
from planqa.stores import FeedbackStore, PermissionStore, QueryLogger

logger = logging.getLogger(__name__)


def build_guardrails(settings: Settings) -> dict[str, Any]:
    """Catalog, classifier and validators; no network access."""
    reference = load_analytics_reference(settings.data.analytics_reference_path)
    semantic_catalog = load_semantic_catalog(settings.data.semantic_catalog_path)
    catalog = SchemaCatalog.from_settings(settings, reference, semantic_catalog)
    permission_store = PermissionStore.from_settings(settings)
    return {
        "catalog": catalog,
        "classifier": TableRelevanceClassifier(reference),
        "shape_validator": SqlShapeValidator.from_settings(settings.guardrails),
        "column_validator": ColumnReferenceValidator(catalog),
        "permission_store": permission_store,
        "rewriter": PermissionRewriter(permission_store),
        "quick_questions": load_quick_questions(settings.data.quick_questions_path),
    }


def build_generator(settings: Settings) -> SQLGenerator | None:
    if not settings.llm.openai_api_key:
        logger.warning("LLM_OPENAI_API_KEY not set; SQL generation disabled.")
        return None
    return SQLGenerator(OpenAIProvider.from_settings(settings.llm), guardrails=settings.guardrails)


def build_app_state(settings: Settings) -> dict[str, Any]:
    """
    Construct every service. The connector is created but not connected.

    Returns:
        app_state mapping consumed by the API routes
    """
    state = build_guardrails(settings)
    state["settings"] = settings
    state["query_logger"] = QueryLogger.from_settings(settings)
    state["feedback_store"] = FeedbackStore.from_settings(settings)
    state["generator"] = build_generator(settings)
    if settings.database.is_configured:
        state["connector"] = MSSQLConnector.from_settings(settings.database)
    else:
        logger.warning("SQL_SERVER/SQL_DATABASE not set; database connector not initialized.")
        state["connector"] = None
    state["pipeline"] = build_pipeline(state, settings)
    return state


def build_pipeline(state: dict[str, Any], settings: Settings) -> QueryPipeline | None:
    if state.get("generator") is None or state.get("connector") is None:
        logger.warning("Pipeline not initialized; generator or database is missing.")
        return None
    return QueryPipeline(
        catalog=state["catalog"],
        classifier=state["classifier"],
        shape_validator=state["shape_validator"],
        column_validator=state["column_validator"],
        rewriter=state["rewriter"],
        generator=state["generator"],
        connector=state["connector"],
        query_logger=state["query_logger"],
        suggestions_enabled=settings.llm.suggestions_enabled,
    )


async def connect_database(state: dict[str, Any]) -> bool:
    """Connect the configured connector; on failure the API runs without /ask."""
    connector = state.get("connector")
    if connector is None:
        return False
    try:
        await connector.connect()
    except ConnectionError as e:
        logger.error(f"Database connection failed at startup: {e}")
        return False
    return True


def log_self_check(report: SelfCheckReport) -> None:
    for case in report.results:
        level = logging.INFO if case.passed else logging.WARNING
        logger.log(
            level,
            f"{'PASS' if case.passed else 'FAIL'}: {case.name} "
            f"(expected {case.expected}, got {case.actual})",
        )
    if report.passed:
        logger.info("Validator self-check passed")
    else:
        logger.warning("Validator self-check failed")
