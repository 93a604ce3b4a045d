"""
Catalog Routes

Semantic modes, per-mode schemas, validated quick questions and the
schema snapshot refresh.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status

from planqa.catalog import SchemaCatalog
from planqa.models.api import ModeSchemaResponse, SchemaRefreshResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_catalog() -> SchemaCatalog:
    from planqa.api.main import app_state

    catalog = app_state.get("catalog")
    if catalog is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Schema catalog not initialized")
    return catalog


def _unknown_mode(catalog: SchemaCatalog, mode: str) -> HTTPException:
    valid = ", ".join(m.id for m in catalog.semantic_catalog.modes)
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Mode '{mode}' not found in semantic catalog. Valid modes: {valid}",
    )


@router.get("/semantic-catalog")
async def semantic_catalog() -> dict[str, Any]:
    return _get_catalog().semantic_catalog.model_dump()


@router.get("/schema/{mode}", response_model=ModeSchemaResponse, response_model_by_alias=True)
async def mode_schema(mode: str) -> ModeSchemaResponse:
    """Table to column mapping for one mode, served from the mode cache."""
    catalog = _get_catalog()
    if catalog.get_mode(mode) is None:
        raise _unknown_mode(catalog, mode)
    entry = catalog.mode_schema(mode)
    return ModeSchemaResponse(
        mode=mode,
        tables={name: list(schema.column_names) for name, schema in entry.schemas.items()},
        table_count=entry.table_count,
        column_count=entry.column_count,
        formatted_prompt=entry.formatted_prompt,
    )


@router.get("/quick-questions/{mode}")
async def quick_questions(mode: str) -> dict[str, Any]:
    """Quick questions for a mode, hiding those whose columns are missing."""
    from planqa.api.main import app_state

    catalog = _get_catalog()
    visible = catalog.visible_quick_questions(app_state.get("quick_questions") or [], mode)
    return {
        "mode": mode,
        "questions": [
            question.model_dump(include={"id", "text", "icon", "mode"}) for question in visible
        ],
    }


@router.post("/schema/refresh", response_model=SchemaRefreshResponse, response_model_by_alias=True)
async def refresh_schema() -> SchemaRefreshResponse:
    """Reload the schema snapshot and rebuild the mode caches."""
    catalog = _get_catalog()
    tables = catalog.refresh()
    catalog.clear_cache()
    warmed = catalog.prefetch_modes()
    logger.info(f"Schema refreshed: {tables} tables, {warmed} modes warmed")
    return SchemaRefreshResponse(tables=tables, modes_warmed=warmed)
