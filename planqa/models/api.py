"""
API Request/Response Models

Pydantic models for the FastAPI endpoints. JSON bodies use camelCase keys.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from planqa.models.classification import Confidence
from planqa.models.permissions import GlobalFilters
from planqa.models.validation import ColumnValidationResult

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AskRequest(BaseModel):
    """Request model for the ask endpoint."""

    question: str = Field(..., min_length=1, description="Natural language question")
    mode: str = Field(default="production-planning", description="Semantic mode id")
    user_id: str | None = Field(None, description="Caller id used for permission lookup")
    username: str | None = Field(None, description="Caller username (fallback lookup)")
    filters: GlobalFilters | None = Field(None, description="Ad-hoc UI filters")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "question": "Show jobs on hold with hold reasons",
                "mode": "production-planning",
                "userId": "u-100",
                "filters": {"planningArea": "North"},
            }
        },
    )


class AskResponse(BaseModel):
    """Successful answer from the guarded pipeline."""

    answer: str = Field(..., description="Short natural-language summary")
    sql: str = Field(..., description="SQL that was executed")
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = Field(..., ge=0)
    tables: list[str] = Field(default_factory=list, description="Tables selected by the classifier")
    confidence: Confidence = Field(..., description="Classifier confidence")
    applied_filters: list[str] = Field(default_factory=list, description="Permission and UI filter labels")
    suggestions: list[str] = Field(default_factory=list, description="Follow-up questions")
    column_validation: ColumnValidationResult | None = None
    declined: bool = False

    model_config = _CAMEL


class DeclinedResponse(BaseModel):
    """Returned instead of an answer when the question is out of scope."""

    declined: bool = True
    answer: str
    question: str
    mode: str
    available_modes: list[str] = Field(default_factory=list)

    model_config = _CAMEL


class HealthResponse(BaseModel):
    """Service health summary."""

    status: str = Field(..., description="'healthy' or 'degraded'")
    version: str
    environment: str
    schema_tables: int = Field(..., description="Tables in the loaded schema snapshot")
    database_configured: bool
    llm_configured: bool

    model_config = _CAMEL


class ModeSchemaResponse(BaseModel):
    """Cached schema for one mode."""

    mode: str
    tables: dict[str, list[str]]
    table_count: int
    column_count: int
    formatted_prompt: str

    model_config = _CAMEL


class DbCheckResponse(BaseModel):
    ok: bool
    row_count: int = 0
    sample: dict[str, Any] | None = None
    error: str | None = None

    model_config = _CAMEL


class SchemaRefreshResponse(BaseModel):
    tables: int
    modes_warmed: int

    model_config = _CAMEL
