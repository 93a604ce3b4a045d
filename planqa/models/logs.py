"""
Query Log Models

Entries written by the query logger and the analytics views computed
over them. Persisted with camelCase keys.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from planqa.models.errors import Stage

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationOutcome(BaseModel):
    ok: bool
    reason: str | None = None

    model_config = _CAMEL


class QueryTimings(BaseModel):
    llm_ms: float | None = None
    sql_ms: float | None = None
    total_ms: float = 0.0

    model_config = _CAMEL


class StageError(BaseModel):
    stage: Stage
    message: str

    model_config = _CAMEL


class QueryLogEntry(BaseModel):
    """One /api/ask request, successful or not."""

    timestamp: str
    request_id: str
    route: str = "/api/ask"
    question: str
    user_id: str | None = None
    username: str | None = None
    mode: str | None = None
    generated_sql: str | None = None
    sql_hash: str | None = None
    validation_outcome: ValidationOutcome
    column_validation: Literal["passed", "failed", "skipped"] | None = None
    row_count: int | None = None
    timings: QueryTimings = Field(default_factory=QueryTimings)
    error: StageError | None = None

    model_config = _CAMEL

    @property
    def succeeded(self) -> bool:
        return self.error is None


class AnalyticsSummary(BaseModel):
    total_queries: int
    successful_queries: int
    failed_queries: int
    average_latency: int
    average_llm_ms: int
    average_sql_ms: int

    model_config = _CAMEL


class StageBreakdown(BaseModel):
    stage: str
    count: int
    percentage: float

    model_config = _CAMEL


class TopError(BaseModel):
    message: str
    count: int
    last_occurred: str

    model_config = _CAMEL


class RecentQuery(BaseModel):
    timestamp: str
    question: str
    success: bool
    latency: float
    row_count: int | None = None
    error: str | None = None

    model_config = _CAMEL


class PerformancePoint(BaseModel):
    timestamp: str
    latency: float
    llm_ms: float
    sql_ms: float

    model_config = _CAMEL


class QueryAnalytics(BaseModel):
    """Dashboard view over a time window of the query log."""

    summary: AnalyticsSummary
    error_breakdown: list[StageBreakdown] = Field(default_factory=list)
    performance_over_time: list[PerformancePoint] = Field(default_factory=list)
    top_errors: list[TopError] = Field(default_factory=list)
    recent_queries: list[RecentQuery] = Field(default_factory=list)

    model_config = _CAMEL


class FailedQuery(BaseModel):
    timestamp: str
    question: str
    generated_sql: str | None = None
    error_stage: str
    error_message: str
    llm_ms: float | None = None

    model_config = _CAMEL


class PopularQuestion(BaseModel):
    question: str
    count: int


class FeedbackEntry(BaseModel):
    """Thumbs up/down on an answer."""

    question: str = Field(..., min_length=1)
    sql: str = ""
    feedback: Literal["up", "down"]
    comment: str | None = None
    timestamp: str | None = None


class FeedbackStats(BaseModel):
    total: int
    positive: int
    negative: int
