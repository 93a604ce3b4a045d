"""
PlanQA Query Pipeline

Sequences the guardrails around the two I/O collaborators:

    classify -> build prompt -> generate -> shape-validate -> column-validate
    -> permission rewrite -> global filters -> execute -> log -> suggest

Every stage failure is raised as a typed PipelineError and recorded in the
query log under its stage tag before it propagates.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from planqa.catalog import SchemaCatalog
from planqa.classification import TableRelevanceClassifier
from planqa.connectors.base import BaseConnector, ConnectorError, QueryError
from planqa.guardrails import ColumnReferenceValidator, PermissionRewriter, SqlShapeValidator
from planqa.llm.sql_generator import SQLGenerator
from planqa.models.api import AskResponse
from planqa.models.classification import ClassificationResult
from planqa.models.errors import (
    ClassificationAmbiguous,
    ColumnNotFound,
    ExecutionFailure,
    PermissionDenied,
    PipelineError,
    ShapeViolation,
)
from planqa.models.permissions import GlobalFilters, PermissionContext
from planqa.models.validation import ColumnValidationResult
from planqa.stores.query_log import QueryLogger

logger = logging.getLogger(__name__)

DEFAULT_MODE = "production-planning"
CAPACITY_MODE = "capacity-plan"

CAPACITY_TERMS = (
    "demand",
    "capacity",
    "utilization",
    "resource load",
    "bottleneck",
    "throughput",
    "workload",
    "available capacity",
    "overload",
    "underutilized",
    "shift",
    "planning area",
)
PLANNING_TERMS = (
    "job",
    "work order",
    "operation",
    "due date",
    "priority",
    "manufacturing order",
    "scheduled",
    "product",
    "material",
    "bom",
)

MODE_SWITCH_HINTS = {
    CAPACITY_MODE: (
        "This question looks like it's about capacity planning, but you're currently in "
        '"Production & Planning" mode which doesn\'t have capacity columns. '
        'Try switching to "Capacity Plan" and ask again.'
    ),
    DEFAULT_MODE: (
        "This question looks like it's about production planning, but you're currently in "
        '"Capacity Plan" mode which focuses on resource capacity. '
        'Try switching to "Production & Planning" and ask again.'
    ),
}

DECLINED_MESSAGE = (
    "I couldn't match this question to the planning data I can query. "
    "Try asking about jobs, due dates, holds, resources, materials or capacity, "
    "or pick one of the quick questions for this mode."
)


def suggest_mode_for(question: str, mode: str) -> str | None:
    """Mode a column miss suggests switching to, judged by the question's vocabulary."""
    lowered = question.lower()
    if mode == DEFAULT_MODE and any(term in lowered for term in CAPACITY_TERMS):
        return CAPACITY_MODE
    if mode == CAPACITY_MODE and any(term in lowered for term in PLANNING_TERMS):
        return DEFAULT_MODE
    return None


def schema_mismatch_message(column: str) -> str:
    return (
        f"Schema mismatch: Column '{column}' does not exist in the database. "
        "This is an AI generation error."
    )


@dataclass
class _RequestTrace:
    """Per-request facts accumulated for the query log."""

    request_id: str
    question: str
    mode: str
    context: PermissionContext | None
    started: float
    sql: str | None = None
    llm_ms: float | None = None
    sql_ms: float | None = None
    column_outcome: str | None = None


class QueryPipeline:
    """
    Guarded natural-language-to-SQL pipeline.

    Built explicitly from its collaborators; holds no global state.

    Usage:
        pipeline = QueryPipeline(catalog, classifier, shape, columns, rewriter,
                                 generator, connector, query_logger)
        response = await pipeline.ask("Show jobs on hold with hold reasons")
    """

    def __init__(
        self,
        catalog: SchemaCatalog,
        classifier: TableRelevanceClassifier,
        shape_validator: SqlShapeValidator,
        column_validator: ColumnReferenceValidator,
        rewriter: PermissionRewriter,
        generator: SQLGenerator,
        connector: BaseConnector,
        query_logger: QueryLogger,
        suggestions_enabled: bool = True,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.catalog = catalog
        self.classifier = classifier
        self.shape_validator = shape_validator
        self.column_validator = column_validator
        self.rewriter = rewriter
        self.generator = generator
        self.connector = connector
        self.query_logger = query_logger
        self.suggestions_enabled = suggestions_enabled
        self._clock = clock

    def _elapsed_ms(self, since: float) -> float:
        return round((self._clock() - since) * 1000, 1)

    async def ask(
        self,
        question: str,
        mode: str = DEFAULT_MODE,
        context: PermissionContext | None = None,
        filters: GlobalFilters | None = None,
    ) -> AskResponse:
        """
        Answer a question through every guardrail stage.

        Raises:
            ClassificationAmbiguous: Out-of-scope question (declined, not failed)
            GenerationFailure: The provider failed
            ShapeViolation: Generated SQL failed the shape gate
            ColumnNotFound: Generated SQL references unknown columns
            PermissionDenied: The caller may not read a referenced table
            ExecutionFailure: The database rejected the statement
        """
        trace = _RequestTrace(
            request_id=self.query_logger.new_request_id(),
            question=question,
            mode=mode,
            context=context,
            started=self._clock(),
        )
        logger.info(
            f"Processing question (mode: {mode})",
            extra={"request_id": trace.request_id, "stage": "request"},
        )
        try:
            return await self._run(trace, filters)
        except PipelineError as error:
            self._record_failure(trace, error)
            raise

    async def _run(self, trace: _RequestTrace, filters: GlobalFilters | None) -> AskResponse:
        question, mode = trace.question, trace.mode

        # 1. Classify
        mode_config = self.catalog.get_mode(mode)
        if mode_config is None:
            logger.warning(f"Unknown mode '{mode}'; classifying against all tables")
        candidates = list(mode_config.tables) if mode_config and mode_config.tables else None
        classification = self.classifier.classify(question, candidates)
        if classification.declined:
            raise ClassificationAmbiguous(
                question,
                DECLINED_MESSAGE,
                context={
                    "mode": mode,
                    "available_modes": [m.id for m in self.catalog.semantic_catalog.modes],
                },
            )

        # 2. Prompt
        schema_context = self.catalog.format_for_prompt(classification.selected_tables, question)
        business_context = self.classifier.business_term_context(classification.matched_terms)

        # 3. Generate
        llm_started = self._clock()
        try:
            sql = await self.generator.generate_sql(
                question,
                schema_context,
                mode,
                allowed_tables=candidates or classification.selected_tables,
                guidance=mode_config.guidance if mode_config else None,
                business_context=business_context,
                context_hints=classification.context_hints,
            )
        finally:
            trace.llm_ms = self._elapsed_ms(llm_started)
        trace.sql = sql
        logger.info("Generated SQL", extra={"request_id": trace.request_id, "stage": "generation"})

        # 4. Shape
        shape = self.shape_validator.validate(sql)
        if not shape.valid:
            raise ShapeViolation(shape.error or "Invalid SQL", sql)
        sql = shape.modified_sql or sql
        trace.sql = sql

        # 5. Columns
        column_result = self.column_validator.validate(sql)
        trace.column_outcome = column_result.outcome
        if column_result.outcome == "failed":
            for error in column_result.errors:
                logger.info(
                    f"Column validation error: {error.message}",
                    extra={"request_id": trace.request_id, "stage": "column_validation"},
                )
            suggested = suggest_mode_for(question, mode)
            raise ColumnNotFound(
                column_result.errors,
                sql,
                suggest_mode=suggested,
                hint=MODE_SWITCH_HINTS.get(suggested) if suggested else None,
            )
        if column_result.outcome == "skipped":
            logger.warning(
                f"Column validation {column_result.skip_reason}",
                extra={"request_id": trace.request_id, "stage": "column_validation"},
            )

        # 6. Permissions
        permission = self.rewriter.enforce_for_context(sql, trace.context)
        if not permission.allowed:
            raise PermissionDenied(permission.blocked_reason or "Access denied")
        sql = permission.modified_sql or sql
        applied_filters = list(permission.applied_filters)

        # 7. Global filters
        global_result = self.rewriter.apply_global_filters(sql, filters)
        sql = global_result.modified_sql or sql
        applied_filters.extend(global_result.applied_filters)
        trace.sql = sql

        # 8. Execute
        rows, row_count = await self._execute(trace, sql)

        # 9. Log
        self.query_logger.record(
            request_id=trace.request_id,
            question=question,
            total_ms=self._elapsed_ms(trace.started),
            generated_sql=sql,
            row_count=row_count,
            llm_ms=trace.llm_ms,
            sql_ms=trace.sql_ms,
            user_id=trace.context.user_id if trace.context else None,
            username=trace.context.username if trace.context else None,
            mode=mode,
            column_validation=trace.column_outcome,
        )
        if row_count > 0:
            self.query_logger.track_question(question, row_count)

        # 10. Suggestions
        suggestions: list[str] = []
        if self.suggestions_enabled:
            suggestions = await self.generator.suggest_followups(question)

        return self._build_response(
            sql, rows, row_count, classification, applied_filters, suggestions, column_result
        )

    async def _execute(self, trace: _RequestTrace, sql: str) -> tuple[list[dict], int]:
        sql_started = self._clock()
        try:
            result = await self.connector.execute(sql)
        except QueryError as e:
            trace.sql_ms = self._elapsed_ms(sql_started)
            if e.invalid_column:
                logger.error(
                    f"Schema mismatch: generated SQL references missing column '{e.invalid_column}'",
                    extra={"request_id": trace.request_id, "stage": "execution"},
                )
                raise ExecutionFailure(
                    schema_mismatch_message(e.invalid_column), sql, invalid_column=e.invalid_column
                ) from e
            raise ExecutionFailure(str(e) or "Failed to execute query", sql) from e
        except ConnectorError as e:
            trace.sql_ms = self._elapsed_ms(sql_started)
            raise ExecutionFailure(str(e) or "Database unavailable", sql) from e
        trace.sql_ms = self._elapsed_ms(sql_started)
        logger.info(
            f"Query returned {result.row_count} row(s)",
            extra={"request_id": trace.request_id, "stage": "execution", "sql_ms": trace.sql_ms},
        )
        return result.rows, result.row_count

    @staticmethod
    def _build_response(
        sql: str,
        rows: list[dict],
        row_count: int,
        classification: ClassificationResult,
        applied_filters: list[str],
        suggestions: list[str],
        column_result: ColumnValidationResult,
    ) -> AskResponse:
        return AskResponse(
            answer=f"Query executed successfully. Retrieved {row_count} row(s).",
            sql=sql,
            rows=rows,
            row_count=row_count,
            tables=classification.selected_tables,
            confidence=classification.confidence,
            applied_filters=applied_filters,
            suggestions=suggestions,
            column_validation=column_result,
        )

    def _record_failure(self, trace: _RequestTrace, error: PipelineError) -> None:
        logger.info(
            f"Request failed at {error.stage}: {error.message}",
            extra={"request_id": trace.request_id, "stage": error.stage},
        )
        self.query_logger.record(
            request_id=trace.request_id,
            question=trace.question,
            total_ms=self._elapsed_ms(trace.started),
            generated_sql=trace.sql,
            validation_ok=error.stage not in ("validation", "column_validation"),
            validation_reason=error.message if error.stage in ("validation", "column_validation") else None,
            llm_ms=trace.llm_ms,
            sql_ms=trace.sql_ms,
            error_stage=error.stage,
            error_message=error.message,
            user_id=trace.context.user_id if trace.context else None,
            username=trace.context.username if trace.context else None,
            mode=trace.mode,
            column_validation=trace.column_outcome,
        )
