"""
Pipeline Errors

Typed exceptions raised by the query pipeline. Every error carries the
stage that produced it so logs and analytics can aggregate by stage.
"""

from typing import Any, Literal

from planqa.models.validation import ColumnValidationError

Stage = Literal[
    "classification",
    "generation",
    "validation",
    "column_validation",
    "permission",
    "execution",
]


class PipelineError(Exception):
    """
    Base exception for query pipeline failures.

    Attributes:
        stage: Pipeline stage that raised the error
        message: User-facing description
        sql: SQL involved, echoed back for transparency (if any)
        context: Additional structured details
    """

    status_code = 500

    def __init__(
        self,
        stage: Stage,
        message: str,
        sql: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.stage = stage
        self.message = message
        self.sql = sql
        self.context = context or {}
        super().__init__(f"[{stage}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/API responses."""
        payload: dict[str, Any] = {
            "error": self.message,
            "stage": self.stage,
            "type": self.__class__.__name__,
        }
        if self.sql is not None:
            payload["sql"] = self.sql
        payload.update(self.context)
        return payload


class ClassificationAmbiguous(PipelineError):
    """The question matched nothing; generation is declined, not failed."""

    status_code = 200

    def __init__(self, question: str, message: str, context: dict[str, Any] | None = None):
        self.question = question
        super().__init__("classification", message, context=context)


class GenerationFailure(PipelineError):
    """The generation collaborator failed or returned nothing usable."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__("generation", message, context=context)


class ShapeViolation(PipelineError):
    """Generated SQL failed the shape gate."""

    status_code = 400

    def __init__(self, reason: str, sql: str):
        self.reason = reason
        super().__init__("validation", f"SQL validation failed: {reason}", sql=sql)


class ColumnNotFound(PipelineError):
    """Generated SQL references columns that do not exist."""

    status_code = 400

    def __init__(
        self,
        errors: list[ColumnValidationError],
        sql: str,
        suggest_mode: str | None = None,
        hint: str | None = None,
    ):
        self.errors = errors
        self.suggest_mode = suggest_mode
        context: dict[str, Any] = {
            "schema_error": True,
            "invalid_columns": [error.column for error in errors],
            "details": [error.message for error in errors],
        }
        if suggest_mode:
            context["suggest_mode"] = suggest_mode
        message = self._build_message(errors)
        if hint:
            message = f"{hint}\n\nError details: {message}"
        super().__init__("column_validation", message, sql=sql, context=context)

    @staticmethod
    def _build_message(errors: list[ColumnValidationError]) -> str:
        first = errors[0]
        message = first.message
        if first.available_columns:
            message += f". Did you mean one of these? {', '.join(first.available_columns)}"
        if len(errors) > 1:
            message += f" (and {len(errors) - 1} more invalid column(s))"
        return message


class PermissionDenied(PipelineError):
    """The user may not read a table category the query touches."""

    status_code = 403

    def __init__(self, reason: str, sql: str | None = None):
        super().__init__("permission", reason, sql=sql)


class ExecutionFailure(PipelineError):
    """The execution collaborator raised."""

    def __init__(self, message: str, sql: str, invalid_column: str | None = None):
        self.invalid_column = invalid_column
        context = {"invalid_column": invalid_column} if invalid_column else None
        super().__init__("execution", message, sql=sql, context=context)
