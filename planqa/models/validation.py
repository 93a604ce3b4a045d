"""
Validation Models

Results produced by the shape validator, the column reference validator,
and the validator self-check.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ValidationResult(BaseModel):
    """Outcome of shape validation. Always produced, never raised."""

    valid: bool = Field(..., description="Whether the SQL passed every shape rule")
    error: str | None = Field(None, description="Human-readable rejection reason")
    modified_sql: str | None = Field(
        None, description="SQL after row-cap rewriting (set when valid)"
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(valid=False, error=reason)

    @classmethod
    def accept(cls, sql: str) -> "ValidationResult":
        return cls(valid=True, modified_sql=sql)


class ColumnValidationError(BaseModel):
    """A column reference that does not resolve against the schema catalog."""

    column: str
    table: str | None = Field(None, description="Table the reference resolves to, if known")
    context: str = Field(default="select", description="Clause the reference was found in")
    message: str
    available_columns: list[str] = Field(
        default_factory=list, max_length=5, description="Closest real columns"
    )


ColumnValidationOutcome = Literal["passed", "failed", "skipped"]


class ColumnValidationResult(BaseModel):
    """
    Outcome of column validation.

    ``skipped`` means the validator could not check the query (schema
    unavailable, parse fault). It lets the query through but is reported
    separately from ``passed`` so callers can tell "checked" from "not checked".
    """

    outcome: ColumnValidationOutcome
    errors: list[ColumnValidationError] = Field(default_factory=list)
    skip_reason: str | None = None
    checked_columns: list[str] = Field(default_factory=list)
    tables: list[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.outcome != "failed"

    @property
    def invalid_columns(self) -> list[str]:
        return [error.column for error in self.errors]

    @classmethod
    def skipped(cls, reason: str, tables: list[str] | None = None) -> "ColumnValidationResult":
        return cls(outcome="skipped", skip_reason=reason, tables=tables or [])


class SelfCheckCase(BaseModel):
    """Result of one self-check fixture."""

    name: str
    passed: bool
    expected: str
    actual: str


class SelfCheckReport(BaseModel):
    """Result of the shape validator self-check battery."""

    passed: bool
    results: list[SelfCheckCase] = Field(default_factory=list)
