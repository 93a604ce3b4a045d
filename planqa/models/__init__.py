"""
PlanQA Data Models

Pydantic models shared across the catalog, guardrails, stores and API.
"""

from planqa.models.api import (
    AskRequest,
    AskResponse,
    DbCheckResponse,
    DeclinedResponse,
    HealthResponse,
    ModeSchemaResponse,
    SchemaRefreshResponse,
)
from planqa.models.classification import (
    AnalyticsReference,
    BusinessTerm,
    ClassificationResult,
    Confidence,
    MatrixEntry,
    ModeConfig,
    OverrideRule,
    QuickQuestion,
    SemanticCatalog,
)
from planqa.models.errors import (
    ClassificationAmbiguous,
    ColumnNotFound,
    ExecutionFailure,
    GenerationFailure,
    PermissionDenied,
    PipelineError,
    ShapeViolation,
)
from planqa.models.logs import FeedbackEntry, FeedbackStats, QueryAnalytics, QueryLogEntry
from planqa.models.permissions import (
    GlobalFilters,
    PermissionContext,
    PermissionEnforcementResult,
    UserPermissions,
    UserPermissionsUpdate,
)
from planqa.models.schema import ColumnMetadata, TableSchema
from planqa.models.validation import (
    ColumnValidationError,
    ColumnValidationResult,
    SelfCheckReport,
    ValidationResult,
)

__all__ = [
    # API
    "AskRequest",
    "AskResponse",
    "DbCheckResponse",
    "DeclinedResponse",
    "HealthResponse",
    "ModeSchemaResponse",
    "SchemaRefreshResponse",
    # Classification
    "AnalyticsReference",
    "BusinessTerm",
    "ClassificationResult",
    "Confidence",
    "MatrixEntry",
    "ModeConfig",
    "OverrideRule",
    "QuickQuestion",
    "SemanticCatalog",
    # Errors
    "ClassificationAmbiguous",
    "ColumnNotFound",
    "ExecutionFailure",
    "GenerationFailure",
    "PermissionDenied",
    "PipelineError",
    "ShapeViolation",
    # Logs
    "FeedbackEntry",
    "FeedbackStats",
    "QueryAnalytics",
    "QueryLogEntry",
    # Permissions
    "GlobalFilters",
    "PermissionContext",
    "PermissionEnforcementResult",
    "UserPermissions",
    "UserPermissionsUpdate",
    # Schema
    "ColumnMetadata",
    "TableSchema",
    # Validation
    "ColumnValidationError",
    "ColumnValidationResult",
    "SelfCheckReport",
    "ValidationResult",
]
