"""SQL guardrails: shape validation, column validation and permission rewriting."""

from planqa.guardrails.columns import ColumnReferenceValidator
from planqa.guardrails.permissions import PermissionRewriter
from planqa.guardrails.shape import SqlShapeValidator

__all__ = ["ColumnReferenceValidator", "PermissionRewriter", "SqlShapeValidator"]
