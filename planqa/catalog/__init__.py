"""Schema catalog, configuration loaders and fuzzy column matching."""

from planqa.catalog.fuzzy import find_closest_columns, levenshtein
from planqa.catalog.loaders import (
    load_analytics_reference,
    load_quick_questions,
    load_schema_snapshot,
    load_semantic_catalog,
)
from planqa.catalog.schema_catalog import ModeSchema, SchemaCatalog, normalize_question

__all__ = [
    "ModeSchema",
    "SchemaCatalog",
    "find_closest_columns",
    "levenshtein",
    "load_analytics_reference",
    "load_quick_questions",
    "load_schema_snapshot",
    "load_semantic_catalog",
    "normalize_question",
]
