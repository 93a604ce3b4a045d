"""
Static configuration loaders.

Reads the schema snapshot (JSON), the classifier reference and semantic
catalog (YAML), and the quick-question list. Every loader returns
validated pydantic models; malformed files raise ``ValueError`` with the
file path in the message.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from planqa.models.classification import AnalyticsReference, QuickQuestion, SemanticCatalog
from planqa.models.schema import ColumnMetadata, TableSchema, qualify_table_name

logger = logging.getLogger(__name__)


def _read_yaml(path: Path) -> dict:
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_schema_snapshot(path: Path) -> dict[str, TableSchema]:
    """
    Load ``{"tables": {"publish.DASHt_X": [{name, data_type, nullable}, ...]}}``.

    Keys are normalized to lower-case qualified names.
    """
    with open(path, encoding="utf-8") as handle:
        payload = json.load(handle)

    tables = payload.get("tables", payload) if isinstance(payload, dict) else None
    if not isinstance(tables, dict):
        raise ValueError(f"{path}: expected a 'tables' mapping")

    schemas: dict[str, TableSchema] = {}
    for raw_name, raw_columns in tables.items():
        name = qualify_table_name(raw_name)
        try:
            columns = tuple(
                ColumnMetadata(name=c) if isinstance(c, str) else ColumnMetadata(**c)
                for c in raw_columns
            )
        except (TypeError, ValidationError) as e:
            raise ValueError(f"{path}: invalid columns for {raw_name}: {e}") from e
        schemas[name.lower()] = TableSchema(table_name=name, columns=columns)
    logger.info(f"Loaded schema snapshot with {len(schemas)} tables from {path}")
    return schemas


def load_analytics_reference(path: Path) -> AnalyticsReference:
    try:
        reference = AnalyticsReference.model_validate(_read_yaml(path))
    except ValidationError as e:
        raise ValueError(f"{path}: invalid analytics reference: {e}") from e
    logger.info(
        f"Loaded analytics reference: {len(reference.matrix)} matrix entries, "
        f"{len(reference.override_rules)} override rules, {len(reference.terms)} terms"
    )
    return reference


def load_semantic_catalog(path: Path) -> SemanticCatalog:
    try:
        catalog = SemanticCatalog.model_validate(_read_yaml(path))
    except ValidationError as e:
        raise ValueError(f"{path}: invalid semantic catalog: {e}") from e
    logger.info(f"Loaded semantic catalog with {len(catalog.modes)} modes")
    return catalog


def load_quick_questions(path: Path) -> list[QuickQuestion]:
    data = _read_yaml(path)
    try:
        return [QuickQuestion.model_validate(item) for item in data.get("questions", [])]
    except ValidationError as e:
        raise ValueError(f"{path}: invalid quick question: {e}") from e
