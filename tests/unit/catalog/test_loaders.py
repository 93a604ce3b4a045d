"""
Unit tests for the configuration loaders.

Covers the shipped config files and malformed-input handling.
"""

import json

import pytest

from planqa.catalog.loaders import (
    load_analytics_reference,
    load_quick_questions,
    load_schema_snapshot,
    load_semantic_catalog,
)
from planqa.config import PROJECT_ROOT

CONFIG_DIR = PROJECT_ROOT / "config"


class TestSchemaSnapshot:
    def test_shipped_snapshot(self):
        schemas = load_schema_snapshot(CONFIG_DIR / "schema_snapshot.json")

        assert "publish.dasht_planning" in schemas
        planning = schemas["publish.dasht_planning"]
        assert planning.table_name == "publish.DASHt_Planning"
        assert "JobHoldReason" in planning.column_names

    def test_bracketed_names_and_mixed_columns(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(
            json.dumps(
                {
                    "tables": {
                        "[publish].[DASHt_Jobs]": [
                            "JobId",
                            {"name": "JobQty", "data_type": "decimal", "nullable": False},
                        ]
                    }
                }
            )
        )

        schemas = load_schema_snapshot(path)

        table = schemas["publish.dasht_jobs"]
        assert table.column_names == ["JobId", "JobQty"]
        assert table.columns[1].data_type == "decimal"
        assert table.columns[1].nullable is False

    def test_unwrapped_mapping_and_default_schema(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps({"DASHt_Jobs": ["JobId"]}))

        assert list(load_schema_snapshot(path)) == ["publish.dasht_jobs"]

    def test_tables_not_a_mapping(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps({"tables": []}))

        with pytest.raises(ValueError, match="expected a 'tables' mapping"):
            load_schema_snapshot(path)

    def test_invalid_column_entry(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps({"tables": {"DASHt_Jobs": [{"type": "int"}]}}))

        with pytest.raises(ValueError, match="invalid columns for DASHt_Jobs"):
            load_schema_snapshot(path)


class TestYamlConfig:
    def test_shipped_analytics_reference(self, analytics_reference):
        assert analytics_reference.matrix
        assert analytics_reference.prompt_trimming.max_columns_per_table == 40
        assert analytics_reference.confidence.high_score == 3
        assert "publish.DASHt_Planning" in analytics_reference.default_tables

    def test_shipped_semantic_catalog(self, semantic_catalog):
        assert [mode.id for mode in semantic_catalog.modes] == ["production-planning", "capacity-plan"]
        assert semantic_catalog.get_mode("missing") is None

    def test_shipped_quick_questions(self):
        questions = load_quick_questions(CONFIG_DIR / "quick_questions.yaml")

        assert len(questions) == 9
        assert {question.mode for question in questions} == {"production-planning", "capacity-plan"}

    def test_top_level_list_rejected(self, tmp_path):
        path = tmp_path / "reference.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError, match="expected a mapping"):
            load_analytics_reference(path)

    def test_invalid_matrix_entry(self, tmp_path):
        path = tmp_path / "reference.yaml"
        path.write_text("matrix:\n  - keywords: []\n    tier1_tables: []\n")

        with pytest.raises(ValueError, match="invalid analytics reference"):
            load_analytics_reference(path)

    def test_invalid_mode(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("modes:\n  - name: No id\n")

        with pytest.raises(ValueError, match="invalid semantic catalog"):
            load_semantic_catalog(path)

    def test_quick_question_without_mode(self, tmp_path):
        path = tmp_path / "questions.yaml"
        path.write_text("questions:\n  - id: q1\n    text: Anything\n")

        with pytest.raises(ValueError, match="invalid quick question"):
            load_quick_questions(path)

    def test_empty_file_yields_defaults(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("")

        assert load_semantic_catalog(path).modes == []
