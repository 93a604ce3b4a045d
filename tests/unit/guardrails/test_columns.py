"""
Unit tests for the column reference validator.

Uses the schema catalog built from config/schema_snapshot.json.
"""

import pytest

from planqa.catalog import SchemaCatalog
from planqa.guardrails.columns import ColumnReferenceValidator
from planqa.guardrails.sql_parsing import ParsedQuery

PLANNING = "[publish].[DASHt_Planning]"


@pytest.fixture
def validator(catalog):
    return ColumnReferenceValidator(catalog)


class TestPassing:
    """Queries whose columns all resolve."""

    def test_hold_reason_query_passes(self, validator):
        sql = (
            f"SELECT TOP (100) JobName, JobId, JobOnHold, JobHoldReason FROM {PLANNING} "
            "WHERE JobOnHold = 'OnHold'"
        )
        result = validator.validate(sql)

        assert result.outcome == "passed"
        assert result.valid
        assert result.tables == ["publish.DASHt_Planning"]
        assert set(result.checked_columns) == {"JobName", "JobId", "JobOnHold", "JobHoldReason"}

    def test_column_match_is_case_insensitive(self, validator):
        result = validator.validate(f"SELECT TOP 5 jobname, [JOBID] FROM {PLANNING}")
        assert result.outcome == "passed"

    def test_select_alias_reused_in_order_by(self, validator):
        sql = (
            f"SELECT TOP (10) BlockPlant, COUNT(*) AS LateJobs FROM {PLANNING} "
            "WHERE JobLate = 1 GROUP BY BlockPlant ORDER BY LateJobs DESC"
        )
        assert validator.validate(sql).outcome == "passed"

    def test_cte_alias_reused_in_outer_query(self, validator):
        sql = (
            "WITH ranked AS (SELECT JobId, JobName, ROW_NUMBER() OVER "
            f"(PARTITION BY JobId ORDER BY JobNeedDateTime) AS rn FROM {PLANNING}) "
            "SELECT TOP 5 JobName FROM ranked WHERE rn = 1"
        )
        result = validator.validate(sql)

        assert result.outcome == "passed"
        assert "rn" not in result.checked_columns

    def test_tsql_assignment_alias(self, validator):
        sql = f"SELECT TOP 5 LateFlag = JobLate FROM {PLANNING} ORDER BY LateFlag"
        assert validator.validate(sql).outcome == "passed"

    def test_date_part_arguments_are_not_columns(self, validator):
        sql = (
            f"SELECT TOP 5 JobName FROM {PLANNING} "
            "WHERE DATEADD(day, 7, JobNeedDateTime) > GETDATE()"
        )
        assert validator.validate(sql).outcome == "passed"

    def test_unicode_literal_prefix_ignored(self, validator):
        sql = f"SELECT TOP 5 JobName FROM {PLANNING} WHERE JobHoldReason = N'Material shortage'"
        assert validator.validate(sql).outcome == "passed"

    def test_alias_qualified_by_cte_name(self, validator):
        sql = f"WITH c AS (SELECT JobName AS Job FROM {PLANNING}) SELECT TOP (10) c.Job FROM c"
        result = validator.validate(sql)

        assert result.outcome == "passed"
        assert "Job" not in result.checked_columns

    def test_alias_qualified_by_derived_table(self, validator):
        sql = f"SELECT TOP (10) d.Job FROM (SELECT JobName AS Job FROM {PLANNING}) AS d ORDER BY d.Job"
        assert validator.validate(sql).outcome == "passed"

    def test_real_column_through_cte_still_resolves(self, validator):
        sql = f"WITH c AS (SELECT JobName FROM {PLANNING}) SELECT TOP (10) c.JobName FROM c"
        result = validator.validate(sql)

        assert result.outcome == "passed"
        assert "JobName" in result.checked_columns


class TestFailing:
    """Unknown columns produce errors with suggestions."""

    def test_unknown_column_reported_with_suggestion(self, validator):
        result = validator.validate(f"SELECT TOP (100) JobNumber FROM {PLANNING}")

        assert result.outcome == "failed"
        assert not result.valid
        assert result.invalid_columns == ["JobNumber"]
        error = result.errors[0]
        assert error.table == "publish.DASHt_Planning"
        assert error.context == "select"
        assert error.message == "Column 'JobNumber' does not exist in table publish.DASHt_Planning"
        assert "JobName" in error.available_columns
        assert len(error.available_columns) <= 5

    def test_prefix_suggestion_beyond_edit_distance(self, validator):
        result = validator.validate(f"SELECT TOP 5 JobScheduledStart FROM {PLANNING}")

        assert result.outcome == "failed"
        assert "JobScheduledStartDateTime" in result.errors[0].available_columns

    def test_where_clause_column_checked(self, validator):
        sql = f"SELECT TOP 5 p.JobName FROM {PLANNING} p WHERE p.Bogus = 1"
        result = validator.validate(sql)

        assert result.outcome == "failed"
        assert result.errors[0].column == "Bogus"
        assert result.errors[0].context == "where"
        assert result.errors[0].table == "publish.DASHt_Planning"

    def test_each_column_context_pair_reported_once(self, validator):
        sql = f"SELECT TOP 5 PlantCode FROM {PLANNING} WHERE PlantCode = 'A' OR PlantCode = 'B'"
        result = validator.validate(sql)

        assert [(e.column, e.context) for e in result.errors] == [
            ("PlantCode", "select"),
            ("PlantCode", "where"),
        ]

    def test_unknown_table_columns_checked_against_known_tables(self, validator):
        sql = (
            f"SELECT TOP 5 JobName FROM {PLANNING} "
            "WHERE JobId IN (SELECT JobId FROM [publish].[DASHt_NotInSnapshot])"
        )
        result = validator.validate(sql)

        assert result.outcome == "passed"
        assert result.tables == ["publish.DASHt_Planning"]

    def test_unknown_column_through_cte_reported(self, validator):
        sql = f"WITH c AS (SELECT JobName AS Job FROM {PLANNING}) SELECT TOP (10) c.Bogus FROM c"
        result = validator.validate(sql)

        assert result.outcome == "failed"
        assert [e.column for e in result.errors] == ["Bogus"]


class TestSkipped:
    """Internal faults fail open with an explicit outcome."""

    def test_empty_catalog_skips(self):
        validator = ColumnReferenceValidator(SchemaCatalog())
        result = validator.validate(f"SELECT TOP 5 Anything FROM {PLANNING}")

        assert result.outcome == "skipped"
        assert result.valid
        assert result.skip_reason == "validation skipped: schema unavailable"
        assert result.tables == ["publish.DASHt_Planning"]

    def test_no_table_references_skips(self, validator):
        result = validator.validate("SELECT 1")
        assert result.outcome == "skipped"
        assert result.skip_reason == "validation skipped: no table references"

    def test_parser_fault_skips(self, validator, monkeypatch):
        def explode(self, parsed):
            raise RuntimeError("boom")

        monkeypatch.setattr(ColumnReferenceValidator, "_validate", explode)
        result = validator.validate(f"SELECT TOP 5 JobName FROM {PLANNING}")

        assert result.outcome == "skipped"
        assert "parser error" in result.skip_reason


class TestExtraction:
    """Alias and table extraction helpers."""

    def test_extract_aliases(self, validator):
        parsed = ParsedQuery(
            f"SELECT JobName AS Name, JobQty Qty, Late = JobLate, CASE WHEN JobLate = 1 THEN 'Y' END Flag "
            f"FROM {PLANNING}"
        )
        assert validator.extract_aliases(parsed) == {"name", "qty", "late", "flag"}

    def test_referenced_tables_excludes_cte_names(self, validator):
        parsed = ParsedQuery(
            f"WITH ranked AS (SELECT JobId FROM {PLANNING}) SELECT TOP 5 JobId FROM ranked"
        )
        assert validator.referenced_tables(parsed) == ["publish.DASHt_Planning"]
