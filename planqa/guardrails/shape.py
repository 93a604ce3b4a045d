"""
SQL Shape Validator

Pure, stateless gate on the shape of generated SQL:
- exactly one statement
- SELECT or WITH verb, nothing data-modifying anywhere
- no JOIN, and no UNION / INTERSECT / EXCEPT between top-level SELECTs
- FROM targets restricted to curated [publish].[DASHt_*] tables (no rowset
  functions such as OPENQUERY)
- a row cap no larger than the configured maximum

No LLM calls and no database access. ``validate`` never raises.
"""

import logging
import re

from planqa.config import GuardrailSettings
from planqa.guardrails.sql_parsing import ParsedQuery, QueryBlock, strip_trailing_terminator
from planqa.models.validation import (
    SelfCheckCase,
    SelfCheckReport,
    ValidationResult,
)

logger = logging.getLogger(__name__)

EMPTY_QUERY = "Query cannot be empty"
MULTIPLE_STATEMENTS = "Only single statements are allowed (no multiple queries)"
SELECT_ONLY = "Only SELECT statements (including CTEs with WITH clause) are allowed"
JOIN_NOT_ALLOWED = "JOIN operations are not allowed at this time"
SET_OPERATOR_NOT_ALLOWED = "UNION, INTERSECT and EXCEPT are not allowed at this time"
NON_LITERAL_TOP = "Row limit must be a literal number"

FORBIDDEN_KEYWORDS = frozenset(
    {
        "INSERT", "UPDATE", "DELETE", "MERGE", "DROP", "ALTER", "CREATE", "TRUNCATE",
        "EXEC", "EXECUTE", "GRANT", "REVOKE", "DENY", "INTO", "BACKUP", "RESTORE",
        "DBCC", "SHUTDOWN",
    }
)


class SqlShapeValidator:
    """
    Shape gate applied to every generated query before anything else.

    Usage:
        validator = SqlShapeValidator(max_rows=100)
        result = validator.validate("SELECT * FROM [publish].[DASHt_Planning]")
        result.modified_sql  # 'SELECT TOP (100) * FROM [publish].[DASHt_Planning]'
    """

    def __init__(
        self,
        max_rows: int = 100,
        allowed_schema: str = "publish",
        table_prefix: str = "DASHt_",
    ):
        self.max_rows = max_rows
        self.allowed_schema = allowed_schema
        self.table_prefix = table_prefix
        self._table_pattern = re.compile(
            rf"{re.escape(table_prefix)}[A-Za-z0-9_]+", re.IGNORECASE
        )

    @classmethod
    def from_settings(cls, settings: GuardrailSettings) -> "SqlShapeValidator":
        return cls(
            max_rows=settings.max_rows,
            allowed_schema=settings.allowed_schema,
            table_prefix=settings.table_prefix,
        )

    @property
    def table_rule(self) -> str:
        return f"Only queries against [{self.allowed_schema}].[{self.table_prefix}*] tables are allowed"

    def validate(self, sql: str) -> ValidationResult:
        """
        Validate SQL shape and enforce the row cap.

        Args:
            sql: Raw SQL from the generation collaborator

        Returns:
            ValidationResult; ``modified_sql`` holds the capped SQL when valid
        """
        try:
            result = self._validate(sql or "")
        except Exception as e:
            logger.error(f"Shape validation could not parse SQL: {e}", exc_info=True)
            result = ValidationResult.reject(f"Unable to parse SQL: {e}")

        if result.valid:
            logger.debug("Shape validation passed", extra={"modified": result.modified_sql != sql})
        else:
            logger.info(f"Shape validation rejected SQL: {result.error}")
        return result

    def _validate(self, sql: str) -> ValidationResult:
        statement = strip_trailing_terminator(sql)
        if not statement:
            return ValidationResult.reject(EMPTY_QUERY)

        parsed = ParsedQuery(statement)
        if parsed.terminators:
            return ValidationResult.reject(MULTIPLE_STATEMENTS)

        if parsed.first_keyword not in ("SELECT", "WITH"):
            return ValidationResult.reject(SELECT_ONLY)

        words = {word for keyword in parsed.keywords() for word in keyword.split()}
        if words & FORBIDDEN_KEYWORDS:
            return ValidationResult.reject(SELECT_ONLY)

        main = parsed.main_block
        if main is None:
            return ValidationResult.reject(SELECT_ONLY)

        if parsed.has_join:
            return ValidationResult.reject(JOIN_NOT_ALLOWED)

        # The row cap is enforced on one top-level SELECT only.
        if parsed.has_set_operator:
            return ValidationResult.reject(SET_OPERATOR_NOT_ALLOWED)

        if not self._targets_allowed(parsed):
            return ValidationResult.reject(self.table_rule)

        return self._apply_row_cap(parsed, main)

    def is_curated_table(self, parts: tuple[str, ...]) -> bool:
        """``schema.table`` in the allowed schema with the curated prefix."""
        if len(parts) != 2:
            return False
        schema, table = parts
        return (
            schema.lower() == self.allowed_schema.lower()
            and self._table_pattern.fullmatch(table) is not None
        )

    def _targets_allowed(self, parsed: ParsedQuery) -> bool:
        if parsed.rowset_functions:
            logger.info(f"Disallowed FROM target (function): {parsed.rowset_functions[0].text}")
            return False
        curated = 0
        for ref in parsed.table_refs:
            if len(ref.parts) == 1 and ref.table.lower() in parsed.cte_names:
                continue
            if not self.is_curated_table(ref.parts):
                logger.info(f"Disallowed FROM target: {ref.text}")
                return False
            curated += 1
        return curated > 0

    def _apply_row_cap(self, parsed: ParsedQuery, main: QueryBlock) -> ValidationResult:
        sql = parsed.sql
        top = main.top

        if top is None:
            if parsed.is_cte:
                # The final SELECT of a CTE carries its own cap.
                return ValidationResult.accept(sql)
            anchor = main.select
            following = parsed.next_significant(anchor)
            if following is not None and following.keyword in ("DISTINCT", "ALL"):
                anchor = following
                following = parsed.next_significant(anchor)
            rest = sql[following.start :] if following is not None else ""
            capped = f"{sql[: anchor.end]} TOP ({self.max_rows}) {rest}".rstrip()
            logger.debug(f"Row cap TOP ({self.max_rows}) added")
            return ValidationResult.accept(capped)

        if top.value is None:
            return ValidationResult.reject(NON_LITERAL_TOP)

        if top.percent or top.value > self.max_rows:
            start = parsed.tokens[top.start].start
            end = parsed.tokens[top.end - 1].end
            clamped = f"{sql[:start]}TOP ({self.max_rows}){sql[end:]}"
            logger.debug(f"Row cap clamped from {top.value} to {self.max_rows}")
            return ValidationResult.accept(clamped)

        return ValidationResult.accept(sql)

    # ------------------------------------------------------------------
    # Self-check
    # ------------------------------------------------------------------

    def _self_check_fixtures(self) -> list[tuple[str, str, bool, str | None]]:
        table = f"[{self.allowed_schema}].[{self.table_prefix}Planning]"
        capacity = f"[{self.allowed_schema}].[{self.table_prefix}CapacityPlanning]"
        cap = f"TOP ({self.max_rows})"
        return [
            ("planning table accepted", f"SELECT TOP 5 * FROM {table}", True, None),
            ("capacity table accepted", f"SELECT TOP 5 * FROM {capacity}", True, None),
            (
                "non-curated table rejected",
                f"SELECT TOP 5 * FROM [{self.allowed_schema}].[OtherTable]",
                False,
                None,
            ),
            ("DELETE rejected", f"DELETE FROM {table}", False, None),
            ("INSERT rejected", f"INSERT INTO {table} VALUES (1)", False, None),
            (
                "JOIN rejected",
                f"SELECT * FROM {table} JOIN [{self.allowed_schema}].[{self.table_prefix}Other] ON 1=1",
                False,
                None,
            ),
            ("multiple statements rejected", f"SELECT * FROM {table}; DROP TABLE x", False, None),
            ("missing cap added", f"SELECT * FROM {table}", True, cap),
            ("oversized cap clamped", f"SELECT TOP ({self.max_rows * 5}) * FROM {table}", True, cap),
            (
                "CTE accepted",
                "WITH ranked AS (SELECT *, ROW_NUMBER() OVER (ORDER BY JobId) as rn "
                f"FROM {table}) SELECT TOP 10 * FROM ranked WHERE rn <= 10",
                True,
                None,
            ),
            (
                "CTE wrapping DELETE rejected",
                f"WITH doomed AS (SELECT JobId FROM {table}) DELETE FROM doomed",
                False,
                None,
            ),
        ]

    def run_self_check(self) -> SelfCheckReport:
        """
        Run the fixed fixture battery against this validator's rules.

        Returns:
            SelfCheckReport with one entry per fixture
        """
        results: list[SelfCheckCase] = []
        for name, sql, expect_valid, expect_contains in self._self_check_fixtures():
            outcome = self.validate(sql)
            passed = outcome.valid == expect_valid
            if passed and expect_contains:
                passed = expect_contains in (outcome.modified_sql or "")
            expected = "accepted" if expect_valid else "rejected"
            if expect_contains:
                expected += f" containing {expect_contains}"
            actual = (
                f"accepted: {outcome.modified_sql}" if outcome.valid else f"rejected: {outcome.error}"
            )
            results.append(SelfCheckCase(name=name, passed=passed, expected=expected, actual=actual))
            if passed:
                logger.info(f"Validator self-check PASS: {name}")
            else:
                logger.error(f"Validator self-check FAIL: {name} (expected {expected}, got {actual})")

        report = SelfCheckReport(passed=all(case.passed for case in results), results=results)
        logger.info(
            f"Validator self-check {'passed' if report.passed else 'FAILED'} "
            f"({sum(case.passed for case in results)}/{len(results)})"
        )
        return report
