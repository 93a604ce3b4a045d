"""
Column Reference Validator

Extracts column references from validated SQL and checks each one against
the schema catalog for the tables the query reads. Misses become errors
carrying fuzzy suggestions; the query never reaches the database with a
column the catalog does not know.

Internal faults (no schema for any referenced table, no table references,
a parser exception) produce an explicit ``skipped`` outcome instead of a
rejection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from planqa.catalog.schema_catalog import SchemaCatalog
from planqa.guardrails.sql_parsing import (
    COMPARISON,
    NUMBER,
    QUOTED,
    STRING,
    WILDCARD,
    WORD,
    ParsedQuery,
    QueryBlock,
    SqlToken,
    read_dotted_name,
)
from planqa.models.validation import ColumnValidationError, ColumnValidationResult

logger = logging.getLogger(__name__)

# Clauses scanned for column references, in reporting order.
SCANNED_CLAUSES = ("where", "group_by", "having", "order_by", "join_on")

EXCLUDED_WORDS = frozenset(
    {
        # Statement and clause keywords
        "SELECT", "FROM", "WHERE", "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "OUTER",
        "CROSS", "APPLY", "ON", "AS", "GROUP", "BY", "ORDER", "ASC", "DESC", "AND",
        "OR", "NOT", "IN", "IS", "NULL", "LIKE", "BETWEEN", "EXISTS", "CASE", "WHEN",
        "THEN", "ELSE", "END", "DISTINCT", "TOP", "PERCENT", "TIES", "WITH", "CTE",
        "HAVING", "UNION", "ALL", "ANY", "SOME", "INTERSECT", "EXCEPT", "ESCAPE",
        "COLLATE", "NOLOCK", "OPTION",
        # Window functions and paging
        "OVER", "PARTITION", "ROWS", "ROW", "RANGE", "UNBOUNDED", "PRECEDING",
        "FOLLOWING", "CURRENT", "OFFSET", "FETCH", "NEXT", "FIRST", "ONLY",
        "ROW_NUMBER", "RANK", "DENSE_RANK", "NTILE", "LAG", "LEAD", "FIRST_VALUE",
        "LAST_VALUE",
        # Aggregates and scalar functions
        "CAST", "CONVERT", "TRY_CAST", "TRY_CONVERT", "SUM", "COUNT", "COUNT_BIG",
        "AVG", "MAX", "MIN", "STDEV", "VAR", "STRING_AGG", "COALESCE", "ISNULL",
        "NULLIF", "IIF", "LEN", "CHARINDEX", "SUBSTRING", "UPPER", "LOWER", "TRIM",
        "LTRIM", "RTRIM", "REPLACE", "CONCAT", "ABS", "ROUND", "FLOOR", "CEILING",
        "FORMAT",
        # Date and time
        "DATEPART", "DATEDIFF", "DATEDIFF_BIG", "DATEADD", "DATENAME", "DATETRUNC",
        "EOMONTH", "GETDATE", "GETUTCDATE", "SYSDATETIME", "CURRENT_TIMESTAMP",
        "YEAR", "QUARTER", "MONTH", "WEEK", "DAY", "DAYOFYEAR", "WEEKDAY", "HOUR",
        "MINUTE", "SECOND", "MILLISECOND", "DW", "DD", "MM", "YY", "YYYY", "QQ",
        "WK", "HH", "MI", "SS",
        # Data types
        "INT", "BIGINT", "SMALLINT", "TINYINT", "BIT", "DECIMAL", "NUMERIC", "FLOAT",
        "REAL", "MONEY", "DATE", "TIME", "DATETIME", "DATETIME2", "DATETIMEOFFSET",
        "SMALLDATETIME", "CHAR", "VARCHAR", "NCHAR", "NVARCHAR", "TEXT", "NTEXT",
        "UNIQUEIDENTIFIER",
    }
)

DATE_PART_FUNCTIONS = frozenset(
    {"DATEPART", "DATEADD", "DATEDIFF", "DATEDIFF_BIG", "DATENAME", "DATETRUNC"}
)

# Tokens after which a trailing identifier in a select item is an implicit alias.
_ALIAS_PRECEDERS = (QUOTED, WORD, STRING, NUMBER)


@dataclass(frozen=True)
class ColumnReference:
    """One column token found in a query clause."""

    column: str
    qualifier: str | None
    context: str


class ColumnReferenceValidator:
    """
    Validates that every referenced column exists in the catalog.

    Usage:
        validator = ColumnReferenceValidator(catalog)
        result = validator.validate("SELECT TOP (100) JobName FROM [publish].[DASHt_Planning]")
        result.outcome  # "passed"
    """

    def __init__(self, catalog: SchemaCatalog):
        self.catalog = catalog

    def validate(self, sql: str) -> ColumnValidationResult:
        try:
            parsed = ParsedQuery(sql)
            return self._validate(parsed)
        except Exception as e:
            logger.warning(f"Column validation skipped after parser error: {e}", exc_info=True)
            return ColumnValidationResult.skipped(f"validation skipped: parser error ({e})")

    def _validate(self, parsed: ParsedQuery) -> ColumnValidationResult:
        tables = self.referenced_tables(parsed)
        if not tables:
            logger.warning("Column validation skipped: no table references")
            return ColumnValidationResult.skipped("validation skipped: no table references")

        schemas = self.catalog.get_schemas(tables)
        if not schemas:
            logger.warning(
                f"Column validation skipped: schema unavailable for {', '.join(tables)}"
            )
            return ColumnValidationResult.skipped(
                "validation skipped: schema unavailable", tables=tables
            )

        aliases = self.extract_aliases(parsed)
        qualifiers = self._qualifier_map(parsed)
        virtual_sources = parsed.cte_names | parsed.derived_aliases
        errors: list[ColumnValidationError] = []
        checked: dict[str, None] = {}
        seen: set[tuple[str, str]] = set()

        for ref in self.extract_references(parsed):
            key = (ref.column.lower(), ref.context)
            if key in seen:
                continue
            seen.add(key)
            if ref.column.lower() in aliases and (
                ref.qualifier is None or ref.qualifier.lower() in virtual_sources
            ):
                # A select-list alias, referenced bare or through the CTE / derived table exposing it.
                continue
            checked[ref.column] = None
            if any(schema.has_column(ref.column) for schema in schemas.values()):
                continue
            errors.append(self._build_error(ref, schemas, qualifiers))

        outcome = "failed" if errors else "passed"
        if errors:
            logger.info(
                f"Column validation failed: {', '.join(e.column for e in errors)}",
                extra={"tables": list(schemas)},
            )
        return ColumnValidationResult(
            outcome=outcome,
            errors=errors,
            checked_columns=list(checked),
            tables=list(schemas),
        )

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    @staticmethod
    def referenced_tables(parsed: ParsedQuery) -> list[str]:
        """Qualified names of real tables read by any block (CTE names excluded)."""
        tables: dict[str, None] = {}
        for ref in parsed.table_refs:
            if len(ref.parts) == 1 and ref.table.lower() in parsed.cte_names:
                continue
            tables[ref.qualified_name] = None
        return list(tables)

    @staticmethod
    def _qualifier_map(parsed: ParsedQuery) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for ref in parsed.table_refs:
            if len(ref.parts) == 1 and ref.table.lower() in parsed.cte_names:
                continue
            mapping[ref.table.lower()] = ref.qualified_name
            if ref.alias:
                mapping[ref.alias.lower()] = ref.qualified_name
        return mapping

    def _build_error(
        self,
        ref: ColumnReference,
        schemas: dict,
        qualifiers: dict[str, str],
    ) -> ColumnValidationError:
        known = {name.lower(): name for name in schemas}
        resolved = qualifiers.get(ref.qualifier.lower()) if ref.qualifier else None
        resolved = known.get(resolved.lower()) if resolved else None
        candidates = [resolved] if resolved else list(schemas)

        suggestions: list[str] = []
        match_table: str | None = None
        for table in candidates:
            suggestions = self.catalog.closest_columns(table, ref.column, limit=5)
            if suggestions:
                match_table = table
                break

        if not suggestions:
            pool: dict[str, None] = {}
            for table in candidates:
                for column in self.catalog.get_columns(table):
                    pool.setdefault(column, None)
            suggestions = list(pool)[:5]
            match_table = candidates[0] if len(candidates) == 1 else None

        if match_table is not None:
            message = f"Column '{ref.column}' does not exist in table {match_table}"
        else:
            message = f"Column '{ref.column}' does not exist in any referenced table"
        return ColumnValidationError(
            column=ref.column,
            table=match_table,
            context=ref.context,
            message=message,
            available_columns=suggestions,
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_references(self, parsed: ParsedQuery) -> list[ColumnReference]:
        """Column references from every block's select list and filter clauses."""
        references: list[ColumnReference] = []
        for block in parsed.blocks:
            references.extend(
                self._scan(parsed, parsed.select_list_tokens(block), "select")
            )
            for clause in block.clauses_named(*SCANNED_CLAUSES):
                references.extend(
                    self._scan(parsed, parsed.clause_tokens(block, clause), clause.name)
                )
        return references

    def _scan(self, parsed: ParsedQuery, toks: list[SqlToken], context: str) -> list[ColumnReference]:
        found: list[ColumnReference] = []
        i = 0
        while i < len(toks):
            token = toks[i]
            if not token.is_identifier:
                i += 1
                continue

            parts, j = read_dotted_name(toks, i)
            if parts[-1].kind == WILDCARD:
                i = j
                continue
            if j < len(toks) and toks[j].is_punct("("):
                # Function call; its arguments are scanned on their own.
                i = j
                continue
            if len(parts) == 1 and self._is_not_a_column(parsed, toks, i):
                i = j
                continue

            qualifier = parts[-2].name if len(parts) >= 2 else None
            found.append(ColumnReference(parts[-1].name, qualifier, context))
            i = j
        return found

    @staticmethod
    def _is_not_a_column(parsed: ParsedQuery, toks: list[SqlToken], i: int) -> bool:
        token = toks[i]
        previous = toks[i - 1] if i > 0 else None

        if previous is not None and previous.keyword == "AS":
            return True
        if (
            i >= 2
            and previous is not None
            and previous.is_punct("(")
            and toks[i - 2].keyword in DATE_PART_FUNCTIONS
        ):
            return True
        if token.kind != WORD:
            return False
        if token.keyword in EXCLUDED_WORDS:
            return True
        # N'unicode literal'
        following = parsed.tokens[token.index + 1] if token.index + 1 < len(parsed.tokens) else None
        return token.keyword == "N" and following is not None and following.kind == STRING

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    def extract_aliases(self, parsed: ParsedQuery) -> set[str]:
        """
        Select-list aliases of every block (lower-cased).

        Recognizes ``expr AS alias``, implicit ``expr alias`` and the T-SQL
        ``alias = expr`` form.
        """
        aliases: set[str] = set()
        for block in parsed.blocks:
            for item in self._select_items(parsed, block):
                alias = self._item_alias(item, block)
                if alias:
                    aliases.add(alias.lower())
        return aliases

    @staticmethod
    def _select_items(parsed: ParsedQuery, block: QueryBlock) -> list[list[SqlToken]]:
        items: list[list[SqlToken]] = [[]]
        for token in parsed.select_list_tokens(block):
            if token.is_punct(",") and token.depth == block.depth:
                items.append([])
            else:
                items[-1].append(token)
        return [item for item in items if item]

    @staticmethod
    def _item_alias(item: list[SqlToken], block: QueryBlock) -> str | None:
        top_level = [token for token in item if token.depth == block.depth]
        for k, token in enumerate(top_level[:-1]):
            if token.keyword == "AS" and top_level[k + 1].is_identifier:
                return top_level[k + 1].name

        if (
            len(top_level) >= 2
            and top_level[0].is_identifier
            and top_level[1].kind == COMPARISON
            and top_level[1].value == "="
        ):
            return top_level[0].name

        if len(item) < 2:
            return None
        last, before = item[-1], item[-2]
        if last.depth != block.depth or not last.is_identifier:
            return None
        if last.kind == WORD and last.keyword in EXCLUDED_WORDS:
            return None
        if before.is_punct(")") or before.keyword == "END":
            return last.name
        if before.kind not in _ALIAS_PRECEDERS:
            return None
        if before.kind == WORD and (not before.is_identifier or before.keyword in EXCLUDED_WORDS):
            return None
        return last.name
