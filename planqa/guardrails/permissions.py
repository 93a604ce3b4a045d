"""
Permission / Filter Rewriter

Enforces per-user table-level and row-level access on validated SQL:

1. Table gate: sales/revenue tables require a Sales or Revenue grant.
2. Row filters: planning area, scenario and plant allowlists become
   ``<alias>.<column> IN (...)`` predicates injected into the WHERE clause
   of the query block that reads the table.

A second, independent pass applies the UI's global filters the same way.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from planqa.guardrails.sql_parsing import ParsedQuery, TableRef, inject_predicate
from planqa.models.permissions import (
    GlobalFilters,
    PermissionContext,
    PermissionEnforcementResult,
    UserPermissions,
)

logger = logging.getLogger(__name__)

SALES_REVENUE_BLOCKED = (
    "You don't have access to sales/revenue data. Please contact your administrator."
)
PERMISSIONS_UNAVAILABLE = (
    "Permissions are temporarily unavailable. Please contact your administrator."
)

PLANNING_AREA_COLUMN = "PlanningAreaName"
SCENARIO_COLUMN = "NewScenarioId"
PLANT_COLUMN = "PlantName"

ALL_PLANNING_AREAS = "All Planning Areas"
ALL_PLANTS = "All Plants"

# Tables gated behind a Sales/Revenue grant.
RESTRICTED_TABLES: Mapping[str, frozenset[str]] = {
    "dasht_salesorders": frozenset({"Sales", "Revenue"}),
    "dasht_salesorderlines": frozenset({"Sales", "Revenue"}),
    "dasht_purchaseorders": frozenset({"Sales", "Revenue"}),
    "dasht_purchaseorderlines": frozenset({"Sales", "Revenue"}),
}

# Which filter columns each curated table exposes.
FILTER_COLUMNS_BY_TABLE: Mapping[str, frozenset[str]] = {
    "dasht_planning": frozenset(
        {PLANNING_AREA_COLUMN, SCENARIO_COLUMN, PLANT_COLUMN, "ScenarioType"}
    ),
    "dasht_salesorders": frozenset({PLANNING_AREA_COLUMN, SCENARIO_COLUMN, "ScenarioType"}),
    "dasht_salesorderlines": frozenset({PLANNING_AREA_COLUMN, SCENARIO_COLUMN}),
    "dasht_capacityplanning": frozenset({PLANNING_AREA_COLUMN, SCENARIO_COLUMN, PLANT_COLUMN}),
    "dasht_dispatchlist": frozenset({PLANNING_AREA_COLUMN, SCENARIO_COLUMN, PLANT_COLUMN}),
    "dasht_inventories": frozenset({PLANNING_AREA_COLUMN, SCENARIO_COLUMN}),
    "dasht_scheduleconformance": frozenset({PLANNING_AREA_COLUMN, PLANT_COLUMN}),
}


class PermissionLookup(Protocol):
    """Read side of the permission store."""

    def get_by_id(self, user_id: str) -> UserPermissions | None: ...

    def get_by_username(self, username: str) -> UserPermissions | None: ...

    def ensure_available(self) -> bool: ...


@dataclass(frozen=True)
class _Predicate:
    block_index: int
    text: str
    label: str


def quote_literal(value: str) -> str:
    """Single-quote a value for T-SQL, doubling embedded quotes."""
    return "'" + value.replace("'", "''") + "'"


class PermissionRewriter:
    """
    Applies permission records and global filters to validated SQL.

    Usage:
        rewriter = PermissionRewriter(store)
        result = rewriter.enforce_for_context(sql, PermissionContext(user_id="u-100"))
        if not result.allowed:
            raise PermissionDenied(result.blocked_reason)
    """

    def __init__(
        self,
        store: PermissionLookup | None = None,
        restricted_tables: Mapping[str, frozenset[str]] = RESTRICTED_TABLES,
        filter_columns: Mapping[str, frozenset[str]] = FILTER_COLUMNS_BY_TABLE,
    ):
        self.store = store
        self.restricted_tables = {k.lower(): v for k, v in restricted_tables.items()}
        self.filter_columns = {k.lower(): v for k, v in filter_columns.items()}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, context: PermissionContext | None) -> UserPermissions | None:
        """Find the caller's record: by user id first, then by username."""
        if context is None or self.store is None:
            return None
        permissions = None
        if context.user_id:
            permissions = self.store.get_by_id(context.user_id)
        if permissions is None and context.username:
            permissions = self.store.get_by_username(context.username)
        return permissions

    def enforce_for_context(
        self, sql: str, context: PermissionContext | None
    ) -> PermissionEnforcementResult:
        """Resolve the caller and enforce; every query is denied while the store cannot load."""
        if self.store is not None and not self.store.ensure_available():
            logger.error("Permission store unavailable; query denied")
            return PermissionEnforcementResult(allowed=False, blocked_reason=PERMISSIONS_UNAVAILABLE)
        return self.enforce(sql, self.resolve(context))

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def enforce(self, sql: str, permissions: UserPermissions | None) -> PermissionEnforcementResult:
        """
        Rewrite ``sql`` for ``permissions``.

        Admins and callers without a record get the SQL back unchanged.
        """
        if permissions is None:
            logger.debug("No permission record for request; query allowed unchanged")
            return PermissionEnforcementResult(allowed=True, modified_sql=sql)
        if permissions.is_admin:
            logger.debug(f"Admin user {permissions.username}; skipping enforcement")
            return PermissionEnforcementResult(allowed=True, modified_sql=sql)

        parsed = ParsedQuery(sql)
        refs = self._real_table_refs(parsed)

        blocked = self.check_table_access(permissions, [ref.table for ref in refs])
        if blocked is not None:
            logger.warning(
                f"User {permissions.username} blocked from table {blocked}",
                extra={"user_id": permissions.user_id},
            )
            return PermissionEnforcementResult(allowed=False, blocked_reason=SALES_REVENUE_BLOCKED)

        predicates: list[_Predicate] = []
        dimensions = (
            (PLANNING_AREA_COLUMN, "Planning Areas", permissions.allowed_planning_areas),
            (SCENARIO_COLUMN, "Scenarios", permissions.allowed_scenarios),
            (PLANT_COLUMN, "Plants", permissions.allowed_plants),
        )
        for column, label, allowed in dimensions:
            if allowed is None:
                continue
            exposing = self._tables_exposing(refs, column)
            if not exposing:
                continue
            if allowed:
                values = ", ".join(quote_literal(value) for value in allowed)
                description = f"{label}: {', '.join(allowed)}"
            else:
                description = f"{label}: none"
            for ref in exposing:
                text = f"{ref.reference_prefix}.{column} IN ({values})" if allowed else "1 = 0"
                predicates.append(_Predicate(ref.block_index, text, description))

        if not predicates:
            return PermissionEnforcementResult(allowed=True, modified_sql=sql)

        modified = self._inject_all(sql, predicates)
        applied = list(dict.fromkeys(predicate.label for predicate in predicates))
        logger.info(
            f"Applied filters for {permissions.username}: {'; '.join(applied)}",
            extra={"user_id": permissions.user_id},
        )
        logger.debug(f"Permission-rewritten SQL: {modified}")
        return PermissionEnforcementResult(allowed=True, modified_sql=modified, applied_filters=applied)

    def check_table_access(
        self, permissions: UserPermissions | None, tables: list[str]
    ) -> str | None:
        """Return the first restricted table the user may not read, if any."""
        if permissions is None or permissions.is_admin or permissions.allowed_table_access is None:
            return None
        granted = set(permissions.allowed_table_access)
        for table in tables:
            categories = self.restricted_tables.get(table.lower())
            if categories and not categories & granted:
                return table
        return None

    def apply_global_filters(self, sql: str, filters: GlobalFilters | None) -> PermissionEnforcementResult:
        """Inject the UI's ad-hoc ``<alias>.<column> = '<value>'`` filters."""
        if filters is None:
            return PermissionEnforcementResult(allowed=True, modified_sql=sql)

        parsed = ParsedQuery(sql)
        refs = self._real_table_refs(parsed)
        dimensions = (
            (PLANNING_AREA_COLUMN, "Planning Area", filters.planning_area, ALL_PLANNING_AREAS),
            (SCENARIO_COLUMN, "Scenario ID", filters.scenario_id, None),
            (PLANT_COLUMN, "Plant", filters.plant, ALL_PLANTS),
        )
        predicates: list[_Predicate] = []
        for column, label, value, sentinel in dimensions:
            if not value or value == sentinel:
                continue
            for ref in self._tables_exposing(refs, column):
                text = f"{ref.reference_prefix}.{column} = {quote_literal(value)}"
                predicates.append(_Predicate(ref.block_index, text, f"{label}: {value}"))

        if not predicates:
            return PermissionEnforcementResult(allowed=True, modified_sql=sql)

        modified = self._inject_all(sql, predicates)
        applied = list(dict.fromkeys(predicate.label for predicate in predicates))
        logger.info(f"Applied global filters: {'; '.join(applied)}")
        return PermissionEnforcementResult(allowed=True, modified_sql=modified, applied_filters=applied)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _real_table_refs(parsed: ParsedQuery) -> list[TableRef]:
        return [
            ref
            for ref in parsed.table_refs
            if not (len(ref.parts) == 1 and ref.table.lower() in parsed.cte_names)
        ]

    def _tables_exposing(self, refs: list[TableRef], column: str) -> list[TableRef]:
        """Every reference, in every query block, to a table that carries ``column``."""
        return [ref for ref in refs if column in self.filter_columns.get(ref.table.lower(), ())]

    @staticmethod
    def _inject_all(sql: str, predicates: list[_Predicate]) -> str:
        # Injected predicates add no SELECT, so block indices stay stable across re-parses.
        grouped: dict[int, list[str]] = {}
        for predicate in predicates:
            grouped.setdefault(predicate.block_index, []).append(predicate.text)
        for block_index, texts in grouped.items():
            parsed = ParsedQuery(sql)
            sql = inject_predicate(parsed, parsed.blocks[block_index], " AND ".join(texts))
        return sql
