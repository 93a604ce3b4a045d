"""
Schema Catalog

Immutable table-to-column metadata loaded from the pre-computed schema
snapshot, plus the prompt-text caches built on top of it.

The catalog is an explicitly constructed service. ``refresh()`` reloads the
snapshot and swaps it in as a whole; readers always see either the old or
the new snapshot, never a mix. Cache maps are replaced copy-on-write, so
concurrent cache misses may recompute the same entry but never corrupt it.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

from planqa.catalog.fuzzy import find_closest_columns
from planqa.catalog.loaders import load_schema_snapshot
from planqa.config import Settings
from planqa.models.classification import (
    AnalyticsReference,
    ModeConfig,
    QuickQuestion,
    SemanticCatalog,
)
from planqa.models.schema import TableSchema, qualify_table_name, strip_identifier_quotes

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s-]")


def normalize_question(question: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    return " ".join(_NON_WORD.sub(" ", question.lower()).split())


@dataclass(frozen=True)
class ModeSchema:
    """Cached schema view for one mode."""

    mode: str
    schemas: Mapping[str, TableSchema]
    formatted_prompt: str
    table_count: int
    column_count: int
    timestamp: float


@dataclass(frozen=True)
class _CacheEntry:
    value: object
    created_at: float


class SchemaCatalog:
    """
    Read-mostly catalog of curated table schemas.

    Usage:
        catalog = SchemaCatalog.from_settings(get_settings())
        catalog.get_columns("[publish].[DASHt_Planning]")
        catalog.format_for_prompt(["publish.DASHt_Planning"], question="jobs on hold")
    """

    def __init__(
        self,
        snapshot_path: Path | None = None,
        reference: AnalyticsReference | None = None,
        semantic_catalog: SemanticCatalog | None = None,
        cache_ttl_seconds: int = 600,
        default_schema: str = "publish",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.snapshot_path = snapshot_path
        self.reference = reference or AnalyticsReference()
        self.semantic_catalog = semantic_catalog or SemanticCatalog()
        self.cache_ttl_seconds = cache_ttl_seconds
        self.default_schema = default_schema
        self._clock = clock
        self._snapshot: Mapping[str, TableSchema] = MappingProxyType({})
        self._prompt_cache: Mapping[str, _CacheEntry] = MappingProxyType({})
        self._mode_cache: Mapping[str, _CacheEntry] = MappingProxyType({})
        self.loaded_at: float | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        reference: AnalyticsReference | None = None,
        semantic_catalog: SemanticCatalog | None = None,
    ) -> "SchemaCatalog":
        catalog = cls(
            snapshot_path=settings.data.schema_snapshot_path,
            reference=reference,
            semantic_catalog=semantic_catalog,
            cache_ttl_seconds=settings.guardrails.schema_cache_ttl_seconds,
            default_schema=settings.guardrails.allowed_schema,
        )
        catalog.refresh()
        return catalog

    @classmethod
    def from_schemas(cls, schemas: Iterable[TableSchema], **kwargs) -> "SchemaCatalog":
        """Build a catalog from in-memory schemas (no snapshot file)."""
        catalog = cls(**kwargs)
        catalog._swap({schema.table_name.lower(): schema for schema in schemas})
        return catalog

    # ------------------------------------------------------------------
    # Snapshot lifecycle
    # ------------------------------------------------------------------

    def refresh(self) -> int:
        """
        Reload the snapshot file and swap it in wholesale.

        A missing snapshot leaves the catalog empty; column validation then
        reports ``skipped`` instead of failing every query.

        Returns:
            Number of tables loaded
        """
        if self.snapshot_path is None:
            logger.warning("No schema snapshot path configured; catalog is empty")
            return len(self._snapshot)
        if not self.snapshot_path.exists():
            logger.warning(f"Schema snapshot not found at {self.snapshot_path}; catalog is empty")
            self._swap({})
            return 0
        self._swap(load_schema_snapshot(self.snapshot_path))
        return len(self._snapshot)

    def _swap(self, tables: dict[str, TableSchema]) -> None:
        self._snapshot = MappingProxyType(dict(tables))
        self.loaded_at = self._clock()
        self.clear_cache()

    @property
    def table_names(self) -> list[str]:
        return [schema.table_name for schema in self._snapshot.values()]

    def __len__(self) -> int:
        return len(self._snapshot)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _key(self, table: str) -> str:
        return qualify_table_name(table, self.default_schema).lower()

    def get_table(self, table: str) -> TableSchema | None:
        """Case-insensitive, delimiter-insensitive lookup."""
        return self._snapshot.get(self._key(table))

    def get_schemas(self, tables: Iterable[str]) -> dict[str, TableSchema]:
        """
        Schemas for an explicit table list, keyed by qualified name.

        Unknown tables are skipped with a warning.
        """
        schemas: dict[str, TableSchema] = {}
        for table in tables:
            schema = self.get_table(table)
            if schema is None:
                logger.warning(f"No schema available for table {table}")
                continue
            schemas[schema.table_name] = schema
        return schemas

    def get_columns(self, table: str) -> list[str]:
        schema = self.get_table(table)
        return schema.column_names if schema else []

    def column_exists(self, table: str, column: str) -> bool:
        schema = self.get_table(table)
        return schema is not None and schema.has_column(column)

    def closest_columns(self, table: str, target: str, limit: int = 5) -> list[str]:
        """Fuzzy suggestions for ``target`` among ``table``'s columns."""
        return find_closest_columns(
            self.get_columns(table), strip_identifier_quotes(target), limit=limit
        )

    # ------------------------------------------------------------------
    # Prompt construction
    # ------------------------------------------------------------------

    def slim_columns(self, table: str, columns: list[str], question: str) -> list[str]:
        """
        Reduce a table's column list to the prompt budget.

        Priority: always-include columns, then table-tagged keyword columns,
        then columns overlapping question words longer than three characters,
        then arbitrary fill up to the floor.
        """
        trimming = self.reference.prompt_trimming
        budget = trimming.max_columns_per_table
        table_keywords = self._table_keywords(table)
        always = [keyword.lower() for keyword in trimming.always_include_columns]
        words = [word for word in normalize_question(question).split(" ") if len(word) > 3]

        selected: dict[str, None] = {}
        for column in columns:
            lowered = column.lower()
            if any(keyword in lowered for keyword in always):
                selected[column] = None

        for needles in (table_keywords, words):
            for column in columns:
                if len(selected) >= budget:
                    break
                lowered = column.lower()
                if any(needle in lowered for needle in needles):
                    selected[column] = None

        floor = min(trimming.min_columns_per_table, budget)
        for column in columns:
            if len(selected) >= floor:
                break
            selected[column] = None

        return list(selected)

    def _table_keywords(self, table: str) -> list[str]:
        key = self._key(table)
        for name, keywords in self.reference.table_keywords.items():
            if self._key(name) == key:
                return [keyword.lower() for keyword in keywords]
        return []

    def format_for_prompt(self, tables: Iterable[str], question: str | None = None) -> str:
        """
        Render ``\\n{table}:\\n  Columns: a, b, c`` for each known table.

        The unslimmed text is cached per table set; with a question the
        column list is slimmed on every call.
        """
        schemas = self.get_schemas(tables)
        if question:
            return self._render(schemas, question)

        key = "|".join(sorted(name.lower() for name in schemas))
        cached = self._fresh(self._prompt_cache.get(key))
        if cached is not None:
            return cached.value  # type: ignore[return-value]

        text = self._render(schemas, None)
        self._prompt_cache = MappingProxyType(
            {**self._prompt_cache, key: _CacheEntry(text, self._clock())}
        )
        return text

    def _render(self, schemas: Mapping[str, TableSchema], question: str | None) -> str:
        lines: list[str] = []
        original = slimmed = 0
        for name, schema in schemas.items():
            columns = schema.column_names
            original += len(columns)
            if question:
                columns = self.slim_columns(name, columns, question)
            slimmed += len(columns)
            lines.append(f"\n{name}:")
            lines.append(f"  Columns: {', '.join(columns)}")
        if question and original:
            logger.debug(f"Column slimming kept {slimmed}/{original} columns")
        return "\n".join(lines)

    def _fresh(self, entry: _CacheEntry | None) -> _CacheEntry | None:
        if entry is None:
            return None
        if self.cache_ttl_seconds and self._clock() - entry.created_at >= self.cache_ttl_seconds:
            return None
        return entry

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def get_mode(self, mode_id: str) -> ModeConfig | None:
        return self.semantic_catalog.get_mode(mode_id)

    def tables_for_mode(self, mode_id: str) -> list[str]:
        mode = self.get_mode(mode_id)
        if mode is None:
            raise KeyError(f"Unknown semantic mode: {mode_id}")
        return list(mode.tables)

    def mode_schema(self, mode_id: str) -> ModeSchema:
        """Cached schema, prompt text and counts for one mode's tables."""
        cached = self._fresh(self._mode_cache.get(mode_id))
        if cached is not None:
            entry: ModeSchema = cached.value  # type: ignore[assignment]
            age = round(self._clock() - entry.timestamp)
            logger.debug(f"Using cached schema for mode '{mode_id}' (age: {age}s)")
            return entry

        tables = self.tables_for_mode(mode_id)
        schemas = self.get_schemas(tables)
        now = self._clock()
        entry = ModeSchema(
            mode=mode_id,
            schemas=MappingProxyType(schemas),
            formatted_prompt=self._render(schemas, None),
            table_count=len(tables),
            column_count=sum(len(schema.columns) for schema in schemas.values()),
            timestamp=now,
        )
        self._mode_cache = MappingProxyType({**self._mode_cache, mode_id: _CacheEntry(entry, now)})
        logger.info(
            f"Cached schema for mode '{mode_id}': {entry.table_count} tables, "
            f"{entry.column_count} columns"
        )
        return entry

    def prefetch_modes(self) -> int:
        """Warm every mode's cache entry; failures are logged per mode."""
        warmed = 0
        for mode in self.semantic_catalog.modes:
            try:
                self.mode_schema(mode.id)
                warmed += 1
            except KeyError as e:
                logger.warning(f"Failed to prefetch schema for mode '{mode.id}': {e}")
        logger.info(f"Schema prefetch completed for {warmed}/{len(self.semantic_catalog.modes)} modes")
        return warmed

    def clear_cache(self, mode: str | None = None) -> None:
        """Drop one mode's cache entry, or every cached entry."""
        if mode is None:
            self._mode_cache = MappingProxyType({})
            self._prompt_cache = MappingProxyType({})
            return
        self._mode_cache = MappingProxyType(
            {key: value for key, value in self._mode_cache.items() if key != mode}
        )

    # ------------------------------------------------------------------
    # Quick questions
    # ------------------------------------------------------------------

    def missing_columns(self, question: QuickQuestion) -> list[str]:
        """``table.column`` pairs a quick question needs but the snapshot lacks."""
        missing: list[str] = []
        for requirement in question.required_schema:
            schema = self.get_table(requirement.table)
            if schema is None:
                missing.extend(f"{requirement.table}.{c}" for c in requirement.columns or ["*"])
                continue
            missing.extend(
                f"{requirement.table}.{c}" for c in requirement.columns if not schema.has_column(c)
            )
        return missing

    def visible_quick_questions(
        self, questions: Iterable[QuickQuestion], mode: str | None = None
    ) -> list[QuickQuestion]:
        """Quick questions for ``mode`` whose required columns all exist."""
        visible: list[QuickQuestion] = []
        for question in questions:
            if mode is not None and question.mode != mode:
                continue
            missing = self.missing_columns(question)
            if missing:
                logger.info(
                    f"Hiding quick question '{question.id}': missing {', '.join(missing)}"
                )
                continue
            visible.append(question)
        return visible
