"""
Table Relevance Classifier

Scores the configured keyword matrix against a question and selects a
bounded set of tables for prompt construction. Deterministic: no LLM,
no database.

Scoring: each matched keyword phrase contributes its word count, so
"work center utilization" outweighs "utilization". Override rules force
their tables in ahead of scored selection; they count against
the same table limit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from planqa.catalog.schema_catalog import normalize_question
from planqa.models.classification import (
    AnalyticsReference,
    BusinessTerm,
    ClassificationResult,
    Confidence,
    MatrixMatch,
)
from planqa.models.schema import qualify_table_name

logger = logging.getLogger(__name__)

TOP_MATCHES = 3
MAX_TERMS_IN_CONTEXT = 10


def match_keywords(normalized_question: str, keywords: Iterable[str]) -> tuple[list[str], int]:
    """Substring-match keyword phrases; score is the sum of matched phrase word counts."""
    matched: list[str] = []
    score = 0
    for keyword in keywords:
        lowered = keyword.lower()
        if lowered and lowered in normalized_question:
            matched.append(keyword)
            score += len(lowered.split())
    return matched, score


class TableRelevanceClassifier:
    """
    Keyword-matrix table selector.

    Usage:
        classifier = TableRelevanceClassifier(reference)
        result = classifier.classify("Show jobs on hold with hold reasons")
        result.selected_tables  # ['publish.DASHt_Planning', ...]
        result.confidence       # 'high'
    """

    def __init__(self, reference: AnalyticsReference):
        self.reference = reference

    def reload(self, reference: AnalyticsReference) -> None:
        """Swap in a new configuration."""
        self.reference = reference

    def classify(
        self, question: str, candidate_tables: Iterable[str] | None = None
    ) -> ClassificationResult:
        """
        Select tables for a question.

        Args:
            question: Free-text question
            candidate_tables: Mode-scoped tables; when given, nothing outside
                this set is selected

        Returns:
            ClassificationResult with the selection and confidence
        """
        reference = self.reference
        trimming = reference.prompt_trimming
        normalized = normalize_question(question)
        candidates = self._candidate_index(candidate_tables)

        def allowed(table: str) -> bool:
            return candidates is None or qualify_table_name(table).lower() in candidates

        fired_rules = [
            rule
            for rule in reference.override_rules
            if any(trigger.lower() in normalized for trigger in rule.triggers if trigger)
        ]
        for rule in fired_rules:
            logger.info(
                f"Override rule triggered ({rule.description or 'unnamed'}) -> "
                f"{', '.join(rule.required_tables)}"
            )

        matches: list[MatrixMatch] = []
        all_keywords: list[str] = []
        for entry in reference.matrix:
            matched, score = match_keywords(normalized, entry.keywords)
            if not matched:
                continue
            matches.append(
                MatrixMatch(
                    keywords=matched,
                    tier1_tables=list(entry.tier1_tables),
                    tier2_tables=list(entry.tier2_tables),
                    score=score,
                    override=entry.override,
                    context_hint=entry.context_hint,
                )
            )
            all_keywords.extend(matched)
        # Stable sort keeps configuration order among equal scores.
        matches.sort(key=lambda match: match.score, reverse=True)

        selected: dict[str, None] = {}
        for rule in fired_rules:
            for table in rule.required_tables:
                if table in selected or not allowed(table):
                    continue
                if len(selected) >= trimming.max_table_count:
                    logger.warning(
                        f"Override tables clipped at {trimming.max_table_count}; dropped {table}"
                    )
                    continue
                selected[table] = None

        for match in matches[:TOP_MATCHES]:
            for table in match.tier1_tables:
                if len(selected) < trimming.max_table_count and allowed(table):
                    selected[table] = None

        used_default = False
        if not selected:
            used_default = True
            for table in self._default_tables(candidate_tables):
                selected[table] = None
            logger.info(f"No matrix matches; using default tables: {', '.join(selected)}")

        for match in matches:
            for table in match.tier1_tables:
                if len(selected) >= trimming.default_table_count:
                    break
                if allowed(table):
                    selected.setdefault(table, None)

        terms = self.match_terms(normalized)
        total_score = sum(match.score for match in matches)
        confidence = self._confidence(
            bool(fired_rules), total_score, len(all_keywords), len(terms), len(matches)
        )

        result = ClassificationResult(
            selected_tables=list(selected),
            matched_keywords=list(dict.fromkeys(all_keywords)),
            matched_terms=[term.name for term in terms],
            context_hints=[match.context_hint for match in matches if match.context_hint],
            is_override=bool(fired_rules),
            used_default_tables=used_default,
            confidence=confidence,
            matches=matches,
        )
        logger.info(
            f"Classified question with {confidence} confidence: "
            f"{len(result.selected_tables)} tables ({', '.join(result.selected_tables)})",
            extra={
                "matched_keywords": result.matched_keywords,
                "matched_terms": result.matched_terms,
            },
        )
        return result

    @staticmethod
    def _candidate_index(candidate_tables: Iterable[str] | None) -> set[str] | None:
        if candidate_tables is None:
            return None
        return {qualify_table_name(table).lower() for table in candidate_tables}

    def _default_tables(self, candidate_tables: Iterable[str] | None) -> list[str]:
        defaults = list(self.reference.default_tables)
        if candidate_tables is None:
            return defaults
        candidates = list(candidate_tables)
        index = {qualify_table_name(table).lower() for table in candidates}
        scoped = [table for table in defaults if qualify_table_name(table).lower() in index]
        return scoped or candidates[:2]

    def _confidence(
        self,
        has_override: bool,
        total_score: int,
        keyword_count: int,
        term_count: int,
        match_count: int,
    ) -> Confidence:
        thresholds = self.reference.confidence
        if (
            has_override
            or total_score >= thresholds.high_score
            or keyword_count >= thresholds.high_keyword_count
        ):
            return "high"
        if (
            total_score >= thresholds.medium_score
            or keyword_count >= thresholds.medium_keyword_count
            or term_count > 0
        ):
            return "medium"
        if match_count > 0:
            return "low"
        return "none"

    # ------------------------------------------------------------------
    # Business terms
    # ------------------------------------------------------------------

    def match_terms(self, normalized_question: str) -> list[BusinessTerm]:
        """Glossary terms whose names occur in the normalized question."""
        return [
            term
            for term in self.reference.terms
            if term.name and term.name.lower() in normalized_question
        ]

    def business_term_context(self, term_names: Iterable[str]) -> str:
        """Render matched glossary terms as advisory prompt context."""
        by_name = {term.name: term for term in self.reference.terms}
        lines = [
            f"- {term.name}: {term.description}. Computation: {term.computation}"
            for name in list(term_names)[:MAX_TERMS_IN_CONTEXT]
            if (term := by_name.get(name)) is not None
        ]
        if not lines:
            return ""
        return "\nRELEVANT BUSINESS TERMS:\n" + "\n".join(lines) + "\n"
