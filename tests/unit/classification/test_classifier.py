"""
Unit tests for the table relevance classifier.

Uses the shipped config/analytics_reference.yaml unless a test builds its
own reference.
"""

import pytest

from planqa.catalog import load_analytics_reference
from planqa.classification import TableRelevanceClassifier, match_keywords
from planqa.config import PROJECT_ROOT
from planqa.models.classification import (
    AnalyticsReference,
    ConfidenceThresholds,
    MatrixEntry,
    OverrideRule,
    PromptTrimming,
)

PLANNING = "publish.DASHt_Planning"
RESOURCES = "publish.DASHt_Resources"

SHIPPED_REFERENCE = load_analytics_reference(PROJECT_ROOT / "config" / "analytics_reference.yaml")


@pytest.fixture
def classifier(analytics_reference):
    return TableRelevanceClassifier(analytics_reference)


@pytest.fixture
def capacity_tables(semantic_catalog):
    return semantic_catalog.get_mode("capacity-plan").tables


def test_match_keywords_scores_word_count():
    matched, score = match_keywords(
        "show work center utilization", ["utilization", "work center utilization", "shift"]
    )
    assert matched == ["utilization", "work center utilization"]
    assert score == 4


class TestSelection:
    def test_hold_question(self, classifier, sample_query):
        result = classifier.classify(sample_query)

        assert result.selected_tables == [PLANNING]
        assert result.confidence == "high"
        assert result.is_override
        assert not result.declined
        assert "hold reason" in result.matched_keywords
        assert any("JobHoldReason" in hint for hint in result.context_hints)

    def test_override_rule_forces_table(self, classifier):
        result = classifier.classify("Which machines are bottlenecks?")

        assert result.is_override
        assert result.selected_tables[0] == RESOURCES

    def test_sales_question(self, classifier):
        result = classifier.classify("Total revenue by customer")

        assert result.selected_tables == ["publish.DASHt_SalesOrders"]
        assert result.confidence == "medium"
        assert not result.is_override

    def test_selection_is_bounded(self, classifier, analytics_reference):
        result = classifier.classify(
            "capacity demand utilization resources materials inventory overtime shortage"
        )
        assert len(result.selected_tables) <= analytics_reference.prompt_trimming.max_table_count
        assert len(result.selected_tables) == len(set(result.selected_tables))

    @pytest.mark.parametrize(
        "entry", SHIPPED_REFERENCE.matrix, ids=lambda entry: entry.keywords[0].replace(" ", "-")
    )
    def test_entry_keywords_select_its_tier1_tables(self, classifier, analytics_reference, entry):
        result = classifier.classify(" ".join(entry.keywords))

        selected = set(result.selected_tables)
        limit = analytics_reference.prompt_trimming.max_table_count
        assert set(entry.tier1_tables) <= selected or len(selected) == limit

    def test_override_tables_respect_table_limit(self, caplog):
        required = [f"publish.DASHt_Table{n}" for n in range(6)]
        classifier = TableRelevanceClassifier(
            AnalyticsReference(
                override_rules=[OverrideRule(triggers=["everything"], required_tables=required)],
                prompt_trimming=PromptTrimming(max_table_count=4),
            )
        )

        result = classifier.classify("show me everything")

        assert result.is_override
        assert result.selected_tables == required[:4]
        assert "dropped publish.DASHt_Table4" in caplog.text

    def test_matches_sorted_by_score(self, classifier):
        result = classifier.classify("late jobs on hold with hold reason")
        scores = [match.score for match in result.matches]
        assert scores == sorted(scores, reverse=True)


class TestDefaults:
    def test_no_match_declines_with_defaults(self, classifier):
        result = classifier.classify("What is the weather today?")

        assert result.used_default_tables
        assert result.selected_tables == [PLANNING, RESOURCES]
        assert result.confidence == "none"
        assert result.declined

    def test_term_only_question_is_medium(self, classifier):
        result = classifier.classify("What is our on-time delivery?")

        assert result.matched_terms == ["on-time delivery"]
        assert result.confidence == "medium"
        assert result.used_default_tables

    def test_low_confidence(self):
        reference = AnalyticsReference(
            matrix=[MatrixEntry(keywords=["jobs"], tier1_tables=[PLANNING])],
            confidence=ConfidenceThresholds(
                high_score=10, high_keyword_count=10, medium_score=5, medium_keyword_count=5
            ),
        )
        result = TableRelevanceClassifier(reference).classify("show jobs")
        assert result.confidence == "low"


class TestModeScoping:
    def test_out_of_mode_tables_excluded(self, classifier, capacity_tables):
        result = classifier.classify("Show capacity for jobs", candidate_tables=capacity_tables)

        assert PLANNING not in result.selected_tables
        assert set(result.selected_tables) == {
            "publish.DASHt_CapacityPlanning_ResourceCapacity",
            "publish.DASHt_CapacityPlanning",
        }

    def test_defaults_scoped_to_mode(self, classifier, capacity_tables):
        result = classifier.classify("Show jobs", candidate_tables=capacity_tables)

        assert result.used_default_tables
        assert result.selected_tables == [RESOURCES]

    def test_mode_without_default_tables_uses_first_candidates(self, classifier):
        candidates = ["publish.DASHt_Materials", "publish.DASHt_Inventories", "publish.DASHt_SalesOrders"]

        result = classifier.classify("anything at all", candidate_tables=candidates)

        assert result.selected_tables == candidates[:2]

    def test_candidates_compared_without_delimiters(self, classifier):
        result = classifier.classify("jobs on hold", candidate_tables=["[publish].[DASHt_Planning]"])
        assert result.selected_tables == [PLANNING]


class TestBusinessTerms:
    def test_context_rendering(self, classifier):
        context = classifier.business_term_context(["lateness", "not-a-term"])

        assert context.startswith("\nRELEVANT BUSINESS TERMS:\n")
        assert "- lateness: Days a job is scheduled to finish after its need date." in context
        assert "not-a-term" not in context

    def test_no_terms_renders_nothing(self, classifier):
        assert classifier.business_term_context([]) == ""


def test_reload_swaps_configuration(classifier):
    classifier.reload(
        AnalyticsReference(matrix=[MatrixEntry(keywords=["widget"], tier1_tables=["publish.DASHt_Widgets"])])
    )
    assert classifier.classify("widget counts").selected_tables == ["publish.DASHt_Widgets"]
