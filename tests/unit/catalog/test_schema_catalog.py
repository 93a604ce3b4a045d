"""
Unit tests for the schema catalog.

Covers lookups, snapshot refresh, column slimming, prompt and mode caches
with an injected clock, and quick-question visibility.
"""

import json

import pytest

from planqa.catalog import SchemaCatalog, load_quick_questions, normalize_question
from planqa.config import PROJECT_ROOT
from planqa.models.classification import (
    AnalyticsReference,
    ModeConfig,
    PromptTrimming,
    QuickQuestion,
    SchemaRequirement,
    SemanticCatalog,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def small_catalog(table_factory, clock):
    return SchemaCatalog.from_schemas(
        [
            table_factory("publish.DASHt_Jobs", "JobId", "JobName", "JobLate"),
            table_factory("publish.DASHt_Machines", "ResourceName", "Bottleneck"),
        ],
        semantic_catalog=SemanticCatalog(
            modes=[
                ModeConfig(id="jobs", name="Jobs", tables=["publish.DASHt_Jobs"]),
                ModeConfig(
                    id="everything",
                    name="Everything",
                    tables=["publish.DASHt_Jobs", "publish.DASHt_Machines", "publish.DASHt_Gone"],
                ),
            ]
        ),
        cache_ttl_seconds=60,
        clock=clock,
    )


def test_normalize_question():
    assert normalize_question("  What's LATE?!  Jobs  ") == "what s late jobs"
    assert normalize_question("on-time delivery") == "on-time delivery"


class TestLookups:
    def test_shipped_snapshot_loaded(self, catalog):
        assert len(catalog) == 9
        assert "publish.DASHt_Planning" in catalog.table_names

    def test_lookup_ignores_delimiters_and_case(self, catalog):
        expected = catalog.get_table("publish.DASHt_Planning")
        assert catalog.get_table("[publish].[DASHt_Planning]") is expected
        assert catalog.get_table("dasht_planning") is expected

    def test_unknown_table(self, catalog):
        assert catalog.get_table("publish.DASHt_Nope") is None
        assert catalog.get_columns("publish.DASHt_Nope") == []

    def test_column_exists(self, catalog):
        assert catalog.column_exists("publish.DASHt_Planning", "jobholdreason")
        assert not catalog.column_exists("publish.DASHt_Planning", "HoldCode")

    def test_get_schemas_skips_unknown(self, catalog):
        schemas = catalog.get_schemas(["[publish].[DASHt_Resources]", "publish.DASHt_Nope"])
        assert list(schemas) == ["publish.DASHt_Resources"]

    def test_closest_columns_strips_brackets(self, catalog):
        assert catalog.closest_columns("publish.DASHt_Planning", "[JobNam]")[0] == "JobName"


class TestRefresh:
    def test_missing_snapshot_leaves_catalog_empty(self, tmp_path):
        catalog = SchemaCatalog(snapshot_path=tmp_path / "missing.json")

        assert catalog.refresh() == 0
        assert len(catalog) == 0

    def test_no_path_configured(self):
        assert SchemaCatalog().refresh() == 0

    def test_refresh_swaps_snapshot_and_clears_caches(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps({"tables": {"publish.DASHt_Jobs": ["JobId"]}}))
        catalog = SchemaCatalog(
            snapshot_path=path,
            semantic_catalog=SemanticCatalog(
                modes=[ModeConfig(id="jobs", name="Jobs", tables=["publish.DASHt_Jobs"])]
            ),
        )
        catalog.refresh()
        before = catalog.mode_schema("jobs")

        path.write_text(
            json.dumps(
                {
                    "tables": {
                        "publish.DASHt_Jobs": ["JobId", "JobName"],
                        "publish.DASHt_Machines": ["ResourceName"],
                    }
                }
            )
        )
        assert catalog.refresh() == 2

        after = catalog.mode_schema("jobs")
        assert after is not before
        assert after.column_count == 2


class TestSlimming:
    @pytest.fixture
    def trimming_catalog(self, table_factory):
        reference = AnalyticsReference(
            table_keywords={"publish.DASHt_Jobs": ["hold"]},
            prompt_trimming=PromptTrimming(
                max_columns_per_table=4,
                min_columns_per_table=0,
                always_include_columns=["Id"],
            ),
        )
        return SchemaCatalog(reference=reference)

    def test_priority_order(self, trimming_catalog):
        columns = ["JobId", "JobName", "JobOnHold", "JobHoldReason", "PlantName", "JobLate"]

        slimmed = trimming_catalog.slim_columns("publish.DASHt_Jobs", columns, "late jobs")

        assert slimmed == ["JobId", "JobOnHold", "JobHoldReason", "JobLate"]

    def test_short_question_words_ignored(self, trimming_catalog):
        columns = ["JobId", "Qty", "JobName"]
        assert trimming_catalog.slim_columns("publish.DASHt_Jobs", columns, "qty") == ["JobId"]

    def test_fill_up_to_floor(self):
        catalog = SchemaCatalog(
            reference=AnalyticsReference(
                prompt_trimming=PromptTrimming(max_columns_per_table=40, min_columns_per_table=3)
            )
        )
        slimmed = catalog.slim_columns("publish.DASHt_Jobs", ["A", "B", "C", "D", "E"], "zzzz")
        assert slimmed == ["A", "B", "C"]

    def test_shipped_budget_keeps_scope_columns(self, catalog):
        columns = catalog.get_columns("publish.DASHt_Planning")

        slimmed = catalog.slim_columns("publish.DASHt_Planning", columns, "jobs on hold")

        assert len(slimmed) <= 40
        assert "PlanningAreaName" in slimmed
        assert "NewScenarioId" in slimmed
        assert "JobHoldReason" in slimmed


class TestPromptFormatting:
    def test_layout(self, small_catalog):
        text = small_catalog.format_for_prompt(["publish.DASHt_Machines"])
        assert text == "\npublish.DASHt_Machines:\n  Columns: ResourceName, Bottleneck"

    def test_unslimmed_text_cached_until_ttl(self, small_catalog, clock, monkeypatch):
        calls = []
        render = small_catalog._render

        def counting_render(schemas, question):
            calls.append(question)
            return render(schemas, question)

        monkeypatch.setattr(small_catalog, "_render", counting_render)

        small_catalog.format_for_prompt(["publish.DASHt_Jobs"])
        small_catalog.format_for_prompt(["[publish].[DASHt_Jobs]"])
        assert len(calls) == 1

        clock.advance(61)
        small_catalog.format_for_prompt(["publish.DASHt_Jobs"])
        assert len(calls) == 2

    def test_question_bypasses_cache(self, small_catalog, monkeypatch):
        calls = []
        render = small_catalog._render
        monkeypatch.setattr(
            small_catalog, "_render", lambda s, q: calls.append(q) or render(s, q)
        )

        small_catalog.format_for_prompt(["publish.DASHt_Jobs"], question="late jobs")
        small_catalog.format_for_prompt(["publish.DASHt_Jobs"], question="late jobs")

        assert calls == ["late jobs", "late jobs"]


class TestModes:
    def test_tables_for_unknown_mode(self, small_catalog):
        with pytest.raises(KeyError):
            small_catalog.tables_for_mode("nope")

    def test_mode_schema_counts(self, small_catalog):
        entry = small_catalog.mode_schema("everything")

        assert entry.table_count == 3
        assert entry.column_count == 5
        assert set(entry.schemas) == {"publish.DASHt_Jobs", "publish.DASHt_Machines"}
        assert "publish.DASHt_Machines:" in entry.formatted_prompt

    def test_mode_schema_cached(self, small_catalog, clock):
        first = small_catalog.mode_schema("jobs")
        clock.advance(30)
        assert small_catalog.mode_schema("jobs") is first

        clock.advance(31)
        assert small_catalog.mode_schema("jobs") is not first

    def test_clear_single_mode(self, small_catalog):
        jobs = small_catalog.mode_schema("jobs")
        everything = small_catalog.mode_schema("everything")

        small_catalog.clear_cache("jobs")

        assert small_catalog.mode_schema("jobs") is not jobs
        assert small_catalog.mode_schema("everything") is everything

    def test_prefetch_warms_every_mode(self, small_catalog):
        assert small_catalog.prefetch_modes() == 2

    def test_shipped_modes(self, catalog):
        assert catalog.prefetch_modes() == 2
        assert catalog.mode_schema("capacity-plan").table_count == 5


class TestQuickQuestions:
    def test_shipped_questions_all_visible(self, catalog):
        questions = load_quick_questions(PROJECT_ROOT / "config" / "quick_questions.yaml")

        assert len(catalog.visible_quick_questions(questions)) == 9
        assert len(catalog.visible_quick_questions(questions, mode="capacity-plan")) == 4

    def test_missing_column_hides_question(self, catalog):
        question = QuickQuestion(
            id="q1",
            text="Jobs by hold code",
            mode="production-planning",
            required_schema=[
                SchemaRequirement(table="publish.DASHt_Planning", columns=["JobId", "HoldCode"])
            ],
        )

        assert catalog.missing_columns(question) == ["publish.DASHt_Planning.HoldCode"]
        assert catalog.visible_quick_questions([question]) == []

    def test_missing_table_reported(self, catalog):
        question = QuickQuestion(
            id="q2",
            text="Anything",
            mode="production-planning",
            required_schema=[SchemaRequirement(table="publish.DASHt_Gone")],
        )
        assert catalog.missing_columns(question) == ["publish.DASHt_Gone.*"]
