"""
Unit tests for the query logger.

A fixed clock drives timestamps so analytics windows are deterministic.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest

from planqa.stores.query_log import QueryLogger, hash_sql


class FixedClock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def query_log(tmp_path, clock):
    return QueryLogger(
        log_path=tmp_path / "query-logs.json",
        popular_path=tmp_path / "popular-queries.json",
        max_entries=5,
        clock=clock,
    )


def record_success(query_log, question="late jobs", **overrides):
    fields = dict(
        request_id=QueryLogger.new_request_id(),
        question=question,
        total_ms=800.0,
        llm_ms=600.0,
        sql_ms=150.0,
        generated_sql="SELECT TOP (100) JobName FROM [publish].[DASHt_Planning]",
        row_count=3,
        column_validation="passed",
    )
    fields.update(overrides)
    return query_log.record(**fields)


def record_failure(query_log, stage="validation", message="Only SELECT queries are allowed", **overrides):
    fields = dict(
        request_id=QueryLogger.new_request_id(),
        question="delete everything",
        total_ms=400.0,
        validation_ok=False,
        validation_reason=message,
        error_stage=stage,
        error_message=message,
    )
    fields.update(overrides)
    return query_log.record(**fields)


class TestRecording:
    def test_entry_fields(self, query_log, clock):
        entry = record_success(query_log)

        assert entry.timestamp == clock.now.isoformat()
        assert entry.route == "/api/ask"
        assert entry.generated_sql.startswith("SELECT TOP (100)")
        assert entry.sql_hash is None
        assert entry.validation_outcome.ok
        assert entry.succeeded

    def test_persisted_with_camel_case_keys(self, query_log):
        record_success(query_log)

        payload = json.loads(query_log.log_path.read_text())

        assert payload[0]["requestId"]
        assert payload[0]["timings"]["totalMs"] == 800.0
        assert payload[0]["columnValidation"] == "passed"

    def test_sql_hashed_when_text_logging_disabled(self, tmp_path, clock):
        query_log = QueryLogger(
            tmp_path / "log.json", tmp_path / "popular.json", log_sql_text=False, clock=clock
        )
        sql = "SELECT TOP (100) JobName FROM [publish].[DASHt_Planning]"

        entry = record_success(query_log, generated_sql=sql)

        assert entry.generated_sql is None
        assert entry.sql_hash == hash_sql(sql)
        assert len(entry.sql_hash) == 16

    def test_failure_carries_stage(self, query_log):
        entry = record_failure(query_log, stage="column_validation", message="Column 'X' does not exist")

        assert not entry.succeeded
        assert entry.error.stage == "column_validation"
        assert not entry.validation_outcome.ok

    def test_bounded_to_max_entries(self, query_log):
        for i in range(7):
            record_success(query_log, question=f"q{i}")

        assert [entry.question for entry in query_log.entries] == ["q2", "q3", "q4", "q5", "q6"]
        assert len(json.loads(query_log.log_path.read_text())) == 5

    def test_reload_from_disk(self, query_log, tmp_path, clock):
        record_success(query_log)

        reloaded = QueryLogger(query_log.log_path, query_log.popular_path, clock=clock)

        assert len(reloaded.entries) == 1

    def test_persist_failure_is_logged_not_raised(self, query_log, monkeypatch, caplog):
        def broken_write(path, payload):
            raise OSError("disk full")

        monkeypatch.setattr("planqa.stores.query_log.write_json_atomic", broken_write)

        record_success(query_log)

        assert len(query_log.entries) == 1
        assert "Failed to persist query log" in caplog.text


class TestPopularQuestions:
    def test_counts_only_questions_with_rows(self, query_log):
        query_log.track_question("Late jobs", 3)
        query_log.track_question("late   JOBS", 1)
        query_log.track_question("empty result", 0)
        query_log.track_question("no rows", None)

        popular = query_log.popular_questions()

        assert [(p.question, p.count) for p in popular] == [("Late jobs", 2)]

    def test_ranked_by_count_and_limited(self, query_log):
        for _ in range(3):
            query_log.track_question("jobs on hold", 1)
        query_log.track_question("bottleneck resources", 1)
        query_log.track_question("capacity next week", 1)

        popular = query_log.popular_questions(limit=2)

        assert popular[0].question == "Jobs on hold"
        assert popular[0].count == 3
        assert len(popular) == 2

    def test_persisted_frequency(self, query_log, clock):
        query_log.track_question("jobs on hold", 2)

        data = json.loads(query_log.popular_path.read_text())

        assert data["jobs on hold"]["count"] == 1
        assert data["jobs on hold"]["lastUsed"] == clock.now.isoformat()


class TestAnalytics:
    def test_summary_and_breakdown(self, query_log):
        record_success(query_log)
        record_success(query_log, total_ms=1200.0, llm_ms=1000.0, sql_ms=None)
        record_failure(query_log)
        record_failure(query_log)
        record_failure(query_log, stage="execution", message="Invalid column name 'X'")

        analytics = query_log.analytics(time_range_minutes=60)

        summary = analytics.summary
        assert summary.total_queries == 5
        assert summary.successful_queries == 2
        assert summary.failed_queries == 3
        assert summary.average_llm_ms == 800
        assert summary.average_sql_ms == 150

        breakdown = {item.stage: item for item in analytics.error_breakdown}
        assert breakdown["validation"].count == 2
        assert breakdown["execution"].percentage == pytest.approx(100 / 3)

        assert analytics.top_errors[0].message == "Only SELECT queries are allowed"
        assert analytics.top_errors[0].count == 2
        assert len(analytics.performance_over_time) == 2
        assert analytics.recent_queries[0].question == "delete everything"
        assert analytics.recent_queries[0].success is False

    def test_time_window(self, query_log, clock):
        record_success(query_log, question="old")
        clock.advance(hours=2)
        record_success(query_log, question="new")

        analytics = query_log.analytics(time_range_minutes=60)

        assert analytics.summary.total_queries == 1
        assert analytics.recent_queries[0].question == "new"

    def test_empty_window(self, query_log):
        summary = query_log.analytics().summary
        assert summary.total_queries == 0
        assert summary.average_latency == 0

    def test_serializes_camel_case(self, query_log):
        record_failure(query_log)
        payload = query_log.analytics().model_dump(by_alias=True)
        assert "errorBreakdown" in payload
        assert "totalQueries" in payload["summary"]


def test_failed_queries_newest_first(query_log, clock):
    record_failure(query_log, message="first")
    clock.advance(minutes=1)
    record_success(query_log)
    record_failure(query_log, stage="generation", message="second")

    failed = query_log.failed_queries()

    assert [item.error_message for item in failed] == ["second", "first"]
    assert failed[0].error_stage == "generation"
