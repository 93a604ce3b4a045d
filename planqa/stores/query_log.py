"""
Query Logger

Keeps the most recent query log entries (successes and failures, tagged by
stage) for the analytics dashboard, and counts successful questions for
the popular-questions list.

Both are persisted as whole JSON files. The in-memory lists are replaced,
never mutated, so readers need no lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from planqa.config import Settings
from planqa.models.errors import Stage
from planqa.models.logs import (
    AnalyticsSummary,
    FailedQuery,
    PerformancePoint,
    PopularQuestion,
    QueryAnalytics,
    QueryLogEntry,
    QueryTimings,
    RecentQuery,
    StageBreakdown,
    StageError,
    TopError,
    ValidationOutcome,
)
from planqa.stores.json_file import read_json, write_json_atomic

logger = logging.getLogger(__name__)

SQL_HASH_LENGTH = 16
TOP_ERROR_MESSAGE_LENGTH = 100


def hash_sql(sql: str) -> str:
    """Short sha256 prefix used in place of SQL text."""
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()[:SQL_HASH_LENGTH]


def normalize_for_frequency(question: str) -> str:
    return " ".join(question.lower().split())


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _average(values: list[float]) -> int:
    return round(sum(values) / len(values)) if values else 0


class QueryLogger:
    """
    Bounded query log with analytics and popular-question tracking.

    Usage:
        query_log = QueryLogger.from_settings(get_settings())
        query_log.record(request_id=..., question="...", total_ms=812.0, row_count=3)
        query_log.analytics(time_range_minutes=60).summary.total_queries
    """

    def __init__(
        self,
        log_path: Path,
        popular_path: Path,
        max_entries: int = 500,
        log_sql_text: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.log_path = log_path
        self.popular_path = popular_path
        self.max_entries = max_entries
        self.log_sql_text = log_sql_text
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: tuple[QueryLogEntry, ...] = self._load_entries()
        self._frequency: dict[str, dict] = self._load_frequency()

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueryLogger":
        return cls(
            log_path=settings.data.query_log_path,
            popular_path=settings.data.popular_queries_path,
            max_entries=settings.data.max_log_entries,
            log_sql_text=settings.log_sql_text,
        )

    @staticmethod
    def new_request_id() -> str:
        return str(uuid.uuid4())

    def _load_entries(self) -> tuple[QueryLogEntry, ...]:
        entries: list[QueryLogEntry] = []
        for item in read_json(self.log_path, []):
            try:
                entries.append(QueryLogEntry.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid query log entry: {e}")
        logger.info(f"Loaded {len(entries)} query logs from {self.log_path}")
        return tuple(entries[-self.max_entries :])

    def _load_frequency(self) -> dict[str, dict]:
        data = read_json(self.popular_path, {})
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def record(
        self,
        *,
        request_id: str,
        question: str,
        total_ms: float,
        generated_sql: str | None = None,
        validation_ok: bool = True,
        validation_reason: str | None = None,
        row_count: int | None = None,
        llm_ms: float | None = None,
        sql_ms: float | None = None,
        error_stage: Stage | None = None,
        error_message: str | None = None,
        user_id: str | None = None,
        username: str | None = None,
        mode: str | None = None,
        column_validation: str | None = None,
    ) -> QueryLogEntry:
        """Build an entry (SQL text or hash per configuration) and log it."""
        entry = QueryLogEntry(
            timestamp=self._clock().isoformat(),
            request_id=request_id,
            question=question,
            user_id=user_id,
            username=username,
            mode=mode,
            generated_sql=generated_sql if generated_sql and self.log_sql_text else None,
            sql_hash=hash_sql(generated_sql) if generated_sql and not self.log_sql_text else None,
            validation_outcome=ValidationOutcome(ok=validation_ok, reason=validation_reason),
            column_validation=column_validation,
            row_count=row_count,
            timings=QueryTimings(llm_ms=llm_ms, sql_ms=sql_ms, total_ms=total_ms),
            error=StageError(stage=error_stage, message=error_message or "")
            if error_stage
            else None,
        )
        self.log_query(entry)
        return entry

    def log_query(self, entry: QueryLogEntry) -> None:
        """Append an entry, keep the newest ``max_entries``, persist."""
        logger.info(
            json.dumps(entry.model_dump(by_alias=True, exclude_none=True)),
            extra={"request_id": entry.request_id, "stage": entry.error.stage if entry.error else None},
        )
        with self._lock:
            entries = (*self._entries, entry)[-self.max_entries :]
            self._entries = entries
            try:
                write_json_atomic(
                    self.log_path, [e.model_dump(by_alias=True, exclude_none=True) for e in entries]
                )
            except OSError as e:
                logger.error(f"Failed to persist query log: {e}")

    def track_question(self, question: str, row_count: int | None) -> None:
        """Count a question toward the popular list; only when it returned rows."""
        if not row_count or row_count <= 0:
            return
        key = normalize_for_frequency(question)
        if not key:
            return
        with self._lock:
            existing = self._frequency.get(key, {})
            frequency = {
                **self._frequency,
                key: {
                    "count": int(existing.get("count", 0)) + 1,
                    "lastUsed": self._clock().isoformat(),
                    "successful": True,
                },
            }
            self._frequency = frequency
            try:
                write_json_atomic(self.popular_path, frequency)
            except OSError as e:
                logger.error(f"Failed to persist popular questions: {e}")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def entries(self) -> list[QueryLogEntry]:
        return list(self._entries)

    def popular_questions(self, limit: int = 10) -> list[PopularQuestion]:
        ranked = sorted(
            (
                (question, data.get("count", 0))
                for question, data in self._frequency.items()
                if data.get("successful") and data.get("count", 0) >= 1
            ),
            key=lambda item: item[1],
            reverse=True,
        )
        return [
            PopularQuestion(question=question[:1].upper() + question[1:], count=count)
            for question, count in ranked[:limit]
        ]

    def analytics(self, time_range_minutes: int = 60) -> QueryAnalytics:
        """Dashboard view over entries newer than ``time_range_minutes``."""
        cutoff = self._clock() - timedelta(minutes=time_range_minutes)
        logs = [e for e in self._entries if _parse_timestamp(e.timestamp) >= cutoff]
        failed = [e for e in logs if e.error is not None]
        succeeded = [e for e in logs if e.error is None]

        summary = AnalyticsSummary(
            total_queries=len(logs),
            successful_queries=len(succeeded),
            failed_queries=len(failed),
            average_latency=_average([e.timings.total_ms for e in logs]),
            average_llm_ms=_average([e.timings.llm_ms for e in logs if e.timings.llm_ms is not None]),
            average_sql_ms=_average([e.timings.sql_ms for e in logs if e.timings.sql_ms is not None]),
        )

        stage_counts = Counter(e.error.stage for e in failed)
        breakdown = [
            StageBreakdown(stage=stage, count=count, percentage=count / max(len(failed), 1) * 100)
            for stage, count in stage_counts.items()
        ]

        performance = [
            PerformancePoint(
                timestamp=e.timestamp,
                latency=e.timings.total_ms,
                llm_ms=e.timings.llm_ms or 0,
                sql_ms=e.timings.sql_ms or 0,
            )
            for e in succeeded[-50:]
        ]

        messages: dict[str, TopError] = {}
        for e in failed:
            message = e.error.message[:TOP_ERROR_MESSAGE_LENGTH]
            current = messages.get(message)
            if current is None:
                messages[message] = TopError(message=message, count=1, last_occurred=e.timestamp)
            else:
                messages[message] = TopError(
                    message=message,
                    count=current.count + 1,
                    last_occurred=max(current.last_occurred, e.timestamp),
                )
        top_errors = sorted(messages.values(), key=lambda t: t.count, reverse=True)[:10]

        recent = [
            RecentQuery(
                timestamp=e.timestamp,
                question=e.question,
                success=e.error is None,
                latency=e.timings.total_ms,
                row_count=e.row_count,
                error=e.error.message if e.error else None,
            )
            for e in reversed(logs[-20:])
        ]

        return QueryAnalytics(
            summary=summary,
            error_breakdown=breakdown,
            performance_over_time=performance,
            top_errors=top_errors,
            recent_queries=recent,
        )

    def failed_queries(self, limit: int = 50) -> list[FailedQuery]:
        failed = [e for e in self._entries if e.error is not None]
        return [
            FailedQuery(
                timestamp=e.timestamp,
                question=e.question,
                generated_sql=e.generated_sql,
                error_stage=e.error.stage,
                error_message=e.error.message,
                llm_ms=e.timings.llm_ms,
            )
            for e in reversed(failed[-limit:] if limit > 0 else [])
        ]
