"""Query analytics, popular questions and answer feedback routes."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from planqa.models.logs import FailedQuery, FeedbackEntry, FeedbackStats, QueryAnalytics
from planqa.stores import FeedbackStore, QueryLogger

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_query_logger() -> QueryLogger:
    from planqa.api.main import app_state

    query_logger = app_state.get("query_logger")
    if query_logger is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Query log not initialized")
    return query_logger


def _get_feedback_store() -> FeedbackStore:
    from planqa.api.main import app_state

    feedback_store = app_state.get("feedback_store")
    if feedback_store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Feedback store not initialized")
    return feedback_store


@router.get("/popular-questions")
async def popular_questions(limit: int = Query(default=10, ge=1, le=100)) -> dict[str, Any]:
    questions = _get_query_logger().popular_questions(limit)
    return {"questions": [question.model_dump() for question in questions]}


@router.get("/analytics", response_model=QueryAnalytics, response_model_by_alias=True)
async def analytics(
    time_range: int = Query(default=1440, alias="timeRange", ge=1, description="Window in minutes"),
) -> QueryAnalytics:
    return _get_query_logger().analytics(time_range)


@router.get("/analytics/failed", response_model=list[FailedQuery], response_model_by_alias=True)
async def failed_queries(limit: int = Query(default=50, ge=1, le=500)) -> list[FailedQuery]:
    return _get_query_logger().failed_queries(limit)


@router.post("/feedback")
async def submit_feedback(payload: FeedbackEntry) -> dict[str, bool]:
    """Store a thumbs up/down for an answer."""
    entry = _get_feedback_store().add(payload)
    logger.info(f"Feedback received: {entry.feedback} for question: {entry.question[:50]}")
    return {"success": True}


@router.get("/feedback/stats", response_model=FeedbackStats)
async def feedback_stats() -> FeedbackStats:
    return _get_feedback_store().stats()
