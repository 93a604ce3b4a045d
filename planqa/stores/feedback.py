"""Thumbs up/down feedback on answers, persisted to ``data/feedback.json``."""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from planqa.config import Settings
from planqa.models.logs import FeedbackEntry, FeedbackStats
from planqa.stores.json_file import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class FeedbackStore:
    """Append-only feedback list with summary stats."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._entries: tuple[FeedbackEntry, ...] = self._load()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeedbackStore":
        return cls(settings.data.feedback_path)

    def _load(self) -> tuple[FeedbackEntry, ...]:
        entries: list[FeedbackEntry] = []
        for item in read_json(self.path, []):
            try:
                entries.append(FeedbackEntry.model_validate(item))
            except ValidationError as e:
                logger.error(f"Skipping invalid feedback entry in {self.path}: {e}")
        return tuple(entries)

    def add(self, entry: FeedbackEntry) -> FeedbackEntry:
        stored = entry.model_copy(
            update={"timestamp": entry.timestamp or datetime.now(UTC).isoformat()}
        )
        with self._lock:
            entries = (*self._entries, stored)
            write_json_atomic(self.path, [e.model_dump() for e in entries])
            self._entries = entries
        logger.info(f"Stored {stored.feedback} feedback", extra={"question": stored.question})
        return stored

    def recent(self, limit: int = 50) -> list[FeedbackEntry]:
        return list(reversed(self._entries[-limit:])) if limit > 0 else []

    def stats(self) -> FeedbackStats:
        entries = self._entries
        positive = sum(1 for e in entries if e.feedback == "up")
        return FeedbackStats(total=len(entries), positive=positive, negative=len(entries) - positive)
