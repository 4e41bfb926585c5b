"""Persistent pattern store backed by SQLite.

Drop-in replacement for FeedbackStore when you need durability.

Usage:
    store = SqliteFeedbackStore(db_path="~/.pii-annotator/patterns.db")
    # Same API as FeedbackStore: save_patterns, submit_feedback, all_refined, ...
"""

from __future__ import annotations
import json
import sqlite3
from pathlib import Path

from .feedback_store import FeedbackStore
from .types import DEFAULT_CONFIDENCE_THRESHOLD, FeedbackRecord, PatternDefinition

_SCHEMA = """
CREATE TABLE IF NOT EXISTS patterns (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at REAL NOT NULL DEFAULT (julianday('now'))
);
CREATE TABLE IF NOT EXISTS feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pattern_id TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at REAL NOT NULL DEFAULT (julianday('now'))
);
CREATE INDEX IF NOT EXISTS idx_feedback_pattern
    ON feedback(pattern_id);
CREATE TABLE IF NOT EXISTS refinements (
    pattern_id TEXT PRIMARY KEY,
    excluded_examples TEXT NOT NULL DEFAULT '[]',
    confidence_threshold REAL NOT NULL
);
"""


class SqliteFeedbackStore(FeedbackStore):
    """Write-through SQLite store; reads are served from memory."""

    def __init__(
        self,
        *,
        db_path: str | Path = "patterns.db",
        auto_refine_threshold: int = 2,
        default_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> None:
        super().__init__(
            auto_refine_threshold=auto_refine_threshold,
            default_threshold=default_threshold,
        )
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(db_path), check_same_thread=False)
        self._db.executescript(_SCHEMA)
        self._load()

    def _load(self) -> None:
        """Load existing rows from DB into memory."""
        for (data,) in self._db.execute("SELECT data FROM patterns").fetchall():
            pattern = PatternDefinition.from_dict(json.loads(data))
            self._patterns[pattern.id] = pattern

        rows = self._db.execute("SELECT pattern_id, data FROM feedback ORDER BY id").fetchall()
        for pattern_id, data in rows:
            self._feedback.setdefault(pattern_id, []).append(
                FeedbackRecord.from_dict(json.loads(data))
            )

        rows = self._db.execute(
            "SELECT pattern_id, excluded_examples, confidence_threshold FROM refinements"
        ).fetchall()
        for pattern_id, excluded, threshold in rows:
            self._excluded[pattern_id] = json.loads(excluded)
            self._thresholds[pattern_id] = threshold

    def _persist_pattern(self, pattern: PatternDefinition) -> None:
        self._db.execute(
            "INSERT OR REPLACE INTO patterns (id, data) VALUES (?, ?)",
            (pattern.id, json.dumps(pattern.to_dict(), ensure_ascii=False)),
        )
        self._db.commit()

    def _persist_feedback(self, record: FeedbackRecord) -> None:
        self._db.execute(
            "INSERT INTO feedback (pattern_id, data) VALUES (?, ?)",
            (record.pattern_id, json.dumps(record.to_dict(), ensure_ascii=False)),
        )
        self._db.commit()

    def _persist_refinement(self, pattern_id: str) -> None:
        self._db.execute(
            "INSERT OR REPLACE INTO refinements "
            "(pattern_id, excluded_examples, confidence_threshold) VALUES (?, ?, ?)",
            (
                pattern_id,
                json.dumps(self._excluded.get(pattern_id, []), ensure_ascii=False),
                self._thresholds.get(pattern_id, self.default_threshold),
            ),
        )
        self._db.commit()

    def close(self) -> None:
        self._db.close()
