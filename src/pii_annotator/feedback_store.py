"""Pattern store — saved patterns, user feedback, and the refinements it drives.

This is the store the annotation session talks to through a client.  It
keeps everything in memory; ``SqliteFeedbackStore`` adds durability.

Auto-refinement on negative feedback:
  - a text rejected ``auto_refine_threshold`` times for a pattern is added
    to that pattern's excluded examples
  - while precision (positive / total) is below 0.5 the pattern's
    confidence threshold rises by 0.1, up to 0.95
"""

from __future__ import annotations
import re
import uuid
from dataclasses import replace

from .learner import analyze_feedback, suggest_refinements
from .logger import get_logger
from .types import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    FeedbackRecord,
    FeedbackType,
    PatternDefinition,
    RefinedPatternDefinition,
)

logger = get_logger(__name__)

_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)

MAX_CONFIDENCE_THRESHOLD = 0.95


class FeedbackStore:
    """In-memory pattern and feedback store."""

    def __init__(
        self,
        *,
        auto_refine_threshold: int = 2,
        default_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> None:
        self.auto_refine_threshold = auto_refine_threshold
        self.default_threshold = default_threshold
        self._patterns: dict[str, PatternDefinition] = {}
        self._feedback: dict[str, list[FeedbackRecord]] = {}
        self._excluded: dict[str, list[str]] = {}
        self._thresholds: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def save_patterns(self, patterns: list[PatternDefinition]) -> list[PatternDefinition]:
        """Store patterns, issuing ids to the ones not stored yet."""
        saved: list[PatternDefinition] = []
        for pattern in patterns:
            pattern_id = pattern.id if _UUID.fullmatch(pattern.id) else str(uuid.uuid4())
            stored = replace(
                pattern,
                id=pattern_id,
                examples=list(pattern.examples),
                existing_examples=list(pattern.examples),
                regex_patterns=list(pattern.regex_patterns) if pattern.regex_patterns else None,
            )
            self._patterns[pattern_id] = stored
            self._persist_pattern(stored)
            saved.append(stored)
        logger.info("Saved %d pattern(s)", len(saved))
        return saved

    def get_pattern(self, pattern_id: str) -> PatternDefinition | None:
        return self._patterns.get(pattern_id)

    def list_patterns(self) -> list[PatternDefinition]:
        return list(self._patterns.values())

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def submit_feedback(self, record: FeedbackRecord) -> None:
        """Record a verdict and apply any auto-refinement it triggers.

        Raises ValueError for malformed ids and unknown patterns.
        """
        if not _UUID.fullmatch(record.pattern_id):
            raise ValueError(f"Invalid UUID format for pattern ID: {record.pattern_id}")
        if record.pattern_id not in self._patterns:
            raise ValueError(f"Unknown pattern: {record.pattern_id}")
        if not record.matched_text:
            raise ValueError("matchedText is required")

        self._feedback.setdefault(record.pattern_id, []).append(record)
        self._persist_feedback(record)
        logger.info("Feedback submitted for pattern %s: %s %r",
                    record.pattern_id, record.feedback_type.value, record.matched_text)

        if record.feedback_type is FeedbackType.NEGATIVE:
            self._auto_refine(record.pattern_id, record.matched_text)

    def _auto_refine(self, pattern_id: str, matched_text: str) -> None:
        negatives = sum(
            1 for f in self._feedback.get(pattern_id, [])
            if f.feedback_type is FeedbackType.NEGATIVE and f.matched_text == matched_text
        )
        changed = False

        excluded = self._excluded.setdefault(pattern_id, [])
        if negatives >= self.auto_refine_threshold and matched_text not in excluded:
            excluded.append(matched_text)
            changed = True
            logger.info("Auto-refined pattern %s: added %r to exclusions", pattern_id, matched_text)

        threshold = self._thresholds.get(pattern_id, self.default_threshold)
        if self.accuracy(pattern_id)["precision"] < 0.5 and threshold < 0.9:
            self._thresholds[pattern_id] = round(min(threshold + 0.1, MAX_CONFIDENCE_THRESHOLD), 2)
            changed = True
            logger.info("Auto-refined pattern %s: confidence threshold now %.2f",
                        pattern_id, self._thresholds[pattern_id])

        if changed:
            self._persist_refinement(pattern_id)

    def feedback_for(self, pattern_id: str) -> list[FeedbackRecord]:
        return list(self._feedback.get(pattern_id, []))

    def accuracy(self, pattern_id: str) -> dict[str, float | int]:
        feedback = self._feedback.get(pattern_id, [])
        positive = sum(1 for f in feedback if f.feedback_type is FeedbackType.POSITIVE)
        total = len(feedback)
        return {
            "precision": positive / total if total else 1.0,
            "totalFeedback": total,
            "positiveFeedback": positive,
            "negativeFeedback": total - positive,
        }

    # ------------------------------------------------------------------
    # Refinements
    # ------------------------------------------------------------------

    def get_refined(self, pattern_id: str) -> RefinedPatternDefinition | None:
        if pattern_id not in self._patterns:
            return None
        return RefinedPatternDefinition(
            pattern_id=pattern_id,
            excluded_examples=frozenset(self._excluded.get(pattern_id, ())),
            confidence_threshold=self._thresholds.get(pattern_id, self.default_threshold),
        )

    def all_refined(self) -> dict[str, RefinedPatternDefinition]:
        return {pid: self.get_refined(pid) for pid in self._patterns}

    def refinement_report(self, pattern_id: str) -> dict | None:
        """Feedback analysis and refinement suggestions for one pattern."""
        pattern = self._patterns.get(pattern_id)
        if pattern is None:
            return None
        analysis = analyze_feedback(self._feedback.get(pattern_id, []))
        accuracy = self.accuracy(pattern_id)
        return {
            "pattern": {"id": pattern.id, "name": pattern.label, "regex": pattern.regex},
            "accuracy": accuracy["precision"],
            "feedbackCount": accuracy["totalFeedback"],
            "analysis": analysis.to_dict(),
            "suggestions": [s.to_dict() for s in suggest_refinements(pattern, analysis)],
        }

    # ------------------------------------------------------------------
    # Persistence hooks (no-ops in memory)
    # ------------------------------------------------------------------

    def _persist_pattern(self, pattern: PatternDefinition) -> None:
        pass

    def _persist_feedback(self, record: FeedbackRecord) -> None:
        pass

    def _persist_refinement(self, pattern_id: str) -> None:
        pass

    def close(self) -> None:
        pass
