"""Annotation session — one document set, one working pattern list.

The session owns the pattern list and the per-document highlight cache.
Every mutating operation ends by calling ``recompute_highlights()`` so the
highlighted view always reflects the current patterns, document and
refinement data:

    session = AnnotationSession(documents, store=LocalStoreClient(store))
    session.select_pattern(ssn.id)
    session.select_text("123-45-6789")
    session.add_example()
    session.highlighted_html          # escaped HTML with highlight markup

A resumed session loads the store's refinement data with ``await
session.load()``.  Only loading, saving, feedback and ML detection await
the store; they report failures as notifications and leave existing state
untouched.
"""

from __future__ import annotations
import time
from dataclasses import dataclass, replace
from typing import Any, Iterable, Protocol

from .catalog import predefined_patterns
from .errors import FeedbackNotAllowed, PatternStoreError
from .learner import relearn
from .logger import get_logger
from .matcher import find_matches
from .ml_layer import Detector, merge_ml_matches
from .refinement import apply_refinement
from .renderer import ML_HIGHLIGHT_CLASS, highlight, render
from .types import (
    CUSTOM_PREFIX,
    FeedbackRecord,
    FeedbackType,
    MatchSpan,
    Notification,
    PatternDefinition,
    PatternType,
    RefinedPatternDefinition,
)

logger = get_logger(__name__)

SESSION_PREFIX = "session-"
CUSTOM_COLOR = "bg-indigo-100 text-indigo-900"


class StoreClient(Protocol):
    async def submit_feedback(self, record: FeedbackRecord) -> None: ...
    async def fetch_refined(self) -> dict[str, RefinedPatternDefinition]: ...
    async def save_patterns(self, patterns: Iterable[PatternDefinition]) -> list[PatternDefinition]: ...


@dataclass(slots=True)
class Document:
    id: str
    name: str
    content: str


@dataclass(frozen=True, slots=True)
class FeedbackPrompt:
    """A clicked highlight awaiting a positive/negative verdict."""
    pattern_id: str
    pattern_label: str
    matched_text: str
    confidence: float


def merge_initial_patterns(
    predefined: list[PatternDefinition],
    saved: Iterable[PatternDefinition],
) -> list[PatternDefinition]:
    """Fold a saved session's patterns into the predefined catalog.

    A saved pattern fills the slot with the same id, else the slot with the
    same label and type, taking over its id, examples and rules; the slot
    must hold the same type.  Anything else is prepended as a new entry.
    One that hit a slot of another type, or whose label names a predefined
    slot, gets a ``session-`` id.  Duplicate labels keep their first
    occurrence.
    """
    merged = list(predefined)
    added: list[PatternDefinition] = []

    for pattern in saved:
        idx = next((i for i, p in enumerate(merged) if p.id == pattern.id), None)
        if idx is None:
            idx = next(
                (i for i, p in enumerate(merged)
                 if p.label == pattern.label and p.type == pattern.type),
                None,
            )

        if idx is not None and merged[idx].type == pattern.type:
            merged[idx] = replace(
                merged[idx],
                id=pattern.id,
                examples=list(pattern.examples),
                existing_examples=list(pattern.examples),
                regex=pattern.regex,
                regex_patterns=list(pattern.regex_patterns) if pattern.regex_patterns else None,
                is_context_clue=pattern.is_context_clue,
            )
            continue

        collides = idx is not None or any(p.label == pattern.label for p in predefined)
        added.append(replace(
            pattern,
            id=f"{SESSION_PREFIX}{pattern.id}" if collides else pattern.id,
            examples=list(pattern.examples),
            existing_examples=list(pattern.examples),
            regex_patterns=list(pattern.regex_patterns) if pattern.regex_patterns else None,
        ))

    result: list[PatternDefinition] = []
    seen: set[str] = set()
    for pattern in added + merged:
        if pattern.label in seen:
            continue
        seen.add(pattern.label)
        if pattern.examples and not pattern.regex:
            pattern = relearn(pattern)
        result.append(pattern)
    return result


class AnnotationSession:
    """Interactive annotation over a set of documents."""

    def __init__(
        self,
        documents: Iterable[Document],
        *,
        store: StoreClient | None = None,
        detector: Detector | None = None,
        initial_patterns: Iterable[PatternDefinition] | None = None,
    ) -> None:
        self.documents = list(documents)
        self.store = store
        self.detector = detector
        self.patterns = merge_initial_patterns(predefined_patterns(), initial_patterns or [])

        self.current_index = 0
        self.selected_text = ""
        self.selected_pattern_id: str | None = None
        self.pending_feedback: FeedbackPrompt | None = None

        self.refined: dict[str, RefinedPatternDefinition] = {}
        self.highlighted: dict[int, str] = {}
        self.ml_highlighted: dict[int, str] = {}
        self.show_ml = False
        self.is_running = False
        self.notifications: list[Notification] = []
        self._refresh_generation = 0

        self.recompute_highlights()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def current_document(self) -> Document | None:
        if 0 <= self.current_index < len(self.documents):
            return self.documents[self.current_index]
        return None

    @property
    def highlighted_html(self) -> str:
        return self.highlighted.get(self.current_index, "")

    @property
    def ml_highlighted_html(self) -> str | None:
        return self.ml_highlighted.get(self.current_index)

    def get_pattern(self, pattern_id: str) -> PatternDefinition | None:
        return next((p for p in self.patterns if p.id == pattern_id), None)

    def _index_of(self, pattern_id: str) -> int | None:
        return next((i for i, p in enumerate(self.patterns) if p.id == pattern_id), None)

    def current_matches(self) -> list[MatchSpan]:
        """Spans behind the current highlighted view."""
        doc = self.current_document
        if doc is None:
            return []
        return apply_refinement(find_matches(doc.content, self.patterns), self.refined)

    def _notify(self, level: str, message: str) -> None:
        self.notifications.append(Notification(level, message))

    # ------------------------------------------------------------------
    # Highlighting
    # ------------------------------------------------------------------

    def recompute_highlights(self) -> None:
        """Rebuild the highlighted HTML of the current document."""
        self.highlighted.clear()
        doc = self.current_document
        if doc is None:
            return
        self.highlighted[self.current_index] = highlight(doc.content, self.patterns, self.refined)

    # ------------------------------------------------------------------
    # Pattern editing
    # ------------------------------------------------------------------

    def select_text(self, text: str) -> None:
        self.selected_text = text

    def select_pattern(self, pattern_id: str | None) -> None:
        self.selected_pattern_id = pattern_id

    def add_example(self, text: str | None = None, pattern_id: str | None = None) -> bool:
        """Tag the selected text as an example of the selected pattern."""
        text = (self.selected_text if text is None else text).strip()
        pattern_id = pattern_id or self.selected_pattern_id
        if not text or pattern_id is None:
            return False

        idx = self._index_of(pattern_id)
        if idx is None:
            logger.warning("add_example: unknown pattern %s", pattern_id)
            return False

        pattern = self.patterns[idx]
        self.selected_text = ""
        if text in pattern.examples:
            return False

        self.patterns[idx] = relearn(replace(pattern, examples=[*pattern.examples, text]))
        self.recompute_highlights()
        return True

    def remove_example(self, pattern_id: str, index: int) -> bool:
        idx = self._index_of(pattern_id)
        if idx is None:
            return False
        pattern = self.patterns[idx]
        if not 0 <= index < len(pattern.examples):
            return False

        examples = pattern.examples[:index] + pattern.examples[index + 1:]
        self.patterns[idx] = relearn(replace(pattern, examples=examples))
        self.recompute_highlights()
        return True

    def add_custom_pattern(
        self,
        label: str,
        *,
        pattern_type: PatternType = PatternType.CUSTOM,
        color: str = CUSTOM_COLOR,
    ) -> PatternDefinition | None:
        label = label.strip()
        if not label:
            return None

        base = f"{CUSTOM_PREFIX}{int(time.time() * 1000)}"
        pattern_id, n = base, 1
        while self._index_of(pattern_id) is not None:
            pattern_id = f"{base}-{n}"
            n += 1

        pattern = PatternDefinition(id=pattern_id, label=label, type=pattern_type, color=color)
        self.patterns.insert(0, pattern)
        self.recompute_highlights()
        return pattern

    def remove_pattern(self, pattern_id: str) -> bool:
        idx = self._index_of(pattern_id)
        if idx is None:
            return False
        del self.patterns[idx]
        if self.selected_pattern_id == pattern_id:
            self.selected_pattern_id = None
        if self.pending_feedback is not None and self.pending_feedback.pattern_id == pattern_id:
            self.pending_feedback = None
        self.recompute_highlights()
        return True

    def finalize(self) -> list[PatternDefinition]:
        """Patterns with at least one example, for downstream use."""
        return [replace(p, examples=list(p.examples)) for p in self.patterns if p.examples]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """Fetch refinement data when the session holds stored patterns."""
        if not any(p.is_persisted for p in self.patterns):
            return True
        return await self.refresh_refinements()

    async def save(self) -> bool:
        """Persist the finalized patterns and adopt the ids the store issued."""
        if self.store is None:
            self._notify("error", "No pattern store configured")
            return False
        final = self.finalize()
        if not final:
            self._notify("info", "No patterns with examples to save")
            return False

        try:
            saved = await self.store.save_patterns(final)
        except PatternStoreError as e:
            logger.error("Error saving patterns: %s", e)
            self._notify("error", f"Failed to save patterns: {e}")
            return False

        for old, new in zip(final, saved):
            idx = self._index_of(old.id)
            if idx is None:
                continue
            self.patterns[idx] = replace(
                self.patterns[idx],
                id=new.id,
                existing_examples=list(new.examples),
            )
            if self.selected_pattern_id == old.id:
                self.selected_pattern_id = new.id
        logger.info("Saved %d pattern(s)", len(saved))
        self.recompute_highlights()
        self._notify("success", f"Saved {len(saved)} pattern(s)")
        await self.refresh_refinements()
        return True

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def select_document(self, index: int) -> bool:
        if not 0 <= index < len(self.documents):
            return False
        self.current_index = index
        self.show_ml = False
        self.pending_feedback = None
        self.recompute_highlights()
        return True

    def navigate(self, key: str, input_focused: bool = False) -> bool:
        """Arrow-key document navigation; ignored while an input has focus."""
        if input_focused:
            return False
        if key == "ArrowLeft":
            return self.select_document(self.current_index - 1)
        if key == "ArrowRight":
            return self.select_document(self.current_index + 1)
        return False

    def toggle_ml_view(self, show: bool | None = None) -> None:
        self.show_ml = (not self.show_ml) if show is None else show

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def can_give_feedback(self, pattern: PatternDefinition) -> bool:
        return pattern.is_persisted and not pattern.is_context_clue

    def click_highlight(
        self,
        pattern_id: str,
        matched_text: str,
        confidence: float,
    ) -> FeedbackPrompt | None:
        """Open a feedback prompt for a clicked highlight, if allowed."""
        pattern = self.get_pattern(pattern_id)
        if pattern is None or not self.can_give_feedback(pattern):
            if pattern is not None and not pattern.is_persisted:
                self._notify("info", "Save pattern to enable feedback")
            return None
        self.pending_feedback = FeedbackPrompt(
            pattern_id=pattern.id,
            pattern_label=pattern.label,
            matched_text=matched_text,
            confidence=confidence,
        )
        return self.pending_feedback

    def cancel_feedback(self) -> None:
        self.pending_feedback = None

    async def submit_feedback(self, feedback_type: FeedbackType | str) -> bool:
        """Send the verdict for the open prompt, then refresh refinements."""
        prompt = self.pending_feedback
        if prompt is None:
            raise FeedbackNotAllowed("no highlight selected for feedback")
        pattern = self.get_pattern(prompt.pattern_id)
        if pattern is None or not self.can_give_feedback(pattern):
            raise FeedbackNotAllowed(f"pattern {prompt.pattern_id} cannot receive feedback")
        if self.store is None:
            self._notify("error", "No pattern store configured")
            return False

        doc = self.current_document
        record = FeedbackRecord(
            pattern_id=prompt.pattern_id,
            feedback_type=FeedbackType(feedback_type),
            matched_text=prompt.matched_text,
            original_confidence=prompt.confidence,
            data_source_id=doc.id if doc is not None else None,
        )
        try:
            await self.store.submit_feedback(record)
        except PatternStoreError as e:
            logger.error("Error submitting feedback for pattern %s: %s", record.pattern_id, e)
            self._notify("error", f"Failed to submit feedback: {e}")
            return False

        self.pending_feedback = None
        verdict = "confirmed" if record.feedback_type is FeedbackType.POSITIVE else "rejected"
        self._notify("success", f'Marked "{record.matched_text}" as {verdict} for {prompt.pattern_label}')
        await self.refresh_refinements()
        return True

    async def refresh_refinements(self) -> bool:
        """Refetch refinement data; only the latest request may apply."""
        if self.store is None:
            return True
        self._refresh_generation += 1
        generation = self._refresh_generation
        try:
            refined = await self.store.fetch_refined()
        except PatternStoreError as e:
            logger.error("Error fetching refined patterns: %s", e)
            self._notify("error", f"Failed to load pattern refinements: {e}")
            return False

        if generation != self._refresh_generation:
            logger.debug("Discarding stale refinement response (%d < %d)",
                         generation, self._refresh_generation)
            return False
        self.refined = dict(refined)
        self.recompute_highlights()
        return True

    # ------------------------------------------------------------------
    # ML detection
    # ------------------------------------------------------------------

    async def run_ml_detection(self) -> bool:
        """Explicit ML/fuzzy pass over the current document; one at a time."""
        if self.is_running:
            logger.debug("ML detection already running, ignoring request")
            return False
        if self.detector is None:
            self._notify("error", "No ML detector configured")
            return False
        doc = self.current_document
        if doc is None:
            return False

        index = self.current_index
        self.is_running = True
        try:
            candidates = [p for p in self.patterns if p.examples]
            results: list[tuple[PatternDefinition, Any]] = []
            for pattern in candidates:
                try:
                    results.append((pattern, await self.detector(doc.content, pattern)))
                except Exception as e:
                    logger.exception("ML detection failed for pattern %s", pattern.label)
                    self._notify("error", f"ML detection failed for {pattern.label}: {e}")
            spans = merge_ml_matches(doc.content, results)
        finally:
            self.is_running = False

        if candidates and not results:
            return False
        self.ml_highlighted[index] = render(doc.content, spans, css_class=ML_HIGHLIGHT_CLASS)
        if index == self.current_index:
            self.show_ml = True
        self._notify("success", f"ML detection found {len(spans)} match(es)")
        return True
