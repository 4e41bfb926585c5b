"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PatternType(str, Enum):
    PII = "PII"
    FINANCIAL = "FINANCIAL"
    MEDICAL = "MEDICAL"
    CLASSIFICATION = "CLASSIFICATION"
    CUSTOM = "CUSTOM"


class FeedbackType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


# Id prefixes of patterns that only exist inside a session
PREDEFINED_PREFIX = "pattern-"
CUSTOM_PREFIX = "custom-"

# Confidence per match source
EXACT_CONFIDENCE = 1.0
CASE_INSENSITIVE_CONFIDENCE = 0.9
REGEX_CONFIDENCE = 0.95
ML_DEFAULT_CONFIDENCE = 0.8
DEFAULT_CONFIDENCE_THRESHOLD = 0.7


def is_persisted_id(pattern_id: str) -> bool:
    """True when the id was issued by the pattern store."""
    return not pattern_id.startswith((PREDEFINED_PREFIX, CUSTOM_PREFIX))


@dataclass(slots=True)
class PatternDefinition:
    """A sensitive-data pattern being annotated."""
    id: str
    label: str
    type: PatternType = PatternType.CUSTOM
    color: str = "bg-blue-100 text-blue-900"
    examples: list[str] = field(default_factory=list)
    existing_examples: list[str] = field(default_factory=list)  # from a saved session
    regex: str | None = None                   # primary rule
    regex_patterns: list[str] | None = None    # every learned rule, tried in order
    is_context_clue: bool = False

    @property
    def is_persisted(self) -> bool:
        return is_persisted_id(self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type.value,
            "color": self.color,
            "examples": list(self.examples),
            "existingExamples": list(self.existing_examples),
            "regex": self.regex,
            "regexPatterns": list(self.regex_patterns) if self.regex_patterns is not None else None,
            "isContextClue": self.is_context_clue,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatternDefinition:
        regex_patterns = data.get("regexPatterns")
        return cls(
            id=str(data["id"]),
            label=data["label"],
            type=PatternType(data.get("type", "CUSTOM")),
            color=data.get("color") or "bg-blue-100 text-blue-900",
            examples=list(data.get("examples") or []),
            existing_examples=list(data.get("existingExamples") or []),
            regex=data.get("regex") or None,
            regex_patterns=list(regex_patterns) if regex_patterns else None,
            is_context_clue=bool(data.get("isContextClue", False)),
        )


@dataclass(frozen=True, slots=True)
class RefinedPatternDefinition:
    """Exclusions and threshold learned from feedback for one stored pattern."""
    pattern_id: str
    excluded_examples: frozenset[str] = frozenset()
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.pattern_id,
            "excludedExamples": sorted(self.excluded_examples),
            "confidenceThreshold": self.confidence_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefinedPatternDefinition:
        threshold = data.get("confidenceThreshold")
        return cls(
            pattern_id=str(data.get("id") or data["patternId"]),
            excluded_examples=frozenset(data.get("excludedExamples") or ()),
            confidence_threshold=(
                float(threshold) if threshold is not None else DEFAULT_CONFIDENCE_THRESHOLD
            ),
        )


@dataclass(frozen=True, slots=True)
class MatchSpan:
    """A single highlighted span in a document."""
    start: int
    end: int               # exclusive
    text: str
    pattern: PatternDefinition
    confidence: float      # 0.0–1.0
    source: str            # "regex" | "example" | "example-ci" | "ml"

    def to_dict(self) -> dict[str, Any]:
        return {
            "patternId": self.pattern.id,
            "patternLabel": self.pattern.label,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class LearnedRule:
    """A regex inferred from examples."""
    regex: str
    name: str
    confidence: float
    format: str | None = None


@dataclass(frozen=True, slots=True)
class MLMatch:
    """A match reported by an ML or fuzzy detector."""
    start_index: int
    end_index: int
    value: str
    confidence: float | None = None
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "value": self.value,
            "confidence": self.confidence,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MLMatch:
        confidence = data.get("confidence")
        return cls(
            start_index=int(data["startIndex"]),
            end_index=int(data["endIndex"]),
            value=data["value"],
            confidence=float(confidence) if confidence is not None else None,
            label=data.get("label") or data.get("mlLabel"),
        )


@dataclass(frozen=True, slots=True)
class FeedbackRecord:
    """User verdict on one highlighted match."""
    pattern_id: str
    feedback_type: FeedbackType
    matched_text: str
    original_confidence: float | None = None
    context: str = "annotation"
    data_source_id: str | None = None
    surrounding_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "patternId": self.pattern_id,
            "feedbackType": self.feedback_type.value,
            "context": self.context,
            "matchedText": self.matched_text,
            "originalConfidence": self.original_confidence,
            "dataSourceId": self.data_source_id,
        }
        if self.surrounding_context is not None:
            data["surroundingContext"] = self.surrounding_context
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedbackRecord:
        confidence = data.get("originalConfidence")
        return cls(
            pattern_id=str(data["patternId"]),
            feedback_type=FeedbackType(data["feedbackType"]),
            matched_text=data["matchedText"],
            original_confidence=float(confidence) if confidence is not None else None,
            context=data.get("context") or "annotation",
            data_source_id=data.get("dataSourceId"),
            surrounding_context=data.get("surroundingContext"),
        )


@dataclass(frozen=True, slots=True)
class Notification:
    """User-facing message raised by a session operation."""
    level: str             # "success" | "error" | "info"
    message: str
