"""Span matcher — find every highlighted span for a set of patterns.

Per pattern, in fixed precedence:
  1. primary ``regex``                    confidence 0.95
  2. every entry of ``regex_patterns``    confidence 0.95
  3. each literal example, exact          confidence 1.0
     then case-insensitive                confidence 0.9

Regexes generalize the format so unseen values are caught; literal
examples guarantee that whatever the user tagged is always highlighted.
Spans are deduplicated by (start, end) within one pattern only; spans of
different patterns are never reconciled here.
"""

from __future__ import annotations
import re
from functools import lru_cache
from typing import Iterator

from .logger import get_logger
from .types import (
    CASE_INSENSITIVE_CONFIDENCE,
    EXACT_CONFIDENCE,
    REGEX_CONFIDENCE,
    MatchSpan,
    PatternDefinition,
)

logger = get_logger(__name__)


@lru_cache(maxsize=512)
def compile_rule(regex: str) -> re.Pattern:
    """Compile a learned or stored rule, case-insensitive.  Raises re.error."""
    return re.compile(regex, re.IGNORECASE)


def iter_rule_matches(rule: re.Pattern, text: str) -> Iterator[tuple[int, int]]:
    """Yield (start, end) of successive non-overlapping matches.

    Zero-length matches advance the scan position by one character and
    are not reported.
    """
    pos = 0
    while pos <= len(text):
        m = rule.search(text, pos)
        if m is None:
            return
        start, end = m.span()
        if end == start:
            pos = start + 1
            continue
        yield start, end
        pos = end


def _iter_literal(text: str, example: str) -> Iterator[int]:
    """Every start offset of an exact occurrence, overlapping ones included."""
    idx = text.find(example)
    while idx != -1:
        yield idx
        idx = text.find(example, idx + 1)


def _iter_literal_ci(text: str, example: str) -> Iterator[tuple[int, int]]:
    rule = re.compile(re.escape(example), re.IGNORECASE)
    pos = 0
    while pos <= len(text):
        m = rule.search(text, pos)
        if m is None:
            return
        yield m.span()
        pos = m.start() + 1


def match_pattern(text: str, pattern: PatternDefinition) -> list[MatchSpan]:
    """All non-duplicate spans for one pattern."""
    spans: list[MatchSpan] = []
    seen: set[tuple[int, int]] = set()

    def add(start: int, end: int, confidence: float, source: str) -> None:
        if (start, end) in seen:
            return
        seen.add((start, end))
        spans.append(MatchSpan(
            start=start,
            end=end,
            text=text[start:end],
            pattern=pattern,
            confidence=confidence,
            source=source,
        ))

    # --- Rules: primary first, then every learned variant ---
    rules = ([pattern.regex] if pattern.regex else []) + list(pattern.regex_patterns or [])
    for regex in dict.fromkeys(rules):
        try:
            rule = compile_rule(regex)
        except re.error as err:
            logger.warning("Invalid regex for pattern %r (%s): %s", pattern.label, regex, err)
            continue
        for start, end in iter_rule_matches(rule, text):
            add(start, end, REGEX_CONFIDENCE, "regex")

    # --- Literal examples ---
    for example in pattern.examples:
        if not example.strip():
            continue

        for idx in _iter_literal(text, example):
            add(idx, idx + len(example), EXACT_CONFIDENCE, "example")

        if example != example.lower():
            for start, end in _iter_literal_ci(text, example):
                if text[start:end] == example:
                    continue
                add(start, end, CASE_INSENSITIVE_CONFIDENCE, "example-ci")

    return spans


def find_matches(text: str, patterns: list[PatternDefinition]) -> list[MatchSpan]:
    """Union of every pattern's spans, in pattern order."""
    matches: list[MatchSpan] = []
    for pattern in patterns:
        found = match_pattern(text, pattern)
        if found:
            logger.debug("Pattern %r: %d span(s)", pattern.label, len(found))
        matches.extend(found)
    return matches
