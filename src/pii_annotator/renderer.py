"""Highlight renderer — matched spans to escaped HTML with inline markup.

Usage:
    html = highlight(document, patterns, refined)

Markup is built from the end of the document toward the beginning so the
offsets of spans still to be placed stay valid.  All document text, inside
and outside the markup, is HTML-escaped.  When spans of different patterns
overlap, the span starting earlier wraps the markup it overlaps (nested,
lowest start outermost).
"""

from __future__ import annotations
import html
from collections import deque
from typing import Mapping

from .logger import get_logger
from .matcher import find_matches
from .refinement import apply_refinement
from .types import MatchSpan, PatternDefinition, RefinedPatternDefinition

logger = get_logger(__name__)

HIGHLIGHT_CLASS = "highlight-annotation"
ML_HIGHLIGHT_CLASS = "annotation-highlight"


def escape_html(text: str) -> str:
    """Replace & < > " ' with entities."""
    return html.escape(text, quote=True)


def confidence_percent(confidence: float) -> int:
    return int(confidence * 100 + 0.5)


def _markup(match: MatchSpan, inner: str, css_class: str) -> str:
    pattern = match.pattern
    label = escape_html(pattern.label)
    hint = "Click for feedback" if pattern.is_persisted else "Save pattern to enable feedback"
    title = f"Pattern: {label} ({confidence_percent(match.confidence)}% confidence) - {hint}"
    return (
        f'<span class="{css_class} {escape_html(pattern.color)}"'
        f' title="{title}"'
        f' data-pattern="{label}"'
        f' data-pattern-id="{escape_html(pattern.id)}"'
        f' data-confidence="{match.confidence}">'
        f"{inner}</span>"
    )


def _render(text: str, matches: list[MatchSpan], css_class: str) -> str:
    blocks: deque[tuple[int, str]] = deque()   # (text offset, html) covering text[cursor:]
    cursor = len(text)

    for m in sorted(matches, key=lambda m: m.start, reverse=True):
        if m.end <= cursor:
            if m.end < cursor:
                blocks.appendleft((m.end, escape_html(text[m.end:cursor])))
            blocks.appendleft((m.start, _markup(m, escape_html(m.text), css_class)))
        else:
            # overlaps markup already placed: wrap it
            inner = [escape_html(text[m.start:cursor])]
            while blocks and blocks[0][0] < m.end:
                inner.append(blocks.popleft()[1])
            blocks.appendleft((m.start, _markup(m, "".join(inner), css_class)))
        cursor = min(cursor, m.start)

    return escape_html(text[:cursor]) + "".join(h for _, h in blocks)


def render(
    text: str,
    matches: list[MatchSpan],
    *,
    css_class: str = HIGHLIGHT_CLASS,
) -> str:
    """HTML for the document with every match highlighted.

    Never raises: on an internal error the escaped plain text is returned.
    """
    try:
        return _render(text, matches, css_class)
    except Exception:
        logger.exception("Error building highlighted HTML, falling back to plain text")
        return escape_html(text)


def highlight(
    text: str,
    patterns: list[PatternDefinition],
    refined: Mapping[str, RefinedPatternDefinition] | None = None,
) -> str:
    """Full pass: match, filter through refinements, render."""
    try:
        matches = find_matches(text, patterns)
        if refined:
            matches = apply_refinement(matches, refined)
        return render(text, matches)
    except Exception:
        logger.exception("Error highlighting content, falling back to plain text")
        return escape_html(text)
