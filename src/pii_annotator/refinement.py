"""Drops matches users rejected or that fall below a pattern's threshold."""

from __future__ import annotations
from typing import Mapping

from .types import MatchSpan, RefinedPatternDefinition


def apply_refinement(
    matches: list[MatchSpan],
    refined: Mapping[str, RefinedPatternDefinition] | RefinedPatternDefinition,
) -> list[MatchSpan]:
    """Filter matches through per-pattern exclusions and confidence thresholds.

    Exclusion is by exact text, so a rejected value disappears everywhere it
    recurs.  Patterns with no refinement data are passed through untouched.
    """
    if isinstance(refined, RefinedPatternDefinition):
        refined = {refined.pattern_id: refined}

    kept: list[MatchSpan] = []
    for m in matches:
        rp = refined.get(m.pattern.id)
        if rp is not None:
            if m.text in rp.excluded_examples:
                continue
            if m.confidence < rp.confidence_threshold:
                continue
        kept.append(m)
    return kept
