"""ML and fuzzy detection — the explicit, on-demand detection pass.

A detector is any async callable ``(text, pattern) -> list[MLMatch]``:

    detector = CompositeDetector([FuzzyDetector(), PresidioDetector()])
    matches = await detector(text, pattern)

Presidio (spaCy under the hood) finds named entities and keeps the ones
relevant to the pattern; the fuzzy detector finds near-copies of the
pattern's examples.  ``PatternStoreClient.test_pattern`` is a remote
detector with the same signature.
"""

from __future__ import annotations
import asyncio
import re
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

from rapidfuzz import fuzz

from .logger import get_logger
from .types import ML_DEFAULT_CONFIDENCE, MatchSpan, MLMatch, PatternDefinition, PatternType

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

logger = get_logger(__name__)

Detector = Callable[[str, PatternDefinition], Awaitable[list[MLMatch]]]

# Lazy singleton: spaCy is only loaded on first use
_engine: AnalyzerEngine | None = None
_engine_lang: str = ""


def _get_engine(language: str = "en") -> AnalyzerEngine:
    """Lazy-init the Presidio analyzer engine."""
    global _engine, _engine_lang
    if _engine is None or _engine_lang != language:
        from presidio_analyzer import AnalyzerEngine
        from presidio_analyzer.nlp_engine import NlpEngineProvider

        provider = NlpEngineProvider(nlp_configuration={
            "nlp_engine_name": "spacy",
            "models": [{"lang_code": language, "model_name": f"{language}_core_web_sm"}],
        })
        nlp_engine = provider.create_engine()
        _engine = AnalyzerEngine(nlp_engine=nlp_engine, supported_languages=[language])
        _engine_lang = language
    return _engine


# Presidio entity → pattern types it may stand for
ENTITY_PATTERN_TYPES: dict[str, tuple[PatternType, ...]] = {
    "PERSON": (PatternType.PII,),
    "ORGANIZATION": (PatternType.PII,),
    "EMAIL_ADDRESS": (PatternType.PII,),
    "PHONE_NUMBER": (PatternType.PII,),
    "US_SSN": (PatternType.PII,),
    "LOCATION": (PatternType.PII,),
    "US_DRIVER_LICENSE": (PatternType.PII,),
    "US_PASSPORT": (PatternType.PII,),
    "CREDIT_CARD": (PatternType.FINANCIAL,),
    "IBAN_CODE": (PatternType.FINANCIAL,),
    "US_BANK_NUMBER": (PatternType.FINANCIAL,),
    "DATE_TIME": (PatternType.PII, PatternType.MEDICAL),
    "MEDICAL_LICENSE": (PatternType.MEDICAL,),
}


def is_relevant(entity_type: str, score: float, pattern: PatternDefinition) -> bool:
    """Whether a detected entity can be an instance of the pattern."""
    if "address" in pattern.label.lower() and "email" not in pattern.label.lower():
        # addresses: only confident location entities
        return entity_type == "LOCATION" and score > 0.8
    if pattern.type in ENTITY_PATTERN_TYPES.get(entity_type, ()):
        return True
    return pattern.label.lower().replace(" ", "_") == entity_type.lower()


class PresidioDetector:
    """Named-entity detection through Presidio."""

    def __init__(self, *, language: str = "en", score_threshold: float = 0.35) -> None:
        self.language = language
        self.score_threshold = score_threshold

    def scan(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        engine = _get_engine(self.language)
        results = engine.analyze(
            text=text,
            language=self.language,
            score_threshold=self.score_threshold,
        )
        matches = [
            MLMatch(
                start_index=r.start,
                end_index=r.end,
                value=text[r.start:r.end],
                confidence=r.score,
                label=r.entity_type,
            )
            for r in results
            if is_relevant(r.entity_type, r.score, pattern)
        ]
        logger.debug("Presidio: %d of %d entities relevant to %r",
                     len(matches), len(results), pattern.label)
        return sorted(matches, key=lambda m: m.start_index)

    async def __call__(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        # spaCy is CPU-bound; keep the event loop free
        return await asyncio.to_thread(self.scan, text, pattern)


_TOKEN = re.compile(r"\S+")


class FuzzyDetector:
    """Near-copies of the pattern's examples (typos, reformatting)."""

    def __init__(self, *, threshold: float = 0.8) -> None:
        self.threshold = threshold

    def scan(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        tokens = [(m.start(), m.end()) for m in _TOKEN.finditer(text)]
        best: dict[tuple[int, int], float] = {}

        for example in pattern.examples:
            example = example.strip()
            if not example:
                continue
            width = len(example.split())
            for i in range(len(tokens) - width + 1):
                start, end = tokens[i][0], tokens[i + width - 1][1]
                candidate = _strip_punct(text, start, end)
                if candidate is None:
                    continue
                start, end = candidate
                score = fuzz.ratio(example.lower(), text[start:end].lower()) / 100.0
                if score >= self.threshold and score > best.get((start, end), 0.0):
                    best[(start, end)] = score

        return [
            MLMatch(start_index=s, end_index=e, value=text[s:e], confidence=round(score, 3), label="fuzzy")
            for (s, e), score in sorted(best.items())
        ]

    async def __call__(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        return self.scan(text, pattern)


def _strip_punct(text: str, start: int, end: int) -> tuple[int, int] | None:
    """Trim sentence punctuation hugging a token window."""
    while start < end and text[start] in "([{\"'":
        start += 1
    while end > start and text[end - 1] in ".,;:!?)]}\"'":
        end -= 1
    return (start, end) if end > start else None


class CompositeDetector:
    """Runs several detectors and concatenates their results."""

    def __init__(self, detectors: Iterable[Detector]) -> None:
        self.detectors = list(detectors)

    async def __call__(self, text: str, pattern: PatternDefinition) -> list[MLMatch]:
        out: list[MLMatch] = []
        for detector in self.detectors:
            out.extend(await detector(text, pattern))
        return out


def merge_ml_matches(
    text: str,
    results: Iterable[tuple[PatternDefinition, list[MLMatch]]],
) -> list[MatchSpan]:
    """Accept matches in pass order, dropping any that overlap an accepted span."""
    accepted: list[MatchSpan] = []
    for pattern, matches in results:
        for m in matches:
            if m.end_index <= m.start_index or m.end_index > len(text):
                continue
            if any(m.start_index < a.end and m.end_index > a.start for a in accepted):
                continue
            accepted.append(MatchSpan(
                start=m.start_index,
                end=m.end_index,
                text=text[m.start_index:m.end_index],
                pattern=pattern,
                confidence=m.confidence if m.confidence is not None else ML_DEFAULT_CONFIDENCE,
                source="ml",
            ))
    return accepted
