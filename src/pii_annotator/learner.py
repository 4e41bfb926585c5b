r"""Pattern learner — infer regexes from tagged examples.

Learning is always done from the full example list of a pattern, never
incrementally, so the rules reflect exactly the examples currently tagged:

    rules = learn(["123-45-6789"])
    rules[0].regex        # r"\b\d{3}-\d{2}-\d{4}\b"  (primary rule)

Order of attempts:
  1. Known format templates (dates, SSNs, phones, e-mails, ...)
  2. Character-class structure of the examples ("NNN-NN-NNNN")
  3. Per-format sub-groups of the examples with at least two members

Every returned rule compiles, and every example is matched in full by at
least one rule; examples no rule covers get an escaped-literal rule.
"""

from __future__ import annotations
import re
import string
from dataclasses import dataclass, field, replace
from typing import Iterable

from .errors import LearningError
from .logger import get_logger
from .templates import find_matching_template, generate_template_patterns
from .types import FeedbackRecord, FeedbackType, LearnedRule, PatternDefinition

logger = get_logger(__name__)

_WORD_CHARS = frozenset(string.ascii_letters + string.digits + "_")

# Format groups used to learn extra rule variants from mixed example sets
_FORMAT_GROUPS: list[tuple[str, re.Pattern]] = [
    ("SSN", re.compile(r"\d{3}-\d{2}-\d{4}")),
    ("Phone", re.compile(r"\(\d{3}\)\s?\d{3}-\d{4}")),
    ("Email", re.compile(r"[\w._%+-]+@[\w.-]+\.[A-Za-z]{2,}")),
    ("Credit Card", re.compile(r"\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}")),
]

_KNOWN_FORMATS = {
    "NNN-NN-NNNN": "SSN",
    "(NNN) NNN-NNNN": "Phone",
    "NNNN NNNN NNNN NNNN": "Credit Card",
}


def learn(examples: list[str]) -> list[LearnedRule]:
    """Learn every rule variant for a pattern; the first one is primary."""
    if not examples:
        raise ValueError("learn() needs at least one example")

    template = find_matching_template(examples)
    if template is not None:
        rules = [
            LearnedRule(
                regex=regex,
                name=template.name if idx == 0 else f"{template.name} (variant {idx + 1})",
                confidence=0.95,
                format=template.name,
            )
            for idx, regex in enumerate(template.generate(examples))
        ]
        return _ensure_coverage(rules, examples)

    rules: list[LearnedRule] = []
    single = learn_single(examples)
    if single is not None:
        rules.append(single)

    for fmt, group in _group_by_format(examples).items():
        if len(group) < 2:
            continue
        rule = learn_single(group)
        if rule is not None and all(r.regex != rule.regex for r in rules):
            rules.append(replace(rule, format=fmt))

    return _ensure_coverage(rules, examples)


def learn_single(examples: list[str]) -> LearnedRule | None:
    """Best single rule for the examples."""
    if not examples:
        return None

    template_patterns = generate_template_patterns(examples)
    if template_patterns:
        template = find_matching_template(examples)
        name = template.name if template else "Template"
        return LearnedRule(regex=template_patterns[0], name=name, confidence=0.95, format=name)

    structures = {structure_of(ex) for ex in examples}
    if len(structures) == 1:
        return _strict_rule(examples[0], structures.pop())
    return _flexible_rule(examples)


def structure_of(text: str) -> str:
    """Character-class skeleton: letters → W, digits → N, punctuation → S.

    Whitespace and hyphens are kept as-is, e.g. "123-45-6789" → "NNN-NN-NNNN".
    """
    out = []
    for ch in text:
        if ch in string.ascii_letters:
            out.append("W")
        elif ch in string.digits:
            out.append("N")
        elif ch.isspace() or ch == "-":
            out.append(ch)
        else:
            out.append("S")
    return "".join(out)


def _strict_rule(example: str, structure: str) -> LearnedRule:
    is_date = bool(re.search(r"N{4}-N{2}-N{2}|N{2}-N{2}-N{4}", structure))
    parts: list[str] = []
    for run in re.finditer(r"W+|N+|.", structure, re.DOTALL):
        token = run.group()
        if token[0] == "W":
            parts.append(f"[a-zA-Z]{{{len(token)}}}")
        elif token[0] == "N":
            # dates: let month and day drop their leading zero
            width = "1,2" if is_date and len(token) == 2 else str(len(token))
            parts.append(f"\\d{{{width}}}")
        elif token == "S":
            parts.append(r"\W")
        elif token == "-":
            parts.append(r"\-")
        else:
            parts.append(r"\s")

    return LearnedRule(
        regex=_bounded(example, "".join(parts)),
        name=structure,
        confidence=0.9,
        format=_KNOWN_FORMATS.get(structure) or ("Email" if "@" in example else None),
    )


def _flexible_rule(examples: list[str]) -> LearnedRule:
    if all(ex.isascii() and ex.isdigit() for ex in examples):
        lengths = [len(ex) for ex in examples]
        regex = rf"\b\d{{{min(lengths)},{max(lengths)}}}\b"
        name = "numeric"
    elif all(re.fullmatch(r"[a-zA-Z]+", ex) for ex in examples):
        regex = r"\b[a-zA-Z]+\b"
        name = "alphabetic"
    elif all(re.fullmatch(r"[a-zA-Z0-9]+", ex) for ex in examples):
        regex = r"\b[a-zA-Z0-9]+\b"
        name = "alphanumeric"
    else:
        return _literal_rule(examples, name="mixed")
    return LearnedRule(regex=regex, name=name, confidence=0.7)


def _literal_rule(examples: Iterable[str], *, name: str = "literal") -> LearnedRule:
    """Alternation matching exactly the given strings."""
    unique = sorted({ex for ex in examples if ex}, key=len, reverse=True)
    alternatives = "|".join(_bounded(ex, re.escape(ex)) for ex in unique)
    return LearnedRule(regex=f"(?:{alternatives})", name=name, confidence=0.7)


def _bounded(example: str, body: str) -> str:
    """Add word boundaries on the sides where the example has a word character."""
    head = r"\b" if example[:1] in _WORD_CHARS else ""
    tail = r"\b" if example[-1:] in _WORD_CHARS else ""
    return f"{head}{body}{tail}"


def _group_by_format(examples: list[str]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {}
    for ex in examples:
        fmt = next((name for name, rx in _FORMAT_GROUPS if rx.fullmatch(ex)), "Other")
        groups.setdefault(fmt, []).append(ex)
    return groups


def covers(regex: str | re.Pattern, example: str) -> bool:
    """True when the rule, scanning the example alone, matches all of it."""
    compiled = regex if isinstance(regex, re.Pattern) else re.compile(regex, re.IGNORECASE)
    m = compiled.search(example)
    return m is not None and m.span() == (0, len(example))


def _ensure_coverage(rules: list[LearnedRule], examples: list[str]) -> list[LearnedRule]:
    compiled: list[tuple[LearnedRule, re.Pattern]] = []
    for rule in rules:
        try:
            compiled.append((rule, re.compile(rule.regex, re.IGNORECASE)))
        except re.error as err:
            logger.warning("Dropping learned rule %r: %s", rule.regex, err)

    uncovered = [
        ex for ex in examples
        if ex and not any(covers(rx, ex) for _, rx in compiled)
    ]
    kept = [rule for rule, _ in compiled]
    if uncovered:
        logger.debug("Adding literal rule for %d uncovered example(s)", len(uncovered))
        kept.append(_literal_rule(uncovered))
    if not kept:
        raise LearningError("no usable rule could be learned from the examples")
    return kept


def relearn(pattern: PatternDefinition) -> PatternDefinition:
    """Re-derive a pattern's rules from all of its current examples.

    No examples left clears both rule fields.  If learning fails the
    previous rules are kept and the failure is logged.
    """
    if not pattern.examples:
        return replace(pattern, regex=None, regex_patterns=None)

    try:
        rules = learn(pattern.examples)
    except Exception:
        logger.exception("Error learning pattern %r from %d example(s)",
                         pattern.label, len(pattern.examples))
        return pattern

    return replace(pattern, regex=rules[0].regex, regex_patterns=[r.regex for r in rules])


# ----------------------------------------------------------------------
# Feedback analysis
# ----------------------------------------------------------------------

_CONTEXT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "pii": ("personal", "private", "confidential", "identification"),
    "ssn": ("ssn", "social security", "taxpayer", "tin", "social"),
    "social security number": ("ssn", "social security", "taxpayer", "tin", "social"),
    "email": ("email", "e-mail", "contact", "address", "@"),
    "email address": ("email", "e-mail", "contact", "address", "@"),
    "phone": ("phone", "tel", "telephone", "mobile", "cell", "contact"),
    "phone number": ("phone", "tel", "telephone", "mobile", "cell", "contact"),
    "address": ("address", "street", "city", "state", "zip", "postal"),
    "credit_card": ("card", "credit", "payment", "visa", "mastercard", "amex"),
    "credit card": ("card", "credit", "payment", "visa", "mastercard", "amex"),
    "date of birth": ("birth", "dob", "birthdate", "born", "birthday"),
    "medical": ("patient", "medical", "health", "diagnosis", "treatment"),
    "financial": ("account", "bank", "financial", "balance", "transaction"),
}

_SSN_CONTEXT = re.compile(r"\b(?:ssn|social|security|tax|tin)\b")


@dataclass(slots=True)
class FeedbackAnalysis:
    issues: list[str] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    false_positives: int = 0

    def to_dict(self) -> dict:
        return {"issues": list(self.issues), "patterns": dict(self.counts)}


@dataclass(frozen=True, slots=True)
class RefinementSuggestion:
    type: str              # "regex" | "context" | "validation" | "exclusion"
    description: str
    confidence: float
    implementation: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "description": self.description,
            "confidence": self.confidence,
            "implementation": dict(self.implementation),
        }


def analyze_feedback(feedback: Iterable[FeedbackRecord]) -> FeedbackAnalysis:
    """Classify the texts users rejected to find what the pattern over-matches."""
    counts: dict[str, int] = {}

    def bump(key: str) -> None:
        counts[key] = counts.get(key, 0) + 1

    negatives = [f for f in feedback if f.feedback_type is FeedbackType.NEGATIVE]
    for fp in negatives:
        text = fp.matched_text
        if re.fullmatch(r"\d+", text):
            bump("all_digits")
        if re.fullmatch(r"(\d)\1+", text):
            bump("repeated_digits")
        if "-" not in text and " " not in text:
            bump("no_separators")
        if text.startswith("0"):
            bump("leading_zeros")
        if not _SSN_CONTEXT.search((fp.surrounding_context or "").lower()):
            bump("no_context_keywords")

    total = len(negatives)
    issues = []
    if counts.get("all_digits", 0) > total * 0.5:
        issues.append("Pattern matching numbers without proper formatting")
    if counts.get("repeated_digits", 0) > total * 0.3:
        issues.append("Pattern matching test/invalid data (repeated digits)")
    if counts.get("no_separators", 0) > total * 0.6:
        issues.append("Pattern should require separators (dashes, spaces, etc.)")
    if counts.get("no_context_keywords", 0) > total * 0.7:
        issues.append("Pattern matching without proper context")

    return FeedbackAnalysis(issues=issues, counts=counts, false_positives=total)


def suggest_refinements(
    pattern: PatternDefinition,
    analysis: FeedbackAnalysis,
) -> list[RefinementSuggestion]:
    suggestions: list[RefinementSuggestion] = []

    if analysis.counts.get("no_separators", 0) > 3:
        suggestions.append(RefinementSuggestion(
            "regex", "Require proper formatting with separators", 0.9,
            {"regex": _separator_regex(pattern.examples)},
        ))
    if analysis.counts.get("no_context_keywords", 0) > 5:
        suggestions.append(RefinementSuggestion(
            "context", "Require context keywords near matches", 0.85,
            {"contextKeywords": list(suggest_context_keywords(pattern.examples, pattern.type.value))},
        ))
    if analysis.counts.get("repeated_digits", 0) > 2:
        suggestions.append(RefinementSuggestion(
            "validation", "Add validation to exclude test/invalid data", 0.95,
            {
                "validationRule": "exclude_repeated_digits",
                "excludePatterns": [r"^(\d)\1+$", r"^123456789$", r"^000000000$"],
            },
        ))
    return suggestions


def suggest_context_keywords(examples: list[str], label: str) -> tuple[str, ...]:
    template = find_matching_template(examples) if examples else None
    if template is not None and template.context_keywords:
        return template.context_keywords
    return _CONTEXT_KEYWORDS.get(label.lower(), _CONTEXT_KEYWORDS["pii"])


_SEPARATED_FORMATS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\d{3}-\d{2}-\d{4}"), r"\d{3}-\d{2}-\d{4}"),
    (re.compile(r"\d{3}\s\d{2}\s\d{4}"), r"\d{3}\s\d{2}\s\d{4}"),
    (re.compile(r"\(\d{3}\)\s?\d{3}-\d{4}"), r"\(\d{3}\)\s\d{3}-\d{4}"),
    (re.compile(r"\d{4}\s\d{4}\s\d{4}\s\d{4}"), r"\d{4}\s\d{4}\s\d{4}\s\d{4}"),
]


def _separator_regex(examples: list[str]) -> str:
    formats: list[str] = []
    for ex in examples:
        for shape, regex in _SEPARATED_FORMATS:
            if shape.fullmatch(ex) and regex not in formats:
                formats.append(regex)
                break
    if len(formats) == 1:
        return rf"\b{formats[0]}\b"
    if formats:
        return r"\b(?:" + "|".join(f"({f})" for f in formats) + r")\b"
    return r"\b\d{3,4}[-\s]\d{2,4}[-\s]\d{4}\b"
