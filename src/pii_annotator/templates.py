"""Format templates for common sensitive-data shapes.

When the tagged examples of a pattern look like a known format, the
learner emits the template's generalized regexes instead of a rule
derived from the examples' literal structure.  A template applies when at
least half of the examples pass its test.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Callable

_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|"
    "November|December|Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec"
)
_SHORT_MONTHS = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec"


@dataclass(frozen=True)
class Template:
    name: str
    description: str
    test: Callable[[str], bool]
    generate: Callable[[list[str]], list[str]]
    context_keywords: tuple[str, ...] = ()


def _matches_any(*patterns: re.Pattern) -> Callable[[str], bool]:
    return lambda example: any(p.fullmatch(example) for p in patterns)


def _fixed(*regexes: str) -> Callable[[list[str]], list[str]]:
    return lambda examples: list(regexes)


def _digit_count(text: str) -> int:
    return sum(ch.isdigit() for ch in text)


def _is_phone(example: str) -> bool:
    return bool(re.fullmatch(r"[\d\s\-()+.]+", example)) and _digit_count(example) >= 10


def _is_card(example: str) -> bool:
    return 13 <= _digit_count(example) <= 19


def _account_regexes(examples: list[str]) -> list[str]:
    lengths = [len(ex) for ex in examples]
    lo, hi = min(lengths), max(lengths)
    return [rf"\b[A-Z0-9]{{{lo},{hi}}}\b", rf"\b\d{{{lo},{hi}}}\b"]


TEMPLATES: tuple[Template, ...] = (
    Template(
        "Date", "Various date formats",
        _matches_any(
            re.compile(r"\d{1,4}[-/]\d{1,2}[-/]\d{1,4}"),
            re.compile(r"\d{1,2}[-/]\d{1,2}[-/]\d{2,4}"),
            re.compile(rf"(?:{_SHORT_MONTHS})\s+\d{{1,2}},?\s+\d{{2,4}}", re.IGNORECASE),
            re.compile(rf"\d{{1,2}}\s+(?:{_SHORT_MONTHS})\s+\d{{2,4}}", re.IGNORECASE),
        ),
        _fixed(
            r"\b\d{4}[-/]\d{1,2}[-/]\d{1,2}\b",                       # YYYY-MM-DD
            r"\b\d{1,2}[-/]\d{1,2}[-/]\d{4}\b",                       # MM-DD-YYYY, DD-MM-YYYY
            rf"\b(?:{_MONTHS})\s+\d{{1,2}},?\s+\d{{2,4}}\b",          # Month DD, YYYY
            rf"\b\d{{1,2}}\s+(?:{_MONTHS})\s+\d{{2,4}}\b",            # DD Month YYYY
        ),
        ("date", "birth", "dob", "born", "birthday", "expiry", "expires", "issued", "valid"),
    ),
    Template(
        "SSN", "Social Security Numbers",
        _matches_any(re.compile(r"\d{3}-\d{2}-\d{4}"), re.compile(r"\d{9}")),
        _fixed(r"\b\d{3}-\d{2}-\d{4}\b", r"\b\d{9}\b"),
        ("ssn", "social", "security", "tin", "taxpayer", "identification"),
    ),
    Template(
        "Phone", "Phone numbers",
        _is_phone,
        _fixed(
            r"(?<!\w)\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b",
            r"(?<!\w)\+?1?[\s.-]?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b",
            r"\b\d{10,15}\b",
        ),
        ("phone", "mobile", "cell", "telephone", "contact", "number", "tel"),
    ),
    Template(
        "Email", "Email addresses",
        _matches_any(re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")),
        _fixed(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        ("email", "e-mail", "mail", "address", "contact"),
    ),
    Template(
        "CreditCard", "Credit card numbers",
        _is_card,
        _fixed(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b", r"\b\d{13,19}\b"),
        ("card", "credit", "debit", "payment", "account", "number"),
    ),
    Template(
        "IPAddress", "IP addresses",
        _matches_any(re.compile(r"(?:\d{1,3}\.){3}\d{1,3}")),
        _fixed(
            r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
            r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
        ),
        ("ip", "address", "host", "server", "client"),
    ),
    Template(
        "ZipCode", "Postal/ZIP codes",
        _matches_any(
            re.compile(r"\d{5}(?:-\d{4})?"),
            re.compile(r"[A-Z]\d[A-Z]\s?\d[A-Z]\d", re.IGNORECASE),
        ),
        _fixed(r"\b\d{5}(?:-\d{4})?\b", r"\b[A-Z]\d[A-Z]\s?\d[A-Z]\d\b"),
        ("zip", "postal", "code", "postcode", "address"),
    ),
    Template(
        "Currency", "Currency amounts",
        _matches_any(
            re.compile(r"[$€£¥]?\s?\d+(?:[,\d]+)?(?:\.\d{1,2})?"),
            re.compile(r"\d+(?:[,\d]+)?(?:\.\d{1,2})?\s?[$€£¥]?"),
        ),
        _fixed(
            r"\$\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?\b",
            r"\b\d{1,3}(?:,\d{3})*(?:\.\d{2})?\s?\$",
            r"€\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?\b",
            r"£\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?\b",
        ),
        ("amount", "price", "cost", "payment", "salary", "wage", "fee", "balance"),
    ),
    Template(
        "AccountNumber", "Bank account or ID numbers",
        _matches_any(re.compile(r"[A-Z0-9]{6,20}", re.IGNORECASE)),
        _account_regexes,
        ("account", "number", "id", "identifier", "reference", "code"),
    ),
)


def _covered(regexes: list[str], example: str) -> bool:
    return any(re.fullmatch(regex, example, re.IGNORECASE) for regex in regexes)


def find_matching_template(examples: list[str]) -> Template | None:
    """Template accepting the most examples, if at least half of them.

    An example counts for a template only when it passes the template's
    test and one of the template's regexes matches it in full.  A loose
    test (the date shape also fits "123-45-6789") must not win with rules
    that would never highlight the examples themselves.
    """
    best: Template | None = None
    best_count = 0
    for template in TEMPLATES:
        regexes = template.generate(examples)
        count = sum(1 for ex in examples if template.test(ex) and _covered(regexes, ex))
        # strict > keeps the earliest template on ties
        if count > best_count and count >= len(examples) * 0.5:
            best, best_count = template, count
    return best


def generate_template_patterns(examples: list[str]) -> list[str]:
    template = find_matching_template(examples)
    if template is None:
        return []
    return template.generate(examples)
