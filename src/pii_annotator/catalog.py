"""Predefined pattern catalog offered at the start of every session."""

from __future__ import annotations
from dataclasses import dataclass

from .types import PREDEFINED_PREFIX, PatternDefinition, PatternType


@dataclass(frozen=True, slots=True)
class PredefinedPattern:
    label: str
    color: str
    type: PatternType


_PII = PatternType.PII
_FIN = PatternType.FINANCIAL
_MED = PatternType.MEDICAL
_CLS = PatternType.CLASSIFICATION

PREDEFINED_PATTERNS: tuple[PredefinedPattern, ...] = (
    # PII
    PredefinedPattern("Social Security Number", "bg-red-100 text-red-800", _PII),
    PredefinedPattern("Email Address", "bg-blue-100 text-blue-800", _PII),
    PredefinedPattern("Phone Number", "bg-green-100 text-green-800", _PII),
    PredefinedPattern("Address", "bg-emerald-100 text-emerald-800", _PII),
    PredefinedPattern("Driver License", "bg-amber-100 text-amber-800", _PII),
    PredefinedPattern("Passport Number", "bg-teal-100 text-teal-800", _PII),
    PredefinedPattern("Date of Birth", "bg-cyan-100 text-cyan-800", _PII),

    # Financial
    PredefinedPattern("Credit Card Number", "bg-yellow-100 text-yellow-800", _FIN),
    PredefinedPattern("Bank Account Number", "bg-purple-100 text-purple-800", _FIN),
    PredefinedPattern("IBAN", "bg-indigo-100 text-indigo-800", _FIN),
    PredefinedPattern("SWIFT Code", "bg-violet-100 text-violet-800", _FIN),

    # Healthcare / HIPAA
    PredefinedPattern("Medical Record Number", "bg-pink-100 text-pink-800", _MED),
    PredefinedPattern("Health Insurance ID", "bg-rose-100 text-rose-800", _MED),
    PredefinedPattern("Medicare/Medicaid ID", "bg-fuchsia-100 text-fuchsia-800", _MED),
    PredefinedPattern("Provider NPI", "bg-pink-200 text-pink-900", _MED),
    PredefinedPattern("Diagnosis Code (ICD)", "bg-rose-200 text-rose-900", _MED),
    PredefinedPattern("Procedure Code (CPT)", "bg-fuchsia-200 text-fuchsia-900", _MED),
    PredefinedPattern("Drug NDC", "bg-purple-200 text-purple-900", _MED),
    PredefinedPattern("Clinical Trial ID", "bg-violet-200 text-violet-900", _MED),

    # Government classification markings
    PredefinedPattern("Top Secret", "bg-red-100 text-red-900", _CLS),
    PredefinedPattern("Secret", "bg-red-100 text-red-800", _CLS),
    PredefinedPattern("Confidential", "bg-orange-100 text-orange-800", _CLS),
    PredefinedPattern("NOFORN", "bg-purple-100 text-purple-900", _CLS),
    PredefinedPattern("FOUO", "bg-yellow-100 text-yellow-900", _CLS),
    PredefinedPattern("SCI", "bg-red-200 text-red-900", _CLS),
    PredefinedPattern("SAP", "bg-purple-200 text-purple-900", _CLS),
    PredefinedPattern("Codeword", "bg-indigo-100 text-indigo-900", _CLS),
    PredefinedPattern("ITAR", "bg-orange-200 text-orange-900", _CLS),
    PredefinedPattern("CUI", "bg-amber-200 text-amber-900", _CLS),

    # Business / corporate
    PredefinedPattern("Company Confidential", "bg-orange-100 text-orange-900", _CLS),
    PredefinedPattern("Trade Secret", "bg-violet-100 text-violet-900", _CLS),
    PredefinedPattern("Proprietary", "bg-blue-200 text-blue-900", _CLS),
)


def predefined_patterns() -> list[PatternDefinition]:
    """Fresh working copy of the catalog, ids ``pattern-0`` .. ``pattern-N``."""
    return [
        PatternDefinition(
            id=f"{PREDEFINED_PREFIX}{idx}",
            label=entry.label,
            type=entry.type,
            color=entry.color,
        )
        for idx, entry in enumerate(PREDEFINED_PATTERNS)
    ]
