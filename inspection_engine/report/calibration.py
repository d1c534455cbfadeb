from __future__ import annotations

import re

# (pattern, replacement) applied in order; earlier rules see the raw text first.
PHRASE_REPLACEMENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bwe recommend\b", re.IGNORECASE), "consider"),
    (re.compile(r"\byou should\b", re.IGNORECASE), "consider"),
    (re.compile(r"\b(?:you|we|owners?|landlords?|tenants?) must\b", re.IGNORECASE), "it is advisable to"),
    (re.compile(r"\bmust\b", re.IGNORECASE), "should"),
    (re.compile(r"\bno problem\b", re.IGNORECASE), "no immediate safety risks identified"),
    (re.compile(r"\bno issues\b(?!\s+identified)", re.IGNORECASE), "no urgent items identified"),
    (re.compile(r"\bguaranteed\b", re.IGNORECASE), "expected"),
    (re.compile(r"\bguarantees?\b", re.IGNORECASE), "intended to"),
    (re.compile(r"\bcertify\b", re.IGNORECASE), "intended to"),
    (re.compile(r"\bcertified\b", re.IGNORECASE), "assessed"),
    (re.compile(r"\b100\s*%"), "fully"),
    (re.compile(r"\bfix\b(?!\s+(?:and|or)\s+)", re.IGNORECASE), "address"),
    (re.compile(r"\bIMMEDIATE\b"), "Urgent liability risk"),
    (re.compile(r"\bRECOMMENDED_0_3_MONTHS\b"), "Budgetary provision recommended"),
    (re.compile(r"\bPLAN_MONITOR\b"), "Monitor / Acceptable"),
)

FORBIDDEN_TOKENS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("must", re.compile(r"\bmust\b", re.IGNORECASE)),
    ("guarantee", re.compile(r"\bguarantee[sd]?\b", re.IGNORECASE)),
    ("certify", re.compile(r"\bcertif(?:y|ied)\b", re.IGNORECASE)),
    ("100%", re.compile(r"\b100\s*%")),
)


def normalise_whitespace(s: str) -> str:
    out = s.strip().replace("\r\n", "\n").replace("\r", "\n")
    out = re.sub(r"\n{3,}", "\n\n", out)
    out = re.sub(r"[ \t]+", " ", out)
    return out.replace("\n ", "\n").replace(" \n", "\n")


def calibrate_text(text: str) -> str:
    """Soften certainty language in one generated string."""
    if not text:
        return text
    out = normalise_whitespace(text)
    for pattern, prefer in PHRASE_REPLACEMENTS:
        out = pattern.sub(prefer, out)
    return out


def find_forbidden_tokens(text: str) -> list[str]:
    return [name for name, pattern in FORBIDDEN_TOKENS if pattern.search(text or "")]
