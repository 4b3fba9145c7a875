from __future__ import annotations

import re

from loguru import logger

from deep_research.models.research import ExtractedFact

INVALID_FACT_PATTERNS = [
    # CSS properties
    re.compile(r"font-family|font-size|font-weight", re.I),
    re.compile(r"background-color|background-image", re.I),
    re.compile(r"border-radius|border-width", re.I),
    re.compile(r"\b(padding|margin)\s*:", re.I),
    re.compile(r"(width|height)\s*:\s*\d+px", re.I),
    re.compile(r"display\s*:\s*(flex|block|none|inline)", re.I),
    re.compile(r"position\s*:\s*(absolute|relative|fixed)", re.I),
    re.compile(r"z-index", re.I),
    re.compile(r"color\s*:\s*#[0-9a-f]", re.I),
    re.compile(r"rgba?\s*\(", re.I),
    # CSS selectors and at-rules
    re.compile(r"^\."),
    re.compile(r"^#[\w-]+\s*\{"),
    re.compile(r"\.[\w-]+\s*\{"),
    re.compile(r"::before|::after", re.I),
    re.compile(r":hover|:focus|:active", re.I),
    re.compile(r"@media\s*\(|@font-face|@keyframes|@import", re.I),
    # JavaScript
    re.compile(r"addEventListener|querySelector|getElementById|getElementsBy", re.I),
    re.compile(r"classList\.|\.innerHTML|\.innerText|\.textContent", re.I),
    re.compile(r"\bdocument\.|\bwindow\.|\bconsole\.", re.I),
    re.compile(r"Object\.(freeze|assign)|JSON\.(parse|stringify)", re.I),
    re.compile(r"localStorage|sessionStorage", re.I),
    re.compile(r"\bfetch\s*\(|async\s+function", re.I),
    re.compile(r"=>\s*\{"),
    re.compile(r"function\s*\([^)]*\)\s*\{"),
    re.compile(r"\b(const|let|var)\s+\w+\s*=\s*\{"),
    re.compile(r"\bexport\s+default\b|\bimport\s+.*\bfrom\b|\brequire\s*\(|module\.exports"),
    # Theme toggles
    re.compile(r"darkMode|lightMode|dark-mode|light-mode|themeList", re.I),
    # HTML remnants
    re.compile(r"</?[a-z][\w-]*[\s>/]", re.I),
    re.compile(r"&[a-z]+;", re.I),
    re.compile(r"data-[\w-]+=", re.I),
    # Unit values in declarations
    re.compile(r"\d+(px|rem|em|vh|vw)\s*[,};]"),
]

SUSPICIOUS_CATEGORIES = {"specification", "styling", "configuration", "config"}

MIN_CLAIM_LENGTH = 15
MAX_CLAIM_LENGTH = 500
MAX_SPECIAL_CHAR_RATIO = 0.15

_SPECIAL_CHARS_RE = re.compile(r"[{}\[\]();:=<>/\\|&^%$#@!~`]")
_NATURAL_WORDS_RE = re.compile(
    r"\b(the|is|are|was|were|has|have|can|will|should|a|an|for|to|of|in|on|with|by|from|at)\b",
    re.I,
)
_CODE_START_RE = re.compile(r"^\s*\w+\s*[({=]")

SPECIFIC_CATEGORIES = {"pricing", "feature", "statistic", "date", "fact"}
VAGUE_CATEGORIES = {"claim", "other"}


def rejection_reason(fact: ExtractedFact) -> str | None:
    """Return why a fact looks like page chrome or code, or None if it reads as prose."""
    claim = fact.claim or ""
    combined = f"{claim} {fact.context or ''}"

    for pattern in INVALID_FACT_PATTERNS:
        if pattern.search(combined):
            return "pattern match"

    if (fact.category or "").lower() in SUSPICIOUS_CATEGORIES and re.search(r"[{}\[\]();=<>]", claim):
        return "suspicious category with code characters"

    if len(claim) < MIN_CLAIM_LENGTH:
        return "too short"
    if len(claim) > MAX_CLAIM_LENGTH:
        return "too long"

    special = len(_SPECIAL_CHARS_RE.findall(claim))
    if special / len(claim) > MAX_SPECIAL_CHAR_RATIO:
        return "too many special characters"

    if _CODE_START_RE.match(claim):
        return "code-like structure"

    if " " not in claim or not _NATURAL_WORDS_RE.search(claim):
        return "not natural language"

    return None


def is_valid_fact(fact: ExtractedFact) -> bool:
    reason = rejection_reason(fact)
    if reason is not None:
        logger.debug(f"Rejected fact ({reason}): {fact.claim[:60]!r}")
        return False
    return True


def filter_valid_facts(facts: list[ExtractedFact]) -> list[ExtractedFact]:
    valid = [fact for fact in facts if is_valid_fact(fact)]
    if len(valid) < len(facts):
        logger.debug(f"Filtered {len(facts) - len(valid)}/{len(facts)} invalid facts")
    return valid


def score_fact(fact: ExtractedFact) -> float:
    """Re-score a validated fact on a 0-100 scale.

    Starts from the model's own confidence (60 when missing), lifts very low
    confidences to 55 because the fact already survived validation, then adds
    small bonuses for detail, context, a concrete value and a specific category.
    """
    score = float(fact.confidence) if fact.confidence else 60.0
    if fact.confidence and fact.confidence < 40:
        score = max(score, 55.0)

    if len(fact.claim) > 50:
        score += 5
    if len(fact.claim) > 100:
        score += 5
    if fact.context and len(fact.context) > 50:
        score += 10
    if fact.value is not None and str(fact.value).strip():
        score += 10

    category = (fact.category or "").lower()
    if category in VAGUE_CATEGORIES:
        score -= 5
    if category in SPECIFIC_CATEGORIES:
        score += 5

    return max(0.0, min(100.0, score))
