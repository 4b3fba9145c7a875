"""Search-query hygiene for model-generated queries.

A model's training cutoff leaks into the queries it writes ("pricing 2023",
"latest as of March 2024"), which steers search engines toward stale pages.
Queries are stripped of that phrasing before they reach the search adapter,
and queries about fast-moving topics get a recency filter instead.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from loguru import logger

YEAR_RE = re.compile(r"\b20\d{2}\b")

_MONTHS = "january|february|march|april|may|june|july|august|september|october|november|december"

STALE_PATTERNS = (
    re.compile(r"\blatest\s+as\s+of\b", re.I),
    re.compile(r"\bas\s+of\s+(?:(?:" + _MONTHS + r")\s+)?(?:\d{1,2},?\s+)?20\d{2}\b", re.I),
    re.compile(r"\bcurrent(?:ly)?\s+in\s+\d{4}\b", re.I),
    re.compile(r"\bupdated?\s+(?:for\s+)?\d{4}\b", re.I),
)

FILLER_WORDS = (
    "comprehensive",
    "detailed",
    "complete",
    "ultimate",
    "definitive",
    "in-depth",
    "thorough",
)
_FILLER_RE = re.compile(r"(?<![\w-])(?:" + "|".join(re.escape(w) for w in FILLER_WORDS) + r")(?![\w-])", re.I)

RECENCY_INDICATORS = (
    "pricing",
    "price",
    "cost",
    "how much",
    "current",
    "latest",
    "new",
    "update",
    "announce",
    "release",
    "launch",
    "comparison",
    "vs",
    "versus",
    "compare",
    "best",
    "top",
    "market share",
    "stock",
    "news",
)
_RECENCY_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in RECENCY_INDICATORS) + r")(?:s|es|d|ed)?\b", re.I
)


@dataclass(frozen=True, slots=True)
class PreparedQuery:
    query: str
    time_range: str | None
    was_modified: bool


def sanitize_search_query(query: str) -> str:
    """Remove year references, "as of <date>" phrasing and filler adjectives."""
    sanitized = query or ""
    # Phrases first: they contain years the year pattern would otherwise split.
    for pattern in STALE_PATTERNS:
        sanitized = pattern.sub(" ", sanitized)
    sanitized = YEAR_RE.sub(" ", sanitized)
    sanitized = _FILLER_RE.sub(" ", sanitized)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()

    if sanitized != (query or "").strip():
        logger.debug(f"Sanitized query {query!r} -> {sanitized!r}")
    return sanitized


def query_needs_recency(query: str) -> bool:
    return bool(_RECENCY_RE.search(query or ""))


def prepare_search_query(raw_query: str, *, recent_range: str = "month") -> PreparedQuery:
    """Sanitize, then attach a recency filter when the vocabulary is time-sensitive."""
    sanitized = sanitize_search_query(raw_query)
    time_range = recent_range if query_needs_recency(sanitized) else None
    return PreparedQuery(
        query=sanitized,
        time_range=time_range,
        was_modified=sanitized != raw_query,
    )
