from __future__ import annotations

import re
import time

from loguru import logger

from deep_research.models.research import (
    TIER_RANK,
    ConfidenceTier,
    ExtractedFact,
    SourceEvaluation,
    SourceReference,
    VerifiedFact,
)
from deep_research.tools.web_utils import extract_domain

KEY_WORDS = 5
MIN_KEY_WORD_LENGTH = 4
QUOTE_CHARS = 200
OFFICIAL_AUTHORITY = 90
DEFAULT_AUTHORITY = 50
LOW_CONFIDENCE_SOURCE_WEIGHT = 0.5

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def key_words(text: str) -> list[str]:
    """Lowercased alphanumeric words longer than three characters, in text order."""
    cleaned = _NON_ALNUM_RE.sub("", text.lower().replace("_", " "))
    return [w for w in cleaned.split() if len(w) >= MIN_KEY_WORD_LENGTH]


def normalize_fact_key(claim: str) -> str:
    """Grouping key: the alphabetically first five significant words, joined by "_".

    Two different claims that share this fingerprint are grouped together.
    That is a known limit of lexical grouping. Applying the function to its
    own output returns the same key.
    """
    return "_".join(sorted(key_words(claim))[:KEY_WORDS])


def assign_confidence_tier(
    unique_sources: int,
    avg_authority: float,
    avg_fact_confidence: float,
    has_official_source: bool,
) -> ConfidenceTier:
    if (
        (unique_sources >= 3 and avg_authority >= 70)
        or (unique_sources >= 2 and avg_authority >= 75)
        or (unique_sources >= 2 and avg_fact_confidence >= 80)
        or (unique_sources >= 1 and has_official_source and avg_fact_confidence >= 75)
    ):
        return "high"
    if (
        unique_sources >= 2
        or has_official_source
        or avg_authority >= 70
        or avg_fact_confidence >= 70
        or (unique_sources >= 1 and avg_fact_confidence >= 60)
    ):
        return "medium"
    return "low"


class CrossReferencer:
    """Groups extracted facts across sources and rates each group.

    Pure and synchronous: grouping depends on claim text alone.
    """

    def __init__(self, min_source_confidence: int = 0):
        self.min_source_confidence = min_source_confidence

    def verify(self, evaluations: list[SourceEvaluation]) -> list[VerifiedFact]:
        t0 = time.monotonic()
        by_url: dict[str, SourceEvaluation] = {}
        for evaluation in evaluations:
            by_url.setdefault(evaluation.url, evaluation)

        groups: dict[str, list[ExtractedFact]] = {}
        for evaluation in evaluations:
            for fact in evaluation.extracted_facts:
                groups.setdefault(normalize_fact_key(fact.claim), []).append(fact)

        verified = [self._verify_group(facts, by_url) for facts in groups.values() if facts]
        verified.sort(key=lambda f: TIER_RANK[f.confidence], reverse=True)

        logger.info(
            f"Verified {len(verified)} facts from {len(evaluations)} sources "
            f"in {int((time.monotonic() - t0) * 1000)}ms"
        )
        return verified

    def _weight(self, fact: ExtractedFact, by_url: dict[str, SourceEvaluation]) -> float:
        evaluation = by_url.get(fact.source_url)
        if evaluation is not None and evaluation.overall_score < self.min_source_confidence:
            return fact.confidence * LOW_CONFIDENCE_SOURCE_WEIGHT
        return fact.confidence

    def _verify_group(
        self,
        facts: list[ExtractedFact],
        by_url: dict[str, SourceEvaluation],
    ) -> VerifiedFact:
        primary = max(facts, key=lambda f: self._weight(f, by_url))

        sources: list[SourceReference] = []
        for fact in facts:
            evaluation = by_url.get(fact.source_url)
            quote = (fact.context or fact.claim)[:QUOTE_CHARS]
            sources.append(
                SourceReference(
                    url=fact.source_url,
                    domain=evaluation.domain if evaluation is not None else extract_domain(fact.source_url),
                    title=evaluation.content.title if evaluation is not None else "",
                    authority_score=evaluation.authority_score if evaluation is not None else DEFAULT_AUTHORITY,
                    exact_quote=quote,
                )
            )
        sources.sort(key=lambda s: s.authority_score, reverse=True)

        unique_sources = len({s.domain for s in sources})
        avg_authority = sum(s.authority_score for s in sources) / len(sources)
        avg_fact_confidence = sum(f.confidence for f in facts) / len(facts)
        has_official_source = any(s.authority_score >= OFFICIAL_AUTHORITY for s in sources)

        tier = assign_confidence_tier(unique_sources, avg_authority, avg_fact_confidence, has_official_source)
        logger.debug(
            f"Fact {primary.claim[:60]!r}: {tier} confidence (sources: {unique_sources}, "
            f"avgAuthority: {avg_authority:.1f}, avgFactConfidence: {avg_fact_confidence:.1f})"
        )

        sub_question_ids: list[str] = []
        for fact in facts:
            if fact.sub_question_id and fact.sub_question_id not in sub_question_ids:
                sub_question_ids.append(fact.sub_question_id)

        return VerifiedFact(
            claim=primary.claim,
            value=primary.value,
            sources=sources,
            agreement_count=unique_sources,
            confidence=tier,
            conflicting_info=conflict_note(facts),
            sub_question_ids=sub_question_ids,
        )


def conflict_note(facts: list[ExtractedFact]) -> str | None:
    distinct: dict[str, str] = {}
    for fact in facts:
        if fact.value is None:
            continue
        shown = str(fact.value).strip()
        if not shown:
            continue
        distinct.setdefault(shown.lower(), shown)
    if len(distinct) < 2:
        return None
    return f"Conflicting values found: {' vs '.join(distinct.values())}"
