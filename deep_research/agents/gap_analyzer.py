from __future__ import annotations

from loguru import logger

from deep_research.agents.cross_referencer import key_words, normalize_fact_key
from deep_research.models.research import Gap, Importance, SubQuestion, VerifiedFact
from deep_research.tools.query_hygiene import sanitize_search_query

UNANSWERED_IMPORTANCE: dict[str, Importance] = {
    "high": "critical",
    "medium": "important",
    "low": "nice-to-have",
}
WEAK_IMPORTANCE: dict[str, Importance] = {
    "high": "important",
    "medium": "nice-to-have",
    "low": "nice-to-have",
}


def sub_question_words(sq: SubQuestion) -> set[str]:
    return set(key_words(f"{sq.question} {sq.search_query}"))


def answers(sq: SubQuestion, fact: VerifiedFact, sq_words: set[str] | None = None) -> bool:
    """True when the fact was found for this sub-question or shares enough key words with it."""
    if sq.id in fact.sub_question_ids:
        return True
    words = sq_words if sq_words is not None else sub_question_words(sq)
    if not words:
        return False
    fact_words = set(filter(None, normalize_fact_key(fact.claim).split("_")))
    needed = 2 if len(words) >= 2 else 1
    return len(words & fact_words) >= needed


class GapAnalyzer:
    """Compares verified facts with the planned sub-questions."""

    def __init__(self, require_multiple_sources: bool = True):
        self.require_multiple_sources = require_multiple_sources

    def analyze(self, sub_questions: list[SubQuestion], verified_facts: list[VerifiedFact]) -> list[Gap]:
        gaps: list[Gap] = []
        for sq in sub_questions:
            gap = self._gap_for(sq, verified_facts)
            if gap is not None:
                gaps.append(gap)

        for fact in verified_facts:
            if not fact.conflicting_info:
                continue
            gaps.append(
                Gap(
                    sub_question_id="conflict",
                    description=f"Conflicting info: {fact.claim} ({fact.conflicting_info})",
                    suggested_query=sanitize_search_query(fact.claim) or fact.claim,
                    importance="important",
                    kind="conflict",
                )
            )

        logger.info(f"Found {len(gaps)} gaps across {len(sub_questions)} sub-questions")
        return gaps

    def _gap_for(self, sq: SubQuestion, verified_facts: list[VerifiedFact]) -> Gap | None:
        sq_words = sub_question_words(sq)
        matching = [f for f in verified_facts if answers(sq, f, sq_words)]
        query = sanitize_search_query(sq.search_query) or sq.question

        if not matching:
            return Gap(
                sub_question_id=sq.id,
                description=f"No verified information found for: {sq.question}",
                suggested_query=query,
                importance=UNANSWERED_IMPORTANCE.get(sq.priority, "important"),
            )
        if all(f.confidence == "low" for f in matching):
            return Gap(
                sub_question_id=sq.id,
                description=f"Only low-confidence information found for: {sq.question}",
                suggested_query=query,
                importance=WEAK_IMPORTANCE.get(sq.priority, "nice-to-have"),
                kind="low-confidence",
            )
        if self.require_multiple_sources and all(f.agreement_count < 2 for f in matching):
            return Gap(
                sub_question_id=sq.id,
                description=f"Only single-source information found for: {sq.question}",
                suggested_query=query,
                importance="nice-to-have",
                kind="single-source",
            )
        return None
