from __future__ import annotations

import re

from loguru import logger

from deep_research.errors import LLMResponseError
from deep_research.llm_client import LLMClient, model_for
from deep_research.models.research import (
    TIER_RANK,
    ConfidenceTier,
    Gap,
    ResearchResult,
    ResearchStats,
    SourceReference,
    SubQuestion,
    VerifiedFact,
)
from deep_research.services.json_utils import extract_string_list
from deep_research.services.prompt_store import render_prompt

SYNTHESIS_MAX_TOKENS = 4000
SYNTHESIS_TEMPERATURE = 0.4
FOLLOW_UP_MAX_TOKENS = 500
FOLLOW_UP_TEMPERATURE = 0.5
MAX_FOLLOW_UPS = 4
FOLLOW_UP_CONTEXT_CHARS = 2000

_SOURCES_HEADING_RE = re.compile(r"^#{1,6}\s*(sources|references)\b", re.I | re.M)


def deduplicate_sources(verified_facts: list[VerifiedFact]) -> list[SourceReference]:
    seen: set[str] = set()
    sources: list[SourceReference] = []
    for fact in verified_facts:
        for source in fact.sources:
            if source.url in seen:
                continue
            seen.add(source.url)
            sources.append(source)
    sources.sort(key=lambda s: s.authority_score, reverse=True)
    return sources


def overall_confidence(verified_facts: list[VerifiedFact], gaps: list[Gap]) -> ConfidenceTier:
    """Share-based tier, never above the best fact tier, and at most medium with critical gaps open."""
    if not verified_facts:
        return "low"

    counts = {"high": 0, "medium": 0, "low": 0}
    for fact in verified_facts:
        counts[fact.confidence] += 1
    total = len(verified_facts)

    if counts["high"] >= total * 0.6:
        tier: ConfidenceTier = "high"
    elif counts["low"] >= total * 0.4:
        tier = "low"
    else:
        tier = "medium"

    best: ConfidenceTier = max((f.confidence for f in verified_facts), key=lambda t: TIER_RANK[t])
    if TIER_RANK[tier] > TIER_RANK[best]:
        tier = best
    if tier == "high" and any(g.importance == "critical" for g in gaps):
        tier = "medium"
    return tier


def _citation_indices(fact: VerifiedFact, index: dict[str, int]) -> list[int]:
    indices: list[int] = []
    for source in fact.sources:
        i = index.get(source.url)
        if i is not None and i not in indices:
            indices.append(i)
    return indices


def _fact_line(fact: VerifiedFact, index: dict[str, int]) -> str:
    value = f": {fact.value}" if fact.value not in (None, "") else ""
    cited = ", ".join(str(i) for i in _citation_indices(fact, index))
    line = f"- {fact.claim}{value} [{fact.confidence} confidence] [sources: {cited}]"
    if fact.conflicting_info:
        line += f" ({fact.conflicting_info})"
    return line


def format_source_list(sources: list[SourceReference]) -> str:
    return "\n".join(f"[{i + 1}] {s.title or s.domain} - {s.url}" for i, s in enumerate(sources))


def format_facts_by_topic(
    verified_facts: list[VerifiedFact],
    index: dict[str, int],
    sub_questions: list[SubQuestion] | None = None,
) -> str:
    topics = {sq.id: sq.question for sq in sub_questions or []}
    grouped: dict[str, list[str]] = {}
    for fact in verified_facts:
        topic = next((topics[i] for i in fact.sub_question_ids if i in topics), "General")
        grouped.setdefault(topic, []).append(_fact_line(fact, index))

    # General goes last.
    ordered = sorted(grouped.items(), key=lambda item: item[0] == "General")
    return "\n\n".join(f"### {topic}\n" + "\n".join(lines) for topic, lines in ordered)


def format_gaps(gaps: list[Gap]) -> str:
    return "\n".join(f"- {g.description} ({g.importance})" for g in gaps)


def fallback_response(
    user_prompt: str,
    verified_facts: list[VerifiedFact],
    gaps: list[Gap],
    sources: list[SourceReference],
) -> str:
    index = {s.url: i + 1 for i, s in enumerate(sources)}
    parts = [f"## Research findings: {user_prompt}", ""]
    if verified_facts:
        parts.append("A written summary could not be generated. These are the verified facts that were found:")
        parts.append("")
        parts.extend(_fact_line(fact, index) for fact in verified_facts)
    else:
        parts.append("No verified facts were found for this question.")
    if gaps:
        parts.extend(["", "## Open gaps", format_gaps(gaps)])
    if sources:
        parts.extend(["", "## Sources", format_source_list(sources)])
    return "\n".join(parts)


class ResponseSynthesizer:
    """Writes the final cited answer, falling back to a plain fact listing."""

    name = "synthesizer"

    def __init__(self, llm: LLMClient, *, model: str | None = None):
        self.llm = llm
        self.model = model or model_for("synthesis")

    async def synthesize(
        self,
        user_prompt: str,
        verified_facts: list[VerifiedFact],
        gaps: list[Gap],
        stats: ResearchStats,
        *,
        sub_questions: list[SubQuestion] | None = None,
    ) -> ResearchResult:
        sources = deduplicate_sources(verified_facts)
        reported_gaps = [g for g in gaps if g.kind == "unanswered" or g.importance != "nice-to-have"]

        try:
            response = await self._write_answer(user_prompt, verified_facts, reported_gaps, sources, sub_questions)
        except Exception as e:
            logger.warning(f"Synthesis failed, using templated response: {e}")
            response = fallback_response(user_prompt, verified_facts, reported_gaps, sources)

        follow_ups = await self.generate_follow_ups(user_prompt, response)

        return ResearchResult(
            response=response,
            sources=sources,
            verified_facts=verified_facts,
            gaps=reported_gaps,
            confidence=overall_confidence(verified_facts, gaps),
            stats=stats,
            follow_up_questions=follow_ups,
        )

    async def _write_answer(
        self,
        user_prompt: str,
        verified_facts: list[VerifiedFact],
        gaps: list[Gap],
        sources: list[SourceReference],
        sub_questions: list[SubQuestion] | None,
    ) -> str:
        index = {s.url: i + 1 for i, s in enumerate(sources)}
        source_list = format_source_list(sources)
        prompt = render_prompt(
            "synthesizer.answer",
            user_prompt=user_prompt,
            verified_facts=format_facts_by_topic(verified_facts, index, sub_questions)
            or "No verified facts were found.",
            gaps=format_gaps(gaps) or "No significant gaps identified.",
            sources=source_list or "No sources.",
        )
        completion = await self.llm.complete(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=SYNTHESIS_MAX_TOKENS,
            temperature=SYNTHESIS_TEMPERATURE,
            caller=self.name,
        )
        answer = (completion.content or "").strip()
        if not answer:
            raise LLMResponseError("Synthesis returned empty content")
        if sources and not _SOURCES_HEADING_RE.search(answer):
            answer = f"{answer}\n\n## Sources\n{source_list}"
        return answer

    async def generate_follow_ups(self, user_prompt: str, context: str) -> list[str]:
        try:
            prompt = render_prompt(
                "synthesizer.follow_ups",
                user_prompt=user_prompt,
                count="3-4",
                context=context[:FOLLOW_UP_CONTEXT_CHARS],
            )
            completion = await self.llm.complete(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=FOLLOW_UP_MAX_TOKENS,
                temperature=FOLLOW_UP_TEMPERATURE,
                caller=f"{self.name}.follow_ups",
            )
            return extract_string_list(completion.content, limit=MAX_FOLLOW_UPS)
        except Exception as e:
            logger.warning(f"Failed to generate follow-up questions: {e}")
            return []
