from __future__ import annotations

import pytest

from deep_research.agents.synthesizer import (
    ResponseSynthesizer,
    deduplicate_sources,
    format_facts_by_topic,
    overall_confidence,
)
from deep_research.errors import LLMResponseError
from deep_research.models.research import Gap, ResearchStats, SourceReference, SubQuestion, VerifiedFact
from fakes import ScriptedLLM


def _source(url: str, authority: int) -> SourceReference:
    return SourceReference(url=url, domain=url.split("//")[1], title=url.split("//")[1], authority_score=authority)


def _fact(claim: str, confidence: str = "high", sources=None, sq_ids=None, value=None) -> VerifiedFact:
    sources = sources if sources is not None else [_source("https://a.com", 80)]
    return VerifiedFact(
        claim=claim,
        sources=sources,
        agreement_count=len({s.domain for s in sources}),
        confidence=confidence,
        value=value,
        sub_question_ids=sq_ids or [],
    )


def _gap(importance: str, sq_id: str = "q1", kind: str = "unanswered") -> Gap:
    return Gap(
        sub_question_id=sq_id,
        description=f"{importance} gap",
        suggested_query="query",
        importance=importance,
        kind=kind,
    )


class TestOverallConfidence:
    def test_no_facts_is_low(self):
        assert overall_confidence([], []) == "low"

    def test_mostly_high_is_high(self):
        facts = [_fact("a"), _fact("b"), _fact("c", "medium")]
        assert overall_confidence(facts, []) == "high"

    def test_many_low_is_low(self):
        assert overall_confidence([_fact("a"), _fact("b", "low")], []) == "low"

    def test_mixed_is_medium(self):
        facts = [_fact("a"), _fact("b", "medium"), _fact("c", "medium")]
        assert overall_confidence(facts, []) == "medium"

    def test_critical_gap_caps_at_medium(self):
        assert overall_confidence([_fact("a")], [_gap("critical")]) == "medium"
        assert overall_confidence([_fact("a")], [_gap("important")]) == "high"


def test_deduplicate_sources_sorts_by_authority():
    a, b = _source("https://a.com", 60), _source("https://b.com", 90)
    facts = [_fact("x", sources=[a, b]), _fact("y", sources=[_source("https://a.com", 60)])]

    assert [s.url for s in deduplicate_sources(facts)] == ["https://b.com", "https://a.com"]


def test_facts_grouped_by_topic_with_general_last():
    sub_questions = [SubQuestion(id="q1", question="What does it cost?", category="pricing", priority="high", search_query="cost")]
    facts = [_fact("Unrelated finding"), _fact("It costs 20 dollars", sq_ids=["q1"], value="$20")]

    text = format_facts_by_topic(facts, {"https://a.com": 1}, sub_questions)

    assert text.index("### What does it cost?") < text.index("### General")
    assert "- It costs 20 dollars: $20 [high confidence] [sources: 1]" in text


class TestSynthesize:
    @pytest.mark.asyncio
    async def test_appends_sources_and_follow_ups(self):
        llm = ScriptedLLM("Acme Pro costs 20 dollars per month [1].", '["What about the Team plan?", "Is there a free trial?"]')
        synthesizer = ResponseSynthesizer(llm, model="test-model")
        facts = [_fact("Acme Pro costs 20 dollars per month", value="$20")]

        result = await synthesizer.synthesize("How much is Acme Pro?", facts, [], ResearchStats())

        assert result.response.startswith("Acme Pro costs 20 dollars per month [1].")
        assert "## Sources\n[1] a.com - https://a.com" in result.response
        assert result.follow_up_questions == ["What about the Team plan?", "Is there a free trial?"]
        assert result.confidence == "high"
        assert [c["caller"] for c in llm.calls] == ["synthesizer", "synthesizer.follow_ups"]

    @pytest.mark.asyncio
    async def test_keeps_model_sources_section(self):
        answer = "Answer [1].\n\n## Sources\n[1] a.com"
        llm = ScriptedLLM(answer, "[]")

        result = await ResponseSynthesizer(llm, model="m").synthesize("q", [_fact("Claim text here")], [], ResearchStats())

        assert result.response == answer

    @pytest.mark.asyncio
    async def test_falls_back_to_fact_listing(self):
        llm = ScriptedLLM(LLMResponseError("down"), LLMResponseError("down"))
        facts = [_fact("Acme Pro costs 20 dollars per month", value="$20")]
        gaps = [_gap("important")]

        result = await ResponseSynthesizer(llm, model="m").synthesize("How much is Acme Pro?", facts, gaps, ResearchStats())

        assert result.response.startswith("## Research findings: How much is Acme Pro?")
        assert "- Acme Pro costs 20 dollars per month: $20 [high confidence] [sources: 1]" in result.response
        assert "important gap (important)" in result.response
        assert result.follow_up_questions == []

    @pytest.mark.asyncio
    async def test_empty_answer_uses_fallback(self):
        llm = ScriptedLLM("   ", "[]")

        result = await ResponseSynthesizer(llm, model="m").synthesize("Anything?", [], [], ResearchStats())

        assert "No verified facts were found" in result.response
        assert result.confidence == "low"

    @pytest.mark.asyncio
    async def test_weak_evidence_nice_to_have_gaps_are_dropped(self):
        llm = ScriptedLLM("Answer.", "[]")
        gaps = [
            _gap("critical", "q1"),
            _gap("nice-to-have", "q2", kind="single-source"),
            _gap("nice-to-have", "q3", kind="low-confidence"),
        ]

        result = await ResponseSynthesizer(llm, model="m").synthesize("q", [_fact("Claim text here")], gaps, ResearchStats())

        assert [g.sub_question_id for g in result.gaps] == ["q1"]
        assert result.confidence == "medium"

    @pytest.mark.asyncio
    async def test_unanswered_nice_to_have_gaps_are_kept(self):
        llm = ScriptedLLM("Answer.", "[]")
        gaps = [_gap("critical", "q1"), _gap("nice-to-have", "q3")]

        result = await ResponseSynthesizer(llm, model="m").synthesize("q", [], gaps, ResearchStats())

        assert [g.sub_question_id for g in result.gaps] == ["q1", "q3"]
