"""End-to-end pipeline tests with in-memory collaborators."""
from __future__ import annotations

import pytest

from deep_research.agents.orchestrator import DeepResearchEngine, research
from deep_research.errors import BrowserUnavailableError
from deep_research.models.schemas import DeepResearchConfig
from deep_research.tools import content_extractor
from fakes import (
    LONG_TEXT,
    FakeClock,
    FakePageBrowser,
    FakeSearchBrowser,
    RoutingLLM,
    UnavailablePageBrowser,
    article_html,
)

SUB_QUESTIONS = [
    {
        "id": "q1",
        "question": "How much does Acme Pro cost?",
        "category": "pricing",
        "priority": "high",
        "searchQuery": "acme pro price",
    },
    {
        "id": "q2",
        "question": "What features does Acme Pro include?",
        "category": "features",
        "priority": "medium",
        "searchQuery": "acme pro features",
    },
]

PRICE_FACT = {
    "claim": "The Acme Pro plan costs 20 dollars per month",
    "value": "$20",
    "context": "Acme Pro plan costs 20 dollars per month according to the official pricing page.",
    "confidence": 85,
    "category": "pricing",
}

TRUSTED_URLS = ["https://www.reuters.com/acme-pricing", "https://www.bloomberg.com/acme-pro"]

PHASES = ["decomposition", "search", "retrieval", "evaluation", "verification", "gap_analysis"]


@pytest.fixture(autouse=True)
def no_trafilatura(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args, **_kwargs: "")


def _phase(result, name):
    return [p for p in result.stats.phases if p.name == name]


@pytest.mark.asyncio
async def test_empty_search_still_returns_result_with_gaps():
    llm = RoutingLLM(SUB_QUESTIONS)
    search = FakeSearchBrowser([])
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    engine = DeepResearchEngine(llm, search, pages)

    result = await engine.research("Is Acme Pro worth it?")

    assert result.confidence == "low"
    assert result.verified_facts == []
    assert {g.sub_question_id for g in result.gaps} == {"q1", "q2"}
    assert pages.fetched == []
    # Two initial searches plus one follow-up per gap.
    assert result.stats.total_searches == 4
    assert [p.name for p in result.stats.phases] == PHASES + ["follow_up", "synthesis"]
    assert not any(p.skipped for p in result.stats.phases)


@pytest.mark.asyncio
async def test_empty_search_reports_gap_for_low_priority_sub_question():
    low_priority = {
        "id": "q3",
        "question": "What do reviewers say about Acme Pro support?",
        "category": "opinions",
        "priority": "low",
        "searchQuery": "acme pro support reviews",
    }
    llm = RoutingLLM([SUB_QUESTIONS[0], low_priority])
    engine = DeepResearchEngine(llm, FakeSearchBrowser([]), FakePageBrowser())

    result = await engine.research("Is Acme Pro worth it?")

    assert {g.sub_question_id for g in result.gaps} == {"q1", "q3"}
    assert {g.sub_question_id: g.importance for g in result.gaps} == {"q1": "critical", "q3": "nice-to-have"}
    # Only the critical gap is searched again.
    assert result.stats.total_searches == 3


@pytest.mark.asyncio
async def test_corroborated_fact_gives_high_confidence():
    llm = RoutingLLM(SUB_QUESTIONS[:1], facts=[PRICE_FACT])
    search = FakeSearchBrowser(TRUSTED_URLS)
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    engine = DeepResearchEngine(llm, search, pages, agent_id="agent-1")

    result = await engine.research("How much is Acme Pro?")

    [fact] = result.verified_facts
    assert fact.agreement_count == 2
    assert fact.confidence == "high"
    assert fact.sub_question_ids == ["q1"]
    assert result.gaps == []
    assert result.confidence == "high"
    assert [s.domain for s in result.sources] == ["reuters.com", "bloomberg.com"]
    assert "## Sources" in result.response
    assert result.follow_up_questions == ["What does the Team plan cost?"]

    stats = result.stats
    assert stats.total_searches == 1
    assert stats.pages_analyzed == 2
    assert stats.facts_extracted == 2
    assert stats.facts_verified == 1
    assert stats.total_time_ms >= 0
    assert [p.name for p in stats.phases] == PHASES + ["synthesis"]


@pytest.mark.asyncio
async def test_deadline_passed_before_retrieval_still_synthesizes():
    clock = FakeClock()
    llm = RoutingLLM(SUB_QUESTIONS[:1], facts=[PRICE_FACT])
    search = FakeSearchBrowser(TRUSTED_URLS, on_search=lambda _query: clock.advance(10))
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    config = DeepResearchConfig(timeout_ms=1000)
    engine = DeepResearchEngine(llm, search, pages, config=config, clock=clock)

    result = await engine.research("How much is Acme Pro?")

    assert pages.fetched == []
    assert result.verified_facts == []
    assert result.confidence == "low"
    assert _phase(result, "retrieval")[0].skipped is True
    assert _phase(result, "evaluation")[0].skipped is True
    assert _phase(result, "follow_up")[0].skipped is True
    assert _phase(result, "synthesis")[0].skipped is False
    assert "evaluator" not in llm.callers
    assert "synthesizer" in llm.callers


@pytest.mark.asyncio
async def test_zero_timeout_uses_fallback_plan():
    llm = RoutingLLM(SUB_QUESTIONS)
    search = FakeSearchBrowser(TRUSTED_URLS)
    engine = DeepResearchEngine(llm, search, FakePageBrowser(), config=DeepResearchConfig(timeout_ms=0))

    result = await engine.research("How much is Acme Pro?")

    assert search.queries == []
    assert "planner" not in llm.callers
    assert _phase(result, "decomposition")[0].skipped is True
    assert [g.sub_question_id for g in result.gaps] == ["q1"]


@pytest.mark.asyncio
async def test_follow_up_round_fills_gap():
    llm = RoutingLLM(SUB_QUESTIONS[:1], facts=[PRICE_FACT])
    search = FakeSearchBrowser(rounds=[[], TRUSTED_URLS])
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    engine = DeepResearchEngine(llm, search, pages)

    result = await engine.research("How much is Acme Pro?")

    assert search.queries[1][0] == "acme pro price"
    [fact] = result.verified_facts
    assert fact.sub_question_ids == ["q1"]
    assert result.gaps == []
    assert result.stats.total_searches == 2
    assert result.stats.pages_analyzed == 2
    assert len(_phase(result, "verification")) == 2
    assert len(_phase(result, "gap_analysis")) == 2


@pytest.mark.asyncio
async def test_nice_to_have_gap_does_not_trigger_follow_up():
    llm = RoutingLLM(SUB_QUESTIONS[:1], facts=[PRICE_FACT])
    search = FakeSearchBrowser(["https://www.reuters.com/acme-pricing"])
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    engine = DeepResearchEngine(llm, search, pages)

    result = await engine.research("How much is Acme Pro?")

    assert pages.fetched == ["https://www.reuters.com/acme-pricing"]
    assert result.stats.total_searches == 1
    assert _phase(result, "follow_up") == []
    assert result.gaps == []


@pytest.mark.asyncio
async def test_follow_up_skips_pages_already_analyzed():
    llm = RoutingLLM(SUB_QUESTIONS, facts=[PRICE_FACT])
    reuters, bloomberg = TRUSTED_URLS
    search = FakeSearchBrowser(rounds=[[reuters], [], TRUSTED_URLS])
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    engine = DeepResearchEngine(llm, search, pages)

    result = await engine.research("Is Acme Pro worth it?")

    assert pages.fetched == [reuters, bloomberg]
    assert result.stats.total_searches == 3
    assert result.stats.pages_analyzed == 2
    [fact] = result.verified_facts
    assert fact.sub_question_ids == ["q1", "q2"]
    assert result.gaps == []


@pytest.mark.asyncio
async def test_follow_up_disabled():
    llm = RoutingLLM(SUB_QUESTIONS)
    search = FakeSearchBrowser([])
    config = DeepResearchConfig(max_follow_up_searches=0)
    engine = DeepResearchEngine(llm, search, FakePageBrowser(), config=config)

    result = await engine.research("Is Acme Pro worth it?")

    assert result.stats.total_searches == 2
    assert _phase(result, "follow_up") == []


@pytest.mark.asyncio
async def test_browser_unavailable_is_fatal():
    llm = RoutingLLM(SUB_QUESTIONS)
    search = FakeSearchBrowser(error=BrowserUnavailableError("search browser offline"))
    engine = DeepResearchEngine(llm, search, FakePageBrowser())

    with pytest.raises(BrowserUnavailableError):
        await engine.research("Is Acme Pro worth it?")


@pytest.mark.asyncio
async def test_page_browser_unavailable_is_fatal():
    llm = RoutingLLM(SUB_QUESTIONS[:1])
    engine = DeepResearchEngine(llm, FakeSearchBrowser(TRUSTED_URLS), UnavailablePageBrowser())

    with pytest.raises(BrowserUnavailableError):
        await engine.research("Is Acme Pro worth it?")


@pytest.mark.asyncio
async def test_video_results_never_reach_page_analyzer():
    llm = RoutingLLM(SUB_QUESTIONS[:1], facts=[PRICE_FACT])
    search = FakeSearchBrowser(["https://www.youtube.com/watch?v=acme"] + TRUSTED_URLS)
    pages = FakePageBrowser(default_html=article_html(LONG_TEXT))
    engine = DeepResearchEngine(llm, search, pages)

    await engine.research("How much is Acme Pro?")

    assert not any("youtube" in url for url in pages.fetched)
    assert len(pages.fetched) == 2


@pytest.mark.asyncio
async def test_module_level_research_uses_given_collaborators():
    llm = RoutingLLM(SUB_QUESTIONS[:1], facts=[PRICE_FACT])

    result = await research(
        "How much is Acme Pro?",
        "agent-2",
        llm=llm,
        search_browser=FakeSearchBrowser(TRUSTED_URLS),
        page_browser=FakePageBrowser(default_html=article_html(LONG_TEXT)),
    )

    payload = result.to_dict()
    assert payload["confidence"] == "high"
    assert payload["stats"]["pagesAnalyzed"] == 2
    assert payload["verifiedFacts"][0]["agreementCount"] == 2
    assert payload["sources"][0]["authorityScore"] == 90
