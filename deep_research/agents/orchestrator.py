"""Deep research engine: runs every research phase under one deadline.

Phases run in order: decomposition, search, retrieval, evaluation,
verification, gap analysis, an optional follow-up round, then synthesis.
The deadline is checked before each phase and between batches inside the
search and retrieval phases. In-flight calls are never interrupted. Once the
deadline has passed, remaining network phases are recorded as skipped and the
engine goes straight to synthesis with whatever it has.
"""
from __future__ import annotations

import time
import uuid
from typing import Callable

from loguru import logger

from deep_research.agents.cross_referencer import CrossReferencer
from deep_research.agents.gap_analyzer import GapAnalyzer
from deep_research.agents.page_analyzer import PageAnalyzer
from deep_research.agents.parallel_searcher import ParallelSearcher
from deep_research.agents.question_planner import QuestionPlanner, fallback_sub_questions
from deep_research.agents.source_evaluator import SourceEvaluator
from deep_research.agents.synthesizer import ResponseSynthesizer
from deep_research.llm_client import LLMClient
from deep_research.models.research import (
    ExtractedContent,
    Gap,
    PhaseStats,
    ResearchResult,
    ResearchStats,
    SearchResult,
    SourceEvaluation,
    SubQuestion,
    VerifiedFact,
)
from deep_research.models.schemas import DEFAULT_CONFIG, DeepResearchConfig
from deep_research.services import logger as log_service
from deep_research.tools.browser import PageBrowser, SearchBrowser

FOLLOW_UP_PAGE_BUDGET = 5
FOLLOW_UP_IMPORTANCE = ("critical", "important")


def _flatten(results: dict[str, list[SearchResult]]) -> list[SearchResult]:
    return [r for sq_results in results.values() for r in sq_results]


def _count_facts(evaluations: list[SourceEvaluation]) -> int:
    return sum(len(e.extracted_facts) for e in evaluations)


class DeepResearchEngine:
    """One research pipeline wired to its collaborators.

    The language-model client and both browser adapters are passed in; the
    engine never reaches for shared instances. ``clock`` returns seconds and
    drives both the deadline and the phase timings.
    """

    def __init__(
        self,
        llm: LLMClient,
        search_browser: SearchBrowser,
        page_browser: PageBrowser,
        config: DeepResearchConfig = DEFAULT_CONFIG,
        agent_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.agent_id = agent_id
        self._clock = clock
        self._deadline: float | None = None

        self.planner = QuestionPlanner(llm)
        self.searcher = ParallelSearcher(search_browser)
        self.analyzer = PageAnalyzer(page_browser, clock=clock)
        self.evaluator = SourceEvaluator(llm)
        self.cross_referencer = CrossReferencer(config.min_source_confidence)
        self.gap_analyzer = GapAnalyzer(config.require_multiple_sources)
        self.synthesizer = ResponseSynthesizer(llm)

    def time_left(self) -> bool:
        return self._deadline is None or self._clock() < self._deadline

    async def research(self, user_prompt: str) -> ResearchResult:
        run_id = uuid.uuid4().hex
        started = self._clock()
        self._deadline = started + self.config.timeout_ms / 1000
        searches_before = self.searcher.searches_issued
        phases: list[PhaseStats] = []
        cfg = self.config

        logger.info(f"[{run_id}] Starting research for: {user_prompt[:100]!r}")
        log_service.log_research_step(
            run_id, "run", "started", {"agent_id": self.agent_id, "config": cfg.model_dump()}
        )

        def record(name: str, phase_start: float, items: int, skipped: bool = False) -> None:
            phases.append(
                PhaseStats(
                    name=name,
                    duration_ms=(self._clock() - phase_start) * 1000,
                    items_processed=items,
                    skipped=skipped,
                )
            )
            log_service.log_research_step(
                run_id, name, "skipped" if skipped else "completed", {"items_processed": items}
            )

        try:
            # Decomposition
            phase_start = self._clock()
            if self.time_left():
                sub_questions = await self.planner.decompose(user_prompt, cfg.max_sub_questions)
                record("decomposition", phase_start, len(sub_questions))
            else:
                sub_questions = fallback_sub_questions(user_prompt)
                record("decomposition", phase_start, len(sub_questions), skipped=True)
            sub_questions = sub_questions[: cfg.max_sub_questions]

            # Search
            phase_start = self._clock()
            search_results: list[SearchResult] = []
            if self.time_left():
                by_question = await self.searcher.search_all(
                    sub_questions,
                    cfg.max_searches_per_question,
                    should_continue=self.time_left,
                )
                search_results = _flatten(by_question)
                record("search", phase_start, len(search_results))
            else:
                record("search", phase_start, 0, skipped=True)

            # Retrieval
            phase_start = self._clock()
            contents: list[ExtractedContent] = []
            if self.time_left() and search_results:
                contents = await self.analyzer.analyze_all(
                    search_results,
                    cfg.max_pages_to_fetch,
                    should_continue=self.time_left,
                )
                record("retrieval", phase_start, len(contents))
            else:
                record("retrieval", phase_start, 0, skipped=not self.time_left())

            # Evaluation
            phase_start = self._clock()
            evaluations: list[SourceEvaluation] = []
            if self.time_left() and contents:
                evaluations = await self.evaluator.evaluate_all(contents, sub_questions)
                record("evaluation", phase_start, _count_facts(evaluations))
            else:
                record("evaluation", phase_start, 0, skipped=not self.time_left())

            # Verification and gap analysis are in-memory and always run.
            verified_facts, gaps = self._verify_and_find_gaps(evaluations, sub_questions, record)

            # Follow-up round
            pages_analyzed = len(contents)
            follow_up_gaps = self._follow_up_targets(gaps)
            if follow_up_gaps and cfg.max_follow_up_searches > 0:
                phase_start = self._clock()
                if self.time_left():
                    extra_contents, extra_evaluations, items = await self._follow_up_round(
                        follow_up_gaps,
                        analyzed_urls={c.url for c in contents},
                        page_budget=min(FOLLOW_UP_PAGE_BUDGET, cfg.max_pages_to_fetch - pages_analyzed),
                        sub_questions=sub_questions,
                    )
                    record("follow_up", phase_start, items)
                    pages_analyzed += len(extra_contents)
                    if extra_evaluations:
                        evaluations = evaluations + extra_evaluations
                        verified_facts, gaps = self._verify_and_find_gaps(
                            evaluations, sub_questions, record
                        )
                else:
                    record("follow_up", phase_start, 0, skipped=True)

            # Synthesis
            stats = ResearchStats(
                total_searches=self.searcher.searches_issued - searches_before,
                pages_analyzed=pages_analyzed,
                facts_extracted=_count_facts(evaluations),
                facts_verified=len(verified_facts),
                phases=phases,
            )
            phase_start = self._clock()
            result = await self.synthesizer.synthesize(
                user_prompt,
                verified_facts,
                gaps,
                stats,
                sub_questions=sub_questions,
            )
            record("synthesis", phase_start, 1)
            result.stats.total_time_ms = (self._clock() - started) * 1000

            logger.info(
                f"[{run_id}] Complete in {result.stats.total_time_ms:.0f}ms: "
                f"{stats.facts_verified} verified facts, confidence {result.confidence}"
            )
            log_service.log_research_step(
                run_id,
                "run",
                "completed",
                {
                    "total_searches": stats.total_searches,
                    "pages_analyzed": stats.pages_analyzed,
                    "facts_extracted": stats.facts_extracted,
                    "facts_verified": stats.facts_verified,
                    "confidence": result.confidence,
                },
            )
            return result
        except Exception as e:
            logger.error(f"[{run_id}] Research failed: {e}")
            log_service.log_research_step(run_id, "run", "failed", {"error": str(e)})
            raise
        finally:
            self._deadline = None

    def _verify_and_find_gaps(
        self,
        evaluations: list[SourceEvaluation],
        sub_questions: list[SubQuestion],
        record: Callable[..., None],
    ) -> tuple[list[VerifiedFact], list[Gap]]:
        phase_start = self._clock()
        verified_facts = self.cross_referencer.verify(evaluations)
        record("verification", phase_start, len(verified_facts))

        phase_start = self._clock()
        gaps = self.gap_analyzer.analyze(sub_questions, verified_facts)
        record("gap_analysis", phase_start, len(gaps))
        return verified_facts, gaps

    def _follow_up_targets(self, gaps: list[Gap]) -> list[Gap]:
        """Critical gaps first, then important ones, capped at maxFollowUpSearches."""
        actionable = [g for g in gaps if g.importance in FOLLOW_UP_IMPORTANCE and g.suggested_query]
        actionable.sort(key=lambda g: FOLLOW_UP_IMPORTANCE.index(g.importance))
        return actionable[: self.config.max_follow_up_searches]

    async def _follow_up_round(
        self,
        gaps: list[Gap],
        *,
        analyzed_urls: set[str],
        page_budget: int,
        sub_questions: list[SubQuestion],
    ) -> tuple[list[ExtractedContent], list[SourceEvaluation], int]:
        known_ids = {sq.id for sq in sub_questions}
        follow_ups: list[SubQuestion] = []
        answers_for: dict[str, str | None] = {}
        for i, gap in enumerate(gaps):
            follow_up = SubQuestion(
                id=f"followup_{i}",
                question=gap.description,
                category="facts",
                priority="high",
                search_query=gap.suggested_query,
            )
            follow_ups.append(follow_up)
            answers_for[follow_up.id] = gap.sub_question_id if gap.sub_question_id in known_ids else None

        logger.info(f"Running {len(follow_ups)} follow-up searches")
        by_question = await self.searcher.search_all(
            follow_ups,
            self.config.max_searches_per_question,
            should_continue=self.time_left,
        )
        results = [r for r in _flatten(by_question) if r.url not in analyzed_urls]
        if not results or page_budget <= 0 or not self.time_left():
            return [], [], len(results)

        contents = await self.analyzer.analyze_all(results, page_budget, should_continue=self.time_left)
        # Facts found for a follow-up count towards the sub-question behind the gap.
        for content in contents:
            if content.sub_question_id in answers_for:
                content.sub_question_id = answers_for[content.sub_question_id]
        if not contents or not self.time_left():
            return contents, [], len(results)

        evaluations = await self.evaluator.evaluate_all(contents, follow_ups)
        return contents, evaluations, len(results)


async def research(
    user_prompt: str,
    agent_id: str = "default",
    *,
    config: DeepResearchConfig | None = None,
    llm: LLMClient | None = None,
    search_browser: SearchBrowser | None = None,
    page_browser: PageBrowser | None = None,
) -> ResearchResult:
    """Run one research query, building default collaborators for any not supplied."""
    from deep_research.llm_client import get_client
    from deep_research.tools.browser import ProviderSearchBrowser, RenderedPageBrowser

    owned_page_browser: RenderedPageBrowser | None = None
    if page_browser is None:
        owned_page_browser = RenderedPageBrowser()
        page_browser = owned_page_browser

    engine = DeepResearchEngine(
        llm or get_client(),
        search_browser or ProviderSearchBrowser(),
        page_browser,
        config=config or DEFAULT_CONFIG,
        agent_id=agent_id,
    )
    try:
        return await engine.research(user_prompt)
    finally:
        if owned_page_browser is not None:
            await owned_page_browser.aclose()
