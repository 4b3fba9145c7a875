from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger

from deep_research.agents.parallel_searcher import chunk
from deep_research.config import settings
from deep_research.llm_client import LLMClient, get_model
from deep_research.models.research import ExtractedContent, ExtractedFact, SourceEvaluation, SubQuestion
from deep_research.services.fact_validator import filter_valid_facts, score_fact
from deep_research.services.json_utils import extract_json
from deep_research.services.prompt_store import render_prompt

# Domain reputation, 0-100. Subdomains inherit their parent's score.
DOMAIN_AUTHORITY: dict[str, int] = {
    # Official vendor sources
    "openai.com": 100,
    "anthropic.com": 100,
    "cloud.google.com": 100,
    "azure.microsoft.com": 100,
    "learn.microsoft.com": 100,
    "aws.amazon.com": 100,
    "developer.apple.com": 100,
    # Major references and wire services
    "wikipedia.org": 90,
    "reuters.com": 90,
    "bloomberg.com": 90,
    "apnews.com": 90,
    "nature.com": 90,
    # Quality press
    "techcrunch.com": 85,
    "theverge.com": 85,
    "wired.com": 85,
    "arstechnica.com": 85,
    "nytimes.com": 85,
    "ft.com": 85,
    "wsj.com": 85,
    "bbc.com": 85,
    "bbc.co.uk": 85,
    "economist.com": 85,
    # Developer resources
    "github.com": 80,
    "stackoverflow.com": 75,
    "developer.mozilla.org": 80,
    "dev.to": 65,
    "medium.com": 60,
    # Forums and social
    "reddit.com": 50,
    "quora.com": 45,
    "twitter.com": 40,
    "x.com": 40,
}
GOVERNMENT_SCORE = 95
DEFAULT_AUTHORITY = 50
DEFAULT_RECENCY = 50

# (max age in days, score); older than the last step scores RECENCY_FLOOR.
RECENCY_STEPS = ((7, 100), (30, 90), (90, 75), (180, 60), (365, 45), (730, 30))
RECENCY_FLOOR = 15

AUTHORITY_WEIGHT = 0.35
RECENCY_WEIGHT = 0.30
RELEVANCE_WEIGHT = 0.35

MAX_FACTS = 15
FACT_CONTENT_CHARS = 5000
EXTRACTION_MAX_TOKENS = 4000
EXTRACTION_TEMPERATURE = 0.2
RETRY_TEMPERATURE = 0.1


def authority_score(domain: str) -> int:
    domain = (domain or "").lower()
    if domain.startswith("www."):
        domain = domain[4:]
    if domain in DOMAIN_AUTHORITY:
        return DOMAIN_AUTHORITY[domain]
    for known, score in DOMAIN_AUTHORITY.items():
        if domain.endswith(f".{known}"):
            return score

    labels = domain.split(".")
    if "gov" in labels[-2:] or labels[-1] in ("edu", "int", "mil"):
        return GOVERNMENT_SCORE
    return DEFAULT_AUTHORITY


def recency_score(
    publish_date: datetime | None,
    last_modified: datetime | None = None,
    *,
    now: datetime | None = None,
) -> int:
    dates = [_aware(d) for d in (publish_date, last_modified) if d is not None]
    if not dates:
        return DEFAULT_RECENCY

    now = _aware(now) if now is not None else datetime.now(timezone.utc)
    age_days = (now - max(dates)).total_seconds() / 86400
    for max_age, score in RECENCY_STEPS:
        if age_days < max_age:
            return score
    return RECENCY_FLOOR


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def relevance_score(content: ExtractedContent, sub_questions: list[SubQuestion]) -> int:
    """60 points for sub-question coverage plus 40 for keyword density (capped at 10 hits)."""
    if not sub_questions:
        return 0
    content_lower = content.main_content.lower()
    title_lower = content.title.lower()

    matched_questions = 0
    total_hits = 0
    for sq in sub_questions:
        keywords = [w for w in sq.search_query.lower().split() if len(w) > 3]
        hits = sum(1 for kw in keywords if kw in content_lower or kw in title_lower)
        total_hits += hits
        if hits >= len(keywords) * 0.5:
            matched_questions += 1

    coverage = matched_questions / len(sub_questions)
    density = min(total_hits / 10, 1)
    return round(coverage * 60 + density * 40)


def overall_score(authority: int, recency: int, relevance: int) -> int:
    return round(authority * AUTHORITY_WEIGHT + recency * RECENCY_WEIGHT + relevance * RELEVANCE_WEIGHT)


def _coerce_fact(raw: Any, content: ExtractedContent) -> ExtractedFact | None:
    if not isinstance(raw, dict):
        return None
    claim = str(raw.get("claim") or "").strip()
    if not claim:
        return None

    value = raw.get("value")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        value = None
    elif isinstance(value, str):
        value = value.strip() or None

    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 50

    return ExtractedFact(
        claim=claim,
        context=str(raw.get("context") or "").strip(),
        source_url=content.url,
        confidence=float(confidence),
        category=str(raw.get("category") or "claim"),
        value=value,
        sub_question_id=content.sub_question_id,
    )


class SourceEvaluator:
    """Scores fetched pages and extracts validated facts from them."""

    name = "evaluator"

    def __init__(
        self,
        llm: LLMClient,
        *,
        model: str | None = None,
        max_concurrent: int | None = None,
        max_retries: int | None = None,
        retry_wait_ms: int | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.llm = llm
        self.model = model or get_model()
        self.max_concurrent = max(max_concurrent or settings.evaluation_max_concurrent, 1)
        self.max_retries = settings.llm_max_retries if max_retries is None else max(max_retries, 0)
        self.retry_wait_ms = settings.llm_retry_wait_ms if retry_wait_ms is None else retry_wait_ms
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def evaluate_all(
        self,
        contents: list[ExtractedContent],
        sub_questions: list[SubQuestion],
    ) -> list[SourceEvaluation]:
        t0 = time.monotonic()
        evaluations: list[SourceEvaluation] = []

        for batch in chunk(contents, self.max_concurrent):
            results = await asyncio.gather(
                *(self.evaluate(content, sub_questions) for content in batch),
                return_exceptions=True,
            )
            for content, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error(f"Evaluation failed for {content.url}: {result}")
                    continue
                evaluations.append(result)

        evaluations.sort(key=lambda e: e.overall_score, reverse=True)
        logger.info(
            f"Evaluated {len(evaluations)}/{len(contents)} sources "
            f"in {int((time.monotonic() - t0) * 1000)}ms"
        )
        return evaluations

    async def evaluate(self, content: ExtractedContent, sub_questions: list[SubQuestion]) -> SourceEvaluation:
        authority = authority_score(content.domain)
        recency = recency_score(content.publish_date, content.last_modified, now=self._now())
        relevance = relevance_score(content, sub_questions)

        raw_facts = await self.extract_facts(content)
        valid_facts = filter_valid_facts(raw_facts)
        facts = [replace(fact, confidence=score_fact(fact)) for fact in valid_facts]
        logger.debug(f"{content.url}: {len(raw_facts)} raw facts -> {len(facts)} valid facts")

        return SourceEvaluation(
            url=content.url,
            domain=content.domain,
            authority_score=authority,
            recency_score=recency,
            relevance_score=relevance,
            overall_score=overall_score(authority, recency, relevance),
            content=content,
            extracted_facts=facts,
        )

    async def extract_facts(self, content: ExtractedContent) -> list[ExtractedFact]:
        """Ask the model for facts; any failure after retries yields an empty list."""
        prompt = render_prompt(
            "evaluator.extract_facts",
            max_facts=MAX_FACTS,
            url=content.url,
            domain=content.domain,
            content=content.main_content[:FACT_CONTENT_CHARS],
        )

        for attempt in range(self.max_retries + 1):
            try:
                completion = await self.llm.complete(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=EXTRACTION_MAX_TOKENS,
                    temperature=RETRY_TEMPERATURE if attempt > 0 else EXTRACTION_TEMPERATURE,
                    caller=self.name,
                )
                parsed = extract_json(
                    completion.content,
                    array_field="facts",
                    context=f"fact extraction for {content.url}",
                )
                facts = [_coerce_fact(raw, content) for raw in parsed["facts"]]
                return [fact for fact in facts if fact is not None][:MAX_FACTS]
            except Exception as e:
                logger.warning(f"Fact extraction attempt {attempt + 1} failed for {content.url}: {e}")
                if attempt < self.max_retries and self.retry_wait_ms > 0:
                    await asyncio.sleep(self.retry_wait_ms / 1000)

        logger.error(f"All {self.max_retries + 1} fact extraction attempts failed for {content.url}")
        return []
