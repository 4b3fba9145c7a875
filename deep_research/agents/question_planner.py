from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from deep_research.config import settings
from deep_research.errors import JSONExtractionError
from deep_research.llm_client import LLMClient, model_for
from deep_research.models.research import CATEGORIES, PRIORITIES, SubQuestion
from deep_research.services.json_utils import extract_json
from deep_research.services.prompt_store import render_prompt
from deep_research.tools.query_hygiene import sanitize_search_query

PLANNER_MAX_TOKENS = 3000
PLANNER_TEMPERATURE = 0.3
RETRY_TEMPERATURE = 0.1


class QuestionPlanner:
    """Decomposes a user prompt into independently searchable sub-questions."""

    name = "planner"

    def __init__(
        self,
        llm: LLMClient,
        *,
        model: str | None = None,
        max_retries: int | None = None,
        retry_wait_ms: int | None = None,
    ):
        self.llm = llm
        self.model = model or model_for("planner")
        self.max_retries = settings.llm_max_retries if max_retries is None else max(max_retries, 0)
        self.retry_wait_ms = settings.llm_retry_wait_ms if retry_wait_ms is None else retry_wait_ms

    async def decompose(self, user_prompt: str, max_sub_questions: int = 8) -> list[SubQuestion]:
        """Return at most ``max_sub_questions`` sub-questions; never raises for model failures."""
        prompt = render_prompt(
            "planner.decompose",
            user_prompt=user_prompt,
            max_sub_questions=max_sub_questions,
        )

        for attempt in range(self.max_retries + 1):
            try:
                completion = await self.llm.complete(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=PLANNER_MAX_TOKENS,
                    temperature=RETRY_TEMPERATURE if attempt > 0 else PLANNER_TEMPERATURE,
                    caller=self.name,
                )
                parsed = extract_json(
                    completion.content,
                    array_field="subQuestions",
                    context="query decomposition",
                )
                sub_questions = coerce_sub_questions(parsed["subQuestions"], max_sub_questions)
                if not sub_questions:
                    raise JSONExtractionError("Decomposition produced no usable sub-questions")
                logger.info(f"Planned {len(sub_questions)} sub-questions")
                return sub_questions
            except Exception as e:
                logger.warning(f"Decomposition attempt {attempt + 1} failed: {e}")
                if attempt < self.max_retries and self.retry_wait_ms > 0:
                    await asyncio.sleep(self.retry_wait_ms / 1000)

        logger.error("All decomposition attempts failed, using fallback sub-question")
        return fallback_sub_questions(user_prompt)


def coerce_sub_questions(raw_items: list[Any], limit: int) -> list[SubQuestion]:
    """Turn loosely-typed model output into SubQuestion records.

    Items without question text are dropped, unknown categories become
    ``facts`` and unknown priorities ``medium``. Missing or repeated ids are
    replaced with ``q<n>``.
    """
    sub_questions: list[SubQuestion] = []
    seen_ids: set[str] = set()
    for item in raw_items:
        if len(sub_questions) >= limit:
            break
        if not isinstance(item, dict):
            continue
        question = str(item.get("question") or "").strip()
        if not question:
            continue

        sq_id = str(item.get("id") or "").strip()
        if not sq_id or sq_id in seen_ids:
            sq_id = f"q{len(sub_questions) + 1}"
            while sq_id in seen_ids:
                sq_id = f"{sq_id}_"
        seen_ids.add(sq_id)

        category = str(item.get("category") or "").lower().strip()
        priority = str(item.get("priority") or "").lower().strip()
        search_query = sanitize_search_query(str(item.get("searchQuery") or question))

        sub_questions.append(
            SubQuestion(
                id=sq_id,
                question=question,
                category=category if category in CATEGORIES else "facts",
                priority=priority if priority in PRIORITIES else "medium",
                search_query=search_query or question,
            )
        )
    return sub_questions


def fallback_sub_questions(user_prompt: str) -> list[SubQuestion]:
    return [
        SubQuestion(
            id="q1",
            question=user_prompt,
            category="facts",
            priority="high",
            search_query=sanitize_search_query(user_prompt) or user_prompt,
        )
    ]
