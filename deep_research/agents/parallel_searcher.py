from __future__ import annotations

import asyncio
import time
from typing import Callable

from loguru import logger

from deep_research.config import settings
from deep_research.errors import BrowserUnavailableError
from deep_research.models.research import SearchOptions, SearchResult, SubQuestion
from deep_research.tools.browser import SearchBrowser
from deep_research.tools.query_hygiene import prepare_search_query
from deep_research.tools.web_utils import filter_video_results, is_valid_url

ShouldContinue = Callable[[], bool]


def chunk(items: list, size: int) -> list[list]:
    size = max(size, 1)
    return [items[i : i + size] for i in range(0, len(items), size)]


class ParallelSearcher:
    """Runs one search per sub-question in fixed-size concurrent batches.

    Batches run one after another; searches within a batch run together and
    the whole batch is awaited before the next starts, so at most
    ``max_concurrent`` calls are ever in flight against the shared browser.
    """

    def __init__(
        self,
        browser: SearchBrowser,
        *,
        max_concurrent: int | None = None,
        recent_range: str | None = None,
    ):
        self.browser = browser
        self.max_concurrent = max(max_concurrent or settings.search_max_concurrent, 1)
        self.recent_range = recent_range or settings.search_time_range
        self.searches_issued = 0

    async def search_all(
        self,
        sub_questions: list[SubQuestion],
        results_per_query: int = 5,
        *,
        should_continue: ShouldContinue | None = None,
    ) -> dict[str, list[SearchResult]]:
        t0 = time.monotonic()
        # Every sub-question gets a key, even when the deadline skips its batch.
        results: dict[str, list[SearchResult]] = {sq.id: [] for sq in sub_questions}
        searched = 0

        for batch_index, batch in enumerate(chunk(sub_questions, self.max_concurrent)):
            if batch_index > 0 and should_continue is not None and not should_continue():
                logger.info(f"Deadline reached, skipping {len(sub_questions) - searched} remaining searches")
                break
            searched += len(batch)
            batch_results = await asyncio.gather(
                *(self._search_one(sq, results_per_query) for sq in batch)
            )
            for sq, sq_results in zip(batch, batch_results):
                results[sq.id] = sq_results

        total = sum(len(r) for r in results.values())
        logger.info(
            f"Completed {searched} searches, got {total} results "
            f"in {int((time.monotonic() - t0) * 1000)}ms"
        )
        return results

    async def _search_one(self, sq: SubQuestion, results_per_query: int) -> list[SearchResult]:
        prepared = prepare_search_query(sq.search_query, recent_range=self.recent_range)
        query = prepared.query or sq.question
        options = SearchOptions(max_results=results_per_query, time_range=prepared.time_range)

        self.searches_issued += 1
        try:
            raw_results = await self.browser.execute_search(query, options)
        except BrowserUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Search failed for {query!r}: {e}")
            return []

        usable = [r for r in raw_results or [] if is_valid_url(r.url)]
        usable = filter_video_results(usable)
        return [
            SearchResult(
                url=r.url,
                title=r.title,
                snippet=r.snippet,
                position=idx + 1,
                query=query,
                sub_question_id=sq.id,
            )
            for idx, r in enumerate(usable[:results_per_query])
        ]
