from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Callable

from loguru import logger

from deep_research.agents.parallel_searcher import ShouldContinue, chunk
from deep_research.config import settings
from deep_research.errors import BrowserUnavailableError
from deep_research.models.research import ExtractedContent, SearchResult
from deep_research.tools.browser import PageBrowser
from deep_research.tools.content_extractor import extract_page, is_valid_content


class PageAnalyzer:
    """Fetches result pages and turns them into ExtractedContent.

    Fetch failures, timeouts and pages that fail the content check produce
    nothing for that URL. Only ``BrowserUnavailableError`` escapes.
    """

    def __init__(
        self,
        browser: PageBrowser,
        *,
        max_concurrent: int | None = None,
        timeout_ms: int | None = None,
        min_word_count: int | None = None,
        retry_wait_ms: int | None = None,
        max_chars: int | None = None,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.browser = browser
        self.max_concurrent = max(max_concurrent or settings.page_max_concurrent, 1)
        self.timeout_ms = settings.page_timeout_ms if timeout_ms is None else timeout_ms
        self.min_word_count = settings.page_min_word_count if min_word_count is None else min_word_count
        self.retry_wait_ms = settings.page_retry_wait_ms if retry_wait_ms is None else retry_wait_ms
        self.max_chars = settings.page_max_chars if max_chars is None else max_chars
        self.cache_ttl_seconds = (
            settings.page_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._clock = clock
        self._cache: dict[str, tuple[float, ExtractedContent]] = {}

    async def analyze_all(
        self,
        search_results: list[SearchResult],
        max_pages: int = 20,
        *,
        should_continue: ShouldContinue | None = None,
    ) -> list[ExtractedContent]:
        t0 = time.monotonic()

        origin: dict[str, str | None] = {}
        for result in search_results:
            if result.url not in origin:
                origin[result.url] = result.sub_question_id
        urls = list(origin)[: max(max_pages, 0)]
        logger.info(f"Fetching {len(urls)} unique pages (parallel: {self.max_concurrent})")

        contents: list[ExtractedContent] = []
        for batch_index, batch in enumerate(chunk(urls, self.max_concurrent)):
            if batch_index > 0 and should_continue is not None and not should_continue():
                logger.info("Deadline reached, skipping remaining page fetches")
                break
            fetched = await asyncio.gather(*(self.analyze(url) for url in batch))
            for url, content in zip(batch, fetched):
                if content is None:
                    continue
                contents.append(replace(content, sub_question_id=origin[url]))

        logger.info(
            f"Retrieved {len(contents)}/{len(urls)} pages in {int((time.monotonic() - t0) * 1000)}ms"
        )
        return contents

    async def analyze(self, url: str) -> ExtractedContent | None:
        cached = self._cache.get(url)
        if cached is not None and self._clock() - cached[0] < self.cache_ttl_seconds:
            return cached[1]

        try:
            content = await self._fetch_and_extract(url)
        except BrowserUnavailableError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"Timeout ({self.timeout_ms}ms) for {url}, skipping")
            return None
        except Exception as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return None

        if content is None:
            return None
        self._cache[url] = (self._clock(), content)
        return content

    async def _extract_once(self, url: str) -> ExtractedContent:
        page = await asyncio.wait_for(self.browser.fetch_page(url), timeout=self.timeout_ms / 1000)
        return extract_page(
            url,
            page.html,
            title=page.title,
            fallback_text=page.text,
            max_chars=self.max_chars,
        )

    async def _fetch_and_extract(self, url: str) -> ExtractedContent | None:
        content = await self._extract_once(url)

        if content.word_count < self.min_word_count:
            # Likely not rendered yet.
            logger.debug(f"Only {content.word_count} words from {url}, retrying once")
            await asyncio.sleep(self.retry_wait_ms / 1000)
            content = await self._extract_once(url)

        if not is_valid_content(content.main_content):
            logger.info(f"Skipped invalid content from {url}")
            return None

        logger.debug(f"Extracted {content.word_count} words from {url}")
        return content
