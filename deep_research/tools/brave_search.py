"""Brave Web Search client.

Hits come back as plain-text snippets in rank order, one per URL, ready to be
filtered and numbered by the search browser.
"""
from __future__ import annotations

import html
import re
from typing import Any

import httpx
from loguru import logger

from deep_research.config import settings
from deep_research.models.research import SearchOptions
from deep_research.tools.tavily_search import WebHit

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_TIMEOUT_SECONDS = 30.0

# Recency windows the query planner emits, as Brave freshness codes.
FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}

# Brave rejects count > 20.
MAX_COUNT = 20

_TAG_RE = re.compile(r"<[^>]+>")


def build_params(query: str, options: SearchOptions) -> dict[str, Any]:
    params: dict[str, Any] = {
        "q": query,
        "count": max(1, min(options.max_results, MAX_COUNT)),
        "result_filter": "web",
        "text_decorations": "false",
        "extra_snippets": "true",
    }
    if options.time_range:
        freshness = FRESHNESS_MAP.get(options.time_range)
        if freshness:
            params["freshness"] = freshness
        else:
            logger.debug(f"Ignoring unsupported Brave time range: {options.time_range}")
    return params


def _plain(text: str | None) -> str:
    return " ".join(html.unescape(_TAG_RE.sub("", text or "")).split())


def parse_results(payload: dict[str, Any], max_results: int) -> list[WebHit]:
    """Turn a Brave response into de-duplicated hits scored by rank."""
    raw_results = (payload.get("web") or {}).get("results") or []
    total = max(len(raw_results), 1)
    seen: set[str] = set()
    hits: list[WebHit] = []
    for idx, item in enumerate(raw_results):
        url = (item.get("url") or "").strip()
        if not url or url in seen:
            continue
        seen.add(url)
        snippet = _plain(item.get("description"))
        if not snippet:
            snippet = _plain(" ".join(item.get("extra_snippets") or []))
        hits.append(
            WebHit(
                title=_plain(item.get("title")),
                url=url,
                content=snippet,
                score=round(1.0 - idx / total, 4),
            )
        )
        if len(hits) >= max_results:
            break
    return hits


async def search(
    query: str,
    options: SearchOptions,
    *,
    client: httpx.AsyncClient | None = None,
) -> list[WebHit]:
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    headers = {
        "Accept": "application/json",
        "X-Subscription-Token": settings.brave_api_key,
    }
    params = build_params(query, options)
    if client is None:
        async with httpx.AsyncClient(timeout=BRAVE_TIMEOUT_SECONDS) as owned:
            response = await owned.get(BRAVE_SEARCH_URL, params=params, headers=headers)
    else:
        response = await client.get(BRAVE_SEARCH_URL, params=params, headers=headers)
    response.raise_for_status()
    return parse_results(response.json(), options.max_results)
