from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tavily import AsyncTavilyClient

from deep_research.config import settings
from deep_research.models.research import SearchOptions


@dataclass
class WebHit:
    title: str
    url: str
    content: str
    score: float


async def search(
    query: str,
    options: SearchOptions,
    *,
    search_depth: str = "basic",
) -> list[WebHit]:
    """Execute a Tavily web search and return structured hits."""
    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": options.max_results,
        "topic": "general",
        "include_raw_content": False,
    }
    if options.time_range:
        kwargs["time_range"] = options.time_range

    response = await client.search(**kwargs)

    return [
        WebHit(
            title=r.get("title", "") or "",
            url=r.get("url", "") or "",
            content=r.get("content", "") or "",
            score=r.get("score", 0.0) or 0.0,
        )
        for r in response.get("results", [])
    ]
