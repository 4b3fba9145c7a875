from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from deep_research.models.research import SearchOptions
from deep_research.tools import brave_search

PAYLOAD = {
    "web": {
        "results": [
            {
                "title": "<strong>Acme Pro</strong> pricing",
                "url": "https://a.com/pricing",
                "description": "Plans from &#36;20 &amp; up",
            },
            {"title": "Duplicate", "url": "https://a.com/pricing", "description": "again"},
            {"title": "Review", "url": "https://b.com/review", "description": "", "extra_snippets": ["One", "two"]},
            {"title": "Third", "url": "https://c.com", "description": "c"},
        ]
    }
}


def test_build_params_maps_time_range_to_freshness():
    params = brave_search.build_params("acme pro", SearchOptions(max_results=5, time_range="week"))

    assert params["q"] == "acme pro"
    assert params["count"] == 5
    assert params["freshness"] == "pw"
    assert params["text_decorations"] == "false"


def test_build_params_clamps_count_and_ignores_unknown_range():
    params = brave_search.build_params("acme pro", SearchOptions(max_results=50, time_range="decade"))

    assert params["count"] == 20
    assert "freshness" not in params


def test_parse_results_dedupes_and_strips_markup():
    hits = brave_search.parse_results(PAYLOAD, max_results=10)

    assert [h.url for h in hits] == ["https://a.com/pricing", "https://b.com/review", "https://c.com"]
    assert hits[0].title == "Acme Pro pricing"
    assert hits[0].content == "Plans from $20 & up"
    assert hits[1].content == "One two"
    assert hits[0].score == 1.0
    assert hits[1].score == 0.5


def test_parse_results_respects_max_results_and_empty_payload():
    assert len(brave_search.parse_results(PAYLOAD, max_results=1)) == 1
    assert brave_search.parse_results({}, max_results=5) == []
    assert brave_search.parse_results({"web": None}, max_results=5) == []


@pytest.mark.asyncio
async def test_search_sends_options_to_brave():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=PAYLOAD)

    with patch("deep_research.tools.brave_search.settings") as mock_settings:
        mock_settings.brave_api_key = "brave-test"
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            hits = await brave_search.search(
                "acme pro price",
                SearchOptions(max_results=2, time_range="month"),
                client=client,
            )

    [request] = requests
    assert request.headers["X-Subscription-Token"] == "brave-test"
    assert request.url.params["q"] == "acme pro price"
    assert request.url.params["count"] == "2"
    assert request.url.params["freshness"] == "pm"
    assert [h.url for h in hits] == ["https://a.com/pricing", "https://b.com/review"]


@pytest.mark.asyncio
async def test_search_raises_on_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "rate limited"})

    with patch("deep_research.tools.brave_search.settings") as mock_settings:
        mock_settings.brave_api_key = "brave-test"
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await brave_search.search("acme", SearchOptions(), client=client)


@pytest.mark.asyncio
async def test_search_requires_api_key():
    with patch("deep_research.tools.brave_search.settings") as mock_settings:
        mock_settings.brave_api_key = ""
        with pytest.raises(RuntimeError):
            await brave_search.search("acme", SearchOptions())
