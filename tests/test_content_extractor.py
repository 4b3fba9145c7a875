from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bs4 import BeautifulSoup

from deep_research.tools import content_extractor

PARAGRAPH = "Widgets are small devices used by many teams around the world. " * 5

PAGE = f"""
<html>
<head>
  <title>Widget Pricing</title>
  <meta property="article:published_time" content="2025-03-01T10:00:00Z">
</head>
<body>
  <nav><ul><li>Home</li><li>About</li></ul></nav>
  <div class="sidebar">Subscribe to our newsletter for weekly deals</div>
  <article>
    <h1>Widget pricing explained</h1>
    <p>{PARAGRAPH}</p>
    <ul><li>Basic plan costs 10 dollars</li><li>Pro plan costs 20 dollars</li></ul>
    <table>
      <tr><th>Plan</th><th>Price</th></tr>
      <tr><td>Basic plan</td><td>10 dollars</td></tr>
      <tr><td>Pro plan</td><td>20 dollars</td></tr>
    </table>
  </article>
  <script>var tracking = {{ id: 1 }};</script>
</body>
</html>
"""


@pytest.fixture
def no_trafilatura(monkeypatch):
    monkeypatch.setattr(content_extractor, "_extract_with_trafilatura", lambda *_args, **_kwargs: "")


def test_extract_page_reads_main_region(no_trafilatura):
    content = content_extractor.extract_page("https://www.example.com/widgets", PAGE)

    assert content.title == "Widget Pricing"
    assert content.domain == "example.com"
    assert "Widgets are small devices" in content.main_content
    assert "newsletter" not in content.main_content
    assert "Home" not in content.main_content
    assert "tracking" not in content.main_content
    assert content.word_count == len(content.main_content.split())


def test_extract_page_collects_structure(no_trafilatura):
    content = content_extractor.extract_page("https://example.com/widgets", PAGE)

    assert content.lists == [["Basic plan costs 10 dollars", "Pro plan costs 20 dollars"]]
    assert content.headings == ["Widget pricing explained"]
    assert len(content.tables) == 1
    assert content.tables[0].headers == ["Plan", "Price"]
    assert content.tables[0].rows == [["Basic plan", "10 dollars"], ["Pro plan", "20 dollars"]]


def test_extract_page_reads_publish_date(no_trafilatura):
    content = content_extractor.extract_page("https://example.com/widgets", PAGE)

    assert content.publish_date == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert content.last_modified is None


def test_extract_page_prefers_longer_trafilatura_text(monkeypatch):
    monkeypatch.setattr(
        content_extractor,
        "_extract_with_trafilatura",
        lambda *_args, **_kwargs: "Trafilatura extracted body sentence. " * 40,
    )

    content = content_extractor.extract_page("https://example.com/widgets", PAGE)

    assert content.main_content.startswith("Trafilatura extracted body sentence.")


def test_extract_page_truncates_to_max_chars(no_trafilatura):
    content = content_extractor.extract_page("https://example.com/widgets", PAGE, max_chars=120)

    assert len(content.main_content) <= 123


def test_extract_dates_from_json_ld():
    soup = BeautifulSoup(
        '<html><head><script type="application/ld+json">'
        '{"datePublished": "2024-06-01", "dateModified": "2024-07-01"}'
        "</script></head><body></body></html>",
        "html.parser",
    )

    published, modified = content_extractor.extract_dates(soup)

    assert published == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert modified == datetime(2024, 7, 1, tzinfo=timezone.utc)


class TestParseDate:
    def test_iso(self):
        assert content_extractor.parse_date("2024-05-06") == datetime(2024, 5, 6, tzinfo=timezone.utc)

    def test_text_format(self):
        assert content_extractor.parse_date("March 5, 2024") == datetime(2024, 3, 5, tzinfo=timezone.utc)

    def test_rejects_old_and_garbage(self):
        assert content_extractor.parse_date("1999-01-01") is None
        assert content_extractor.parse_date("not a date") is None
        assert content_extractor.parse_date(None) is None


class TestTruncateContent:
    def test_cuts_at_sentence_end(self):
        text = "First sentence here. Second sentence here. Third"
        assert content_extractor.truncate_content(text, 45) == "First sentence here. Second sentence here."

    def test_cuts_at_word_boundary(self):
        assert content_extractor.truncate_content("alpha beta gamma delta", 12) == "alpha beta..."

    def test_short_text_untouched(self):
        assert content_extractor.truncate_content("short", 100) == "short"


class TestIsValidContent:
    def test_prose_is_valid(self):
        assert content_extractor.is_valid_content("Plain sentences about widgets and their prices. " * 5) is True

    def test_short_text_is_invalid(self):
        assert content_extractor.is_valid_content("too short") is False

    def test_code_heavy_text_is_invalid(self):
        assert content_extractor.is_valid_content("function() { return 1; } " * 10) is False
