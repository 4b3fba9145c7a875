from __future__ import annotations

import re
from datetime import datetime, timezone

from bs4 import BeautifulSoup, Tag
from loguru import logger

from deep_research.models.research import ExtractedContent, TableData
from deep_research.tools.web_utils import extract_domain

NOISE_TAGS = (
    "script",
    "style",
    "noscript",
    "iframe",
    "svg",
    "canvas",
    "video",
    "audio",
    "form",
    "header",
    "footer",
    "nav",
    "aside",
    "menu",
    "map",
    "object",
    "embed",
)

# Matched against individual class tokens and ids.
NON_CONTENT_RE = re.compile(
    r"(^|[-_])ads?([-_]|$)|sidebar|side-bar|navbar|nav-bar|navigation|^nav([-_]|$)|menu|breadcrumb"
    r"|advert|sponsor|promo|banner|popup|modal|overlay|cookie|consent|gdpr|newsletter|subscribe"
    r"|share|sharing|social|comment|disqus|related|recommended|widget",
    re.I,
)
PATTERN_TAGS = ("div", "section", "aside", "span", "p", "ul", "ol", "li", "article")

MAIN_SELECTORS = (
    "article",
    "main",
    "[role=main]",
    "#content",
    ".content",
    ".post",
    ".entry-content",
    ".article-body",
)
MIN_REGION_CHARS = 200

MAX_HEADINGS = 20
NAV_HEADING_RE = re.compile(r"^(menu|nav|share|follow|related)", re.I)

CODE_INDICATORS = (
    re.compile(r"\{[\s\S]*\}"),
    re.compile(r"function\s*\("),
    re.compile(r"const\s+\w+\s*="),
    re.compile(r"\.\w+\s*\{"),
    re.compile(r"#\w+\s*\{"),
)
MAX_CODE_RATIO = 0.1
MIN_CONTENT_CHARS = 100

_LINE_SPECIAL_RE = re.compile(r"[{}\[\]();:=<>/\\|&^%$#@!~`]")
_LINE_CODE_START_RE = re.compile(r"^[\w\s]*[{(=;]")

DATE_META = {
    "published": (
        ("property", "article:published_time"),
        ("name", "date"),
        ("name", "publish_date"),
        ("name", "publish-date"),
        ("name", "publishdate"),
        ("itemprop", "datePublished"),
    ),
    "modified": (
        ("property", "article:modified_time"),
        ("property", "og:updated_time"),
        ("name", "last-modified"),
        ("itemprop", "dateModified"),
    ),
}
_PUBLISHED_TEXT_RE = re.compile(r"published:?\s*([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4})", re.I)
_TEXT_DATE_FORMATS = ("%B %d, %Y", "%B %d %Y", "%b %d, %Y", "%b %d %Y")


def normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


def count_words(text: str) -> int:
    return len(text.split())


def truncate_content(content: str, max_chars: int) -> str:
    """Cut at the last sentence end in the final fifth, else at a word boundary."""
    if max_chars <= 0 or len(content) <= max_chars:
        return content

    truncated = content[:max_chars]
    last_sentence = truncated.rfind(". ")
    if last_sentence > max_chars * 0.8:
        return truncated[: last_sentence + 1]

    last_space = truncated.rfind(" ")
    if last_space <= 0:
        return truncated + "..."
    return truncated[:last_space] + "..."


def is_valid_content(text: str) -> bool:
    """Reject empty text and text where code-like fragments are too dense."""
    if not text or len(text) < MIN_CONTENT_CHARS:
        return False

    code_matches = sum(len(pattern.findall(text)) for pattern in CODE_INDICATORS)
    code_ratio = code_matches / (len(text) / 100)
    if code_ratio > MAX_CODE_RATIO:
        logger.debug(f"Content rejected: too much code (ratio: {code_ratio:.3f})")
        return False
    return True


def _strip_code_lines(text: str) -> str:
    kept: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if len(_LINE_SPECIAL_RE.findall(stripped)) / len(stripped) > 0.3:
            continue
        if len(stripped) < 50 and _LINE_CODE_START_RE.match(stripped):
            continue
        kept.append(stripped)
    return "\n".join(kept)


def _is_non_content(el: Tag) -> bool:
    if el.name not in PATTERN_TAGS:
        return False
    attrs = getattr(el, "attrs", None) or {}
    tokens = list(attrs.get("class") or [])
    if attrs.get("id"):
        tokens.append(str(attrs["id"]))
    return any(NON_CONTENT_RE.search(token) for token in tokens)


def strip_noise(soup: BeautifulSoup) -> BeautifulSoup:
    for el in soup.find_all(list(NOISE_TAGS)):
        if not el.decomposed:
            el.decompose()
    for el in soup.find_all(_is_non_content):
        if not el.decomposed:
            el.decompose()
    return soup


def select_main_region(soup: BeautifulSoup) -> Tag | BeautifulSoup:
    for selector in MAIN_SELECTORS:
        region = soup.select_one(selector)
        if region is not None and len(region.get_text(" ", strip=True)) > MIN_REGION_CHARS:
            return region
    return soup.body or soup


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    try:
        extracted = trafilatura.extract(raw_html, output_format="txt")
    except Exception as e:
        logger.debug(f"trafilatura failed: {e}")
        return ""
    if not isinstance(extracted, str):
        return ""
    return extracted


def extract_tables(soup: BeautifulSoup | Tag) -> list[TableData]:
    tables: list[TableData] = []
    for table in soup.find_all("table"):
        classes = " ".join(table.get("class") or [])
        if "layout" in classes.lower() or table.get("role") == "presentation":
            continue

        headers: list[str] = []
        for th in table.find_all("th"):
            text = normalize_text(th.get_text(" "))
            if 0 < len(text) < 100:
                headers.append(text)

        rows: list[list[str]] = []
        for tr in table.find_all("tr"):
            cells = [normalize_text(td.get_text(" ")) for td in tr.find_all("td")]
            cells = [cell for cell in cells if len(cell) < 200]
            if cells and any(cells):
                rows.append(cells)

        if not (headers or len(rows) > 1):
            continue
        if not any(len("".join(row)) > 10 for row in rows):
            continue

        caption = table.find("caption")
        if caption is not None:
            context = normalize_text(caption.get_text(" "))
        else:
            previous = table.find_previous(["p", "h1", "h2", "h3", "h4"])
            context = normalize_text(previous.get_text(" ")) if previous is not None else ""
        tables.append(TableData(headers=headers, rows=rows, context=context[:200]))
    return tables


def extract_lists(region: BeautifulSoup | Tag) -> list[list[str]]:
    lists: list[list[str]] = []
    for node in region.find_all(["ul", "ol"]):
        items = [normalize_text(li.get_text(" ")) for li in node.find_all("li", recursive=False)]
        items = [item for item in items if 0 < len(item) < 500]
        if items:
            lists.append(items)
    return lists


def extract_headings(soup: BeautifulSoup | Tag) -> list[str]:
    headings: list[str] = []
    for node in soup.find_all(["h1", "h2", "h3"]):
        text = normalize_text(node.get_text(" "))
        if 3 < len(text) < 150 and not NAV_HEADING_RE.match(text):
            headings.append(text)
        if len(headings) >= MAX_HEADINGS:
            break
    return headings


def parse_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = raw.strip()
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        cleaned = re.sub(r"\s+", " ", value)
        for fmt in _TEXT_DATE_FORMATS:
            try:
                parsed = datetime.strptime(cleaned, fmt)
                break
            except ValueError:
                continue
    if parsed is None or parsed.year <= 2000:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_ld_dates(soup: BeautifulSoup) -> dict[str, str]:
    found: dict[str, str] = {}
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        for key in ("datePublished", "dateModified"):
            if key in found:
                continue
            match = re.search(rf'"{key}"\s*:\s*"([^"]+)"', raw or "")
            if match:
                found[key] = match.group(1)
    return found


def extract_dates(soup: BeautifulSoup) -> tuple[datetime | None, datetime | None]:
    """Publish and last-modified dates from meta tags, <time>, JSON-LD or byline text."""
    json_ld = _json_ld_dates(soup)

    def _from_meta(kind: str) -> datetime | None:
        for attr, value in DATE_META[kind]:
            tag = soup.find("meta", attrs={attr: value})
            if tag is not None:
                parsed = parse_date(tag.get("content"))
                if parsed is not None:
                    return parsed
        return None

    published = _from_meta("published")
    if published is None:
        time_tag = soup.find("time", attrs={"datetime": True})
        if time_tag is not None:
            published = parse_date(time_tag.get("datetime"))
    if published is None:
        published = parse_date(json_ld.get("datePublished"))
    if published is None:
        match = _PUBLISHED_TEXT_RE.search(soup.get_text(" "))
        if match:
            published = parse_date(match.group(1))

    modified = _from_meta("modified") or parse_date(json_ld.get("dateModified"))
    return published, modified


def extract_page(
    url: str,
    html: str,
    *,
    title: str = "",
    fallback_text: str = "",
    max_chars: int = 8000,
    fetched_at: datetime | None = None,
) -> ExtractedContent:
    """Turn a rendered page into structured content.

    Dates are read before noise removal because they usually live in <head>
    and JSON-LD scripts. Tables and headings come from the de-noised page; list
    items only from the main region, since lists elsewhere are mostly menus.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    page_title = title or (normalize_text(soup.title.get_text()) if soup.title else "")
    publish_date, last_modified = extract_dates(soup)

    strip_noise(soup)
    region = select_main_region(soup)
    region_text = _strip_code_lines(region.get_text("\n"))

    text = region_text
    if html:
        traf_text = _strip_code_lines(_extract_with_trafilatura(html))
        if len(traf_text) >= len(region_text):
            text = traf_text
    if not text.strip() and fallback_text:
        text = _strip_code_lines(fallback_text)

    main_content = truncate_content(normalize_text(text), max_chars)
    return ExtractedContent(
        url=url,
        title=page_title,
        domain=extract_domain(url),
        main_content=main_content,
        word_count=count_words(main_content),
        fetched_at=fetched_at or datetime.now(timezone.utc),
        tables=extract_tables(soup),
        lists=extract_lists(region),
        headings=extract_headings(soup),
        publish_date=publish_date,
        last_modified=last_modified,
    )
