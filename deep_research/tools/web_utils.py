from __future__ import annotations

import re
from urllib.parse import urlparse

# Pages on these hosts carry no extractable factual text.
VIDEO_DOMAINS = (
    "youtube.com",
    "youtu.be",
    "vimeo.com",
    "dailymotion.com",
    "twitch.tv",
    "tiktok.com",
    "instagram.com/reel",
    "facebook.com/watch",
    "netflix.com",
    "hulu.com",
    "amazon.com/prime",
    "disney.com",
    "hbo.com",
    "paramount.com",
)


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace, trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def extract_domain(url: str) -> str:
    """Hostname without a leading ``www.``; falls back to the raw string."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except Exception:
        return url
    if host.startswith("www."):
        host = host[4:]
    return host or url


def is_video_url(url: str) -> bool:
    if not url:
        return False
    lowered = url.lower()
    return any(domain in lowered for domain in VIDEO_DOMAINS)


def filter_video_results(results: list, key=lambda r: r.url) -> list:
    """Drop results hosted on video or streaming sites."""
    return [r for r in results if not is_video_url(key(r))]
