"""Tolerant JSON recovery for language-model output.

Models wrap JSON in markdown fences, prepend chatter, or get cut off by the
token limit. ``extract_json`` tries progressively looser strategies and, for
the ``facts`` array, salvages complete items out of a truncated payload.
"""
from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger

from deep_research.errors import JSONExtractionError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)

_FACT_RE = re.compile(
    r'\{\s*"claim"\s*:\s*"((?:[^"\\]|\\.)*)"\s*,?\s*'
    r'(?:"value"\s*:\s*(?:"((?:[^"\\]|\\.)*)"|(-?\d+(?:\.\d+)?)|null)\s*,?\s*)?'
    r'(?:"context"\s*:\s*"((?:[^"\\]|\\.)*)"\s*,?\s*)?'
    r'(?:"confidence"\s*:\s*(\d+(?:\.\d+)?)\s*,?\s*)?'
    r'(?:"category"\s*:\s*"([^"]*)"\s*)?\}'
)

def _unescape(value: str | None) -> str:
    if not value:
        return ""
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value.replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\")


def _balanced_span(text: str, start: int, open_ch: str, close_ch: str) -> str | None:
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def repair_json(text: str) -> str:
    """Close an unterminated string and open brackets, drop trailing commas."""
    repaired = text.strip()
    starts = [i for i in (repaired.find("{"), repaired.find("[")) if i != -1]
    if starts:
        repaired = repaired[min(starts):]

    stack: list[str] = []
    in_string = False
    escape = False
    for ch in repaired:
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()

    if in_string:
        repaired += '"'
    repaired = re.sub(r",\s*$", "", repaired)
    # A dangling key with no value cannot be closed meaningfully.
    repaired = re.sub(r',?\s*"[^"]*"\s*:\s*$', "", repaired)
    repaired += "".join(reversed(stack))
    return re.sub(r",(\s*[}\]])", r"\1", repaired)


def parse_json_robust(text: str, context: str = "") -> Any:
    """Parse JSON out of free-form model output, raising JSONExtractionError on failure."""
    if not text or not text.strip():
        raise JSONExtractionError(f"Empty JSON string{f' for {context}' if context else ''}")

    candidate = text.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    fence = _FENCE_RE.search(candidate)
    if fence:
        candidate = fence.group(1).strip()
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start = candidate.find(open_ch)
        if start == -1:
            continue
        span = _balanced_span(candidate, start, open_ch, close_ch)
        if span:
            try:
                return json.loads(span)
            except json.JSONDecodeError:
                pass

    try:
        return json.loads(repair_json(candidate))
    except json.JSONDecodeError:
        pass

    lines = candidate.splitlines()
    first = next((i for i, line in enumerate(lines) if line.strip().startswith(("{", "["))), None)
    if first is not None:
        for last in range(len(lines), first, -1):
            block = "\n".join(lines[first:last]).strip()
            if not block.endswith(("}", "]")):
                continue
            try:
                return json.loads(block)
            except json.JSONDecodeError:
                continue

    raise JSONExtractionError(
        f"Failed to parse JSON{f' for {context}' if context else ''}: {text[:200]}..."
    )


def salvage_facts(text: str) -> list[dict[str, Any]]:
    """Pull complete fact objects out of truncated output."""
    facts: list[dict[str, Any]] = []
    for match in _FACT_RE.finditer(text):
        claim = _unescape(match.group(1)).strip()
        if not claim:
            continue
        value: Any = _unescape(match.group(2)) if match.group(2) is not None else None
        if value is None and match.group(3) is not None:
            value = float(match.group(3))
        facts.append(
            {
                "claim": claim,
                "value": value,
                "context": _unescape(match.group(4)),
                "confidence": float(match.group(5)) if match.group(5) else 50,
                "category": match.group(6) or "claim",
            }
        )
    return facts


def extract_json(text: str, *, array_field: str | None = None, context: str = "") -> Any:
    """Parse model output and, when ``array_field`` is given, require it to be a list."""
    try:
        parsed = parse_json_robust(text, context)
        if array_field is not None:
            if not isinstance(parsed, dict) or not isinstance(parsed.get(array_field), list):
                raise JSONExtractionError(
                    f"Expected a '{array_field}' array{f' for {context}' if context else ''}"
                )
        return parsed
    except JSONExtractionError:
        if array_field == "facts":
            items = salvage_facts(text or "")
            if items:
                logger.info(f"Salvaged {len(items)} partial {array_field} for {context or 'response'}")
                return {array_field: items}
        raise


def extract_string_list(text: str, *, limit: int | None = None) -> list[str]:
    """Parse a JSON array of strings, ignoring non-string entries."""
    match = re.search(r"\[[\s\S]*\]", text or "")
    if not match:
        return []
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    items = [" ".join(item.split()) for item in parsed if isinstance(item, str) and item.strip()]
    return items[:limit] if limit is not None else items
