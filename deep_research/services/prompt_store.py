"""Prompt catalog shipped with the package.

``prompts/prompts.json`` nests prompts by agent (``planner.decompose``); long
prompts are stored as a list of lines. Placeholders use ``string.Template``
syntax so JSON braces in the prompts need no escaping.
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


def _flatten(node: dict[str, Any], prefix: str = "") -> dict[str, str]:
    flat: dict[str, str] = {}
    for name, value in node.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{key}."))
        elif isinstance(value, str):
            flat[key] = value
        elif isinstance(value, list) and all(isinstance(line, str) for line in value):
            flat[key] = "\n".join(value)
        else:
            raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
    return flat


@lru_cache(maxsize=1)
def load_catalog() -> dict[str, Template]:
    payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Prompt catalog must be a JSON object.")
    return {key: Template(text) for key, text in _flatten(payload).items()}


def render_prompt(key: str, **values: Any) -> str:
    template = load_catalog().get(key)
    if template is None:
        raise KeyError(f"Prompt key not found: {key}")
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc
