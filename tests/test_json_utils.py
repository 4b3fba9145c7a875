from __future__ import annotations

import pytest

from deep_research.errors import JSONExtractionError
from deep_research.services.json_utils import (
    extract_json,
    extract_string_list,
    parse_json_robust,
    repair_json,
    salvage_facts,
)


def test_parses_fenced_block():
    assert parse_json_robust('```json\n{"a": 1}\n```') == {"a": 1}


def test_parses_object_surrounded_by_chatter():
    assert parse_json_robust('Here you go: {"subQuestions": []} hope it helps') == {"subQuestions": []}


def test_repairs_truncated_array():
    text = '{"facts": [{"claim": "x", "confidence": 80},'
    assert repair_json(text) == '{"facts": [{"claim": "x", "confidence": 80}]}'
    assert parse_json_robust(text) == {"facts": [{"claim": "x", "confidence": 80}]}


def test_repairs_unterminated_string():
    parsed = extract_json(
        '{"facts": [{"claim": "Python 3.12 was released in October", "confidence": 90}, {"claim": "The GIL rem',
        array_field="facts",
    )
    assert parsed["facts"][0]["claim"] == "Python 3.12 was released in October"


def test_empty_text_raises():
    with pytest.raises(JSONExtractionError):
        parse_json_robust("   ")


def test_missing_array_field_raises():
    with pytest.raises(JSONExtractionError):
        extract_json('{"other": []}', array_field="subQuestions")


def test_extract_json_salvages_facts_from_wrong_shape():
    text = 'Found: {"claim": "Rust 1.0 shipped in May 2015", "confidence": 85} and then {'

    parsed = extract_json(text, array_field="facts")

    assert [f["claim"] for f in parsed["facts"]] == ["Rust 1.0 shipped in May 2015"]
    assert parsed["facts"][0]["category"] == "claim"


def test_extract_json_only_salvages_facts():
    text = 'Found: {"subQuestionId": "q1", "description": "Pricing unknown"} and then {'

    with pytest.raises(JSONExtractionError):
        extract_json(text, array_field="gaps")


def test_salvage_facts_keeps_complete_items_only():
    text = (
        '{"claim": "Rust 1.0 shipped in May 2015", "value": "2015", "confidence": 85, "category": "date"}, '
        '{"claim": "cut'
    )
    facts = salvage_facts(text)
    assert facts == [
        {
            "claim": "Rust 1.0 shipped in May 2015",
            "value": "2015",
            "context": "",
            "confidence": 85.0,
            "category": "date",
        }
    ]


def test_extract_string_list_ignores_non_strings():
    text = 'Sure: ["What is X?", 3, "  How  about Y? "]'
    assert extract_string_list(text) == ["What is X?", "How about Y?"]
    assert extract_string_list(text, limit=1) == ["What is X?"]


def test_extract_string_list_without_array():
    assert extract_string_list("no list here") == []
