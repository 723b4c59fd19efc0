import json

import pytest

from store_insights.services.json_extractor import (
    JsonExtractor,
    ScanState,
    next_state,
    scan,
)


# =============================================================================
# Well-formed and wrapped input
# =============================================================================

def test_extract_from_code_fence():
    text = 'Here is the analysis:\n```json\n{"score": 72, "ok": true}\n```\nLet me know!'
    assert JsonExtractor.extract(text, "analyst") == {"score": 72, "ok": True}


def test_extract_from_unlabelled_fence():
    text = '```\n{"a": [1, 2]}\n```'
    assert JsonExtractor.extract(text) == {"a": [1, 2]}


def test_extract_direct_object_and_array():
    assert JsonExtractor.extract('  {"a": 1}  ') == {"a": 1}
    assert JsonExtractor.extract("[1, 2, 3]") == [1, 2, 3]


def test_extract_object_surrounded_by_prose():
    text = 'The result is {"score": 72, "nested": {"x": [1, 2]}} hope it helps {"other": 1}'
    assert JsonExtractor.extract(text) == {"score": 72, "nested": {"x": [1, 2]}}


def test_braces_inside_strings_do_not_end_the_object():
    text = 'Reply: {"text": "use } and { carefully", "quote": "say \\"hi\\"", "n": 1} end'
    assert JsonExtractor.extract(text) == {
        "text": "use } and { carefully",
        "quote": 'say "hi"',
        "n": 1,
    }


def test_trailing_commas_are_removed():
    text = 'Output: {"a": [1, 2,], "b": {"c": 3,},}'
    assert JsonExtractor.extract(text) == {"a": [1, 2], "b": {"c": 3}}


# =============================================================================
# Truncation repair
# =============================================================================

def test_repair_unclosed_containers():
    text = '{"a": 1, "b": [1, 2, 3'
    assert JsonExtractor.extract(text) == {"a": 1, "b": [1, 2, 3]}


def test_repair_unterminated_string():
    text = '{"suggestions": [{"title": "Bundle dresses with te'
    assert JsonExtractor.extract(text) == {"suggestions": [{"title": "Bundle dresses with te"}]}


def test_repair_dangling_key():
    text = '{"items": [{"a": 1}, {"b": '
    assert JsonExtractor.extract(text) == {"items": [{"a": 1}, {"b": None}]}


def test_repair_backs_off_to_last_complete_element():
    text = '{"items": [{"a": 1}, {"b'
    assert JsonExtractor.extract(text) == {"items": [{"a": 1}]}


def test_repair_after_trailing_comma():
    text = '```json\n{"suggestions": [{"title": "A"}, {"title": "B"},'
    assert JsonExtractor.extract(text) == {"suggestions": [{"title": "A"}, {"title": "B"}]}


# =============================================================================
# Failures
# =============================================================================

@pytest.mark.parametrize("text", [None, "", "   \n", "I cannot help with that.", "42", '"just a string"'])
def test_extract_returns_none_without_structure(text):
    assert JsonExtractor.extract(text, "test") is None


def test_extract_never_raises_on_broken_input():
    assert JsonExtractor.extract("{{{{ ]]] ::: ,,,") is None


def test_extraction_is_idempotent():
    original = 'Sure!\n```json\n{"a": {"b": [1, 2,]}, "c": "x"}'
    first = JsonExtractor.extract(original)
    assert first is not None
    assert JsonExtractor.extract(json.dumps(first)) == first


# =============================================================================
# Scanner and diagnostics
# =============================================================================

def test_next_state_transitions():
    assert next_state(ScanState.NORMAL, '"') is ScanState.IN_STRING
    assert next_state(ScanState.NORMAL, "{") is ScanState.NORMAL
    assert next_state(ScanState.IN_STRING, "\\") is ScanState.ESCAPED
    assert next_state(ScanState.ESCAPED, '"') is ScanState.IN_STRING
    assert next_state(ScanState.IN_STRING, '"') is ScanState.NORMAL


def test_scan_tracks_open_containers_and_boundaries():
    result = scan('{"a": [1, "x,y", {"b": 2')
    assert result.match_end is None
    assert result.end_state is ScanState.NORMAL
    assert result.open_closers == ["}", "]", "}"]
    # The comma inside the string is not structural
    assert [closers for _, closers in result.boundaries] == [("}", "]"), ("}", "]")]


def test_scan_finds_end_of_first_object():
    text = '{"a": {"b": 1}} trailing'
    assert scan(text).match_end == text.index("}}") + 1


def test_looks_truncated():
    assert JsonExtractor.looks_truncated('{"a": [1')
    assert not JsonExtractor.looks_truncated('{"a": [1]}')
    assert JsonExtractor.bracket_counts("{[]}{") == {
        "open_braces": 2,
        "close_braces": 1,
        "open_brackets": 1,
        "close_brackets": 1,
    }
