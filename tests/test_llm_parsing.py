"""
LLM Parsing Tests
=================
Tolerant JSON recovery (fences, prose, braces in strings, raw newlines)
and the three typed parsers.
"""
import pytest

from surgeon.core.errors import ParseError
from surgeon.llm.parsing import (
    extract_outermost_json,
    iter_balanced_objects,
    parse_classification,
    parse_fix_response,
    parse_json_payload,
    parse_relevant_files,
    sanitize_control_chars,
    strip_code_fences,
)
from surgeon.models.issue import AiDecision


# ===================================================================
# Extraction
# ===================================================================
def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('no fences') == 'no fences'


def test_braces_inside_strings_do_not_end_block():
    text = 'prefix {"code": "if (x) { return \\"}\\"; }"} suffix'
    assert extract_outermost_json(text) == '{"code": "if (x) { return \\"}\\"; }"}'


def test_nested_objects_yield_outermost_only():
    blocks = list(iter_balanced_objects('{"a": {"b": {}}} and {"c": 1}'))
    assert blocks == ['{"a": {"b": {}}}', '{"c": 1}']


def test_unterminated_block_yields_nothing():
    assert extract_outermost_json('{"a": 1') is None


def test_stray_open_brace_does_not_hide_later_object():
    blocks = list(iter_balanced_objects('a lone { here, then {"b": 2}'))
    assert blocks == ['{"b": 2}']


def test_sanitize_only_touches_string_literals():
    raw = '{\n"content": "line1\nline2\tend"\n}'
    assert sanitize_control_chars(raw) == '{\n"content": "line1\\nline2\\tend"\n}'


def test_sanitize_drops_other_control_chars():
    assert sanitize_control_chars('{"a": "x\x01y"}') == '{"a": "xy"}'


# ===================================================================
# parse_json_payload
# ===================================================================
def test_payload_recovered_from_prose():
    raw = 'Sure! Here is the fix:\n{"commitMessage": "fix"}\nHope this helps {really}.'
    assert parse_json_payload(raw) == {"commitMessage": "fix"}


def test_payload_with_raw_newlines_repaired():
    raw = '{"files": [{"path": "a.py", "content": "x = 1\ny = 2\n"}]}'
    data = parse_json_payload(raw)
    assert data["files"][0]["content"] == "x = 1\ny = 2\n"


def test_payload_skips_non_json_braces_before_object():
    raw = 'Use {braces} carefully. {"ok": true}'
    assert parse_json_payload(raw) == {"ok": True}


def test_payload_rejects_empty_and_garbage():
    with pytest.raises(ParseError):
        parse_json_payload("   ")
    with pytest.raises(ParseError):
        parse_json_payload("I could not find the bug.")


# ===================================================================
# Classification
# ===================================================================
@pytest.mark.parametrize("raw, expected", [
    ("AUTOMATED", AiDecision.AUTOMATED),
    ("manual.", AiDecision.MANUAL),
    ("**MANUAL** - security issue", AiDecision.MANUAL),
])
def test_classification_labels(raw, expected):
    decision, reason, confidence = parse_classification(raw)
    assert decision == expected
    assert reason is None and confidence is None


def test_classification_json_with_fractional_confidence():
    decision, reason, confidence = parse_classification(
        '{"decision": "automated", "reason": "typo", "confidence": 0.9}'
    )
    assert decision == AiDecision.AUTOMATED
    assert reason == "typo"
    assert confidence == 90


def test_classification_confidence_clamped():
    _, _, confidence = parse_classification('{"decision": "MANUAL", "confidence": 250}')
    assert confidence == 100


def test_classification_unknown_label():
    with pytest.raises(ParseError):
        parse_classification("Maybe")
    with pytest.raises(ParseError):
        parse_classification("")


# ===================================================================
# File ranking
# ===================================================================
def test_relevant_files_deduped_limited_and_safe():
    raw = '{"files": ["src/a.ts", "./src/a.ts", "../etc/passwd", "/abs.py", "b.py", "c.py", "d.py", "e.py", "f.py"]}'
    assert parse_relevant_files(raw, limit=5) == ["src/a.ts", "b.py", "c.py", "d.py", "e.py"]


def test_relevant_files_requires_list():
    with pytest.raises(ParseError):
        parse_relevant_files('{"files": "src/a.ts"}')
    with pytest.raises(ParseError):
        parse_relevant_files('{"files": ["../x"]}')


# ===================================================================
# Fix payload
# ===================================================================
def test_fix_response_camel_case():
    fix = parse_fix_response(
        '```json\n{"commitMessage": "Fix label", "patchSummary": "Renamed", '
        '"files": [{"path": "src/App.tsx", "content": "export default 1;\\n"}]}\n```'
    )
    assert fix.commit_message == "Fix label"
    assert fix.patch_summary == "Renamed"
    assert [f.path for f in fix.files] == ["src/App.tsx"]


def test_fix_response_after_stray_brace_in_prose():
    fix = parse_fix_response(
        "The bug is a missing `{` in the template. Fixed:\n"
        '{"commitMessage": "Fix", "patchSummary": "Closed the block", '
        '"files": [{"path": "a.ts", "content": "x"}]}'
    )
    assert fix.commit_message == "Fix"
    assert [(f.path, f.content) for f in fix.files] == [("a.ts", "x")]


def test_fix_response_snake_case_and_duplicate_paths():
    fix = parse_fix_response(
        '{"commit_message": "m", "summary": "s", "files": ['
        '{"path": "a.py", "content": "1"}, {"path": "b.py", "content": "2"}, '
        '{"path": "./a.py", "content": "3"}]}'
    )
    assert fix.patch_summary == "s"
    assert [(f.path, f.content) for f in fix.files] == [("a.py", "3"), ("b.py", "2")]


def test_fix_response_rejects_traversal():
    with pytest.raises(ParseError):
        parse_fix_response('{"commitMessage": "x", "files": [{"path": "../../etc/x", "content": ""}]}')


def test_fix_response_requires_file_fields():
    with pytest.raises(ParseError):
        parse_fix_response('{"commitMessage": "x", "files": [{"path": "a.py"}]}')
    with pytest.raises(ParseError):
        parse_fix_response('{"commitMessage": "x"}')


def test_fix_response_empty_file_list_is_valid():
    fix = parse_fix_response('{"commitMessage": "", "files": []}')
    assert fix.files == []
    assert fix.commit_message == ""
