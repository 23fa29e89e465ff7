"""
LLM Response Parsing
====================
Turns untyped LLM text into typed results. Nothing downstream of this
module ever sees raw model output.

Tolerance rules (models wrap JSON in prose and fences, and emit raw
newlines inside strings):
    1. Strip markdown code fences if present
    2. Find balanced {...} blocks, string- and escape-aware
    3. json.loads each candidate in order
    4. If that fails, escape raw control characters inside string
       literals and try again
    5. Otherwise raise ParseError

Every parse_* function raises ParseError (never returns a half-valid
result); callers decide the fallback.
"""
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from surgeon.core.errors import ParseError, UnsafePathError
from surgeon.models.fix_result import FileChange, FixResult
from surgeon.models.issue import AiDecision
from surgeon.utils.path_utils import normalize_relative_path

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


# ---------------------------------------------------------------------------
# Low-level extraction
# ---------------------------------------------------------------------------
def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text or "")
    return match.group(1).strip() if match else (text or "")


def iter_balanced_objects(text: str) -> Iterator[str]:
    """
    Yield every top-level balanced {...} block in *text*, left to right.

    Braces inside JSON string literals are ignored, as are escaped quotes.
    An unterminated block is skipped and the scan resumes after its brace.
    """
    i = 0
    n = len(text)
    while i < n:
        start = text.find("{", i)
        if start == -1:
            return
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for j in range(start, n):
            ch = text[j]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = j
                    break
        if end == -1:
            # Unbalanced: skip this brace and keep scanning
            i = start + 1
            continue
        yield text[start:end + 1]
        i = end + 1


def extract_outermost_json(text: str) -> Optional[str]:
    """Return the first balanced {...} block in *text*, or None."""
    return next(iter_balanced_objects(text or ""), None)


def sanitize_control_chars(json_text: str) -> str:
    """
    Escape raw control characters that appear inside JSON string literals.

    \\n, \\r and \\t become their escape sequences; other control characters
    are dropped. Whitespace between tokens is left alone.
    """
    out: List[str] = []
    in_string = False
    escaped = False
    for ch in json_text:
        if in_string:
            if escaped:
                escaped = False
                out.append(ch)
                continue
            if ch == "\\":
                escaped = True
                out.append(ch)
                continue
            if ch == '"':
                in_string = False
                out.append(ch)
                continue
            if ord(ch) < 0x20 or ord(ch) == 0x7F:
                replacement = _CONTROL_ESCAPES.get(ch)
                if replacement:
                    out.append(replacement)
                continue
            out.append(ch)
        else:
            if ch == '"':
                in_string = True
            out.append(ch)
    return "".join(out)


def _try_load(candidate: str) -> Optional[Dict[str, Any]]:
    for attempt in (candidate, sanitize_control_chars(candidate)):
        try:
            data = json.loads(attempt)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return None


def parse_json_payload(raw: str) -> Dict[str, Any]:
    """
    Recover a JSON object from an LLM reply.

    Raises
    ------
    ParseError
        If no candidate block can be decoded into a JSON object.
    """
    if not raw or not raw.strip():
        raise ParseError("Empty response")

    fenced = strip_code_fences(raw)
    sources = [fenced] if fenced == raw else [fenced, raw]
    for source in sources:
        for candidate in iter_balanced_objects(source):
            data = _try_load(candidate)
            if data is not None:
                return data

    raise ParseError("No valid JSON object in response: " + raw.strip()[:300])


# ---------------------------------------------------------------------------
# Triage
# ---------------------------------------------------------------------------
def parse_classification(raw: str) -> Tuple[AiDecision, Optional[str], Optional[int]]:
    """
    Parse a triage reply.

    Accepts a bare label ("AUTOMATED", "manual.") or a JSON object with
    decision / reason / confidence keys.

    Returns
    -------
    tuple
        (decision, reason or None, confidence or None)
    """
    text = (raw or "").strip()
    if not text:
        raise ParseError("Empty classification response")

    if "{" in text:
        try:
            data = parse_json_payload(text)
        except ParseError:
            data = None
        if data is not None:
            label = str(data.get("decision", "")).strip().upper()
            if label in (AiDecision.AUTOMATED.value, AiDecision.MANUAL.value):
                reason = data.get("reason")
                confidence = _coerce_confidence(data.get("confidence"))
                return AiDecision(label), (str(reason) if reason else None), confidence

    match = re.match(r"[^A-Za-z]*([A-Za-z]+)", text)
    label = match.group(1).upper() if match else ""
    if label.startswith(AiDecision.AUTOMATED.value):
        return AiDecision.AUTOMATED, None, None
    if label.startswith(AiDecision.MANUAL.value):
        return AiDecision.MANUAL, None, None

    raise ParseError(f"Unrecognised classification label: {text[:80]!r}")


def _coerce_confidence(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if 0.0 < number <= 1.0 and not isinstance(value, int):
        number *= 100  # model answered on a 0-1 scale
    return int(max(0, min(100, round(number))))


# ---------------------------------------------------------------------------
# File ranking
# ---------------------------------------------------------------------------
def parse_relevant_files(raw: str, limit: int = 5) -> List[str]:
    """
    Parse {"files": [...]} into at most *limit* safe, de-duplicated paths.

    Raises
    ------
    ParseError
        Malformed reply, or no usable path in it.
    """
    data = parse_json_payload(raw)
    files = data.get("files")
    if not isinstance(files, list):
        raise ParseError("'files' is missing or not a list")

    selected: List[str] = []
    for entry in files:
        if not isinstance(entry, str):
            continue
        try:
            path = normalize_relative_path(entry)
        except UnsafePathError:
            logger.warning("Ignoring unsafe path from file ranking: %r", entry)
            continue
        if path not in selected:
            selected.append(path)
        if len(selected) >= limit:
            break

    if not selected:
        raise ParseError("File ranking returned no usable paths")
    return selected


# ---------------------------------------------------------------------------
# Fix generation
# ---------------------------------------------------------------------------
def _first_str(data: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def parse_fix_response(raw: str) -> FixResult:
    """
    Parse the rewrite reply into a FixResult.

    Accepts camelCase (commitMessage, patchSummary) or snake_case keys.
    Every file path must stay inside the repository root.

    Raises
    ------
    ParseError
        Malformed payload, a file entry without path/content, or an
        escaping path.
    """
    data = parse_json_payload(raw)

    files_raw = data.get("files")
    if not isinstance(files_raw, list):
        raise ParseError("'files' is missing or not a list")

    by_path: Dict[str, str] = {}
    for entry in files_raw:
        if not isinstance(entry, dict):
            raise ParseError("File entry is not an object")
        path = entry.get("path")
        content = entry.get("content")
        if not isinstance(path, str) or not isinstance(content, str):
            raise ParseError("File entry needs string 'path' and 'content'")
        try:
            normalized = normalize_relative_path(path)
        except UnsafePathError as e:
            raise ParseError(str(e)) from e
        # A repeated path keeps its first position and its last content
        by_path[normalized] = content

    return FixResult(
        commit_message=_first_str(data, "commitMessage", "commit_message"),
        patch_summary=_first_str(data, "patchSummary", "patch_summary", "summary"),
        files=[FileChange(path=p, content=c) for p, c in by_path.items()],
    )
