"""
LLM Prompts
===========
Centralised store for the three request shapes sent to the LLM:

    1. Triage      - label a bug report AUTOMATED or MANUAL
    2. Rank files  - pick up to 5 repository paths likely to hold the bug
    3. Rewrite     - return full replacement contents for files that change

Prompt Design Rules:
    - Structured replies only (one word for triage, JSON otherwise)
    - "Only change what is necessary" - no refactoring of unrelated code
    - Full file content, never a diff - the agent writes files verbatim
"""
from typing import Dict, Iterable

from surgeon.models.issue import Issue


# ---------------------------------------------------------------------------
# Issue text
# ---------------------------------------------------------------------------
def build_issue_text(issue: Issue) -> str:
    """Deterministic concatenation of an issue's descriptive fields."""
    return "\n".join([
        f"Title: {issue.title}",
        f"Severity: {issue.severity.value}",
        f"Description: {issue.description}",
        f"Steps to Reproduce: {issue.steps_to_reproduce}",
    ])


# ---------------------------------------------------------------------------
# 1. Triage
# ---------------------------------------------------------------------------
CLASSIFY_SYSTEM_PROMPT = "\n".join([
    "You are a bug-triage assistant for an AI self-healing web system.",
    "Reply with ONLY one word: AUTOMATED or MANUAL.",
    "",
    "Use AUTOMATED for:",
    "  - Typos, text/label changes, small CSS fixes",
    "  - Simple logic errors with clear reproduction steps",
    "  - Missing null checks or guard clauses",
    "  - Small config changes",
    "  - Severity is low or medium AND the fix path is obvious",
    "",
    "Use MANUAL for:",
    "  - Security vulnerabilities (XSS, SQLi, auth bypass ...)",
    "  - Data-loss or data-corruption risks",
    "  - Architecture or database schema changes",
    "  - Critical severity with unclear reproduction",
    "  - Anything touching payments, PII, or sensitive data",
])


# ---------------------------------------------------------------------------
# 2. Rank files
# ---------------------------------------------------------------------------
RANK_FILES_SYSTEM_PROMPT = "\n".join([
    "You are a senior software engineer.",
    "Given a bug report and the full list of files in a repository,",
    "identify which files (up to 5) are MOST LIKELY to contain the bug.",
    "Respond with VALID JSON only. No markdown, no explanation.",
    'Schema: { "files": ["path/to/file1.ts", "path/to/file2.ts"] }',
])


def build_rank_files_prompt(issue_text: str, files: Iterable[str], limit: int) -> str:
    listing = "\n".join(list(files)[:limit])
    return f"Bug Report:\n{issue_text}\n\nRepository files:\n{listing}"


# ---------------------------------------------------------------------------
# 3. Rewrite
# ---------------------------------------------------------------------------
FIX_SYSTEM_PROMPT = "\n".join([
    "You are an expert software engineer performing automated bug fixing.",
    "You receive a bug report and source files.",
    "Produce fixed versions of all files that need changes.",
    "",
    "CRITICAL: Your ENTIRE response must be a single raw JSON object.",
    "Do NOT include any text before or after the JSON.",
    "Do NOT use markdown code fences.",
    "",
    "Rules:",
    "  - Only change what is necessary to fix the reported bug.",
    "  - Do NOT refactor unrelated code.",
    "  - Always provide the COMPLETE file content (not a diff).",
    "  - If a file does not need changes, omit it entirely.",
    "",
    "Respond with ONLY this JSON schema:",
    "{",
    '  "commitMessage": "<imperative commit message, max 72 chars>",',
    '  "patchSummary": "<one-paragraph human-readable explanation>",',
    '  "files": [',
    '    { "path": "relative/path/from/repo/root.ext", "content": "<full file content>" }',
    "  ]",
    "}",
])


def build_fix_prompt(issue_text: str, file_contents: Dict[str, str]) -> str:
    blocks = "\n\n".join(
        f"=== FILE: {path} ===\n{content}" for path, content in file_contents.items()
    )
    return f"Bug Report:\n{issue_text}\n\nSource Files:\n{blocks}"
