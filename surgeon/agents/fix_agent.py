"""
Fix Synthesis Agent
===================
Locates the files most likely to hold a reported bug and rewrites them.

Steps:
    1. List repository files (ignored directories pruned)
    2. Ask the LLM to rank up to 5 relevant paths
       → paths missing from the listing are dropped
       → malformed reply or nothing left: fall back to the first 3 source files
    3. Read the candidates (unreadable ones skipped, none readable → fail)
    4. Ask the LLM for full replacement contents of the files that change
    5. Write every returned file into the workspace
    6. Optionally run the repository's tests/build (advisory only)

Core Philosophy:
    - Only change what is necessary
    - Full file contents, never diffs
    - Paths from the LLM are untrusted: ranked paths must appear in the
      file listing, rewritten paths must stay inside the repository

The FixAgent does NOT:
    - Create or destroy workspaces (that's the WorkspaceManager's job)
    - Open change requests (that's github_service's job)
    - Change issue status (that's the orchestrator's job)

run() never raises: every failure becomes AgentResult(success=False).
"""
import logging
import re
from typing import Dict, List, Optional

from surgeon.core.config import (
    MAX_CANDIDATE_FILES,
    MAX_LISTED_FILES_IN_PROMPT,
    PATCH_PREVIEW_CHARS,
    RUN_VALIDATION,
)
from surgeon.core.errors import ParseError, RetrievalError, ValidationError
from surgeon.llm.client import LLMClient
from surgeon.llm.parsing import parse_fix_response, parse_relevant_files
from surgeon.llm.prompts import (
    FIX_SYSTEM_PROMPT,
    RANK_FILES_SYSTEM_PROMPT,
    build_fix_prompt,
    build_issue_text,
    build_rank_files_prompt,
)
from surgeon.models.fix_result import AgentResult, FixResult, ValidationSummary
from surgeon.models.issue import Issue
from surgeon.sandbox.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

FALLBACK_SOURCE_RE = re.compile(r"\.(ts|js|tsx|jsx|py)$")
FALLBACK_FILE_COUNT = 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def fallback_candidates(files: List[str], count: int = FALLBACK_FILE_COUNT) -> List[str]:
    """First *count* source files in listing order."""
    return [f for f in files if FALLBACK_SOURCE_RE.search(f)][:count]


def default_commit_message(issue: Issue) -> str:
    return f'fix: AI automated fix for "{issue.title}"'


def render_patch(fix: FixResult, preview_chars: int = PATCH_PREVIEW_CHARS) -> str:
    """Summary followed by a short excerpt of each rewritten file."""
    excerpts = []
    for change in fix.files:
        body = change.content[:preview_chars]
        if len(change.content) > preview_chars:
            body += "\n..."
        excerpts.append(f"## {change.path}\n```\n{body}\n```")
    return fix.patch_summary + "\n\n" + "\n\n".join(excerpts)


# ---------------------------------------------------------------------------
# Fix Agent
# ---------------------------------------------------------------------------
class FixAgent:
    """
    Parameters
    ----------
    client : LLMClient or None
        Shared LLM client (auto-created if not provided).
    manager : WorkspaceManager or None
        File primitives for the workspace (auto-created if not provided).
    run_validation : bool
        Run the repository's tests/build after writing (advisory).
    """

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        manager: Optional[WorkspaceManager] = None,
        run_validation: bool = RUN_VALIDATION,
    ) -> None:
        self.client = client or LLMClient()
        self.manager = manager or WorkspaceManager()
        self.run_validation = run_validation

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def run(self, issue: Issue, workspace: Workspace) -> AgentResult:
        logs: List[str] = []
        try:
            return await self._run(issue, workspace, logs)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.warning("Fix agent failed for issue %s: %s", issue.id, error)
            logs.append(f"[agent] Error: {error}")
            return AgentResult(success=False, logs=logs, error=error)

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    async def _run(self, issue: Issue, workspace: Workspace, logs: List[str]) -> AgentResult:
        issue_text = build_issue_text(issue)

        files = self.manager.list_files(workspace)
        logs.append(f"[agent] Repository has {len(files)} files.")

        candidates = await self._select_files(issue_text, files, logs)
        contents = self._read_candidates(workspace, candidates, logs)

        logs.append("[agent] Generating fix...")
        raw = await self.client.generate(
            FIX_SYSTEM_PROMPT,
            build_fix_prompt(issue_text, contents),
            max_tokens=8192,
            temperature=0.2,
        )
        fix = parse_fix_response(raw)
        if not fix.files:
            logs.append("[agent] LLM proposed no file changes.")
            return AgentResult(success=False, logs=logs, error="No file changes proposed")

        for change in fix.files:
            self.manager.write_file(workspace, change.path, change.content)
            logs.append(f"[agent] Wrote {change.path}")

        validation = await self._validate(workspace, logs) if self.run_validation else None

        result = AgentResult(
            success=True,
            patch=render_patch(fix),
            commit_message=fix.commit_message or default_commit_message(issue),
            files_changed=[c.path for c in fix.files],
            logs=logs,
            validation=validation,
        )

        logger.info(
            "Fix agent for issue %s changed %d file(s)", issue.id, len(result.files_changed)
        )
        return result

    async def _validate(self, workspace: Workspace, logs: List[str]) -> ValidationSummary:
        try:
            validation = await self.manager.validate(workspace)
        except ValidationError as e:
            logs.append(f"[agent] Validation did not finish: {e}")
            return ValidationSummary(success=False, command=e.command or None, output=str(e))
        status = "passed" if validation.success else "failed"
        logs.append(f"[agent] Validation {status}: {validation.command or 'none'}")
        return ValidationSummary(
            success=validation.success,
            command=validation.command,
            output=validation.output,
        )

    async def _select_files(self, issue_text: str, files: List[str], logs: List[str]) -> List[str]:
        raw = await self.client.generate(
            RANK_FILES_SYSTEM_PROMPT,
            build_rank_files_prompt(issue_text, files, MAX_LISTED_FILES_IN_PROMPT),
            max_tokens=512,
            temperature=0.0,
        )
        try:
            ranked = parse_relevant_files(raw, limit=MAX_CANDIDATE_FILES)
        except ParseError as e:
            selected = fallback_candidates(files)
            logs.append(f"[agent] File ranking unusable ({e}); falling back to {selected}")
        else:
            # Ranked paths outside the listing (.git, node_modules, typos) are never read
            listed = set(files)
            selected = [p for p in ranked if p in listed]
            dropped = [p for p in ranked if p not in listed]
            if dropped:
                logger.warning("Ignoring ranked paths not in the file listing: %s", dropped)
                logs.append(f"[agent] Ignored unlisted paths: {', '.join(dropped)}")
            if selected:
                logs.append(f"[agent] Relevant files: {', '.join(selected)}")
            else:
                selected = fallback_candidates(files)
                logs.append(f"[agent] No ranked file is in the listing; falling back to {selected}")

        if not selected:
            raise RetrievalError("No candidate files to inspect")
        return selected

    def _read_candidates(self, workspace: Workspace, paths: List[str], logs: List[str]) -> Dict[str, str]:
        contents: Dict[str, str] = {}
        for path in paths:
            try:
                contents[path] = self.manager.read_file(workspace, path)
            except RetrievalError as e:
                logs.append(f"[agent] Skipped {path}: {e}")
        if not contents:
            raise RetrievalError("None of the candidate files could be read")
        return contents
