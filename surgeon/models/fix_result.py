"""
Fix Result Models
=================
Pydantic models for the output of the Fix Synthesis Agent.

FixResult (parsed from the generation collaborator):
    commit_message  - short, imperative
    patch_summary   - human-readable explanation of the change
    files           - ordered (path, full new content) pairs, paths
                      relative to the repository root

AgentResult (returned by FixAgent.run, never raised past the agent):
    success         - True only if at least one file was written
    patch           - rendered summary + per-file excerpts for the PR body
    commit_message  - from the FixResult
    files_changed   - relative paths written into the workspace
    logs            - every step taken, merged verbatim into the Issue log
    error           - failure message when success is False
    validation      - advisory tests/build outcome (None when not run)
"""
from typing import List, Optional

from pydantic import BaseModel


class FileChange(BaseModel):
    path: str
    content: str


class FixResult(BaseModel):
    commit_message: str
    patch_summary: str = ""
    files: List[FileChange] = []


class ValidationSummary(BaseModel):
    success: bool
    command: Optional[str] = None
    output: str = ""


class AgentResult(BaseModel):
    success: bool = False
    patch: str = ""
    commit_message: str = ""
    files_changed: List[str] = []
    logs: List[str] = []
    error: Optional[str] = None
    validation: Optional[ValidationSummary] = None
