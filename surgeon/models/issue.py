"""
Issue Model
===========
Pydantic model for one submitted bug report and its pipeline record.

Fields:
    id                  - uuid4, assigned at intake, immutable
    title / description / steps_to_reproduce / severity / repo_url
                        - descriptive, immutable after intake
    status              - pipeline phase (see TRANSITIONS)
    ai_decision         - AUTOMATED / MANUAL / None
    ai_reason           - free-text rationale for the decision
    ai_confidence       - 0-100, None until classified
    sandbox_logs        - append-only diagnostic log
    sandbox_id          - workspace identifier while/after sandboxing
    branch_name / pr_url / pr_number / merged
                        - change-request outcome
    commit_message / patch_summary
                        - what was proposed
    created_at / updated_at
                        - ISO-8601 UTC

Serialised with camelCase aliases (repoUrl, aiDecision, sandboxLogs, …)
to match the dashboard contract. Both field names and aliases are accepted
on input.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AiDecision(str, Enum):
    AUTOMATED = "AUTOMATED"
    MANUAL = "MANUAL"


class IssueStatus(str, Enum):
    RECEIVED = "received"
    CLASSIFYING = "classifying"
    SANDBOXING = "sandboxing"
    FIXING = "fixing"
    PR_OPENED = "pr_opened"
    MERGED = "merged"
    NOTIFIED = "notified"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Status graph - status only ever moves along these edges
# ---------------------------------------------------------------------------
TRANSITIONS: Dict[IssueStatus, FrozenSet[IssueStatus]] = {
    IssueStatus.RECEIVED: frozenset({IssueStatus.CLASSIFYING}),
    IssueStatus.CLASSIFYING: frozenset({
        IssueStatus.SANDBOXING, IssueStatus.NOTIFIED, IssueStatus.FAILED,
    }),
    IssueStatus.SANDBOXING: frozenset({
        IssueStatus.FIXING, IssueStatus.NOTIFIED, IssueStatus.FAILED,
    }),
    # fixing → merged commits a change request the host already merged
    IssueStatus.FIXING: frozenset({
        IssueStatus.PR_OPENED, IssueStatus.MERGED,
        IssueStatus.NOTIFIED, IssueStatus.FAILED,
    }),
    IssueStatus.PR_OPENED: frozenset({IssueStatus.MERGED}),
    IssueStatus.MERGED: frozenset(),
    IssueStatus.NOTIFIED: frozenset(),
    IssueStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[IssueStatus] = frozenset({
    IssueStatus.MERGED, IssueStatus.NOTIFIED, IssueStatus.FAILED,
})


def can_transition(current: IssueStatus, target: IssueStatus) -> bool:
    """Return True if *target* is a legal next status after *current*."""
    return target in TRANSITIONS.get(current, frozenset())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class IssueReport(_CamelModel):
    """The descriptive part of an issue, as submitted at intake."""
    title: str
    description: str
    steps_to_reproduce: str = ""
    severity: Severity
    repo_url: str


class Issue(_CamelModel):
    id: str
    title: str
    description: str
    steps_to_reproduce: str = ""
    severity: Severity
    repo_url: str

    status: IssueStatus = IssueStatus.RECEIVED
    ai_decision: Optional[AiDecision] = None
    ai_reason: Optional[str] = None
    ai_confidence: Optional[int] = None
    sandbox_id: Optional[str] = None
    sandbox_logs: List[str] = []
    branch_name: Optional[str] = None
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    merged: bool = False
    commit_message: Optional[str] = None
    patch_summary: Optional[str] = None

    created_at: str = ""
    updated_at: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# Fields the pipeline may change after intake; everything else is frozen
MUTABLE_FIELDS: FrozenSet[str] = frozenset({
    "status", "ai_decision", "ai_reason", "ai_confidence",
    "sandbox_id", "sandbox_logs", "branch_name", "pr_url", "pr_number",
    "merged", "commit_message", "patch_summary",
})


class DashboardStats(BaseModel):
    total: int = 0
    received: int = 0
    classifying: int = 0
    sandboxing: int = 0
    fixing: int = 0
    pr_opened: int = 0
    merged: int = 0
    notified: int = 0
    failed: int = 0
    automated: int = 0
    manual: int = 0
