"""
Issue Store
===========
Process-wide table of Issue records, injected into the Orchestrator and the
API layer. Lifetime = process lifetime; no persistence.

Rules enforced here (not by callers):
    - Only pipeline fields (MUTABLE_FIELDS) can change after intake.
    - status only moves along the TRANSITIONS graph.
    - sandbox_logs is append-only (use append_logs, never update).
    - ai_decision is never cleared once set.
    - updated_at is bumped on every mutation.

Every read returns a deep copy, so no two pipelines ever share an Issue
object. A single lock gives each call exclusive access to the map; there
are no cross-issue transactions.
"""
import logging
import threading
from typing import Dict, Iterable, List, Optional

from surgeon.core.errors import InvalidTransitionError, IssueNotFoundError
from surgeon.models.issue import (
    AiDecision,
    DashboardStats,
    Issue,
    IssueStatus,
    MUTABLE_FIELDS,
    can_transition,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class IssueStore:
    """
    In-memory exclusive-access map of issue id → Issue.

    Usage:
        store = IssueStore()
        store.create(issue)
        store.transition(issue.id, IssueStatus.CLASSIFYING)
        store.append_logs(issue.id, ["[clone] OK"])
    """

    def __init__(self) -> None:
        self._issues: Dict[str, Issue] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------
    def create(self, issue: Issue) -> Issue:
        with self._lock:
            if issue.id in self._issues:
                raise ValueError(f"Issue already exists: {issue.id}")
            now = utc_now_iso()
            stored = issue.model_copy(deep=True)
            if not stored.created_at:
                stored.created_at = now
            stored.updated_at = stored.updated_at or stored.created_at
            self._issues[stored.id] = stored
            return stored.model_copy(deep=True)

    def get(self, issue_id: str) -> Optional[Issue]:
        with self._lock:
            issue = self._issues.get(issue_id)
            return issue.model_copy(deep=True) if issue else None

    def require(self, issue_id: str) -> Issue:
        issue = self.get(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    def list(self) -> List[Issue]:
        """All issues, newest first."""
        with self._lock:
            issues = [i.model_copy(deep=True) for i in self._issues.values()]
        return sorted(issues, key=lambda i: i.created_at, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._issues)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def update(self, issue_id: str, **fields) -> Issue:
        """
        Apply a partial update to an issue's pipeline fields.

        Raises
        ------
        IssueNotFoundError
            Unknown id.
        ValueError
            Immutable field, log overwrite, or clearing ai_decision.
        InvalidTransitionError
            status change that is not an edge of the graph.
        """
        illegal = set(fields) - MUTABLE_FIELDS
        if illegal:
            raise ValueError(f"Immutable fields cannot be updated: {sorted(illegal)}")
        if "sandbox_logs" in fields:
            raise ValueError("sandbox_logs is append-only; use append_logs()")

        with self._lock:
            current = self._issues.get(issue_id)
            if current is None:
                raise IssueNotFoundError(issue_id)

            if "status" in fields:
                target = IssueStatus(fields["status"])
                if not can_transition(current.status, target):
                    raise InvalidTransitionError(
                        issue_id, current.status.value, target.value
                    )
                fields["status"] = target

            if "ai_decision" in fields:
                if fields["ai_decision"] is None:
                    if current.ai_decision is not None:
                        raise ValueError("ai_decision cannot be cleared once set")
                else:
                    fields["ai_decision"] = AiDecision(fields["ai_decision"])

            updated = current.model_copy(update=fields, deep=True)
            updated.updated_at = utc_now_iso()
            self._issues[issue_id] = updated

        if "status" in fields:
            logger.info("Issue %s: %s -> %s", issue_id, current.status.value, updated.status.value)
        return updated.model_copy(deep=True)

    def transition(self, issue_id: str, status: IssueStatus, **fields) -> Issue:
        """Move an issue to *status*, committing *fields* in the same update."""
        return self.update(issue_id, status=status, **fields)

    def append_logs(self, issue_id: str, lines: Iterable[str]) -> Issue:
        new_lines = [str(line) for line in lines]
        with self._lock:
            current = self._issues.get(issue_id)
            if current is None:
                raise IssueNotFoundError(issue_id)
            if not new_lines:
                return current.model_copy(deep=True)
            updated = current.model_copy(
                update={"sandbox_logs": [*current.sandbox_logs, *new_lines]}, deep=True
            )
            updated.updated_at = utc_now_iso()
            self._issues[issue_id] = updated
            return updated.model_copy(deep=True)

    # -------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------
    def stats(self) -> DashboardStats:
        with self._lock:
            issues = list(self._issues.values())

        counts = {status.value: 0 for status in IssueStatus}
        automated = manual = 0
        for issue in issues:
            counts[issue.status.value] += 1
            if issue.ai_decision == AiDecision.AUTOMATED:
                automated += 1
            elif issue.ai_decision == AiDecision.MANUAL:
                manual += 1

        return DashboardStats(total=len(issues), automated=automated, manual=manual, **counts)
