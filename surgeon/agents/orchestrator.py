"""
Orchestrator Agent
==================
Drives one bug report from intake to a terminal outcome.

State Graph (enforced by the IssueStore):
    received → classifying → sandboxing → fixing → pr_opened → merged
                   │             │           │  └──────────────→ merged
                   └─────────────┴───────────┴→ notified | failed

Pipeline:
    1. Classify (MANUAL → notify a human → notified)
    2. Sandbox: create workspace, shallow clone, install (non-fatal)
       → failure: escalate to MANUAL → notified
    3. Fix: run the FixAgent, read the changed files back
       → failure or no files: escalate to MANUAL → notified
    4. Destroy the workspace (always, before leaving fixing)
    5. Open the pull request with auto-merge
       → raise: failed
    6. pr_opened / merged, then a best-effort summary email

Fault Tolerance:
    - Notifications never change an issue's outcome
    - Every absorbed error is written verbatim to the issue log
    - submit() runs the pipeline in a detached task behind a guard: a crash
      leaves the issue in failed, never stuck mid-pipeline
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set

from surgeon.agents.classifier import ClassificationGate
from surgeon.agents.fix_agent import FixAgent
from surgeon.core.config import AUTO_MERGE, DEMO_MODE
from surgeon.core.errors import RetrievalError, SurgeonError, TransportError, UnrecoverableDeliveryError
from surgeon.models.fix_result import AgentResult, FileChange
from surgeon.models.issue import AiDecision, Issue, IssueReport, IssueStatus
from surgeon.sandbox.workspace import Workspace, WorkspaceManager
from surgeon.services.email_service import EmailNotifier
from surgeon.services.github_service import GitHubService
from surgeon.state.issue_store import IssueStore

logger = logging.getLogger(__name__)

SANDBOX_UNAVAILABLE_REASON = "Sandbox unavailable. Escalated for manual review."
DEMO_FILE_PATH = ".site-surgeon/last-fix.md"
DEMO_PATCH_SUMMARY = "Demo mode: placeholder commit to show end-to-end pipeline."


@dataclass
class FixAttempt:
    """Outcome of the sandboxing + fixing phases, workspace already gone."""
    sandbox_error: Optional[str] = None
    agent_error: Optional[str] = None
    result: Optional[AgentResult] = None
    files: List[FileChange] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.result is not None and bool(self.files)


def build_demo_file(issue: Issue) -> FileChange:
    content = "\n".join([
        "# Site Surgeon - Demo Fix",
        "",
        f"**Issue:** {issue.title}",
        f"**Severity:** {issue.severity.value}",
        f"**Date:** {datetime.now(timezone.utc).isoformat()}",
        "",
        "## Description",
        issue.description,
        "",
        "> This is a placeholder commit created in demo mode. No source files were changed.",
        "",
    ])
    return FileChange(path=DEMO_FILE_PATH, content=content)


class Orchestrator:
    """
    Parameters
    ----------
    store : IssueStore
        Shared issue table (also read by the API).
    classifier, workspace_manager, fix_agent, github, notifier
        Collaborators; each is auto-created if not provided.
    demo_mode : bool
        Skip sandbox and agent; deliver a placeholder file instead.
    auto_merge : bool
        Ask the hosting service to merge the pull request.
    """

    def __init__(
        self,
        store: Optional[IssueStore] = None,
        classifier: Optional[ClassificationGate] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        fix_agent: Optional[FixAgent] = None,
        github: Optional[GitHubService] = None,
        notifier: Optional[EmailNotifier] = None,
        demo_mode: bool = DEMO_MODE,
        auto_merge: bool = AUTO_MERGE,
    ) -> None:
        self.store = store or IssueStore()
        self.classifier = classifier or ClassificationGate()
        self.workspace_manager = workspace_manager or WorkspaceManager()
        self.fix_agent = fix_agent or FixAgent(
            client=self.classifier.client, manager=self.workspace_manager
        )
        self.github = github or GitHubService()
        self.notifier = notifier or EmailNotifier()
        self.demo_mode = demo_mode
        self.auto_merge = auto_merge
        self._tasks: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------
    def submit(self, report: IssueReport) -> Issue:
        """
        Store a new issue and start its pipeline in the background.

        Must be called from a running event loop. Returns the stored issue
        (status received) without waiting for any pipeline work.
        """
        issue = self.store.create(Issue(id=str(uuid.uuid4()), **report.model_dump()))
        task = asyncio.create_task(self._guarded(issue.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Issue %s received: %s", issue.id, issue.title)
        return issue

    async def wait_idle(self) -> None:
        """Wait for every in-flight pipeline task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Let in-flight pipelines finish, then release the LLM HTTP client."""
        await self.wait_idle()
        await self.classifier.client.close()
        if self.fix_agent.client is not self.classifier.client:
            await self.fix_agent.client.close()
        logger.info("Orchestrator stopped")

    async def _guarded(self, issue_id: str) -> None:
        try:
            await self.run_pipeline(issue_id)
        except Exception as e:
            logger.exception("Pipeline crashed for issue %s", issue_id)
            self._mark_failed(issue_id, f"[error] Pipeline crashed: {e}")

    def _mark_failed(self, issue_id: str, line: str) -> None:
        try:
            self.store.append_logs(issue_id, [line])
            issue = self.store.require(issue_id)
            if issue.is_terminal or issue.status == IssueStatus.PR_OPENED:
                return
            if issue.status == IssueStatus.RECEIVED:
                self.store.transition(issue_id, IssueStatus.CLASSIFYING)
            self.store.transition(issue_id, IssueStatus.FAILED)
        except SurgeonError as e:
            logger.error("Could not mark issue %s failed: %s", issue_id, e)

    # -------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------
    async def run_pipeline(self, issue_id: str) -> Issue:
        """Run every phase for one issue and return its final record."""
        issue = self.store.transition(issue_id, IssueStatus.CLASSIFYING)

        classification = await self.classifier.classify(issue)
        issue = self.store.update(
            issue_id,
            ai_decision=classification.decision,
            ai_reason=classification.reason,
            ai_confidence=classification.confidence,
        )
        self.store.append_logs(issue_id, [
            f"[classify] {classification.decision.value} "
            f"(confidence {classification.confidence}): {classification.reason}"
        ])

        if classification.decision == AiDecision.MANUAL:
            return await self._escalate(issue_id)

        self.store.transition(issue_id, IssueStatus.SANDBOXING)

        if self.demo_mode:
            return await self._run_demo(issue_id)

        attempt = await self._attempt_fix(issue)

        if attempt.sandbox_error is not None:
            self.store.append_logs(issue_id, [f"[error] Sandbox failed: {attempt.sandbox_error}"])
            return await self._escalate(issue_id, SANDBOX_UNAVAILABLE_REASON)

        if not attempt.ok:
            error = attempt.agent_error or "no files changed"
            return await self._escalate(issue_id, f"Agent failed: {error}")

        return await self._deliver(
            issue_id,
            files=attempt.files,
            commit_message=attempt.result.commit_message,
            patch_summary=attempt.result.patch,
        )

    async def _attempt_fix(self, issue: Issue) -> FixAttempt:
        """Sandboxing and fixing phases. The workspace is destroyed before returning."""
        workspace: Optional[Workspace] = None
        try:
            async with self.workspace_manager.session(issue.repo_url, issue.id) as workspace:
                return await self._fix_in_workspace(issue, workspace)
        except SurgeonError as e:
            if workspace is not None:
                raise
            # create() itself failed
            logger.warning("Sandbox failed for issue %s: %s", issue.id, e)
            return FixAttempt(sandbox_error=str(e))
        finally:
            if workspace is not None:
                self.store.append_logs(issue.id, workspace.drain_logs())

    async def _fix_in_workspace(self, issue: Issue, workspace: Workspace) -> FixAttempt:
        try:
            self.store.update(issue.id, sandbox_id=workspace.workspace_id)
            await self.workspace_manager.clone(workspace, issue.repo_url)
            await self.workspace_manager.install_dependencies(workspace)
        except SurgeonError as e:
            logger.warning("Sandbox failed for issue %s: %s", issue.id, e)
            return FixAttempt(sandbox_error=str(e))
        finally:
            self.store.append_logs(issue.id, workspace.drain_logs())

        self.store.transition(issue.id, IssueStatus.FIXING)
        result = await self.fix_agent.run(issue, workspace)
        self.store.append_logs(issue.id, result.logs)

        if not result.success or not result.files_changed:
            return FixAttempt(agent_error=result.error or "no files changed", result=result)

        files = self._read_back(issue.id, workspace, result.files_changed)
        if not files:
            return FixAttempt(agent_error="changed files could not be read back", result=result)
        return FixAttempt(result=result, files=files)

    def _read_back(self, issue_id: str, workspace: Workspace, paths: List[str]) -> List[FileChange]:
        files: List[FileChange] = []
        for path in paths:
            try:
                content = self.workspace_manager.read_file(workspace, path)
            except RetrievalError as e:
                self.store.append_logs(issue_id, [f"[pr] Skipped unreadable {path}: {e}"])
                continue
            files.append(FileChange(path=path, content=content))
        return files

    async def _run_demo(self, issue_id: str) -> Issue:
        issue = self.store.transition(issue_id, IssueStatus.FIXING)
        self.store.append_logs(issue_id, ["[demo] Demo mode: sandbox and agent skipped."])
        return await self._deliver(
            issue_id,
            files=[build_demo_file(issue)],
            commit_message=f'fix(demo): AI attempted fix for "{issue.title}"',
            patch_summary=DEMO_PATCH_SUMMARY,
        )

    # -------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------
    async def _deliver(
        self,
        issue_id: str,
        files: List[FileChange],
        commit_message: str,
        patch_summary: str,
    ) -> Issue:
        issue = self.store.require(issue_id)
        try:
            pr = await self.github.create_and_submit_fix(
                issue, files, commit_message, patch_summary, auto_merge=self.auto_merge
            )
        except UnrecoverableDeliveryError as e:
            logger.error("PR creation failed for issue %s: %s", issue_id, e)
            self.store.append_logs(issue_id, [f"[error] PR creation failed: {e}"])
            return self.store.transition(issue_id, IssueStatus.FAILED)

        lines = [f"[pr] Opened PR #{pr.pr_number}: {pr.pr_url}"]
        if pr.merged:
            lines.append(f"[pr] Merged PR #{pr.pr_number}")
        elif self.auto_merge:
            lines.append("[pr] Auto-merge not completed; PR left open for review.")
        self.store.append_logs(issue_id, lines)

        issue = self.store.transition(
            issue_id,
            IssueStatus.MERGED if pr.merged else IssueStatus.PR_OPENED,
            branch_name=pr.branch_name,
            pr_url=pr.pr_url,
            pr_number=pr.pr_number,
            merged=pr.merged,
            commit_message=commit_message,
            patch_summary=patch_summary,
        )
        await self._notify(
            issue_id,
            lambda: self.notifier.send_automated_fix(issue, pr.pr_url, pr.merged, patch_summary),
        )
        return self.store.require(issue_id)

    async def _escalate(self, issue_id: str, reason: Optional[str] = None) -> Issue:
        """Hand the issue to a human: MANUAL decision, email, notified."""
        if reason is not None:
            self.store.update(issue_id, ai_decision=AiDecision.MANUAL, ai_reason=reason)
        issue = self.store.require(issue_id)
        await self._notify(issue_id, lambda: self.notifier.send_manual_review(issue))
        return self.store.transition(issue_id, IssueStatus.NOTIFIED)

    async def _notify(self, issue_id: str, send: Callable[[], Awaitable[None]]) -> None:
        """Best-effort notification; failures are logged, never raised."""
        try:
            await send()
            self.store.append_logs(issue_id, ["[notify] Email sent."])
        except TransportError as e:
            logger.warning("Notification for issue %s failed: %s", issue_id, e)
            self.store.append_logs(issue_id, [f"[notify] Email failed: {e}"])
        except Exception as e:
            logger.exception("Unexpected notification error for issue %s", issue_id)
            self.store.append_logs(issue_id, [f"[notify] Email failed: {e}"])
