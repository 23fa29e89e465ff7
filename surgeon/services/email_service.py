"""
Email Notifier
==============
Sends pipeline outcome emails over SMTP (SSL on port 465, STARTTLS
otherwise). smtplib is blocking, so every send runs in a worker thread.

Two messages:
    send_manual_review   - the issue needs a human (classified MANUAL,
                           sandbox failed, or the agent gave up)
    send_automated_fix   - a pull request was opened (and maybe merged)

Notifications are best-effort: a failure raises TransportError and the
orchestrator records it without changing the issue's outcome.
"""
import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from surgeon.core.config import (
    NOTIFY_EMAIL,
    SMTP_FROM,
    SMTP_HOST,
    SMTP_PASS,
    SMTP_PORT,
    SMTP_TIMEOUT,
    SMTP_USER,
)
from surgeon.core.errors import TransportError
from surgeon.models.issue import Issue

logger = logging.getLogger(__name__)


class EmailNotifier:
    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: str = SMTP_USER,
        password: str = SMTP_PASS,
        sender: str = SMTP_FROM,
        recipient: str = NOTIFY_EMAIL,
        timeout: float = SMTP_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.recipient = recipient
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.recipient and self.sender)

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------
    async def send_manual_review(self, issue: Issue) -> None:
        subject = f"[Site Surgeon] Manual review needed: {issue.title}"
        body = "\n".join([
            "An issue needs manual review.",
            "",
            f"Title:     {issue.title}",
            f"Severity:  {issue.severity.value}",
            f"Issue ID:  {issue.id}",
            f"Repo:      {issue.repo_url}",
            f"Decision:  {issue.ai_decision.value if issue.ai_decision else 'n/a'}",
            f"Reason:    {issue.ai_reason or 'n/a'}",
            "",
            "Description:",
            issue.description,
            "",
            "Steps to Reproduce:",
            issue.steps_to_reproduce or "(not provided)",
        ])
        await self.send(subject, body)

    async def send_automated_fix(
        self,
        issue: Issue,
        pr_url: str,
        merged: bool,
        patch_summary: Optional[str] = None,
    ) -> None:
        state = "merged" if merged else "opened"
        subject = f"[Site Surgeon] Fix {state}: {issue.title}"
        body = "\n".join([
            f"An automated fix was {state} for the issue below.",
            "",
            f"Title:     {issue.title}",
            f"Severity:  {issue.severity.value}",
            f"Issue ID:  {issue.id}",
            f"Pull request: {pr_url}",
            "",
            "Patch summary:",
            patch_summary or "(none)",
        ])
        await self.send(subject, body)

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    async def send(self, subject: str, body: str) -> None:
        """
        Raises
        ------
        TransportError
            SMTP is not configured, or the server refused or timed out.
        """
        if not self.is_configured:
            raise TransportError("SMTP not configured (SMTP_HOST / NOTIFY_EMAIL missing)")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg.set_content(body)

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"Email delivery failed: {e}") from e
        logger.info("Email sent to %s: %s", self.recipient, subject)

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
