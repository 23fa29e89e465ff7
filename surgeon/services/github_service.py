"""
GitHub Service
==============
Turns a set of rewritten files into a pull request on GitHub (REST v3).

Flow:
    1. Resolve owner/repo (from the issue's repoUrl, else GITHUB_OWNER/GITHUB_REPO)
    2. Read the default branch and its head SHA
    3. Create branch site-surgeon/fix-<issue id8>-<epoch ms>
    4. Commit each file through the contents API (existing blob sha included)
    5. Open the pull request
    6. If auto-merge was requested, squash-merge it

Failure Contract:
    Anything that goes wrong before the pull request exists raises
    UnrecoverableDeliveryError. A rejected merge is not an error: the
    result simply reports merged=False and the PR stays open for review.
"""
import base64
import logging
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from surgeon.core.config import (
    AUTO_MERGE,
    GITHUB_API_URL,
    GITHUB_OWNER,
    GITHUB_REPO,
    GITHUB_TIMEOUT,
    GITHUB_TOKEN,
)
from surgeon.core.errors import UnrecoverableDeliveryError
from surgeon.models.fix_result import FileChange
from surgeon.models.issue import Issue
from surgeon.models.pr_result import PrResult

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "site-surgeon/fix-"


def extract_repo_path(repo_url: str) -> str:
    """Extract 'owner/repo' from a GitHub URL, or '' if it is not one."""
    match = re.search(r"github\.com[:/]([^/\s]+/[^/\s]+?)(?:\.git)?/?$", repo_url or "")
    return match.group(1) if match else ""


def build_pr_body(issue: Issue, patch_summary: str) -> str:
    return "\n".join([
        "## Automated fix",
        "",
        f"**Issue:** {issue.title}",
        f"**Severity:** {issue.severity.value}",
        f"**Issue ID:** {issue.id}",
        "",
        "### Description",
        issue.description,
        "",
        "### Steps to Reproduce",
        issue.steps_to_reproduce or "_not provided_",
        "",
        "### Patch Summary",
        patch_summary or "_no summary_",
        "",
        "---",
        "_Generated by Site Surgeon. Review before relying on this change._",
    ])


class GitHubService:
    """
    Parameters
    ----------
    token : str
        GitHub token with contents and pull-request write access.
    transport : httpx.AsyncBaseTransport or None
        Override for the HTTP transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        token: Optional[str] = GITHUB_TOKEN,
        api_url: str = GITHUB_API_URL,
        default_owner: str = GITHUB_OWNER,
        default_repo: str = GITHUB_REPO,
        timeout: float = GITHUB_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token or ""
        self.api_url = api_url.rstrip("/")
        self.default_owner = default_owner
        self.default_repo = default_repo
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "Site-Surgeon",
        }
        if self.token:
            self.headers["Authorization"] = f"token {self.token}"

    def resolve_repo(self, repo_url: str = "") -> str:
        repo_path = extract_repo_path(repo_url)
        if repo_path:
            return repo_path
        if self.default_owner and self.default_repo:
            return f"{self.default_owner}/{self.default_repo}"
        return ""

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    async def create_and_submit_fix(
        self,
        issue: Issue,
        files: List[FileChange],
        commit_message: str,
        patch_summary: str = "",
        auto_merge: bool = AUTO_MERGE,
    ) -> PrResult:
        """
        Create a branch, commit *files*, open a PR and optionally merge it.

        Raises
        ------
        UnrecoverableDeliveryError
            Missing token, unresolvable repository, no files, or any
            GitHub error before the pull request was opened.
        """
        if not self.token:
            raise UnrecoverableDeliveryError("GITHUB_TOKEN is not configured")
        repo = self.resolve_repo(issue.repo_url)
        if not repo:
            raise UnrecoverableDeliveryError(f"Cannot resolve GitHub repository from {issue.repo_url!r}")
        if not files:
            raise UnrecoverableDeliveryError("No files to commit")

        branch = f"{BRANCH_PREFIX}{issue.id[:8]}-{int(time.time() * 1000)}"

        async with self._client() as client:
            try:
                base = await self._default_branch(client, repo)
                base_sha = await self._head_sha(client, repo, base)
                await self._create_branch(client, repo, branch, base_sha)
                for change in files:
                    await self._put_file(client, repo, branch, change, commit_message)
                pr = await self._open_pull_request(client, repo, issue, branch, base, patch_summary)
                pr_number = int(pr["number"])
                pr_url = str(pr["html_url"])
            except httpx.HTTPStatusError as e:
                detail = e.response.text[:300]
                raise UnrecoverableDeliveryError(
                    f"GitHub API {e.request.method} {e.request.url.path} -> "
                    f"HTTP {e.response.status_code} (branch {branch}): {detail}"
                ) from e
            except httpx.HTTPError as e:
                raise UnrecoverableDeliveryError(f"GitHub unreachable (branch {branch}): {e}") from e
            except (KeyError, TypeError, ValueError) as e:
                raise UnrecoverableDeliveryError(f"Unexpected GitHub response (branch {branch}): {e}") from e

            logger.info("Opened PR #%d on %s (%s)", pr_number, repo, pr_url)

            merged = False
            if auto_merge:
                merged = await self._merge(client, repo, pr_number, commit_message)

        return PrResult(branch_name=branch, pr_url=pr_url, pr_number=pr_number, merged=merged)

    # -------------------------------------------------------------------
    # REST calls
    # -------------------------------------------------------------------
    async def _default_branch(self, client: httpx.AsyncClient, repo: str) -> str:
        response = await client.get(f"/repos/{repo}")
        response.raise_for_status()
        return response.json().get("default_branch") or "main"

    async def _head_sha(self, client: httpx.AsyncClient, repo: str, branch: str) -> str:
        response = await client.get(f"/repos/{repo}/git/ref/heads/{quote(branch)}")
        response.raise_for_status()
        return response.json()["object"]["sha"]

    async def _create_branch(self, client: httpx.AsyncClient, repo: str, branch: str, sha: str) -> None:
        response = await client.post(
            f"/repos/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        response.raise_for_status()
        logger.info("Created branch %s on %s", branch, repo)

    async def _put_file(
        self,
        client: httpx.AsyncClient,
        repo: str,
        branch: str,
        change: FileChange,
        message: str,
    ) -> None:
        url = f"/repos/{repo}/contents/{quote(change.path)}"
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(change.content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        existing = await client.get(url, params={"ref": branch})
        if existing.status_code == 200:
            sha = existing.json().get("sha")
            if sha:
                payload["sha"] = sha
        elif existing.status_code != 404:
            existing.raise_for_status()

        response = await client.put(url, json=payload)
        response.raise_for_status()
        logger.debug("Committed %s to %s", change.path, branch)

    async def _open_pull_request(
        self,
        client: httpx.AsyncClient,
        repo: str,
        issue: Issue,
        branch: str,
        base: str,
        patch_summary: str,
    ) -> Dict[str, Any]:
        response = await client.post(
            f"/repos/{repo}/pulls",
            json={
                "title": f"fix: {issue.title}",
                "head": branch,
                "base": base,
                "body": build_pr_body(issue, patch_summary),
            },
        )
        response.raise_for_status()
        return response.json()

    async def _merge(self, client: httpx.AsyncClient, repo: str, pr_number: int, commit_title: str) -> bool:
        """Squash-merge; any rejection leaves the PR open and returns False."""
        try:
            response = await client.put(
                f"/repos/{repo}/pulls/{pr_number}/merge",
                json={"merge_method": "squash", "commit_title": commit_title},
            )
            response.raise_for_status()
            merged = bool(response.json().get("merged"))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Auto-merge of PR #%d on %s rejected: %s", pr_number, repo, e)
            return False
        if merged:
            logger.info("Merged PR #%d on %s", pr_number, repo)
        return merged
