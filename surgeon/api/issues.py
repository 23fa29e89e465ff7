"""
Issue Intake Routes
===================
POST /api/issues/report   - accept a bug report, start its pipeline, 201
GET  /api/issues/{id}     - current record of one issue

The POST handler only validates and stores; the pipeline runs in a
detached task, so the response never waits on the LLM, git or GitHub.
"""
import logging
import re

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field, field_validator, model_validator

from surgeon.agents.orchestrator import Orchestrator
from surgeon.api.deps import get_orchestrator, get_store
from surgeon.core.config import GITHUB_OWNER, GITHUB_REPO
from surgeon.models.issue import Issue, IssueReport
from surgeon.state.issue_store import IssueStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/issues", tags=["Issues"])

_GITHUB_URL_RE = re.compile(
    r"^https?://(www\.)?github\.com/[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+(\.git)?/?$"
)


def default_repo_url() -> str:
    if GITHUB_OWNER and GITHUB_REPO:
        return f"https://github.com/{GITHUB_OWNER}/{GITHUB_REPO}"
    return ""


# ---------------------------------------------------------------------------
# Request schema
# ---------------------------------------------------------------------------
class ReportIssueRequest(IssueReport):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    steps_to_reproduce: str = Field(default="", max_length=5000)
    repo_url: str = ""

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("repo_url")
    @classmethod
    def validate_github_url(cls, v: str) -> str:
        v = (v or "").strip()
        if v and not _GITHUB_URL_RE.match(v):
            raise ValueError("Must be a GitHub repository URL")
        return v

    @model_validator(mode="after")
    def fill_default_repo(self) -> "ReportIssueRequest":
        if not self.repo_url:
            self.repo_url = default_repo_url()
        if not self.repo_url:
            raise ValueError("repoUrl is required (no GITHUB_OWNER/GITHUB_REPO default configured)")
        return self


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/report", status_code=201)
async def report_issue(
    request: ReportIssueRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    issue = orchestrator.submit(IssueReport.model_validate(request.model_dump()))
    return {
        "issueId": issue.id,
        "status": issue.status.value,
        "message": "Issue received. AI pipeline started.",
    }


@router.get("/{issue_id}")
async def get_issue(issue_id: str, store: IssueStore = Depends(get_store)):
    issue = store.get(issue_id)
    if issue is None:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue.model_dump(by_alias=True, mode="json")
