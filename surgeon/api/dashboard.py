"""
Dashboard Routes
GET /api/dashboard/issues - every issue, newest first
GET /api/dashboard/stats  - counts per status and per decision
"""
from fastapi import APIRouter, Depends

from surgeon.api.deps import get_store
from surgeon.state.issue_store import IssueStore

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@router.get("/issues")
async def list_issues(store: IssueStore = Depends(get_store)):
    return {"issues": [i.model_dump(by_alias=True, mode="json") for i in store.list()]}


@router.get("/stats")
async def get_stats(store: IssueStore = Depends(get_store)):
    return store.stats().model_dump()
