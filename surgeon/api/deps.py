"""
API Dependencies
Process-wide singletons injected into routes with Depends().
Tests replace them through app.dependency_overrides.
"""
from functools import lru_cache

from fastapi import Depends

from surgeon.agents.orchestrator import Orchestrator
from surgeon.state.issue_store import IssueStore


@lru_cache(maxsize=1)
def get_orchestrator() -> Orchestrator:
    return Orchestrator()


def get_store(orchestrator: Orchestrator = Depends(get_orchestrator)) -> IssueStore:
    return orchestrator.store
