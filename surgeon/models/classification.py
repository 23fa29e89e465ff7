"""
Classification Result Model
Outcome of the triage call: AUTOMATED or MANUAL, a rationale and a 0-100 confidence.
"""
from pydantic import BaseModel, Field

from .issue import AiDecision


class ClassificationResult(BaseModel):
    decision: AiDecision
    reason: str
    confidence: int = Field(default=0, ge=0, le=100)
