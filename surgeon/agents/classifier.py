"""
Classification Gate
===================
Decides whether a bug report may be fixed without a human.

    AUTOMATED → the pipeline sandboxes the repository and attempts a fix
    MANUAL    → the report is escalated to a human straight away

Fail-safe:
    The gate never raises. A transport failure, a malformed reply or any
    unexpected exception yields MANUAL with confidence 0, so an outage of
    the reasoning collaborator can never push an unreviewed change.

There is no retry here; provider fallback lives in the LLM client.
"""
import logging
from typing import Optional

from surgeon.core.config import AI_MODEL
from surgeon.core.errors import ParseError, TransportError
from surgeon.llm.client import LLMClient
from surgeon.llm.parsing import parse_classification
from surgeon.llm.prompts import CLASSIFY_SYSTEM_PROMPT, build_issue_text
from surgeon.models.classification import ClassificationResult
from surgeon.models.issue import AiDecision, Issue

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 85


class ClassificationGate:
    """
    Parameters
    ----------
    client : LLMClient or None
        Shared LLM client (auto-created if not provided).
    """

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        self.client = client or LLMClient()

    async def classify(self, issue: Issue) -> ClassificationResult:
        try:
            raw = await self.client.generate(
                CLASSIFY_SYSTEM_PROMPT,
                build_issue_text(issue),
                max_tokens=120,
                temperature=0.0,
            )
            decision, reason, confidence = parse_classification(raw)
        except (TransportError, ParseError) as e:
            logger.warning("Classification failed for issue %s: %s", issue.id, e)
            return _fallback(f"Classification unavailable ({e}). Defaulted to manual review.")
        except Exception as e:
            logger.exception("Unexpected classification error for issue %s", issue.id)
            return _fallback(f"Classification error ({e}). Defaulted to manual review.")

        result = ClassificationResult(
            decision=decision,
            reason=reason or f"AI ({AI_MODEL}) classified this as {decision.value}.",
            confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
        )
        logger.info(
            "Issue %s classified %s (confidence %d)",
            issue.id, result.decision.value, result.confidence,
        )
        return result


def _fallback(reason: str) -> ClassificationResult:
    return ClassificationResult(decision=AiDecision.MANUAL, reason=reason, confidence=0)
