"""
Classification Gate Tests
=========================
The gate must never raise: every failure falls back to MANUAL / 0.
"""
import asyncio

from unittest.mock import AsyncMock, MagicMock

from surgeon.agents.classifier import ClassificationGate
from surgeon.core.errors import TransportError
from surgeon.llm.client import LLMClient
from surgeon.models.issue import AiDecision, Issue, Severity


def _make_issue():
    return Issue(
        id="abc12345",
        title="Typo on pricing page",
        description="'Prcing' should be 'Pricing'",
        severity=Severity.LOW,
        repo_url="https://github.com/acme/site",
    )


def _gate(generate):
    client = MagicMock(spec=LLMClient)
    client.generate = generate
    return ClassificationGate(client=client), client


def test_automated_label_gets_default_confidence():
    gate, client = _gate(AsyncMock(return_value="AUTOMATED"))
    result = asyncio.run(gate.classify(_make_issue()))
    assert result.decision == AiDecision.AUTOMATED
    assert result.confidence == 85
    assert "AUTOMATED" in result.reason

    user_prompt = client.generate.call_args.args[1]
    assert user_prompt.startswith("Title: Typo on pricing page\nSeverity: low\n")


def test_json_reply_keeps_reason_and_confidence():
    gate, _ = _gate(AsyncMock(
        return_value='{"decision": "MANUAL", "reason": "touches auth", "confidence": 70}'
    ))
    result = asyncio.run(gate.classify(_make_issue()))
    assert result.decision == AiDecision.MANUAL
    assert result.reason == "touches auth"
    assert result.confidence == 70


def test_transport_failure_defaults_to_manual():
    gate, _ = _gate(AsyncMock(side_effect=TransportError("All providers failed: groq: timeout")))
    result = asyncio.run(gate.classify(_make_issue()))
    assert result.decision == AiDecision.MANUAL
    assert result.confidence == 0
    assert "timeout" in result.reason


def test_unparsable_reply_defaults_to_manual():
    gate, _ = _gate(AsyncMock(return_value="I think this one is probably fine?"))
    result = asyncio.run(gate.classify(_make_issue()))
    assert result.decision == AiDecision.MANUAL
    assert result.confidence == 0


def test_unexpected_exception_defaults_to_manual():
    gate, _ = _gate(AsyncMock(side_effect=RuntimeError("boom")))
    result = asyncio.run(gate.classify(_make_issue()))
    assert result.decision == AiDecision.MANUAL
    assert result.confidence == 0
    assert "boom" in result.reason
