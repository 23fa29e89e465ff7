"""
LLM Router
==========
Decides which LLM provider to use and manages provider switching.

Routing Strategy:
    1. Always attempt Groq first (primary provider, OpenAI-compatible)
    2. On failure (HTTP error, timeout, rate limit, empty reply) → Gemini
    3. On Gemini failure → OpenRouter
    4. All failed → the client reports failure; the caller decides what
       that means (triage fails safe to MANUAL, fix synthesis escalates)

Provider Health Tracking:
    - Track consecutive failures per provider
    - After PROVIDER_COOLDOWN_THRESHOLD failures, skip the provider for
      PROVIDER_COOLDOWN_SKIP_COUNT selections, then re-enable cautiously
    - Providers without an API key are never selected

The router is shared by every pipeline in the process; its state is
guarded by a lock.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from surgeon.core.config import (
    AI_MODEL,
    GEMINI_API_KEY,
    GROQ_API_KEY,
    LLM_TIMEOUT,
    OPENROUTER_API_KEY,
    PROVIDER_COOLDOWN_SKIP_COUNT,
    PROVIDER_COOLDOWN_THRESHOLD,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Provider Configuration
# ---------------------------------------------------------------------------
@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    max_retries: int = 1
    timeout_seconds: float = LLM_TIMEOUT

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


GROQ_CONFIG = ProviderConfig(
    name="groq",
    api_key=GROQ_API_KEY or "",
    base_url="https://api.groq.com/openai/v1",
    model=AI_MODEL,
)

GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    api_key=GEMINI_API_KEY or "",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    model="gemini-2.0-flash",
)

OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    api_key=OPENROUTER_API_KEY or "",
    base_url="https://openrouter.ai/api/v1",
    model="meta-llama/llama-3.3-70b-instruct:free",
)


# ---------------------------------------------------------------------------
# Provider Health Tracker
# ---------------------------------------------------------------------------
@dataclass
class ProviderHealth:
    """Tracks consecutive failures and cooldown for a provider."""
    consecutive_failures: int = 0
    is_healthy: bool = True
    max_failures: int = PROVIDER_COOLDOWN_THRESHOLD
    cooldown_remaining: int = 0

    def record_failure(self) -> None:
        """Record a failure. Enter cooldown after max consecutive failures."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures:
            self.is_healthy = False
            self.cooldown_remaining = PROVIDER_COOLDOWN_SKIP_COUNT
            logger.warning(
                "Provider entering cooldown after %d failures (skip %d calls)",
                self.consecutive_failures, self.cooldown_remaining,
            )

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def tick_cooldown(self) -> None:
        """Decrement cooldown. Auto-re-enable when cooldown expires."""
        if self.cooldown_remaining > 0:
            self.cooldown_remaining -= 1
            if self.cooldown_remaining <= 0:
                self.is_healthy = True
                # A single post-cooldown failure re-triggers immediately
                self.consecutive_failures = max(1, self.max_failures - 1)
                logger.info("Provider cooldown expired, re-enabled (cautious)")


# ---------------------------------------------------------------------------
# LLM Router
# ---------------------------------------------------------------------------
class LLMRouter:
    """
    Orders providers for a request: healthy + configured first, in priority order.

    Usage:
        router = LLMRouter()
        for provider in router.candidates():
            ...
            router.report_success(provider.name)   # or report_failure
    """

    def __init__(self, providers: Optional[List[ProviderConfig]] = None) -> None:
        self._providers: List[ProviderConfig] = providers or [
            GROQ_CONFIG, GEMINI_CONFIG, OPENROUTER_CONFIG,
        ]
        self._health: Dict[str, ProviderHealth] = {
            p.name: ProviderHealth() for p in self._providers
        }
        self._lock = threading.Lock()

    def candidates(self) -> List[ProviderConfig]:
        """
        Return the providers to try for one request, in order.

        Unhealthy providers are skipped; if every configured provider is in
        cooldown the primary configured provider is returned as a last resort.
        Providers without credentials are never returned.
        """
        with self._lock:
            for health in self._health.values():
                health.tick_cooldown()

            configured = [p for p in self._providers if p.is_configured]
            healthy = [p for p in configured if self._health[p.name].is_healthy]

        if healthy:
            return healthy
        if configured:
            logger.warning("All providers unhealthy, falling back to primary")
            return configured[:1]
        return []

    def report_success(self, provider_name: str) -> None:
        with self._lock:
            health = self._health.get(provider_name)
            if health:
                health.record_success()

    def report_failure(self, provider_name: str) -> None:
        with self._lock:
            health = self._health.get(provider_name)
            if health:
                health.record_failure()
