"""
LLM Client
==========
Unified asynchronous client wrapper for LLM providers.
Supports Groq / OpenRouter (OpenAI-compatible) and Gemini (REST).

Provider Fallback:
    - Providers are tried in the order given by LLMRouter.candidates()
    - Fallback triggers on: HTTP error, timeout, rate limit, empty response
    - A 429 skips straight to the next provider

Timeouts:
    Every HTTP call carries the provider's timeout_seconds; a hung
    provider costs at most that long per attempt.

The client returns raw text only. Interpreting that text (triage label,
file list, fix payload) belongs to surgeon.llm.parsing.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from surgeon.core.errors import TransportError
from surgeon.llm.router import LLMRouter, ProviderConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LLM Response
# ---------------------------------------------------------------------------
@dataclass
class LLMResponse:
    """Raw text reply from a provider."""
    text: str
    provider_name: str
    success: bool = True
    error: str = ""


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------
class LLMClient:
    """
    Async HTTP client for calling LLM providers.

    Usage:
        client = LLMClient()
        text = await client.generate(system_prompt, user_prompt)
        await client.close()
    """

    def __init__(self, router: Optional[LLMRouter] = None) -> None:
        self.router = router or LLMRouter()
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        provider: ProviderConfig,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> LLMResponse:
        """Send one prompt to one provider, retrying up to provider.max_retries."""
        last_error = ""
        for attempt in range(1, provider.max_retries + 1):
            try:
                if provider.name == "gemini":
                    raw = await self._call_gemini(
                        system_prompt, user_prompt, provider, max_tokens, temperature
                    )
                else:
                    raw = await self._call_openai_compatible(
                        system_prompt, user_prompt, provider, max_tokens, temperature
                    )

                if raw and raw.strip():
                    return LLMResponse(text=raw, provider_name=provider.name)

                last_error = "empty response"
                logger.warning("Provider %s attempt %d: empty response", provider.name, attempt)

            except httpx.TimeoutException:
                last_error = f"timeout after {provider.timeout_seconds:.0f}s"
                logger.warning("Provider %s attempt %d: timeout", provider.name, attempt)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = f"HTTP {status}"
                logger.warning("Provider %s attempt %d: HTTP %d", provider.name, attempt, status)
                if status == 429:  # Rate limit
                    break
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning("Provider %s attempt %d: %s", provider.name, attempt, last_error)
            except ValueError as e:
                # Provider answered with a non-JSON body
                last_error = f"malformed provider reply: {e}"
                logger.warning("Provider %s attempt %d: %s", provider.name, attempt, last_error)

        return LLMResponse(
            text="",
            provider_name=provider.name,
            success=False,
            error=f"{provider.name}: {last_error or 'no response'}",
        )

    async def _call_gemini(
        self,
        system_prompt: str,
        user_prompt: str,
        provider: ProviderConfig,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Call Gemini REST API."""
        http = await self._get_http()
        url = f"{provider.base_url}/models/{provider.model}:generateContent"
        payload = {
            "system_instruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        resp = await http.post(
            url,
            json=payload,
            params={"key": provider.api_key},
            timeout=provider.timeout_seconds,
        )
        resp.raise_for_status()
        data = resp.json()

        try:
            candidates = data.get("candidates", [])
            if candidates:
                parts = candidates[0].get("content", {}).get("parts", [])
                if parts:
                    return parts[0].get("text", "")
        except (IndexError, KeyError, TypeError, AttributeError):
            pass
        return ""

    async def _call_openai_compatible(
        self,
        system_prompt: str,
        user_prompt: str,
        provider: ProviderConfig,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Call OpenAI-compatible API (Groq, OpenRouter)."""
        http = await self._get_http()
        url = f"{provider.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": provider.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        resp = await http.post(
            url, json=payload, headers=headers, timeout=provider.timeout_seconds
        )
        resp.raise_for_status()
        data = resp.json()

        try:
            choices = data.get("choices", [])
            if choices:
                return choices[0].get("message", {}).get("content", "") or ""
        except (IndexError, KeyError, TypeError, AttributeError):
            pass
        return ""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> LLMResponse:
        """
        Call the LLM with automatic provider fallback.

        Returns
        -------
        LLMResponse
            Reply from whichever provider succeeded, or success=False with
            the accumulated provider errors.
        """
        candidates = self.router.candidates()
        if not candidates:
            return LLMResponse(
                text="", provider_name="", success=False,
                error="No LLM provider configured",
            )

        errors = []
        for provider in candidates:
            response = await self.call(
                system_prompt, user_prompt, provider, max_tokens, temperature
            )
            if response.success:
                self.router.report_success(provider.name)
                return response
            self.router.report_failure(provider.name)
            errors.append(response.error)

        return LLMResponse(
            text="",
            provider_name=candidates[0].name,
            success=False,
            error="All providers failed: " + "; ".join(errors),
        )

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> str:
        """
        Like complete(), but returns the text and raises on failure.

        Raises
        ------
        TransportError
            If no provider produced a reply.
        """
        response = await self.complete(system_prompt, user_prompt, max_tokens, temperature)
        if not response.success:
            raise TransportError(response.error)
        return response.text
