"""LLM client — HTTP connection to a text-generation backend.

The pipeline injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str, options: GenerationOptions) -> str: ...

`stage` identifies which pipeline stage is calling (e.g. "outline",
"draft", "refine"). The implementation may use it for logging or routing;
the simplest implementation ignores it. `options` carries the sampling
parameters and the model tier for this one call.

Two implementations are provided:

    HttpLLM   — real HTTP client, supports Gemini and OpenAI-compatible
                 backends. Selected by provider_format.
    EchoLLM   — returns the prompt back unchanged. Useful for smoke-testing
                 the pipeline wiring without a running model.

Production code constructs an HttpLLM from LLMSettings and passes it to the
pipeline. Tests use StubLLM (defined in the test helpers) instead.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-call options
# ---------------------------------------------------------------------------

class ModelTier(str, Enum):
    """Which model a call runs on: cheap/fast first, strong on escalation."""

    FAST = "fast"
    STRONG = "strong"


class GenerationOptions(BaseModel):
    temperature: float
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    structured_output: bool = False
    tier: ModelTier = ModelTier.FAST


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str, options: GenerationOptions) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["gemini", "openai"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "gemini"  — POST /v1beta/models/{model}:generateContent
                  Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
      "openai"  — POST /v1/chat/completions  {"model": ..., "messages": [...]}
                  Response: {"choices": [{"message": {"content": "..."}}]}

    Args:
        provider_url:    Base URL of the backend.
        api_key:         API key, or empty string if not required.
        provider_format: Wire format to use. Defaults to "gemini".
        fast_model:      Model id used for ModelTier.FAST calls.
        strong_model:    Model id used for ModelTier.STRONG calls.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "gemini",
        fast_model: str = "gemini-2.5-flash",
        strong_model: str = "gemini-2.5-pro",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._models = {ModelTier.FAST: fast_model, ModelTier.STRONG: strong_model}
        self._timeout = timeout

    def model_for(self, tier: ModelTier) -> str:
        return self._models[tier]

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if not self._api_key:
            return headers
        if self._format == "gemini":
            headers["x-goog-api-key"] = self._api_key
        else:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str, options: GenerationOptions) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        model = self.model_for(options.tier)

        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict = {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": options.temperature,
            }
            if options.top_p is not None:
                body["top_p"] = options.top_p
            if options.max_output_tokens is not None:
                body["max_tokens"] = options.max_output_tokens
            if options.structured_output:
                body["response_format"] = {"type": "json_object"}
            return url, body

        # gemini (default)
        url = f"{self._base_url}/v1beta/models/{model}:generateContent"
        config: dict = {"temperature": options.temperature}
        if options.top_p is not None:
            config["topP"] = options.top_p
        if options.top_k is not None:
            config["topK"] = options.top_k
        if options.max_output_tokens is not None:
            config["maxOutputTokens"] = options.max_output_tokens
        if options.structured_output:
            config["responseMimeType"] = "application/json"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }
        return url, body

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "message" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["message"].get("content") or ""

        # gemini
        candidates = data.get("candidates")
        if not candidates:
            raise LLMError("Unexpected response format from Gemini backend")
        candidate = candidates[0]
        parts = candidate.get("content", {}).get("parts")
        if not parts:
            reason = candidate.get("finishReason", "unknown")
            raise LLMError(f"Gemini returned no content (finishReason={reason})")
        return "".join(part.get("text", "") for part in parts)

    async def __call__(self, stage: str, prompt: str, options: GenerationOptions) -> str:
        url, body = self._build_request(prompt, options)
        logger.debug(
            "llm call stage=%s tier=%s url=%s prompt_len=%d",
            stage, options.tier.value, url, len(prompt),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise LLMError(f"Transport error talking to LLM backend: {e!r}") from e

        try:
            text = self._parse_response(resp.json())
        except (ValueError, KeyError, AttributeError, TypeError) as e:
            # non-JSON bodies (proxy error pages) and odd shapes alike
            raise LLMError(f"Unreadable response from LLM backend: {e}") from e
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM — returns the prompt unchanged; useful for pipeline smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    The output won't be valid JSON for structured stages — use StubLLM
    in tests when you need controlled responses.
    """

    async def __call__(self, stage: str, prompt: str, options: GenerationOptions) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
