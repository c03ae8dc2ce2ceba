"""Narration providers: HTTP connections to text-completion backends.

Every provider matches the protocol:

    async def __call__(self, stage: str, prompt: str) -> Narration: ...

`stage` names the caller (e.g. "gm"); implementations may use it for
logging. A provider either returns a Narration (text plus usage metadata)
or raises ProviderError with a machine-readable reason.

Two implementations are provided:

    HttpLLM    real HTTP client, supports KoboldCpp and OpenAI-compatible
               backends. Selected by provider_format.
    EchoLLM    returns the prompt back unchanged. Useful for smoke-testing
               the trigger chain without a running model.

Connections come from config.json; build_providers() turns them into an
ordered {name: provider} mapping following the configured fallback order.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

FailureReason = Literal["unreachable", "http_error", "rate_limited", "timeout", "malformed", "unexpected", "exhausted"]


class Narration(BaseModel):
    text: str
    usage: dict[str, Any] = Field(default_factory=dict)
    model: str = ""


# ---------------------------------------------------------------------------
# Protocol: every provider implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> Narration: ...


# ---------------------------------------------------------------------------
# ProviderError: raised for all connection and protocol failures
# ---------------------------------------------------------------------------

class ProviderError(RuntimeError):
    """Raised when a narration backend cannot be reached or misbehaves."""

    def __init__(self, message: str, reason: FailureReason = "http_error") -> None:
        super().__init__(message)
        self.reason = reason


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai", "echo"]


class HttpLLM:
    """Async HTTP client for text-completion backends.

    Supported formats:
      "koboldcpp"  POST /api/v1/generate  {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     POST /v1/completions   {"model": ..., "prompt": ...}
                     Response: {"choices": [{"text": "..."}], "usage": {...}}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier, used only by the openai format.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {"prompt": prompt}
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp (default)
        return f"{self._base_url}/api/v1/generate", {"prompt": prompt}

    def _parse_response(self, data: Any) -> Narration:
        """Extract the completion text and usage from the response body."""
        if not isinstance(data, dict):
            raise ProviderError("Response body is not a JSON object", reason="malformed")

        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise ProviderError(
                    "Unexpected response format from OpenAI-compatible backend",
                    reason="malformed",
                )
            return Narration(
                text=choices[0]["text"],
                usage=data.get("usage") or {},
                model=data.get("model") or self._model,
            )

        results = data.get("results")
        if not results or "text" not in results[0]:
            raise ProviderError(
                "Unexpected response format from KoboldCpp backend", reason="malformed"
            )
        return Narration(text=results[0]["text"], model=self._model)

    async def __call__(self, stage: str, prompt: str) -> Narration:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ProviderError(
                f"Cannot connect to LLM backend at {self._base_url}", reason="unreachable"
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                f"LLM backend returned HTTP {status}",
                reason="rate_limited" if status == 429 else "http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"LLM backend timed out after {self._timeout}s", reason="timeout"
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"Connection to LLM backend at {self._base_url} failed: {e}", reason="unreachable"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"LLM request failed: {e}", reason="http_error") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError("Response body is not valid JSON", reason="malformed") from e

        try:
            narration = self._parse_response(data)
        except ValidationError as e:
            raise ProviderError(f"Response fields have the wrong type: {e}", reason="malformed") from e
        logger.debug("llm response stage=%s len=%d", stage, len(narration.text))
        return narration


# ---------------------------------------------------------------------------
# EchoLLM: returns the prompt unchanged; useful for smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    Lets you verify that the trigger chain wiring (context building, entity
    lookup, audit logging) works end-to-end without a running model.
    """

    async def __call__(self, stage: str, prompt: str) -> Narration:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return Narration(text=prompt, model="echo")


# ---------------------------------------------------------------------------
# Construction from config
# ---------------------------------------------------------------------------

def build_provider(connection: dict[str, Any], timeout: float = 120.0) -> LLM:
    fmt = connection.get("provider_format", "koboldcpp")
    if fmt == "echo":
        return EchoLLM()
    return HttpLLM(
        provider_url=connection["provider_url"],
        api_key=connection.get("api_key", ""),
        provider_format=fmt,
        model=connection.get("model", ""),
        timeout=timeout,
    )


def build_providers(config: dict[str, Any]) -> dict[str, LLM]:
    """Return {name: provider} in fallback order.

    Uses narrator_fallback_order when set, otherwise the order of
    llm_connections. Names in the order that match no connection are skipped.
    """
    connections = {c["name"]: c for c in config.get("llm_connections", [])}
    order = config.get("narrator_fallback_order") or list(connections)
    timeout = config.get("resilience", {}).get("call_timeout", 120.0)

    providers: dict[str, LLM] = {}
    for name in order:
        connection = connections.get(name)
        if connection is None:
            logger.warning("fallback order names unknown connection %s", name)
            continue
        providers[name] = build_provider(connection, timeout=timeout)
    return providers
