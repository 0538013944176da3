from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

import httpx

from adaptive_tokens.core.metrics import (
    llm_completion_latency_seconds,
    llm_completion_requests_total,
    llm_completion_tokens_total,
)

logger = logging.getLogger("adaptive_tokens.llm")

ResponseFormat = Literal["text", "json"]

# USD per 1K tokens. Unknown models fall back to the cheapest rate.
_RATES_PER_1K_TOKENS: dict[str, float] = {
    "openai/gpt-5-nano": 0.00005,
    "openai/gpt-4o-mini": 0.00015,
    "openai/gpt-5-mini": 0.00025,
    "anthropic/claude-3-haiku": 0.00025,
    "openai/gpt-4.1-nano": 0.002,
    "anthropic/claude-3-sonnet": 0.003,
    "openai/gpt-4": 0.03,
}
_DEFAULT_RATE_PER_1K_TOKENS = 0.00005

_POLICY_MARKERS = ("content_policy", "content_filter", "moderation", "safety")


class FinishReason(StrEnum):
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, raw: str | None) -> FinishReason:
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    POLICY_FILTER = "policy_filter"
    UNKNOWN = "unknown"


class CompletionError(Exception):
    """Base error for completion failures (safe to map to 502)."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CompletionUnavailableError(CompletionError):
    """Raised when the provider is not configured (e.g., missing API key)."""


class CompletionTransportError(CompletionError):
    kind = ErrorKind.TRANSPORT


class CompletionAuthenticationError(CompletionError):
    kind = ErrorKind.AUTHENTICATION


class CompletionRateLimitError(CompletionError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after_seconds: float | None = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after_seconds = retry_after_seconds


class CompletionPolicyError(CompletionError):
    kind = ErrorKind.POLICY_FILTER


class CompletionUnknownError(CompletionError):
    kind = ErrorKind.UNKNOWN


@dataclass(frozen=True)
class CompletionClientConfig:
    api_key: str
    base_url: str
    model: str
    timeout_seconds: float
    default_temperature: float = 0.7


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    max_tokens: int
    model: str | None = None
    temperature: float | None = None
    system_prompt: str | None = None
    correlation_id: str | None = None
    response_format: ResponseFormat = "text"


@dataclass(frozen=True)
class CompletionResult:
    content: str
    tokens_used: int | None
    finish_reason: FinishReason
    raw_finish_reason: str | None
    latency_ms: float
    model: str


def estimate_cost_usd(*, model: str, tokens: int | None) -> float | None:
    if not tokens:
        return None
    rate = _RATES_PER_1K_TOKENS.get(model, _DEFAULT_RATE_PER_1K_TOKENS)
    return (tokens / 1000) * rate


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _mentions_content_policy(resp: httpx.Response) -> bool:
    try:
        body = resp.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return False
    haystack = " ".join(
        str(error.get(key) or "") for key in ("code", "type", "message")
    ).lower()
    return any(marker in haystack for marker in _POLICY_MARKERS)


def _error_for_status(resp: httpx.Response) -> CompletionError:
    status = resp.status_code
    # Upstream bodies are not copied into messages; they may echo prompt content.
    if status in (401, 403):
        return CompletionAuthenticationError("LLM authentication failed", status_code=status)
    if status == 429:
        return CompletionRateLimitError(
            "LLM rate limit exceeded",
            status_code=status,
            retry_after_seconds=_parse_retry_after(resp.headers.get("Retry-After")),
        )
    if status >= 500:
        return CompletionTransportError("LLM service returned a server error", status_code=status)
    if status == 400 and _mentions_content_policy(resp):
        return CompletionPolicyError("LLM request rejected by content policy", status_code=status)
    return CompletionUnknownError("LLM service returned an error", status_code=status)


class CompletionClient:
    """
    OpenAI-compatible chat completions client issuing exactly one request per call.

    Design notes:
    - No retries here; the escalation controller owns the retry policy.
    - `finish_reason` is passed through as reported by the provider.
    - Diagnostics (tokens, latency, cost) are best-effort and never raise.
    """

    def __init__(
        self,
        *,
        config: CompletionClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport

    @property
    def model(self) -> str:
        return self._config.model

    def _build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        temperature = request.temperature
        if temperature is None:
            temperature = self._config.default_temperature

        payload: dict[str, Any] = {
            "model": request.model or self._config.model,
            "temperature": temperature,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if request.response_format == "json":
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._build_payload(request)
        model = payload["model"]

        started = time.perf_counter()
        try:
            result = await self._send(url=url, headers=headers, payload=payload, started=started)
        except CompletionError as exc:
            self._emit_diagnostics(
                request=request,
                model=model,
                outcome=exc.kind.value,
                latency_ms=(time.perf_counter() - started) * 1000.0,
            )
            raise

        self._emit_diagnostics(
            request=request,
            model=model,
            outcome="success",
            latency_ms=result.latency_ms,
            result=result,
        )
        return result

    async def _send(
        self,
        *,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        started: float,
    ) -> CompletionResult:
        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            raise CompletionTransportError("LLM request timed out") from exc
        except httpx.HTTPError as exc:
            raise CompletionTransportError("LLM request failed") from exc

        if resp.status_code != 200:
            raise _error_for_status(resp)

        try:
            data = resp.json()
            choice = data["choices"][0]
            message = choice["message"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise CompletionUnknownError("LLM response had an unexpected format") from exc

        raw_finish_reason = choice.get("finish_reason")
        usage = data.get("usage") or {}
        tokens_used = usage.get("total_tokens") if isinstance(usage, dict) else None

        return CompletionResult(
            content=message.get("content") or "",
            tokens_used=tokens_used if isinstance(tokens_used, int) else None,
            finish_reason=FinishReason.from_provider(raw_finish_reason),
            raw_finish_reason=raw_finish_reason,
            latency_ms=round((time.perf_counter() - started) * 1000.0, 2),
            model=str(data.get("model") or payload["model"]),
        )

    def _emit_diagnostics(
        self,
        *,
        request: CompletionRequest,
        model: str,
        outcome: str,
        latency_ms: float,
        result: CompletionResult | None = None,
    ) -> None:
        try:
            tokens_used = result.tokens_used if result is not None else None
            llm_completion_requests_total.labels(model=model, outcome=outcome).inc()
            llm_completion_latency_seconds.labels(model=model).observe(latency_ms / 1000.0)
            if tokens_used:
                llm_completion_tokens_total.labels(model=model).inc(tokens_used)
            logger.info(
                "LLM completion finished" if result is not None else "LLM completion failed",
                extra={
                    "correlation_id": request.correlation_id,
                    "model": model,
                    "max_tokens": request.max_tokens,
                    "tokens_used": tokens_used,
                    "latency_ms": round(latency_ms, 2),
                    "finish_reason": result.raw_finish_reason if result is not None else None,
                    "estimated_cost_usd": estimate_cost_usd(model=model, tokens=tokens_used),
                    "error": None if result is not None else outcome,
                },
            )
        except Exception:  # noqa: BLE001 - diagnostics must never fail the completion
            logger.debug("Failed to emit completion diagnostics", exc_info=True)
