from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from adaptive_tokens.completions.schemas import CompletionIn, CompletionOut
from adaptive_tokens.core.llm.completion_client import (
    CompletionRequest,
    CompletionResult,
    FinishReason,
)
from adaptive_tokens.core.llm.json_output import parse_json_object
from adaptive_tokens.escalation.controller import (
    AttemptResult,
    EscalationContext,
    EscalationController,
)


class LLMClient(Protocol):
    @property
    def model(self) -> str: ...

    async def complete(self, request: CompletionRequest) -> CompletionResult: ...


class BaselineReader(Protocol):
    async def get_baseline(self, prompt_name: str, *, default: int) -> int: ...


@dataclass(frozen=True)
class _Generated:
    completion: CompletionResult
    data: dict[str, Any] | None


class CompletionService:
    """Run one named prompt through the escalation controller."""

    def __init__(
        self,
        *,
        llm_client: LLMClient,
        controller: EscalationController,
        baselines: BaselineReader,
        default_max_tokens: int,
    ):
        self._llm = llm_client
        self._controller = controller
        self._baselines = baselines
        self._default_max_tokens = default_max_tokens

    async def resolve_baseline(self, *, prompt_name: str, requested: int | None) -> int:
        floor = requested or self._default_max_tokens
        learned = await self._baselines.get_baseline(prompt_name, default=floor)
        return max(floor, learned)

    async def complete(self, *, payload: CompletionIn, correlation_id: str) -> CompletionOut:
        baseline = await self.resolve_baseline(
            prompt_name=payload.prompt_name, requested=payload.max_tokens
        )
        context = EscalationContext(
            prompt_name=payload.prompt_name,
            baseline_max_tokens=baseline,
            correlation_id=correlation_id,
        )

        async def attempt(max_tokens: int) -> AttemptResult[_Generated]:
            completion = await self._llm.complete(
                CompletionRequest(
                    prompt=payload.prompt,
                    max_tokens=max_tokens,
                    temperature=payload.temperature,
                    system_prompt=payload.system_prompt,
                    correlation_id=correlation_id,
                    response_format=payload.response_format,
                )
            )
            data: dict[str, Any] | None = None
            # Truncated or withheld output is not parsed; the finish reason decides.
            if payload.response_format == "json" and completion.finish_reason in (
                FinishReason.STOP,
                FinishReason.UNKNOWN,
            ):
                data = parse_json_object(completion.content)
            return AttemptResult(
                value=_Generated(completion=completion, data=data),
                finish_reason=completion.finish_reason,
            )

        outcome = await self._controller.escalate(attempt, context)

        generated = outcome.result
        return CompletionOut(
            correlation_id=correlation_id,
            prompt_name=payload.prompt_name,
            model=generated.completion.model if generated is not None else self._llm.model,
            content=generated.completion.content if generated is not None else "",
            data=generated.data if generated is not None else None,
            finish_reason=outcome.finish_reason.value,
            final_max_tokens=outcome.final_max_tokens,
            escalations_used=outcome.escalations_used,
            tokens_used=generated.completion.tokens_used if generated is not None else None,
        )
