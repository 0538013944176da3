"""Test doubles for the escalation slice."""

from __future__ import annotations

from typing import Any

from adaptive_tokens.core.llm.completion_client import FinishReason
from adaptive_tokens.escalation.controller import AttemptResult, EscalationContext


class ScriptedOperation:
    """Replays finish reasons / exceptions per attempt; the last step repeats."""

    def __init__(self, steps: list[FinishReason | str | Exception]):
        assert steps
        self._steps = steps
        self.calls: list[int] = []

    async def __call__(self, max_tokens: int) -> AttemptResult[dict[str, Any]]:
        self.calls.append(max_tokens)
        step = self._steps[min(len(self.calls), len(self._steps)) - 1]
        if isinstance(step, Exception):
            raise step
        return AttemptResult(
            value={"questions": ["Q1"], "max_tokens": max_tokens}, finish_reason=step
        )


class RecordingStore:
    """Baseline writer that records calls and can be told to fail."""

    def __init__(self, *, fail_with: Exception | None = None):
        self._fail_with = fail_with
        self.calls: list[dict[str, Any]] = []

    async def update_baseline(
        self,
        prompt_name: str,
        new_max_tokens: int,
        reason: str,
        correlation_id: str | None = None,
        *,
        initial_max_tokens: int | None = None,
    ) -> None:
        self.calls.append(
            {
                "prompt_name": prompt_name,
                "new_max_tokens": new_max_tokens,
                "reason": reason,
                "correlation_id": correlation_id,
                "initial_max_tokens": initial_max_tokens,
            }
        )
        if self._fail_with is not None:
            raise self._fail_with


def make_context(
    *, baseline: int = 1000, correlation_id: str = "test-corr-123"
) -> EscalationContext:
    return EscalationContext(
        prompt_name="test_prompt",
        baseline_max_tokens=baseline,
        correlation_id=correlation_id,
    )
