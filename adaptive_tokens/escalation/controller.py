from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from adaptive_tokens.core.llm.completion_client import FinishReason
from adaptive_tokens.core.metrics import (
    token_escalation_attempts_total,
    token_escalation_runs_total,
)
from adaptive_tokens.escalation.classifier import Classification, FailureClassifier, Verdict
from adaptive_tokens.escalation.errors import TokenCapExceededError, TruncationExhaustedError
from adaptive_tokens.escalation.states import (
    DEFAULT_LADDER,
    DEFAULT_MAX_ESCALATIONS,
    DEFAULT_TOKEN_CAP,
    Attempting,
    CapExceeded,
    EscalationPolicy,
    Exhausted,
    Failed,
    Succeeded,
    advance,
    initial_state,
)

logger = logging.getLogger("adaptive_tokens.escalation")

T = TypeVar("T")


class BaselineWriter(Protocol):
    async def update_baseline(
        self,
        prompt_name: str,
        new_max_tokens: int,
        reason: str,
        correlation_id: str | None = None,
        *,
        initial_max_tokens: int | None = None,
    ) -> Any: ...


@dataclass(frozen=True)
class EscalationContext:
    prompt_name: str
    baseline_max_tokens: int
    correlation_id: str


@dataclass(frozen=True)
class AttemptResult(Generic[T]):
    """What the caller's operation returns for one token budget."""

    value: T
    finish_reason: FinishReason | str | None


@dataclass(frozen=True)
class EscalationOutcome(Generic[T]):
    # None when the provider withheld the generation (content_filter).
    result: T | None
    final_max_tokens: int
    escalations_used: int
    finish_reason: FinishReason
    attempted_max_tokens: tuple[int, ...]


Operation = Callable[[int], Awaitable[AttemptResult[T]]]


def adjustment_reason(*, escalations_used: int, signal: str | None) -> str:
    return f"Auto-escalated: {escalations_used} truncation(s) detected ({signal or 'unknown'})"


class EscalationController:
    """
    Run an operation at increasing token budgets until it completes untruncated.

    Attempts are strictly sequential and fire back to back: the constraint being
    relaxed is the token budget, not provider load, so there is no backoff.
    Non-retryable errors propagate unchanged after the first occurrence.

    After a successful run that needed escalations, the learned budget is written to
    the baseline store in a detached task; the result is returned without waiting
    for it and a failed write is only logged.
    """

    def __init__(
        self,
        *,
        store: BaselineWriter | None,
        token_cap: int = DEFAULT_TOKEN_CAP,
        max_escalations: int = DEFAULT_MAX_ESCALATIONS,
        ladder: Sequence[int] = DEFAULT_LADDER,
        classifier: FailureClassifier | None = None,
    ):
        self._store = store
        self._policy = EscalationPolicy(
            token_cap=token_cap,
            max_escalations=max_escalations,
            ladder=tuple(ladder),
        )
        self._classifier = classifier or FailureClassifier()
        self._pending_writes: set[asyncio.Task[None]] = set()

    @property
    def policy(self) -> EscalationPolicy:
        return self._policy

    async def escalate(
        self, operation: Operation[T], context: EscalationContext
    ) -> EscalationOutcome[T]:
        baseline = context.baseline_max_tokens
        if baseline < 1:
            raise ValueError("baseline_max_tokens must be >= 1")
        if baseline > self._policy.token_cap:
            token_escalation_runs_total.labels(outcome="cap_exceeded").inc()
            raise TokenCapExceededError(
                f"Token limit exceeded: baseline max_tokens {baseline} is above the "
                f"cap of {self._policy.token_cap}",
                correlation_id=context.correlation_id,
                prompt_name=context.prompt_name,
                attempts=0,
                last_max_tokens=None,
                token_cap=self._policy.token_cap,
            )

        state = initial_state(baseline=baseline)
        attempted: list[int] = []
        truncation_signal: str | None = None

        while isinstance(state, Attempting):
            attempted.append(state.max_tokens)
            token_escalation_attempts_total.inc()
            attempt: AttemptResult[T] | None = None
            error: Exception | None = None
            try:
                attempt = await operation(state.max_tokens)
            except Exception as exc:  # noqa: BLE001 - classified below, re-raised if fatal
                error = exc
                classification = self._classifier.classify_error(exc)
            else:
                classification = self._classifier.classify_result(attempt.finish_reason)

            self._log_attempt(
                context=context, state=state, attempt=attempt, classification=classification
            )
            if classification.verdict is Verdict.RETRYABLE_TRUNCATION:
                truncation_signal = classification.reason

            state = advance(state, classification, baseline=baseline, policy=self._policy)

            if isinstance(state, Succeeded) and attempt is not None:
                return self._succeed(
                    state=state,
                    attempt=attempt,
                    attempted=attempted,
                    context=context,
                    truncation_signal=truncation_signal,
                )
            if isinstance(state, Failed) and error is not None:
                raise self._fail(state=state, error=error, context=context)

        if isinstance(state, Exhausted):
            token_escalation_runs_total.labels(outcome="exhausted").inc()
            logger.warning(
                "Token escalation exhausted",
                extra={
                    "correlation_id": context.correlation_id,
                    "prompt_name": context.prompt_name,
                    "attempt": state.attempts,
                    "max_tokens": state.max_tokens,
                },
            )
            raise TruncationExhaustedError(
                f"Content truncated after {state.attempts} attempts "
                f"(final max_tokens: {state.max_tokens})",
                correlation_id=context.correlation_id,
                prompt_name=context.prompt_name,
                attempts=state.attempts,
                last_max_tokens=state.max_tokens,
            )

        if isinstance(state, CapExceeded):
            token_escalation_runs_total.labels(outcome="cap_exceeded").inc()
            logger.warning(
                "Token escalation stopped at the token cap",
                extra={
                    "correlation_id": context.correlation_id,
                    "prompt_name": context.prompt_name,
                    "attempt": state.attempts,
                    "max_tokens": state.max_tokens,
                },
            )
            raise TokenCapExceededError(
                f"Token limit exceeded: next max_tokens {state.next_max_tokens} would exceed "
                f"the cap of {state.token_cap}",
                correlation_id=context.correlation_id,
                prompt_name=context.prompt_name,
                attempts=state.attempts,
                last_max_tokens=state.max_tokens,
                token_cap=state.token_cap,
            )

        raise RuntimeError(f"Token escalation ended in an unexpected state: {state!r}")

    async def wait_for_pending_writes(self) -> None:
        """Wait for detached baseline writes (used on shutdown and in tests)."""

        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    def _fail(self, *, state: Failed, error: Exception, context: EscalationContext) -> Exception:
        """Annotate a non-retryable error and return it for re-raising unchanged."""

        token_escalation_runs_total.labels(outcome="failed").inc()
        error.add_note(
            f"token escalation: correlation_id={context.correlation_id} "
            f"prompt_name={context.prompt_name} attempts={state.attempts} "
            f"last_max_tokens={state.max_tokens}"
        )
        logger.warning(
            "Token escalation failed with a non-retryable error",
            extra={
                "correlation_id": context.correlation_id,
                "prompt_name": context.prompt_name,
                "attempt": state.attempts,
                "max_tokens": state.max_tokens,
                "error": state.error_kind.value if state.error_kind else type(error).__name__,
            },
        )
        return error

    def _succeed(
        self,
        *,
        state: Succeeded,
        attempt: AttemptResult[T],
        attempted: list[int],
        context: EscalationContext,
        truncation_signal: str | None,
    ) -> EscalationOutcome[T]:
        finish_reason = (
            attempt.finish_reason
            if isinstance(attempt.finish_reason, FinishReason)
            else FinishReason.from_provider(attempt.finish_reason)
        )
        outcome = EscalationOutcome(
            result=None if state.empty_result else attempt.value,
            final_max_tokens=state.max_tokens,
            escalations_used=state.escalations_used,
            finish_reason=finish_reason,
            attempted_max_tokens=tuple(attempted),
        )
        token_escalation_runs_total.labels(
            outcome="escalated" if state.escalations_used else "success"
        ).inc()

        if state.escalations_used > 0:
            logger.info(
                "Token escalation succeeded",
                extra={
                    "correlation_id": context.correlation_id,
                    "prompt_name": context.prompt_name,
                    "max_tokens": state.max_tokens,
                    "escalations_used": state.escalations_used,
                },
            )
            self._schedule_baseline_update(
                context=context,
                new_max_tokens=state.max_tokens,
                reason=adjustment_reason(
                    escalations_used=state.escalations_used, signal=truncation_signal
                ),
            )
        return outcome

    def _schedule_baseline_update(
        self, *, context: EscalationContext, new_max_tokens: int, reason: str
    ) -> None:
        store = self._store
        if store is None:
            return
        task = asyncio.create_task(
            self._update_baseline(
                store=store, context=context, new_max_tokens=new_max_tokens, reason=reason
            ),
            name=f"baseline-update:{context.prompt_name}",
        )
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _update_baseline(
        self,
        *,
        store: BaselineWriter,
        context: EscalationContext,
        new_max_tokens: int,
        reason: str,
    ) -> None:
        try:
            await store.update_baseline(
                context.prompt_name,
                new_max_tokens,
                reason,
                context.correlation_id,
                initial_max_tokens=context.baseline_max_tokens,
            )
        except Exception:  # noqa: BLE001 - logged, never raised
            logger.warning(
                "Baseline update failed",
                exc_info=True,
                extra={
                    "correlation_id": context.correlation_id,
                    "prompt_name": context.prompt_name,
                    "max_tokens": new_max_tokens,
                },
            )

    def _log_attempt(
        self,
        *,
        context: EscalationContext,
        state: Attempting,
        attempt: AttemptResult[Any] | None,
        classification: Classification,
    ) -> None:
        logger.info(
            "Token escalation attempt finished",
            extra={
                "correlation_id": context.correlation_id,
                "prompt_name": context.prompt_name,
                "attempt": state.escalation + 1,
                "max_tokens": state.max_tokens,
                "finish_reason": str(attempt.finish_reason) if attempt is not None else None,
                "verdict": classification.verdict.value,
            },
        )
