"""Escalation state machine.

`advance` is pure: given the current `Attempting` state and the classification of its
outcome it returns the next state. The controller only performs I/O around it.
"""

from __future__ import annotations

from dataclasses import dataclass

from adaptive_tokens.core.llm.completion_client import ErrorKind
from adaptive_tokens.escalation.classifier import Classification, Verdict

DEFAULT_LADDER: tuple[int, ...] = (500, 1000, 1500)
DEFAULT_TOKEN_CAP = 10_000
DEFAULT_MAX_ESCALATIONS = 3


@dataclass(frozen=True)
class EscalationPolicy:
    token_cap: int = DEFAULT_TOKEN_CAP
    max_escalations: int = DEFAULT_MAX_ESCALATIONS
    # Offsets from the baseline: ladder[0] for the 1st escalation, ladder[1] for the 2nd...
    ladder: tuple[int, ...] = DEFAULT_LADDER

    def __post_init__(self) -> None:
        if self.token_cap < 1:
            raise ValueError("token_cap must be >= 1")
        if self.max_escalations < 0:
            raise ValueError("max_escalations must be >= 0")
        if len(self.ladder) < self.max_escalations:
            raise ValueError(
                f"ladder defines {len(self.ladder)} step(s) but max_escalations is "
                f"{self.max_escalations}"
            )
        previous = 0
        for offset in self.ladder:
            if offset <= previous:
                raise ValueError("ladder offsets must be positive and strictly increasing")
            previous = offset

    def budget_for(self, *, baseline: int, escalation: int) -> int:
        if escalation == 0:
            return baseline
        return baseline + self.ladder[escalation - 1]


@dataclass(frozen=True)
class Attempting:
    escalation: int
    max_tokens: int


@dataclass(frozen=True)
class Succeeded:
    escalations_used: int
    max_tokens: int
    empty_result: bool = False


@dataclass(frozen=True)
class Exhausted:
    attempts: int
    max_tokens: int


@dataclass(frozen=True)
class Failed:
    attempts: int
    max_tokens: int
    error_kind: ErrorKind | None


@dataclass(frozen=True)
class CapExceeded:
    attempts: int
    max_tokens: int
    next_max_tokens: int
    token_cap: int


EscalationState = Attempting | Succeeded | Exhausted | Failed | CapExceeded
TerminalState = Succeeded | Exhausted | Failed | CapExceeded


def initial_state(*, baseline: int) -> Attempting:
    return Attempting(escalation=0, max_tokens=baseline)


def advance(
    state: Attempting,
    classification: Classification,
    *,
    baseline: int,
    policy: EscalationPolicy,
) -> EscalationState:
    attempts = state.escalation + 1

    if classification.verdict is Verdict.SUCCESS:
        return Succeeded(
            escalations_used=state.escalation,
            max_tokens=state.max_tokens,
            empty_result=classification.empty_result,
        )

    if classification.verdict is Verdict.NON_RETRYABLE_ERROR:
        return Failed(
            attempts=attempts,
            max_tokens=state.max_tokens,
            error_kind=classification.error_kind,
        )

    if state.escalation >= policy.max_escalations:
        return Exhausted(attempts=attempts, max_tokens=state.max_tokens)

    next_max_tokens = policy.budget_for(baseline=baseline, escalation=state.escalation + 1)
    if next_max_tokens > policy.token_cap:
        return CapExceeded(
            attempts=attempts,
            max_tokens=state.max_tokens,
            next_max_tokens=next_max_tokens,
            token_cap=policy.token_cap,
        )

    return Attempting(escalation=state.escalation + 1, max_tokens=next_max_tokens)
