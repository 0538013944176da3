"""Escalation controller behaviour: ladder, bounds, error propagation and baseline learning."""

from __future__ import annotations

import asyncio
import logging

import pytest

from adaptive_tokens.core.llm.completion_client import (
    CompletionAuthenticationError,
    CompletionTransportError,
    FinishReason,
)
from adaptive_tokens.core.llm.json_output import MalformedOutputError
from adaptive_tokens.escalation.controller import EscalationController
from adaptive_tokens.escalation.errors import TokenCapExceededError, TruncationExhaustedError
from tests.escalation._helpers import RecordingStore, ScriptedOperation, make_context

STOP = FinishReason.STOP
LENGTH = FinishReason.LENGTH


def _run(controller: EscalationController, operation: ScriptedOperation, context):
    async def run():
        try:
            return await controller.escalate(operation, context)
        finally:
            await controller.wait_for_pending_writes()

    return asyncio.run(run())


def test_stop_on_first_attempt_uses_baseline_without_escalating() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    operation = ScriptedOperation([STOP])

    outcome = _run(controller, operation, make_context(baseline=1000))

    assert operation.calls == [1000]
    assert outcome.escalations_used == 0
    assert outcome.final_max_tokens == 1000
    assert outcome.finish_reason is FinishReason.STOP
    assert outcome.result == {"questions": ["Q1"], "max_tokens": 1000}
    assert store.calls == []


@pytest.mark.parametrize("truncations", [1, 2])
def test_budget_strictly_increases_until_stop(truncations: int) -> None:
    controller = EscalationController(store=RecordingStore())
    operation = ScriptedOperation([LENGTH] * truncations + [STOP])

    outcome = _run(controller, operation, make_context(baseline=1000))

    assert outcome.escalations_used == truncations
    assert len(operation.calls) == truncations + 1
    assert all(a < b for a, b in zip(operation.calls, operation.calls[1:]))
    assert outcome.final_max_tokens == operation.calls[-1]
    assert outcome.attempted_max_tokens == tuple(operation.calls)


def test_two_truncations_then_stop_learns_new_baseline() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    operation = ScriptedOperation([LENGTH, LENGTH, STOP])

    outcome = _run(controller, operation, make_context(baseline=1000, correlation_id="corr-a"))

    assert operation.calls == [1000, 1500, 2000]
    assert outcome.escalations_used == 2
    assert outcome.final_max_tokens == 2000
    assert store.calls == [
        {
            "prompt_name": "test_prompt",
            "new_max_tokens": 2000,
            "reason": "Auto-escalated: 2 truncation(s) detected (finish_reason: length)",
            "correlation_id": "corr-a",
            "initial_max_tokens": 1000,
        }
    ]


def test_cut_off_json_counts_as_truncation() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    fragment = '{"questions": ["What happened before the incident?", "Who was'
    operation = ScriptedOperation(
        [MalformedOutputError("Failed to parse LLM response as JSON", raw_content=fragment), STOP]
    )

    outcome = _run(controller, operation, make_context(baseline=1000))

    assert operation.calls == [1000, 1500]
    assert outcome.escalations_used == 1
    assert store.calls[0]["reason"] == "Auto-escalated: 1 truncation(s) detected (JSON parse error)"


def test_always_truncated_raises_exhausted_after_max_attempts() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    operation = ScriptedOperation([LENGTH])

    with pytest.raises(TruncationExhaustedError) as exc_info:
        _run(controller, operation, make_context(baseline=1000, correlation_id="corr-max"))

    assert operation.calls == [1000, 1500, 2000, 2500]
    err = exc_info.value
    assert "Content truncated after 4 attempts" in str(err)
    assert "2500" in str(err)
    assert err.attempts == 4
    assert err.last_max_tokens == 2500
    assert err.correlation_id == "corr-max"
    assert store.calls == []


def test_zero_max_escalations_allows_single_attempt() -> None:
    controller = EscalationController(store=RecordingStore(), max_escalations=0, ladder=())
    operation = ScriptedOperation([LENGTH])

    with pytest.raises(TruncationExhaustedError) as exc_info:
        _run(controller, operation, make_context(baseline=1000))

    assert operation.calls == [1000]
    assert exc_info.value.attempts == 1


def test_first_escalation_over_default_cap_raises_after_one_attempt() -> None:
    controller = EscalationController(store=RecordingStore())
    operation = ScriptedOperation([LENGTH])

    with pytest.raises(TokenCapExceededError) as exc_info:
        _run(controller, operation, make_context(baseline=9800, correlation_id="corr-cap"))

    assert operation.calls == [9800]
    err = exc_info.value
    assert "Token limit exceeded" in str(err)
    assert "10000" in str(err)
    assert err.token_cap == 10000
    assert err.attempts == 1
    assert err.last_max_tokens == 9800
    assert err.correlation_id == "corr-cap"


def test_custom_cap_is_enforced() -> None:
    controller = EscalationController(store=RecordingStore(), token_cap=5000)
    operation = ScriptedOperation([LENGTH])

    with pytest.raises(TokenCapExceededError, match=r"Token limit exceeded.*5000"):
        _run(controller, operation, make_context(baseline=4800))

    assert operation.calls == [4800]


def test_cap_reached_midway_stops_before_exceeding() -> None:
    controller = EscalationController(store=RecordingStore(), token_cap=9200)
    operation = ScriptedOperation([LENGTH])

    with pytest.raises(TokenCapExceededError) as exc_info:
        _run(controller, operation, make_context(baseline=8000))

    assert operation.calls == [8000, 8500, 9000]
    assert max(operation.calls) <= 9200
    assert exc_info.value.attempts == 3


def test_baseline_above_cap_is_rejected_without_calling_operation() -> None:
    controller = EscalationController(store=RecordingStore(), token_cap=2000)
    operation = ScriptedOperation([STOP])

    with pytest.raises(TokenCapExceededError) as exc_info:
        _run(controller, operation, make_context(baseline=2500))

    assert operation.calls == []
    assert exc_info.value.attempts == 0


def test_authentication_error_propagates_unchanged_after_one_attempt() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    error = CompletionAuthenticationError("Authentication failed: Invalid session token")
    operation = ScriptedOperation([error])

    with pytest.raises(CompletionAuthenticationError) as exc_info:
        _run(controller, operation, make_context(baseline=1000, correlation_id="corr-auth"))

    assert exc_info.value is error
    assert str(exc_info.value) == "Authentication failed: Invalid session token"
    assert any("corr-auth" in note for note in exc_info.value.__notes__)
    assert operation.calls == [1000]
    assert store.calls == []


def test_network_error_is_not_retried() -> None:
    controller = EscalationController(store=RecordingStore())
    operation = ScriptedOperation(
        [CompletionTransportError("Network request failed: ECONNREFUSED")]
    )

    with pytest.raises(CompletionTransportError, match="Network request failed"):
        _run(controller, operation, make_context())

    assert operation.calls == [1000]


def test_short_malformed_output_is_not_retried() -> None:
    controller = EscalationController(store=RecordingStore())
    error = MalformedOutputError("Failed to parse LLM response as JSON", raw_content="oops")
    operation = ScriptedOperation([error, STOP])

    with pytest.raises(MalformedOutputError):
        _run(controller, operation, make_context())

    assert operation.calls == [1000]


def test_error_after_escalation_propagates_and_skips_learning() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    operation = ScriptedOperation([LENGTH, CompletionTransportError("LLM request timed out")])

    with pytest.raises(CompletionTransportError) as exc_info:
        _run(controller, operation, make_context())

    assert operation.calls == [1000, 1500]
    assert any("attempts=2" in note for note in exc_info.value.__notes__)
    assert store.calls == []


def test_content_filter_is_success_with_empty_result() -> None:
    store = RecordingStore()
    controller = EscalationController(store=store)
    operation = ScriptedOperation([FinishReason.CONTENT_FILTER])

    outcome = _run(controller, operation, make_context())

    assert operation.calls == [1000]
    assert outcome.escalations_used == 0
    assert outcome.result is None
    assert outcome.finish_reason is FinishReason.CONTENT_FILTER
    assert store.calls == []


def test_baseline_write_failure_does_not_fail_the_run(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="adaptive_tokens.escalation")
    store = RecordingStore(fail_with=RuntimeError("Database connection timeout"))
    controller = EscalationController(store=store)
    operation = ScriptedOperation([LENGTH, STOP])

    outcome = _run(controller, operation, make_context(correlation_id="corr-db-fail"))

    assert outcome.escalations_used == 1
    assert outcome.final_max_tokens == 1500
    assert len(store.calls) == 1
    assert store.calls[0]["new_max_tokens"] == 1500

    failures = [r for r in caplog.records if r.getMessage() == "Baseline update failed"]
    assert len(failures) == 1
    assert failures[0].__dict__["correlation_id"] == "corr-db-fail"
    assert failures[0].exc_info


def test_result_is_returned_before_baseline_write_completes() -> None:
    release = asyncio.Event()

    class SlowStore(RecordingStore):
        async def update_baseline(self, *args, **kwargs) -> None:
            await release.wait()
            await super().update_baseline(*args, **kwargs)

    store = SlowStore()
    controller = EscalationController(store=store)
    operation = ScriptedOperation([LENGTH, STOP])

    async def run():
        outcome = await controller.escalate(operation, make_context())
        # Returned while the write is still blocked.
        assert store.calls == []
        release.set()
        await controller.wait_for_pending_writes()
        return outcome

    outcome = asyncio.run(run())
    assert outcome.final_max_tokens == 1500
    assert [c["new_max_tokens"] for c in store.calls] == [1500]


def test_custom_ladder_is_followed() -> None:
    controller = EscalationController(
        store=None, token_cap=20_000, max_escalations=2, ladder=(1000, 4000)
    )
    operation = ScriptedOperation([LENGTH, LENGTH, STOP])

    outcome = _run(controller, operation, make_context(baseline=2000))

    assert operation.calls == [2000, 3000, 6000]
    assert outcome.escalations_used == 2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_escalations": 3, "ladder": (500, 1000)},
        {"max_escalations": 2, "ladder": (500, 500)},
        {"max_escalations": 1, "ladder": (0,)},
        {"token_cap": 0},
    ],
)
def test_invalid_policy_is_rejected(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        EscalationController(store=None, **kwargs)
