from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from adaptive_tokens.api.schemas import ErrorOut
from adaptive_tokens.baselines.deps import get_baseline_store
from adaptive_tokens.baselines.store import SqlAlchemyBaselineStore
from adaptive_tokens.completions.schemas import CompletionIn, CompletionOut
from adaptive_tokens.completions.service import CompletionService
from adaptive_tokens.core.llm.deps import get_completion_client
from adaptive_tokens.core.middleware.http_logging import get_request_id
from adaptive_tokens.core.settings import get_settings
from adaptive_tokens.escalation.controller import EscalationController
from adaptive_tokens.escalation.deps import get_escalation_controller

router = APIRouter(prefix="/completions", tags=["completions"])
logger = logging.getLogger("adaptive_tokens.completions")


@router.post(
    "",
    response_model=CompletionOut,
    responses={
        422: {"model": ErrorOut, "description": "Output still truncated at the policy limit."},
        502: {"model": ErrorOut, "description": "Provider failed or is not configured."},
        503: {"model": ErrorOut, "description": "Provider rate limit."},
    },
)
async def create_completion(
    payload: CompletionIn,
    request: Request,
    llm_client=Depends(get_completion_client),
    controller: EscalationController = Depends(get_escalation_controller),
    store: SqlAlchemyBaselineStore = Depends(get_baseline_store),
) -> CompletionOut:
    """
    Generate a completion, escalating the token budget when output is truncated.

    The starting budget is the prompt's learned baseline (or `max_tokens` / the default
    when higher). Successful escalations raise the learned baseline for future calls.
    Provider and escalation errors are mapped by the application exception handlers.
    """

    correlation_id = get_request_id(request)

    if llm_client is None:
        logger.info(
            "Completion failed (LLM not configured)",
            extra={
                "correlation_id": correlation_id,
                "prompt_name": payload.prompt_name,
                "error": "unavailable",
            },
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="LLM service unavailable"
        )

    svc = CompletionService(
        llm_client=llm_client,
        controller=controller,
        baselines=store,
        default_max_tokens=get_settings().default_max_tokens,
    )
    out = await svc.complete(payload=payload, correlation_id=correlation_id)

    logger.info(
        "Completion generated",
        extra={
            "correlation_id": correlation_id,
            "prompt_name": payload.prompt_name,
            "max_tokens": out.final_max_tokens,
            "escalations_used": out.escalations_used,
            "finish_reason": out.finish_reason,
            "tokens_used": out.tokens_used,
        },
    )
    return out
