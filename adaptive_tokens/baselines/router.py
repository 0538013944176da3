from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status

from adaptive_tokens.baselines.deps import get_baseline_store
from adaptive_tokens.baselines.schemas import (
    PROMPT_NAME_PATTERN,
    BaselineOut,
    BaselineUpdateIn,
    BaselineUpdateOut,
)
from adaptive_tokens.baselines.store import SqlAlchemyBaselineStore
from adaptive_tokens.core.middleware.http_logging import get_request_id
from adaptive_tokens.core.settings import get_settings
from adaptive_tokens.domain.exceptions import BusinessValidationError

router = APIRouter(prefix="/prompts", tags=["baselines"])
logger = logging.getLogger("adaptive_tokens.baselines")

PromptName = Annotated[
    str, Path(pattern=PROMPT_NAME_PATTERN, description="Named prompt identifier.")
]


@router.get("/{prompt_name}/baseline", response_model=BaselineOut)
async def get_prompt_baseline(
    prompt_name: PromptName,
    store: SqlAlchemyBaselineStore = Depends(get_baseline_store),
) -> BaselineOut:
    record = await store.get_record(prompt_name)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Baseline not found")
    return BaselineOut.model_validate(record)


@router.put("/{prompt_name}/baseline", response_model=BaselineUpdateOut)
async def put_prompt_baseline(
    prompt_name: PromptName,
    payload: BaselineUpdateIn,
    request: Request,
    store: SqlAlchemyBaselineStore = Depends(get_baseline_store),
) -> BaselineUpdateOut:
    """
    Manually raise a prompt's baseline.

    Follows the same upward-only rule as automatic learning: a value at or below the
    current baseline is accepted but leaves the record unchanged (`updated=false`).
    """

    cap = get_settings().escalation_token_cap
    if payload.max_tokens > cap:
        raise BusinessValidationError(f"max_tokens must not exceed the escalation cap ({cap}).")

    correlation_id = get_request_id(request)
    adjustment = await store.update_baseline(
        prompt_name,
        payload.max_tokens,
        payload.reason,
        correlation_id,
        initial_max_tokens=payload.max_tokens,
    )
    logger.info(
        "Manual baseline adjustment",
        extra={
            "correlation_id": correlation_id,
            "prompt_name": prompt_name,
            "max_tokens": adjustment.new_max_tokens,
        },
    )
    return BaselineUpdateOut(
        prompt_name=adjustment.prompt_name,
        old_max_tokens=adjustment.old_max_tokens,
        new_max_tokens=adjustment.new_max_tokens,
        updated=adjustment.updated,
        adjustment_reason=adjustment.adjustment_reason,
        correlation_id=adjustment.correlation_id,
    )
