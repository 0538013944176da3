from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from adaptive_tokens.baselines.schemas import PROMPT_NAME_PATTERN

ResponseFormat = Literal["text", "json"]


class CompletionIn(BaseModel):
    prompt_name: str = Field(
        pattern=PROMPT_NAME_PATTERN,
        description="Stable name of the prompt template; keys the learned token baseline.",
        examples=["clarification_questions"],
    )
    prompt: str = Field(min_length=1)
    system_prompt: str | None = None
    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Minimum starting budget. The learned baseline wins when it is higher.",
    )
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    response_format: ResponseFormat = Field(
        default="text",
        description="`json` asks for a JSON object and treats cut-off JSON as truncation.",
    )


class CompletionOut(BaseModel):
    correlation_id: str
    prompt_name: str
    model: str
    content: str = Field(description="Empty when the provider withheld the generation.")
    data: dict[str, Any] | None = Field(
        default=None, description="Parsed JSON object when response_format is `json`."
    )
    finish_reason: str
    final_max_tokens: int
    escalations_used: int
    tokens_used: int | None = None
