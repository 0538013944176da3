from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

PROMPT_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,254}$"


class BaselineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    prompt_name: str
    current_max_tokens: int = Field(description="Token budget callers should start from.")
    original_max_tokens: int | None = Field(
        default=None, description="Budget the prompt used before any learned adjustment."
    )
    adjusted_at: datetime
    adjustment_reason: str
    last_correlation_id: str | None = None


class BaselineUpdateIn(BaseModel):
    max_tokens: int = Field(ge=1, description="New baseline; ignored unless higher than current.")
    reason: str = Field(
        min_length=1,
        max_length=500,
        examples=["Manual adjustment: Complex prompt requires more tokens"],
    )


class BaselineUpdateOut(BaseModel):
    prompt_name: str
    old_max_tokens: int | None
    new_max_tokens: int
    updated: bool = Field(description="False when the existing baseline was already as high.")
    adjustment_reason: str
    correlation_id: str
