from __future__ import annotations

from pydantic import BaseModel, Field


class HealthOut(BaseModel):
    """Health check response."""

    status: str = Field(
        description="Service status indicator. `ok` means the API process is up and responding.",
        examples=["ok"],
    )


class ErrorOut(BaseModel):
    """Error body shared by handled failures (extra keys may be present)."""

    detail: str = Field(examples=["LLM service failed"])
    correlation_id: str | None = None
    attempts: int | None = Field(default=None, description="Completion attempts made.")
    last_max_tokens: int | None = Field(default=None, description="Last token budget tried.")
