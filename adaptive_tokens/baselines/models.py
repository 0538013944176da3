from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_tokens.core.db import Base


class PromptTokenBaseline(Base):
    """
    Learned token budget for a named prompt.

    Rows are created on the first successful escalation (or manual adjustment) and only
    ever move upwards; nothing in the service deletes them.
    """

    __tablename__ = "prompt_token_baselines"
    __table_args__ = (
        CheckConstraint("current_max_tokens > 0", name="current_max_tokens_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    prompt_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    current_max_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    # Budget the prompt used before any learning happened; kept for auditing.
    original_max_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)

    adjusted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    adjustment_reason: Mapped[str] = mapped_column(Text, nullable=False)
    last_correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
