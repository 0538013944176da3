from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adaptive_tokens.baselines.models import PromptTokenBaseline

logger = logging.getLogger("adaptive_tokens.baselines")

_MAX_UPSERT_ATTEMPTS = 5


class BaselineStoreError(Exception):
    """Raised when a baseline could not be written."""


@dataclass(frozen=True)
class BaselineAdjustment:
    prompt_name: str
    old_max_tokens: int | None
    new_max_tokens: int
    updated: bool
    adjustment_reason: str
    correlation_id: str


def _generate_correlation_id() -> str:
    return f"token-update-{int(time.time() * 1000)}"


class SqlAlchemyBaselineStore:
    """
    Per-prompt token baselines with a monotonic upward ratchet.

    Raising a baseline is a compare-and-set: an UPDATE guarded by the value just read,
    retried when another writer got there first. Concurrent runs for the same prompt
    therefore never replace a higher value with a lower one. A missing row is
    inserted; losing that insert race falls back to the compare-and-set.
    """

    def __init__(self, *, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def get_record(self, prompt_name: str) -> PromptTokenBaseline | None:
        async with self._sessionmaker() as session:
            stmt = select(PromptTokenBaseline).where(
                PromptTokenBaseline.prompt_name == prompt_name
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_baseline(self, prompt_name: str, *, default: int) -> int:
        async with self._sessionmaker() as session:
            stmt = select(PromptTokenBaseline.current_max_tokens).where(
                PromptTokenBaseline.prompt_name == prompt_name
            )
            current = (await session.execute(stmt)).scalar_one_or_none()
        return default if current is None else int(current)

    async def update_baseline(
        self,
        prompt_name: str,
        new_max_tokens: int,
        reason: str,
        correlation_id: str | None = None,
        *,
        initial_max_tokens: int | None = None,
    ) -> BaselineAdjustment:
        if new_max_tokens < 1:
            raise ValueError("new_max_tokens must be >= 1")
        correlation_id = correlation_id or _generate_correlation_id()

        async with self._sessionmaker() as session:
            for _attempt in range(_MAX_UPSERT_ATTEMPTS):
                current = await self._current(session=session, prompt_name=prompt_name)

                if current is not None:
                    adjustment = await self._raise_existing(
                        session=session,
                        prompt_name=prompt_name,
                        current=current,
                        new_max_tokens=new_max_tokens,
                        reason=reason,
                        correlation_id=correlation_id,
                    )
                    if adjustment is not None:
                        return adjustment
                    # Row changed between read and write; re-read and decide again.
                    continue

                session.add(
                    PromptTokenBaseline(
                        prompt_name=prompt_name,
                        current_max_tokens=new_max_tokens,
                        original_max_tokens=initial_max_tokens,
                        adjusted_at=datetime.now(UTC),
                        adjustment_reason=reason,
                        last_correlation_id=correlation_id,
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    # Another writer created the row first.
                    await session.rollback()
                    continue

                logger.info(
                    "Prompt token baseline created",
                    extra={
                        "correlation_id": correlation_id,
                        "prompt_name": prompt_name,
                        "max_tokens": new_max_tokens,
                    },
                )
                return BaselineAdjustment(
                    prompt_name=prompt_name,
                    old_max_tokens=None,
                    new_max_tokens=new_max_tokens,
                    updated=True,
                    adjustment_reason=reason,
                    correlation_id=correlation_id,
                )

        raise BaselineStoreError(f"Could not update token baseline for prompt {prompt_name!r}")

    async def _current(self, *, session: AsyncSession, prompt_name: str) -> int | None:
        stmt = select(PromptTokenBaseline.current_max_tokens).where(
            PromptTokenBaseline.prompt_name == prompt_name
        )
        current = (await session.execute(stmt)).scalar_one_or_none()
        return None if current is None else int(current)

    async def _raise_existing(
        self,
        *,
        session: AsyncSession,
        prompt_name: str,
        current: int,
        new_max_tokens: int,
        reason: str,
        correlation_id: str,
    ) -> BaselineAdjustment | None:
        """Return the adjustment, or None when the row moved under us."""

        if new_max_tokens <= current:
            await session.rollback()
            return BaselineAdjustment(
                prompt_name=prompt_name,
                old_max_tokens=current,
                new_max_tokens=current,
                updated=False,
                adjustment_reason=reason,
                correlation_id=correlation_id,
            )

        stmt = (
            update(PromptTokenBaseline)
            .where(
                PromptTokenBaseline.prompt_name == prompt_name,
                PromptTokenBaseline.current_max_tokens == current,
            )
            .values(
                current_max_tokens=new_max_tokens,
                adjusted_at=datetime.now(UTC),
                adjustment_reason=reason,
                last_correlation_id=correlation_id,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()
        if result.rowcount != 1:
            return None

        logger.info(
            "Prompt token baseline raised",
            extra={
                "correlation_id": correlation_id,
                "prompt_name": prompt_name,
                "max_tokens": new_max_tokens,
            },
        )
        return BaselineAdjustment(
            prompt_name=prompt_name,
            old_max_tokens=current,
            new_max_tokens=new_max_tokens,
            updated=True,
            adjustment_reason=reason,
            correlation_id=correlation_id,
        )
