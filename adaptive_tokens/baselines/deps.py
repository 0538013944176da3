from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adaptive_tokens.baselines.store import SqlAlchemyBaselineStore
from adaptive_tokens.core.db import get_sessionmaker


def get_baseline_store(
    sessionmaker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
) -> SqlAlchemyBaselineStore:
    return SqlAlchemyBaselineStore(sessionmaker=sessionmaker)
