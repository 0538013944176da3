from __future__ import annotations

from typing import Any

from fastapi import Request
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


def _create_naming_convention() -> dict[str, str]:
    return {
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "pk": "pk_%(table_name)s",
    }


metadata_obj = MetaData(naming_convention=_create_naming_convention())


class Base(DeclarativeBase):
    metadata = metadata_obj


def create_engine(*, database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, pool_pre_ping=True)


def create_sessionmaker(*, engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


def init_db(*, app: Any, database_url: str) -> async_sessionmaker[AsyncSession]:
    engine = create_engine(database_url=database_url)
    sessionmaker = create_sessionmaker(engine=engine)
    app.state.db_engine = engine
    app.state.db_sessionmaker = sessionmaker
    return sessionmaker


async def close_db(*, app: Any) -> None:
    engine: AsyncEngine | None = getattr(app.state, "db_engine", None)
    if engine is None:
        return
    await engine.dispose()


def get_sessionmaker(request: Request) -> async_sessionmaker[AsyncSession]:
    """
    Return the process-wide sessionmaker.

    Baseline writes outlive the request that triggered them, so the store opens its own
    sessions instead of borrowing a request-scoped one.
    """

    return request.app.state.db_sessionmaker
