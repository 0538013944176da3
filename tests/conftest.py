from __future__ import annotations

import asyncio
import os

import pytest

from adaptive_tokens.core.db import Base, create_engine

_LLM_KEY_ENV_VARS = ("LLM_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY")


@pytest.fixture()
def database_url(tmp_path) -> str:
    db_file = tmp_path / "test.sqlite3"
    return f"sqlite+aiosqlite:///{db_file}"


@pytest.fixture(autouse=True)
def _set_test_environment(database_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    os.environ["DATABASE_URL"] = database_url
    # Tests never talk to a real provider; routes get a fake client via dependency overrides.
    for name in _LLM_KEY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Settings are cached via @lru_cache; clear so each test can use its own DB URL.
    from adaptive_tokens.core.settings import get_settings

    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _create_test_schema(database_url: str) -> None:
    async def run() -> None:
        # Ensure all model modules are imported so Base.metadata is populated.
        from adaptive_tokens.baselines import models as _baseline_models  # noqa: F401

        engine = create_engine(database_url=database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(run())


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from adaptive_tokens.main import create_app

    app = create_app()
    with TestClient(app) as c:
        yield c
