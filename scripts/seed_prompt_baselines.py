"""Seed starting token baselines for the known prompts.

Safe to run repeatedly:
- It only runs when APP_ENV=development
- It goes through the same upward-only ratchet as runtime learning, so it never lowers
  a baseline that was learned in the meantime
"""

# ruff: noqa: I001
# pyright: reportMissingImports=false
from __future__ import annotations

import asyncio
import os

from adaptive_tokens.baselines.store import SqlAlchemyBaselineStore
from adaptive_tokens.core.db import create_engine, create_sessionmaker

_SEED_REASON = "Seeded starting baseline"

# Prompt names used by the incident workflows, with their starting budgets.
_SEED_BASELINES: dict[str, int] = {
    "generate_clarification_questions": 1000,
    "enhance_narrative": 2000,
    "analyze_contributing_conditions": 1500,
    "generate_mock_answers": 1000,
}


async def seed_baselines(*, database_url: str) -> None:
    engine = create_engine(database_url=database_url)
    store = SqlAlchemyBaselineStore(sessionmaker=create_sessionmaker(engine=engine))
    try:
        for prompt_name, max_tokens in _SEED_BASELINES.items():
            adjustment = await store.update_baseline(
                prompt_name,
                max_tokens,
                _SEED_REASON,
                initial_max_tokens=max_tokens,
            )
            state = "set" if adjustment.updated else "kept"
            print(f"{prompt_name}: {state} at {adjustment.new_max_tokens} tokens")
    finally:
        await engine.dispose()


def main() -> None:
    """Entry point."""
    app_env = os.getenv("APP_ENV", "production").strip().lower()
    if app_env != "development":
        print(f"Seed skipped: APP_ENV={app_env!r} (seeding only runs in development).")
        return

    database_url = os.getenv("DATABASE_URL", "")
    if not database_url:
        raise SystemExit("DATABASE_URL is not set")

    asyncio.run(seed_baselines(database_url=database_url))


if __name__ == "__main__":
    main()
