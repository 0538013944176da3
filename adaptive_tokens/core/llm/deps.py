from __future__ import annotations

from adaptive_tokens.core.llm.completion_client import CompletionClient, CompletionClientConfig
from adaptive_tokens.core.settings import get_settings


def get_completion_client() -> CompletionClient | None:
    """
    Dependency provider for CompletionClient.

    Returns None when not configured so routes can return a safe 502 without
    raising during dependency resolution.
    """

    settings = get_settings()
    if not settings.llm_api_key:
        return None

    config = CompletionClientConfig(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        timeout_seconds=float(settings.llm_timeout_seconds),
        default_temperature=float(settings.llm_temperature),
    )
    return CompletionClient(config=config)
