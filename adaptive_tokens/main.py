from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from adaptive_tokens.api.exception_handlers import register_exception_handlers
from adaptive_tokens.api.schemas import HealthOut
from adaptive_tokens.baselines.router import router as baselines_router
from adaptive_tokens.completions.router import router as completions_router
from adaptive_tokens.core.db import close_db, init_db
from adaptive_tokens.core.logging import setup_logging
from adaptive_tokens.core.metrics import PrometheusMetricsMiddleware, metrics_router
from adaptive_tokens.core.middleware.http_logging import HttpLoggingMiddleware
from adaptive_tokens.core.settings import get_settings
from adaptive_tokens.escalation.deps import close_escalation, init_escalation

setup_logging()


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Defer settings/env access until application startup so importing the app
        # does not require DATABASE_URL (e.g. during pytest collection).
        settings = get_settings()
        init_db(app=app, database_url=str(settings.database_url))
        init_escalation(app=app, settings=settings)
        yield
        # Let in-flight baseline writes land before the engine goes away.
        await close_escalation(app=app)
        await close_db(app=app)

    app = FastAPI(
        title="Adaptive Token Escalation API",
        description=(
            "Completion gateway that retries truncated LLM output with larger token budgets.\n\n"
            "Design principles:\n"
            "- Each attempt is classified as success, truncation or a non-retryable error.\n"
            "- Budgets climb a fixed ladder, bounded by an attempt count and a token cap.\n"
            "- Budgets that had to be escalated are learned per prompt, so later calls "
            "start higher.\n"
            "- Logs and metrics carry budgets, counts and timings only, never prompt text."
        ),
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Basic uptime check for load balancers and monitoring.",
            },
            {
                "name": "completions",
                "description": "Generate completions with automatic token escalation.",
            },
            {
                "name": "baselines",
                "description": "Inspect or manually raise learned per-prompt token baselines.",
            },
            {
                "name": "metrics",
                "description": "Prometheus-compatible metrics endpoint.",
            },
        ],
    )

    app.add_middleware(PrometheusMetricsMiddleware)
    app.add_middleware(HttpLoggingMiddleware)

    register_exception_handlers(app)

    @app.get(
        "/health",
        response_model=HealthOut,
        tags=["health"],
        summary="Health check",
        description=(
            "Lightweight endpoint to verify the API process is running.\n\n"
            "Does not check downstream dependencies (DB, LLM provider)."
        ),
    )
    async def health() -> HealthOut:
        return HealthOut(status="ok")

    app.include_router(metrics_router)
    app.include_router(completions_router)
    app.include_router(baselines_router)
    return app


app = create_app()
