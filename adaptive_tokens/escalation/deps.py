from __future__ import annotations

from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adaptive_tokens.baselines.store import SqlAlchemyBaselineStore
from adaptive_tokens.core.settings import Settings
from adaptive_tokens.escalation.classifier import FailureClassifier
from adaptive_tokens.escalation.controller import EscalationController


def build_escalation_controller(
    *, settings: Settings, sessionmaker: async_sessionmaker[AsyncSession]
) -> EscalationController:
    """Translate process settings into explicit controller arguments."""

    return EscalationController(
        store=SqlAlchemyBaselineStore(sessionmaker=sessionmaker),
        token_cap=settings.escalation_token_cap,
        max_escalations=settings.max_escalations,
        ladder=settings.escalation_ladder,
        classifier=FailureClassifier(
            min_fragment_chars=settings.truncation_min_fragment_chars,
            require_cut_off=settings.truncation_require_cut_off,
        ),
    )


def init_escalation(*, app: Any, settings: Settings) -> None:
    app.state.escalation_controller = build_escalation_controller(
        settings=settings, sessionmaker=app.state.db_sessionmaker
    )


async def close_escalation(*, app: Any) -> None:
    controller: EscalationController | None = getattr(app.state, "escalation_controller", None)
    if controller is None:
        return
    await controller.wait_for_pending_writes()


def get_escalation_controller(request: Request) -> EscalationController:
    return request.app.state.escalation_controller
