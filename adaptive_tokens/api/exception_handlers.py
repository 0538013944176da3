from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from adaptive_tokens.core.llm.completion_client import CompletionError, CompletionRateLimitError
from adaptive_tokens.core.llm.json_output import MalformedOutputError
from adaptive_tokens.core.middleware.http_logging import get_request_id
from adaptive_tokens.domain.exceptions import BusinessValidationError
from adaptive_tokens.escalation.errors import EscalationError, TokenCapExceededError

logger = logging.getLogger("adaptive_tokens.errors")


def _log(request: Request, *, message: str, status_code: int, error: str, **extra: object) -> None:
    # Metadata only: upstream bodies and prompt text never reach the logs.
    logger.info(
        message,
        extra={
            "request_id": get_request_id(request),
            "http_method": request.method,
            "request_path": request.url.path,
            "status_code": status_code,
            "error": error,
            **extra,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register application exception handlers."""

    @app.exception_handler(BusinessValidationError)
    async def handle_business_validation_error(
        request: Request,
        exc: BusinessValidationError,
    ) -> JSONResponse:
        _log(
            request,
            message="Business validation failed",
            status_code=status.HTTP_400_BAD_REQUEST,
            error="business_validation",
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message}
        )

    @app.exception_handler(EscalationError)
    async def handle_escalation_error(request: Request, exc: EscalationError) -> JSONResponse:
        # Distinct from 502 so callers can tell "too large for policy" from "system error".
        _log(
            request,
            message="Completion exceeded the token escalation policy",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error="token_cap_exceeded"
            if isinstance(exc, TokenCapExceededError)
            else "truncation_exhausted",
            correlation_id=exc.correlation_id,
            prompt_name=exc.prompt_name,
            attempt=exc.attempts,
            max_tokens=exc.last_max_tokens,
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Response exceeded the token escalation policy",
                "correlation_id": exc.correlation_id,
                "attempts": exc.attempts,
                "last_max_tokens": exc.last_max_tokens,
            },
        )

    @app.exception_handler(CompletionRateLimitError)
    async def handle_rate_limit_error(
        request: Request, exc: CompletionRateLimitError
    ) -> JSONResponse:
        _log(
            request,
            message="Completion rate limited by provider",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error=exc.kind.value,
        )
        headers = {}
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(int(exc.retry_after_seconds))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "LLM service is rate limited"},
            headers=headers,
        )

    @app.exception_handler(CompletionError)
    async def handle_completion_error(request: Request, exc: CompletionError) -> JSONResponse:
        _log(
            request,
            message="Completion failed",
            status_code=status.HTTP_502_BAD_GATEWAY,
            error=exc.kind.value,
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": "LLM service failed"}
        )

    @app.exception_handler(MalformedOutputError)
    async def handle_malformed_output(request: Request, exc: MalformedOutputError) -> JSONResponse:
        _log(
            request,
            message="Completion returned malformed output",
            status_code=status.HTTP_502_BAD_GATEWAY,
            error="malformed_output",
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": "LLM service failed"}
        )
