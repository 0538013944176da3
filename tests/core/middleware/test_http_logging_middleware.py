"""Unit tests for the HTTP logging middleware.

We assert structured log fields via `caplog` (not message strings) and verify:
- X-Request-ID is generated or propagated, and exposed to handlers as the correlation id
- Successful requests emit exactly one INFO log entry with metadata only
- Unhandled exceptions emit an ERROR log entry with a stack trace and return 500
"""

from __future__ import annotations

import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from adaptive_tokens.core.middleware.http_logging import HttpLoggingMiddleware, get_request_id

LOGGER = "adaptive_tokens.http"


def _make_app() -> FastAPI:
    """Create a minimal app for middleware unit tests."""
    app = FastAPI()
    app.add_middleware(HttpLoggingMiddleware)

    @app.get("/prompts/{prompt_name}/baseline")
    async def baseline(prompt_name: str, request: Request) -> dict[str, str]:
        return {"prompt_name": prompt_name, "correlation_id": get_request_id(request)}

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("boom")

    return app


def _get_http_log_records(caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.name == LOGGER]


def test_successful_request_logs_route_template_and_sets_request_id(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER)
    app = _make_app()

    with TestClient(app) as client:
        res = client.get("/prompts/enhance_narrative/baseline?debug=1")

    assert res.status_code == 200
    request_id = res.headers["x-request-id"]
    assert request_id
    assert res.json()["correlation_id"] == request_id

    info_records = [r for r in _get_http_log_records(caplog) if r.levelno == logging.INFO]
    assert len(info_records) == 1

    record = info_records[0]
    assert record.__dict__["request_id"] == request_id
    assert record.__dict__["http_method"] == "GET"
    # Route template, never the raw path or query string.
    assert record.__dict__["request_path"] == "/prompts/{prompt_name}/baseline"
    assert record.__dict__["status_code"] == 200
    assert record.__dict__["duration_ms"] >= 0


def test_propagates_valid_request_id(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER)
    app = _make_app()

    with TestClient(app) as client:
        res = client.get("/prompts/x/baseline", headers={"X-Request-ID": "req_abc-123"})

    assert res.headers["x-request-id"] == "req_abc-123"
    assert res.json()["correlation_id"] == "req_abc-123"

    info_records = [r for r in _get_http_log_records(caplog) if r.levelno == logging.INFO]
    assert info_records[0].__dict__["request_id"] == "req_abc-123"


def test_replaces_unsafe_request_id() -> None:
    app = _make_app()

    with TestClient(app) as client:
        res = client.get("/prompts/x/baseline", headers={"X-Request-ID": "bad id; forged=1"})

    assert res.headers["x-request-id"] != "bad id; forged=1"
    assert len(res.headers["x-request-id"]) == 32


def test_unhandled_exception_returns_500_and_logs_error_with_request_id(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER)
    app = _make_app()

    with TestClient(app, raise_server_exceptions=False) as client:
        res = client.get("/boom", headers={"X-Request-ID": "req_err_001"})

    assert res.status_code == 500

    error_records = [r for r in _get_http_log_records(caplog) if r.levelno == logging.ERROR]
    assert len(error_records) == 1

    record = error_records[0]
    assert record.__dict__["request_id"] == "req_err_001"
    assert record.__dict__["request_path"] == "/boom"
    assert record.__dict__["status_code"] == 500
    assert record.exc_info
