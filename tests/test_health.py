from __future__ import annotations


def test_health_ok(client) -> None:
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_metrics_exposes_escalation_counters(client) -> None:
    res = client.get("/metrics")
    assert res.status_code == 200
    assert "token_escalation_runs_total" in res.text
    assert "llm_completion_requests_total" in res.text
