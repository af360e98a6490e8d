"""
HTTP surface: cron trigger auth, run lookup, event log endpoints, stored reports, health.

The app is built around a real orchestrator (SQLite in tmp_path) whose
GitHub and Gemini collaborators are replaced with fakes.
"""

from __future__ import annotations

import pytest
from conftest import (
    DATE,
    FakeActivitySource,
    make_activity,
    patterns_payload,
    summary_payload,
    synthesis_payload,
)
from fastapi.testclient import TestClient

from devlog.api.app import create_app
from devlog.config import DATA_DIR, OrchestratorConfig
from devlog.infrastructure.retry import RetryController
from devlog.orchestrator import build_orchestrator
from devlog.storage.cache import MemoryCacheStore
from devlog.workflow.trigger import yesterday_utc

SECRET = "s3cret-token"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def orchestrator(tmp_path, inference, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", SECRET)
    inference.object_defaults["RepositorySummary"] = summary_payload("acme/web")
    inference.object_defaults["PatternSet"] = patterns_payload()
    inference.object_defaults["GlobalSynthesis"] = synthesis_payload()

    orch = build_orchestrator(
        OrchestratorConfig(model_name="test-model"),
        db_path=tmp_path / "api.db",
        activity_source=FakeActivitySource(make_activity({"acme/web": 2})),
        inference=inference,
        cache_store=MemoryCacheStore(),
        retry=RetryController(sleep_fn=lambda _: None),
        seed_path=DATA_DIR / "instructions.yaml",
    )
    yield orch
    orch.close()


@pytest.fixture
def client(orchestrator):
    with TestClient(create_app(orchestrator)) as c:
        yield c


def trigger(client, date=DATE):
    response = client.post("/cron/daily-analysis", json={"date": date}, headers=AUTH)
    assert response.status_code == 200
    return response.json()["workflowId"]


def test_cron_requires_bearer_secret(client):
    assert client.post("/cron/daily-analysis", json={"date": DATE}).status_code == 401

    wrong = client.post(
        "/cron/daily-analysis", json={"date": DATE}, headers={"Authorization": "Bearer nope"}
    )
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "Unauthorized"}

    basic = client.post(
        "/cron/daily-analysis", json={"date": DATE}, headers={"Authorization": f"Basic {SECRET}"}
    )
    assert basic.status_code == 401


def test_cron_rejects_everything_when_secret_unset(client, monkeypatch):
    monkeypatch.delenv("CRON_SECRET")
    monkeypatch.setattr("devlog.api.middleware.auth.CRON_SECRET", "")

    response = client.post("/cron/daily-analysis", json={"date": DATE}, headers=AUTH)

    assert response.status_code == 401


def test_cron_rejects_malformed_date(client):
    response = client.post("/cron/daily-analysis", json={"date": "2025/01/14"}, headers=AUTH)

    assert response.status_code == 422
    assert response.json()["invalid_fields"] == ["date"]


def test_cron_queues_run_and_run_completes(client, orchestrator):
    response = client.post("/cron/daily-analysis", json={"date": DATE}, headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["workflowId"].startswith(f"wf_{DATE}_")

    orchestrator.launcher.shutdown(wait=True)
    run = client.get(f"/workflows/{body['workflowId']}").json()
    assert run["status"] == "completed"
    assert run["stage"] == "completed"
    assert run["result"]["version"] == 1

    stored = orchestrator.sink.list_logs(DATE, DATE)
    assert [log["rawData"]["workflowId"] for log in stored] == [body["workflowId"]]


def test_cron_defaults_to_yesterday(client, orchestrator):
    response = client.post("/cron/daily-analysis", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["workflowId"].startswith(f"wf_{yesterday_utc()}_")
    orchestrator.launcher.shutdown(wait=True)


def test_unknown_workflow_is_404(client):
    assert client.get("/workflows/wf_2025-01-14_zzzzzz").status_code == 404


def test_workflow_events_in_order(client, orchestrator):
    workflow_id = trigger(client)
    orchestrator.launcher.shutdown(wait=True)

    body = client.get(f"/workflows/{workflow_id}/events").json()

    assert body["workflowId"] == workflow_id
    assert body["count"] == len(body["events"])
    assert [e["sequence"] for e in body["events"]] == list(range(body["count"]))
    assert (body["events"][0]["type"], body["events"][0]["step"]) == ("started", "workflow")
    assert (body["events"][-1]["type"], body["events"][-1]["step"]) == ("completed", "workflow")

    limited = client.get(f"/workflows/{workflow_id}/events", params={"limit": 3}).json()
    assert limited["count"] == 3


def test_events_for_unknown_workflow_are_empty(client):
    body = client.get("/workflows/wf_2025-01-14_zzzzzz/events").json()

    assert body == {"workflowId": "wf_2025-01-14_zzzzzz", "events": [], "count": 0}


@pytest.mark.parametrize("limit", [0, 2001])
def test_event_limit_is_bounded(client, limit):
    response = client.get("/workflows/wf_2025-01-14_zzzzzz/events", params={"limit": limit})

    assert response.status_code == 422


def test_recent_events_newest_first(client, orchestrator):
    workflow_id = trigger(client)
    orchestrator.launcher.shutdown(wait=True)

    body = client.get("/workflows/events/recent", params={"limit": 2}).json()

    assert body["count"] == 2
    assert all(e["workflowId"] == workflow_id for e in body["events"])
    assert (body["events"][0]["type"], body["events"][0]["step"]) == ("completed", "workflow")
    assert client.get("/workflows/events/recent", params={"limit": 501}).status_code == 422


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["service"] == "devlog"
    assert "model" in body["llm"]


def test_health_db_reports_pool(client):
    body = client.get("/health/db").json()

    assert body["status"] in {"healthy", "degraded"}
    assert "usage_percent" in body["pool"]
    assert body["schema_ok"] is True


def test_stored_reports_are_listed_and_fetched(client, orchestrator):
    workflow_id = trigger(client)
    orchestrator.launcher.shutdown(wait=True)

    body = client.get("/logs", params={"startDate": DATE, "endDate": DATE}).json()

    assert body["count"] == 1
    log = body["logs"][0]
    assert log["date"] == DATE
    assert log["rawData"]["workflowId"] == workflow_id
    assert client.get(f"/logs/{log['logId']}").json() == log

    assert client.get("/logs", params={"startDate": "2099-01-01"}).json()["count"] == 0


def test_unknown_log_is_404(client):
    assert client.get("/logs/missing").status_code == 404


def test_log_listing_validates_params(client):
    assert client.get("/logs", params={"startDate": "14-01-2025"}).status_code == 422
    assert client.get("/logs", params={"limit": 201}).status_code == 422
