"""Tests for the HTTP trigger and the execution endpoints."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from reminder_orchestrator.orchestrator.workflow.errors import DefinitionInvalid
from reminder_orchestrator.orchestrator.workflow.executors import ExecutorRegistry
from reminder_orchestrator.server.app import create_app


@pytest.fixture
def api_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("REMINDER_STATE_PATH", str(tmp_path / "reminder_state"))
    monkeypatch.delenv("REMINDER_DEFINITION_PATH", raising=False)
    monkeypatch.delenv("REMINDER_REQUEST_TIMEOUT_SECONDS", raising=False)
    return tmp_path


@pytest.fixture
def client(api_env: Path, registry: ExecutorRegistry) -> Iterator[TestClient]:
    with TestClient(create_app(registry=registry)) as test_client:
        yield test_client


def test_email_reminder_returns_terminal_document(
    client: TestClient, reminder: dict[str, Any], email_executor: Any, sms_executor: Any
) -> None:
    resp = client.post("/reminders", json=reminder)

    assert resp.status_code == 200
    assert resp.json() == {"sent": "email", "to": "a@b.com"}
    assert len(email_executor.calls) == 1
    assert sms_executor.calls == []


def test_both_reminder_returns_branch_outputs_in_order(
    client: TestClient, reminder: dict[str, Any]
) -> None:
    resp = client.post("/reminders", json={**reminder, "preference": "both"})

    assert resp.status_code == 200
    assert resp.json() == [
        {"sent": "email", "to": "a@b.com"},
        {"sent": "sms", "to": "+1"},
    ]


def test_unknown_preference_is_a_server_error(
    client: TestClient, reminder: dict[str, Any], email_executor: Any, sms_executor: Any
) -> None:
    resp = client.post("/reminders", json={**reminder, "preference": "carrier-pigeon"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["status"] == "FAILED"
    assert body["error"] == "NoMatches"
    assert body["cause"] == "No Matches"
    assert email_executor.calls == []
    assert sms_executor.calls == []


def test_non_object_body_is_rejected(client: TestClient) -> None:
    resp = client.post("/reminders", json=["email"])

    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidRequest"
    assert client.get("/api/v1/executions").json() == []


def test_request_timeout_reports_running_execution(
    api_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    registry: ExecutorRegistry,
    reminder: dict[str, Any],
) -> None:
    monkeypatch.setenv("REMINDER_REQUEST_TIMEOUT_SECONDS", "0.2")

    with TestClient(create_app(registry=registry)) as client:
        resp = client.post("/reminders", json={**reminder, "waitSeconds": 30})

        assert resp.status_code == 504
        body = resp.json()
        assert body["status"] == "RUNNING"
        assert body["error"] == "RequestTimeout"

        record = client.get(f"/api/v1/executions/{body['executionId']}").json()
        assert record["status"] == "RUNNING"
        assert record["currentStates"] == {"": "Wait"}


def test_execution_records_are_listed_and_fetched(
    client: TestClient, reminder: dict[str, Any]
) -> None:
    client.post("/reminders", json=reminder)
    client.post("/reminders", json={**reminder, "preference": "fax"})

    records = client.get("/api/v1/executions").json()
    assert [r["status"] for r in records] == ["SUCCEEDED", "FAILED"]

    succeeded = client.get(f"/api/v1/executions/{records[0]['executionId']}").json()
    assert succeeded["output"] == {"sent": "email", "to": "a@b.com"}
    assert succeeded["input"] == reminder
    assert succeeded["currentStates"] == {}
    assert succeeded["completedAt"] is not None

    failed = client.get(f"/api/v1/executions/{records[1]['executionId']}").json()
    assert failed["error"] == "NoMatches"


def test_unknown_execution_is_404(client: TestClient) -> None:
    resp = client.get("/api/v1/executions/does-not-exist")
    assert resp.status_code == 404


def test_health_and_definition(client: TestClient) -> None:
    assert client.get("/api/v1/health").json()["status"] == "ok"

    definition = client.get("/api/v1/definition").json()
    assert definition["StartAt"] == "Wait"
    assert definition["States"]["Wait"]["SecondsPath"] == "$.waitSeconds"
    assert definition["States"]["No Matches"]["Type"] == "Fail"


def test_cors_allows_any_origin(client: TestClient) -> None:
    resp = client.options(
        "/reminders",
        headers={
            "Origin": "https://reminders.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] in ("*", "https://reminders.example.com")


def test_startup_fails_when_executor_is_missing(
    api_env: Path, email_executor: Any
) -> None:
    partial = ExecutorRegistry({"send-email": email_executor})

    with pytest.raises(DefinitionInvalid, match="send-sms"):
        create_app(registry=partial)


def test_startup_fails_on_unreadable_definition_file(
    api_env: Path, monkeypatch: pytest.MonkeyPatch, registry: ExecutorRegistry
) -> None:
    bad = api_env / "machine.json"
    bad.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("REMINDER_DEFINITION_PATH", str(bad))

    with pytest.raises(DefinitionInvalid):
        create_app(registry=registry)


def test_custom_definition_file_is_served(
    api_env: Path, monkeypatch: pytest.MonkeyPatch, registry: ExecutorRegistry
) -> None:
    machine = api_env / "machine.json"
    machine.write_text(
        json.dumps(
            {
                "StartAt": "Notify",
                "States": {"Notify": {"Type": "Task", "Resource": "send-sms", "End": True}},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("REMINDER_DEFINITION_PATH", str(machine))

    with TestClient(create_app(registry=registry)) as client:
        resp = client.post("/reminders", json={"phone": "+44"})

    assert resp.status_code == 200
    assert resp.json() == {"sent": "sms", "to": "+44"}
