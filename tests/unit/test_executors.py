"""Unit tests for task executors and the executor registry."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import requests

from reminder_orchestrator.orchestrator.config import ReminderSettings
from reminder_orchestrator.orchestrator.workflow.errors import UnknownExecutor
from reminder_orchestrator.orchestrator.workflow.executors import (
    EMAIL_EXECUTOR_ID,
    SMS_EXECUTOR_ID,
    ExecutorRegistry,
    FunctionExecutor,
    LoggingNotifier,
    WebhookNotifier,
    build_executor_registry,
)


def test_registry_lookup_and_unknown_id() -> None:
    executor = FunctionExecutor(lambda d: d)
    registry = ExecutorRegistry({"echo": executor})

    assert registry.get_executor("echo") is executor
    assert registry.ids() == ["echo"]
    assert "echo" in registry
    with pytest.raises(UnknownExecutor) as excinfo:
        registry.get_executor("fax")
    assert excinfo.value.executor_id == "fax"
    assert registry.get("fax") is None


def test_registry_is_read_only_snapshot() -> None:
    source = {"echo": FunctionExecutor(lambda d: d)}
    registry = ExecutorRegistry(source)
    source["late"] = FunctionExecutor(lambda d: d)

    assert list(registry) == ["echo"]
    with pytest.raises(TypeError):
        registry["late"] = FunctionExecutor(lambda d: d)  # type: ignore[index]


def test_registry_rejects_non_executors() -> None:
    with pytest.raises(TypeError):
        ExecutorRegistry({"bad": lambda d: d})  # type: ignore[dict-item]


def test_logging_notifier_adds_receipt_and_keeps_fields() -> None:
    notifier = LoggingNotifier(channel="email", recipient_field="email", sender="me@example.com")

    out = notifier.execute({"email": "a@b.com", "message": "m", "phone": "+1"})

    assert out == {
        "email": "a@b.com",
        "message": "m",
        "phone": "+1",
        "delivery": {
            "channel": "email",
            "to": "a@b.com",
            "status": "logged",
            "from": "me@example.com",
        },
    }


def test_logging_notifier_requires_recipient() -> None:
    notifier = LoggingNotifier(channel="sms", recipient_field="phone")
    with pytest.raises(ValueError, match="phone"):
        notifier.execute({"email": "a@b.com"})


def _response(status: int, payload: object | None = None) -> Mock:
    resp = Mock(spec=requests.Response)
    resp.status_code = status
    resp.content = b"{}" if payload is not None else b""
    resp.text = "error body"
    resp.json.return_value = payload
    return resp


def test_webhook_notifier_posts_document_and_returns_reply() -> None:
    session = Mock(spec=requests.Session)
    session.headers = {}
    session.post.return_value = _response(200, {"messageId": "abc"})
    notifier = WebhookNotifier(
        url="https://hooks.example.com/email",
        timeout_seconds=5,
        static_fields={"sender": "me@example.com"},
        session=session,
    )

    out = notifier.execute({"email": "a@b.com"})

    assert out == {"messageId": "abc"}
    session.post.assert_called_once_with(
        "https://hooks.example.com/email",
        json={"email": "a@b.com", "sender": "me@example.com"},
        timeout=5,
    )


def test_webhook_notifier_empty_reply_returns_input() -> None:
    session = Mock(spec=requests.Session)
    session.headers = {}
    session.post.return_value = _response(204)
    notifier = WebhookNotifier(url="https://hooks.example.com/sms", session=session)

    assert notifier.execute({"phone": "+1"}) == {"phone": "+1"}


def test_webhook_notifier_error_status_raises() -> None:
    session = Mock(spec=requests.Session)
    session.headers = {}
    session.post.return_value = _response(502, {})
    notifier = WebhookNotifier(url="https://hooks.example.com/sms", session=session)

    with pytest.raises(RuntimeError, match="HTTP 502"):
        notifier.execute({"phone": "+1"})


def test_build_registry_defaults_to_dry_run_channels() -> None:
    registry = build_executor_registry(ReminderSettings(_env_file=None))

    assert registry.ids() == [EMAIL_EXECUTOR_ID, SMS_EXECUTOR_ID]
    assert isinstance(registry[EMAIL_EXECUTOR_ID], LoggingNotifier)
    assert isinstance(registry[SMS_EXECUTOR_ID], LoggingNotifier)


def test_build_registry_with_webhook_channel() -> None:
    settings = ReminderSettings(
        _env_file=None,
        REMINDER_SMS_EXECUTOR="webhook",
        REMINDER_SMS_WEBHOOK_URL="https://hooks.example.com/sms",
    )

    registry = build_executor_registry(settings)
    try:
        assert isinstance(registry[SMS_EXECUTOR_ID], WebhookNotifier)
        assert isinstance(registry[EMAIL_EXECUTOR_ID], LoggingNotifier)
    finally:
        registry.close()
