"""Task executors invoked by Task states.

Executors are registered by id in an immutable :class:`ExecutorRegistry` that is
built once at startup and passed to the engine. The engine calls
:meth:`TaskExecutor.execute` on a worker thread, so implementations must be safe
to call concurrently.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import requests

from .errors import UnknownExecutor

if TYPE_CHECKING:
    from reminder_orchestrator.orchestrator.config import ReminderSettings

logger = logging.getLogger(__name__)

EMAIL_EXECUTOR_ID = "send-email"
SMS_EXECUTOR_ID = "send-sms"


class TaskExecutor(ABC):
    """Abstract base class for external units of work.

    Side effects (sending an email, an SMS) happen here and are never replayed
    or compensated by the engine.
    """

    @abstractmethod
    def execute(self, document: Any) -> Any:
        """Run the task.

        Args:
            document: JSON value selected by the Task state's input path.

        Returns:
            JSON value written back at the Task state's output path.

        Raises:
            Exception: Any exception fails the task; its message becomes the cause.
        """


class FunctionExecutor(TaskExecutor):
    """Adapt a plain callable to the executor interface."""

    def __init__(self, func: Callable[[Any], Any]) -> None:
        self._func = func

    def execute(self, document: Any) -> Any:
        return self._func(document)


class LoggingNotifier(TaskExecutor):
    """Dry-run channel: logs the reminder and returns the document with a receipt."""

    def __init__(self, *, channel: str, recipient_field: str, sender: str = "") -> None:
        self._channel = channel
        self._recipient_field = recipient_field
        self._sender = sender

    def execute(self, document: Any) -> Any:
        if not isinstance(document, dict):
            raise ValueError(f"{self._channel} reminder expects an object document")
        recipient = document.get(self._recipient_field)
        if not isinstance(recipient, str) or not recipient.strip():
            raise ValueError(f"Missing {self._recipient_field!r} for {self._channel} reminder")

        logger.info(
            "Reminder delivered (dry run)",
            extra={
                "channel": self._channel,
                "recipient": recipient,
                "sender": self._sender or None,
            },
        )
        receipt: dict[str, Any] = {"channel": self._channel, "to": recipient, "status": "logged"}
        if self._sender:
            receipt["from"] = self._sender
        return {**document, "delivery": receipt}


class WebhookNotifier(TaskExecutor):
    """Deliver a reminder by POSTing the document to an HTTP endpoint.

    The JSON reply becomes the task output. A non-2xx reply fails the task.
    """

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = 30.0,
        static_fields: Mapping[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook URL is required")
        self._url = url
        self._timeout = timeout_seconds
        self._static_fields = dict(static_fields or {})
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "reminder-orchestrator"}
        )

    def execute(self, document: Any) -> Any:
        payload = {**document, **self._static_fields} if isinstance(document, dict) else document
        resp = self._session.post(self._url, json=payload, timeout=self._timeout)
        if resp.status_code >= 300:
            raise RuntimeError(
                f"Webhook {self._url} returned HTTP {resp.status_code}: {resp.text[:200]}"
            )
        if not resp.content:
            return document
        return resp.json()

    def close(self) -> None:
        self._session.close()


class ExecutorRegistry(Mapping[str, TaskExecutor]):
    """Read-only mapping of executor id to executor."""

    def __init__(self, executors: Mapping[str, TaskExecutor]) -> None:
        for executor_id, executor in executors.items():
            if not isinstance(executor, TaskExecutor):
                raise TypeError(f"Executor {executor_id!r} does not implement TaskExecutor")
        self._executors = MappingProxyType(dict(executors))

    def get_executor(self, executor_id: str) -> TaskExecutor:
        try:
            return self._executors[executor_id]
        except KeyError:
            raise UnknownExecutor(executor_id) from None

    def ids(self) -> list[str]:
        return sorted(self._executors)

    def __getitem__(self, executor_id: str) -> TaskExecutor:
        return self._executors[executor_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)

    def close(self) -> None:
        for executor in self._executors.values():
            close = getattr(executor, "close", None)
            if callable(close):
                close()


def build_executor_registry(settings: ReminderSettings) -> ExecutorRegistry:
    """Create the email and SMS executors selected by configuration.

    Raises:
        ValueError: If a channel mode is not supported.
    """

    logger.info(
        "Creating reminder executors",
        extra={"email_executor": settings.email_executor, "sms_executor": settings.sms_executor},
    )

    def _channel(mode: str, *, channel: str, recipient_field: str, url: str) -> TaskExecutor:
        sender = settings.verified_email if channel == "email" else ""
        if mode == "log":
            return LoggingNotifier(channel=channel, recipient_field=recipient_field, sender=sender)
        elif mode == "webhook":
            return WebhookNotifier(
                url=url,
                timeout_seconds=settings.webhook_timeout_seconds,
                static_fields={"sender": sender} if sender else None,
            )
        else:
            raise ValueError(f"Unsupported {channel} executor: {mode}")

    return ExecutorRegistry(
        {
            EMAIL_EXECUTOR_ID: _channel(
                settings.email_executor,
                channel="email",
                recipient_field="email",
                url=settings.email_webhook_url,
            ),
            SMS_EXECUTOR_ID: _channel(
                settings.sms_executor,
                channel="sms",
                recipient_field="phone",
                url=settings.sms_webhook_url,
            ),
        }
    )
