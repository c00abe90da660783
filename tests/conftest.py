"""Test configuration and fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from reminder_orchestrator.orchestrator.workflow.engine import ExecutionEngine
from reminder_orchestrator.orchestrator.workflow.execution_store import ExecutionStore
from reminder_orchestrator.orchestrator.workflow.executors import (
    EMAIL_EXECUTOR_ID,
    SMS_EXECUTOR_ID,
    ExecutorRegistry,
    TaskExecutor,
)


class RecordingExecutor(TaskExecutor):
    """Executor that records every call and returns a canned reply or raises."""

    def __init__(
        self,
        name: str,
        *,
        reply: Callable[[Any], Any] | None = None,
        error: str | None = None,
    ) -> None:
        self.name = name
        self._reply = reply
        self._error = error
        self._lock = threading.Lock()
        self.calls: list[Any] = []

    def execute(self, document: Any) -> Any:
        with self._lock:
            self.calls.append(document)
        if self._error is not None:
            raise RuntimeError(self._error)
        if self._reply is not None:
            return self._reply(document)
        field = "email" if self.name == "email" else "phone"
        return {"sent": self.name, "to": document.get(field)}


@pytest.fixture
def recording_executor() -> type[RecordingExecutor]:
    return RecordingExecutor


@pytest.fixture
def email_executor() -> RecordingExecutor:
    return RecordingExecutor("email")


@pytest.fixture
def sms_executor() -> RecordingExecutor:
    return RecordingExecutor("sms")


@pytest.fixture
def registry(
    email_executor: RecordingExecutor, sms_executor: RecordingExecutor
) -> ExecutorRegistry:
    return ExecutorRegistry({EMAIL_EXECUTOR_ID: email_executor, SMS_EXECUTOR_ID: sms_executor})


@pytest.fixture
def make_engine(tmp_path: Path) -> Iterator[Callable[..., ExecutionEngine]]:
    """Build engines that are closed at teardown."""

    engines: list[ExecutionEngine] = []

    def _make(registry: ExecutorRegistry, *, persist: bool = False) -> ExecutionEngine:
        store = ExecutionStore(tmp_path / "reminder_state" / "executions") if persist else None
        engine = ExecutionEngine(registry, store=store, task_workers=4)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.close()


@pytest.fixture
def engine(
    make_engine: Callable[..., ExecutionEngine], registry: ExecutorRegistry
) -> ExecutionEngine:
    return make_engine(registry)


@pytest.fixture
def reminder() -> dict[str, Any]:
    return {
        "waitSeconds": 0,
        "preference": "email",
        "message": "m",
        "email": "a@b.com",
        "phone": "+1",
    }
