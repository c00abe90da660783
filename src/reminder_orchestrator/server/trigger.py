"""Bridge an inbound request to a workflow execution.

The caller blocks until the execution is terminal (waits included) or the
request timeout elapses. That synchronous request/response shape is the
contract of the reminder endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from reminder_orchestrator.orchestrator.workflow.engine import (
    ExecutionEngine,
    ExecutionOutcome,
    ExecutionStatus,
)
from reminder_orchestrator.orchestrator.workflow.states import StateMachineDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TriggerResponse:
    status_code: int
    body: Any


def outcome_to_response(outcome: ExecutionOutcome) -> TriggerResponse:
    """Map a terminal execution outcome to an HTTP status and body."""

    if outcome.status is ExecutionStatus.SUCCEEDED:
        assert outcome.document is not None
        return TriggerResponse(status_code=200, body=outcome.document.to_json())

    body = {
        "status": outcome.status.value,
        "executionId": outcome.execution_id,
        "error": outcome.error,
        "cause": outcome.cause,
    }
    if outcome.status is ExecutionStatus.TIMED_OUT:
        return TriggerResponse(status_code=504, body=body)
    return TriggerResponse(status_code=500, body=body)


class ReminderTrigger:
    def __init__(
        self,
        *,
        engine: ExecutionEngine,
        definition: StateMachineDefinition,
        execution_timeout_seconds: float,
        request_timeout_seconds: float,
    ) -> None:
        self._engine = engine
        self._definition = definition
        self._execution_timeout = execution_timeout_seconds
        self._request_timeout = request_timeout_seconds

    def submit(self, body: Any) -> TriggerResponse:
        if not isinstance(body, dict):
            return TriggerResponse(
                status_code=400,
                body={"error": "InvalidRequest", "cause": "Request body must be a JSON object"},
            )

        handle = self._engine.start(
            self._definition, body, timeout_seconds=self._execution_timeout
        )
        if not handle.wait(self._request_timeout):
            logger.warning(
                "Request timed out before execution finished",
                extra={"execution_id": handle.execution_id},
            )
            return TriggerResponse(
                status_code=504,
                body={
                    "status": ExecutionStatus.RUNNING.value,
                    "executionId": handle.execution_id,
                    "error": "RequestTimeout",
                    "cause": f"Execution still running after {self._request_timeout:g}s",
                },
            )
        return outcome_to_response(self._engine.outcome(handle))
