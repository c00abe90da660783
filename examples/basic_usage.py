#!/usr/bin/env python3
"""Programmatic reminder example.

This demonstrates using the workflow components directly:

* load settings from `.env`
* build the configured email/SMS executors
* run one reminder execution and print its terminal document

Execution records are persisted under `reminder_state/executions/`.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from reminder_orchestrator.orchestrator.config import ReminderSettings
from reminder_orchestrator.orchestrator.logging import configure_logging
from reminder_orchestrator.orchestrator.workflow import ExecutionEngine, ExecutionStatus
from reminder_orchestrator.orchestrator.workflow.execution_store import ExecutionStore
from reminder_orchestrator.orchestrator.workflow.executors import build_executor_registry
from reminder_orchestrator.orchestrator.workflow.reminder import build_reminder_definition


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a reminder (programmatic example).")
    parser.add_argument("--preference", default="email", help='"email", "sms" or "both"')
    parser.add_argument("--message", required=True, help="Reminder text")
    parser.add_argument("--email", default="", help="Recipient email address")
    parser.add_argument("--phone", default="", help="Recipient phone number")
    parser.add_argument("--wait-seconds", type=float, default=1.0, help="Delay before sending")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = ReminderSettings()
    configure_logging(settings.log_level)

    registry = build_executor_registry(settings)
    engine = ExecutionEngine(
        registry,
        store=ExecutionStore(settings.executions_dir),
        task_workers=settings.task_workers,
    )
    try:
        handle = engine.start(
            build_reminder_definition(),
            {
                "waitSeconds": args.wait_seconds,
                "preference": args.preference,
                "message": args.message,
                "email": args.email,
                "phone": args.phone,
            },
            timeout_seconds=settings.execution_timeout_seconds,
        )
        handle.wait()
        outcome = engine.outcome(handle)
    finally:
        engine.close()
        registry.close()

    if outcome.status is not ExecutionStatus.SUCCEEDED:
        print(f"Execution {outcome.execution_id} {outcome.status.value}: {outcome.cause}")
        return 1

    assert outcome.document is not None
    print(json.dumps(outcome.document.to_json(), indent=2))
    print(f"Persisted to: {settings.executions_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
