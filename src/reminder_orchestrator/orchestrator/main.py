"""CLI entrypoint for the reminder orchestrator."""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from reminder_orchestrator import __version__
from reminder_orchestrator.orchestrator.config import ReminderSettings
from reminder_orchestrator.orchestrator.logging import configure_logging
from reminder_orchestrator.orchestrator.workflow.engine import ExecutionEngine, ExecutionStatus
from reminder_orchestrator.orchestrator.workflow.errors import DefinitionInvalid
from reminder_orchestrator.orchestrator.workflow.execution_store import ExecutionStore
from reminder_orchestrator.orchestrator.workflow.executors import build_executor_registry
from reminder_orchestrator.orchestrator.workflow.reminder import load_definition

logger = logging.getLogger(__name__)


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number of seconds: {value!r}")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reminders",
        description="Deliver reminders by email, SMS, or both after a delay",
    )
    parser.add_argument(
        "--version", action="version", version=f"reminder-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "definition",
        help="Validate the configured state machine and print it as JSON",
    )

    run = subparsers.add_parser(
        "run",
        help="Run one execution and print its terminal document",
    )
    run.add_argument(
        "--input",
        required=True,
        help="Path to a JSON reminder request, or '-' to read stdin",
    )
    run.add_argument(
        "--timeout-seconds",
        type=_positive_seconds,
        default=None,
        help="Execution deadline (defaults to REMINDER_EXECUTION_TIMEOUT_SECONDS)",
    )

    serve = subparsers.add_parser("serve", help="Serve the HTTP trigger")
    serve.add_argument("--host", default=None, help="Bind address (defaults to REMINDER_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (defaults to REMINDER_PORT)")

    return parser


def _read_input(value: str) -> Any:
    text = sys.stdin.read() if value == "-" else Path(value).read_text(encoding="utf-8")
    return json.loads(text)


def _run(settings: ReminderSettings, args: argparse.Namespace) -> int:
    definition = load_definition(settings.definition_path)
    try:
        document = _read_input(args.input)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read input: {e}", file=sys.stderr)
        return 2

    timeout = (
        args.timeout_seconds
        if args.timeout_seconds is not None
        else settings.execution_timeout_seconds
    )
    registry = build_executor_registry(settings)
    engine = ExecutionEngine(
        registry,
        store=ExecutionStore(settings.executions_dir),
        task_workers=settings.task_workers,
    )
    try:
        handle = engine.start(definition, document, timeout_seconds=timeout)
        handle.wait()
        outcome = engine.outcome(handle)
    finally:
        engine.close()
        registry.close()

    if outcome.status is ExecutionStatus.SUCCEEDED:
        assert outcome.document is not None
        print(json.dumps(outcome.document.to_json(), indent=2, ensure_ascii=False))
        return 0

    print(
        f"Execution {outcome.execution_id} {outcome.status.value}: "
        f"{outcome.error}: {outcome.cause}",
        file=sys.stderr,
    )
    return 1


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from reminder_orchestrator.server.app import create_app
    from reminder_orchestrator.server.config import ServerSettings

    server_settings = ServerSettings()
    uvicorn.run(
        create_app(),
        host=args.host or server_settings.host,
        port=args.port or server_settings.port,
        log_config=None,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ReminderSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "definition":
            definition = load_definition(settings.definition_path)
            print(json.dumps(definition.to_json(), indent=2, ensure_ascii=False))
            return 0

        if args.command == "run":
            return _run(settings, args)

        if args.command == "serve":
            return _serve(args)

    except DefinitionInvalid as e:
        logger.error("Invalid state machine definition", extra={"cause": e.cause})
        print(f"Invalid state machine definition: {e.cause}", file=sys.stderr)
        return 2

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
