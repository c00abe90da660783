r"""The reminder workflow definition.

Wait for ``$.waitSeconds``, then route on ``$.preference``::

    Wait -> Choice --email--> Send Email ----------------\
                   --sms----> Send SMS ------------------+-> Pass -> Succeed
                   --both---> Parallel(email, sms) ------/
                   --other--> No Matches (Fail)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .errors import DefinitionInvalid
from .executors import EMAIL_EXECUTOR_ID, SMS_EXECUTOR_ID
from .states import (
    ChoiceRule,
    ChoiceState,
    FailState,
    ParallelState,
    PassState,
    StateMachineDefinition,
    StringEquals,
    SucceedState,
    TaskState,
    WaitState,
)

logger = logging.getLogger(__name__)

NO_MATCH_CAUSE = "No Matches"


def _single_task_branch(name: str, executor_id: str) -> StateMachineDefinition:
    return StateMachineDefinition(
        start_at=name,
        states={name: TaskState(executor_id=executor_id)},
    )


def build_reminder_definition() -> StateMachineDefinition:
    """Build the built-in reminder state machine."""

    return StateMachineDefinition(
        comment="Deliver a reminder by email, SMS, or both after a delay",
        start_at="Wait",
        states={
            "Wait": WaitState(seconds_path="$.waitSeconds", next="ChoiceState"),
            "ChoiceState": ChoiceState(
                rules=(
                    ChoiceRule(StringEquals("$.preference", "email"), next="Send Email"),
                    ChoiceRule(StringEquals("$.preference", "sms"), next="Send SMS"),
                    ChoiceRule(StringEquals("$.preference", "both"), next="Send Both"),
                ),
                default=NO_MATCH_CAUSE,
            ),
            "Send Email": TaskState(executor_id=EMAIL_EXECUTOR_ID, next="Pass"),
            "Send SMS": TaskState(executor_id=SMS_EXECUTOR_ID, next="Pass"),
            "Send Both": ParallelState(
                branches=(
                    _single_task_branch("First send email", EMAIL_EXECUTOR_ID),
                    _single_task_branch("Second send SMS", SMS_EXECUTOR_ID),
                ),
                next="Pass",
            ),
            NO_MATCH_CAUSE: FailState(cause=NO_MATCH_CAUSE, error="NoMatches"),
            "Pass": PassState(next="Succeed"),
            "Succeed": SucceedState(),
        },
    )


def load_definition(path: Path | None) -> StateMachineDefinition:
    """Load a definition from a JSON file, or fall back to the built-in one.

    Raises:
        DefinitionInvalid: If the file cannot be read or does not describe a valid machine.
    """

    if path is None:
        return build_reminder_definition()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise DefinitionInvalid(f"Cannot read state machine definition {path}: {e}") from e

    definition = StateMachineDefinition.from_json(raw)
    logger.info("Loaded state machine definition", extra={"path": str(path)})
    return definition
