"""Error taxonomy for workflow definitions and executions.

Every error carries a stable ``error`` code (``States.*``) and a human readable
``cause`` so that adapters can surface failures without inspecting types.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    error: str = "States.Runtime"

    def __init__(self, cause: str) -> None:
        super().__init__(cause)
        self.cause = cause


class DefinitionInvalid(WorkflowError):
    """A state machine definition is malformed. Raised before any execution starts."""

    error = "States.DefinitionInvalid"


class NoChoiceMatch(DefinitionInvalid):
    """A Choice state could leave a document without a successor."""

    error = "States.NoChoiceMatch"


class InvalidPath(DefinitionInvalid):
    """A reference path could not be parsed."""

    error = "States.InvalidPath"


class ExecutionError(WorkflowError):
    """A runtime failure inside a branch. Fails the branch and, transitively, the execution."""


class PathNotFound(ExecutionError):
    error = "States.PathNotFound"

    def __init__(self, path: str) -> None:
        super().__init__(f"Path {path!r} not found in document")
        self.path = path


class InvalidDuration(ExecutionError):
    error = "States.InvalidDuration"


class UnknownExecutor(ExecutionError):
    error = "States.UnknownExecutor"

    def __init__(self, executor_id: str) -> None:
        super().__init__(f"No task executor registered under {executor_id!r}")
        self.executor_id = executor_id


class TaskFailed(ExecutionError):
    error = "States.TaskFailed"

    def __init__(self, executor_id: str, cause: str) -> None:
        super().__init__(cause)
        self.executor_id = executor_id


class StateFailed(ExecutionError):
    """Raised when a Fail state is reached."""

    def __init__(self, error: str, cause: str) -> None:
        super().__init__(cause)
        self.error = error


class ExecutionFailed(WorkflowError):
    """Raised by ``ExecutionEngine.result`` for a failed execution."""

    def __init__(self, execution_id: str, error: str, cause: str) -> None:
        super().__init__(cause)
        self.execution_id = execution_id
        self.error = error


class ExecutionTimedOut(WorkflowError):
    error = "States.Timeout"

    def __init__(self, execution_id: str, cause: str) -> None:
        super().__init__(cause)
        self.execution_id = execution_id


class StillRunning(WorkflowError):
    error = "States.StillRunning"

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution {execution_id} has not finished")
        self.execution_id = execution_id


class UnknownExecution(WorkflowError):
    error = "States.UnknownExecution"

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Unknown execution {execution_id!r}")
        self.execution_id = execution_id
