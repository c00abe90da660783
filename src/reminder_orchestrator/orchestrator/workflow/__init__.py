"""Workflow execution core.

This package provides:
- an immutable JSON document addressed with reference paths
- typed state definitions (Wait, Task, Choice, Parallel, Pass, Fail, Succeed)
- an interpreter that runs definitions with timers, branching and fork/join
- the task executor interface and its registry

Definitions are validated when built, so malformed machines fail at startup
rather than halfway through an execution.
"""

from reminder_orchestrator.orchestrator.workflow.document import Document
from reminder_orchestrator.orchestrator.workflow.engine import (
    ExecutionEngine,
    ExecutionHandle,
    ExecutionOutcome,
    ExecutionStatus,
)
from reminder_orchestrator.orchestrator.workflow.executors import (
    ExecutorRegistry,
    FunctionExecutor,
    TaskExecutor,
)
from reminder_orchestrator.orchestrator.workflow.states import StateMachineDefinition

__all__ = [
    "Document",
    "ExecutionEngine",
    "ExecutionHandle",
    "ExecutionOutcome",
    "ExecutionStatus",
    "ExecutorRegistry",
    "FunctionExecutor",
    "StateMachineDefinition",
    "TaskExecutor",
]
