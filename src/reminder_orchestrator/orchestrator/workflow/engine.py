"""State machine interpreter.

The engine owns one asyncio event loop running on a daemon thread. Each
execution is an asyncio task on that loop and each Parallel branch is a child
task, so Wait states are timers rather than blocked threads. Task executors
run on a bounded thread pool.

Public API is synchronous and non-blocking: :meth:`ExecutionEngine.start`
returns an :class:`ExecutionHandle` immediately; callers poll, wait, or
register a callback.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from reminder_orchestrator.orchestrator.logging import bind_branch, bind_execution

from .document import Document
from .errors import (
    ExecutionError,
    ExecutionFailed,
    ExecutionTimedOut,
    InvalidDuration,
    StateFailed,
    StillRunning,
    TaskFailed,
    UnknownExecution,
)
from .execution_store import ExecutionRecord, ExecutionStore
from .executors import ExecutorRegistry
from .states import (
    ChoiceState,
    FailState,
    ParallelState,
    StateMachineDefinition,
    SucceedState,
    TaskState,
    WaitState,
)

logger = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Terminal result of an execution."""

    execution_id: str
    status: ExecutionStatus
    document: Document | None = None
    error: str | None = None
    cause: str | None = None


def _iso(value: datetime) -> str:
    return value.isoformat()


class _Execution:
    """Mutable execution state. Written only from the engine loop."""

    def __init__(
        self,
        *,
        definition: StateMachineDefinition,
        document: Document,
        timeout_seconds: float,
    ) -> None:
        self.execution_id = uuid.uuid4().hex
        self.definition = definition
        self.input = document
        self.started_at = datetime.now(tz=UTC)
        self.deadline = self.started_at + timedelta(seconds=timeout_seconds)
        self.monotonic_deadline = time.monotonic() + timeout_seconds
        self.status = ExecutionStatus.RUNNING
        self.current_states: dict[str, str] = {}
        self.outcome: ExecutionOutcome | None = None
        self.completed_at: datetime | None = None
        self.lock = threading.Lock()
        self.done = threading.Event()
        self.callbacks: list[Callable[[ExecutionOutcome], None]] = []

    def to_record(self) -> ExecutionRecord:
        outcome = self.outcome
        return ExecutionRecord(
            execution_id=self.execution_id,
            status=self.status.value,
            started_at=_iso(self.started_at),
            deadline=_iso(self.deadline),
            updated_at=_iso(datetime.now(tz=UTC)),
            input=self.input.to_json(),
            current_states=dict(self.current_states),
            completed_at=_iso(self.completed_at) if self.completed_at else None,
            output=outcome.document.to_json() if outcome and outcome.document else None,
            error=outcome.error if outcome else None,
            cause=outcome.cause if outcome else None,
        )


class ExecutionHandle:
    """Reference to a started execution."""

    def __init__(self, execution: _Execution) -> None:
        self._execution = execution

    @property
    def execution_id(self) -> str:
        return self._execution.execution_id

    @property
    def started_at(self) -> datetime:
        return self._execution.started_at

    @property
    def deadline(self) -> datetime:
        return self._execution.deadline

    def done(self) -> bool:
        return self._execution.done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the execution is terminal. Returns False if ``timeout`` elapsed first."""

        return self._execution.done.wait(timeout)

    def add_done_callback(self, fn: Callable[[ExecutionOutcome], None]) -> None:
        """Call ``fn(outcome)`` once terminal; immediately if already terminal."""

        execution = self._execution
        with execution.lock:
            if execution.outcome is None:
                execution.callbacks.append(fn)
                return
            outcome = execution.outcome
        fn(outcome)

    def __repr__(self) -> str:
        return f"ExecutionHandle({self.execution_id!r})"


class ExecutionEngine:
    """Run state machine definitions against documents."""

    def __init__(
        self,
        registry: ExecutorRegistry,
        *,
        store: ExecutionStore | None = None,
        task_workers: int = 8,
        finished_retention: int = 1000,
    ) -> None:
        self._registry = registry
        self._store = store
        self._finished_retention = finished_retention
        self._executions: dict[str, _Execution] = {}
        self._finished: OrderedDict[str, _Execution] = OrderedDict()
        self._lock = threading.Lock()
        self._closed = False

        self._pool = ThreadPoolExecutor(max_workers=task_workers, thread_name_prefix="task")
        # One writer keeps record writes for an execution in order.
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store")
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="workflow-engine", daemon=True
        )
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    # -- public API ---------------------------------------------------------

    def start(
        self,
        definition: StateMachineDefinition,
        document: Document | dict[str, Any],
        *,
        timeout_seconds: float,
    ) -> ExecutionHandle:
        """Begin an execution and return without waiting for it."""

        if self._closed:
            raise RuntimeError("Execution engine is closed")
        if not isinstance(definition, StateMachineDefinition):
            raise TypeError("definition must be a StateMachineDefinition")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        initial = document if isinstance(document, Document) else Document(document)
        execution = _Execution(
            definition=definition, document=initial, timeout_seconds=timeout_seconds
        )
        with self._lock:
            self._executions[execution.execution_id] = execution
        self._persist(execution)

        logger.info(
            "Execution started",
            extra={
                "execution_id": execution.execution_id,
                "deadline": _iso(execution.deadline),
            },
        )
        asyncio.run_coroutine_threadsafe(self._run(execution), self._loop)
        return ExecutionHandle(execution)

    def handle(self, execution_id: str) -> ExecutionHandle:
        """Handle for a running or recently finished execution."""

        with self._lock:
            execution = self._executions.get(execution_id) or self._finished.get(execution_id)
        if execution is None:
            raise UnknownExecution(execution_id)
        return ExecutionHandle(execution)

    def status(self, handle: ExecutionHandle) -> ExecutionStatus:
        execution = self._lookup(handle)
        with execution.lock:
            return execution.status

    def current_states(self, handle: ExecutionHandle) -> dict[str, str]:
        """Current state name per active branch ('' is the top-level chain)."""

        execution = self._lookup(handle)
        with execution.lock:
            return dict(execution.current_states)

    def outcome(self, handle: ExecutionHandle) -> ExecutionOutcome:
        execution = self._lookup(handle)
        with execution.lock:
            outcome = execution.outcome
        if outcome is None:
            raise StillRunning(execution.execution_id)
        return outcome

    def result(self, handle: ExecutionHandle) -> Document:
        """Terminal document of a successful execution.

        Raises:
            StillRunning: The execution has not reached a terminal state.
            ExecutionFailed: The execution failed.
            ExecutionTimedOut: The execution exceeded its deadline.
        """

        outcome = self.outcome(handle)
        if outcome.status is ExecutionStatus.TIMED_OUT:
            raise ExecutionTimedOut(outcome.execution_id, outcome.cause or "")
        if outcome.status is ExecutionStatus.FAILED:
            raise ExecutionFailed(outcome.execution_id, outcome.error or "", outcome.cause or "")
        assert outcome.document is not None
        return outcome.document

    def close(self, timeout: float = 5.0) -> None:
        """Cancel running executions and stop the scheduler thread."""

        if self._closed:
            return
        self._closed = True
        if self._loop.is_running():
            shutdown = asyncio.run_coroutine_threadsafe(self._cancel_all(), self._loop)
            try:
                shutdown.result(timeout=timeout)
            finally:
                self._loop.call_soon_threadsafe(self._loop.stop)
                self._thread.join(timeout=timeout)
        self._pool.shutdown(wait=False, cancel_futures=True)
        self._writer.shutdown(wait=True)

    # -- interpreter --------------------------------------------------------

    def _lookup(self, handle: ExecutionHandle) -> _Execution:
        if not isinstance(handle, ExecutionHandle):
            raise UnknownExecution(str(handle))
        return handle._execution

    async def _cancel_all(self) -> None:
        tasks = [t for t in asyncio.all_tasks(self._loop) if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, execution: _Execution) -> None:
        with bind_execution(execution.execution_id):
            remaining = max(execution.monotonic_deadline - time.monotonic(), 0.0)
            try:
                async with asyncio.timeout(remaining):
                    document = await self._run_chain(
                        execution.definition, execution.input, execution, branch=""
                    )
            except TimeoutError:
                outcome = ExecutionOutcome(
                    execution_id=execution.execution_id,
                    status=ExecutionStatus.TIMED_OUT,
                    error=ExecutionTimedOut.error,
                    cause=f"Execution exceeded its deadline of {_iso(execution.deadline)}",
                )
            except ExecutionError as e:
                outcome = ExecutionOutcome(
                    execution_id=execution.execution_id,
                    status=ExecutionStatus.FAILED,
                    error=e.error,
                    cause=e.cause,
                )
            except asyncio.CancelledError:
                await self._finish(
                    execution,
                    ExecutionOutcome(
                        execution_id=execution.execution_id,
                        status=ExecutionStatus.FAILED,
                        error="States.Cancelled",
                        cause="Execution engine shut down",
                    ),
                )
                raise
            except Exception as e:
                logger.exception("Execution crashed")
                outcome = ExecutionOutcome(
                    execution_id=execution.execution_id,
                    status=ExecutionStatus.FAILED,
                    error="States.Runtime",
                    cause=str(e) or type(e).__name__,
                )
            else:
                outcome = ExecutionOutcome(
                    execution_id=execution.execution_id,
                    status=ExecutionStatus.SUCCEEDED,
                    document=document,
                )
            await self._finish(execution, outcome)

    async def _run_chain(
        self,
        definition: StateMachineDefinition,
        document: Document,
        execution: _Execution,
        branch: str,
    ) -> Document:
        name = definition.start_at
        while True:
            state = definition.states[name]
            self._enter(execution, branch, name)
            logger.debug("Entering state", extra={"state": name, "type": state.type})

            if isinstance(state, SucceedState):
                return document
            if isinstance(state, FailState):
                raise StateFailed(state.error, state.cause)
            if isinstance(state, ChoiceState):
                name = self._choose(state, document)
                continue

            if isinstance(state, WaitState):
                await self._wait(state, document)
            elif isinstance(state, TaskState):
                document = await self._run_task(state, document)
            elif isinstance(state, ParallelState):
                document = await self._run_parallel(state, name, document, execution, branch)

            if state.next is None:
                return document
            name = state.next

    def _choose(self, state: ChoiceState, document: Document) -> str:
        for rule in state.rules:
            if rule.condition.evaluate(document):
                return rule.next
        # Definitions without a default never get this far.
        assert state.default is not None
        return state.default

    async def _wait(self, state: WaitState, document: Document) -> None:
        if state.seconds is not None:
            seconds: Any = state.seconds
        else:
            assert state.seconds_path is not None
            seconds = document.get(state.seconds_path)
        if (
            not isinstance(seconds, int | float)
            or isinstance(seconds, bool)
            or not math.isfinite(seconds)
            or seconds < 0
        ):
            raise InvalidDuration(f"Wait duration must be a non-negative number, got {seconds!r}")
        await asyncio.sleep(seconds)

    async def _run_task(self, state: TaskState, document: Document) -> Document:
        executor = self._registry.get_executor(state.executor_id)
        task_input = document.get(state.input_path)

        loop = asyncio.get_running_loop()
        try:
            output = await loop.run_in_executor(self._pool, executor.execute, task_input)
        except Exception as e:
            logger.warning(
                "Task executor failed",
                extra={"executor_id": state.executor_id, "cause": str(e)},
            )
            raise TaskFailed(state.executor_id, str(e) or type(e).__name__) from e

        try:
            return document.set(state.output_path, output)
        except TypeError as e:
            raise TaskFailed(state.executor_id, f"Executor returned invalid output: {e}") from e

    async def _run_parallel(
        self,
        state: ParallelState,
        name: str,
        document: Document,
        execution: _Execution,
        branch: str,
    ) -> Document:
        async def run_branch(index: int, definition: StateMachineDefinition) -> Document:
            key = f"{branch}/{name}[{index}]" if branch else f"{name}[{index}]"
            bind_branch(key)
            try:
                return await self._run_chain(definition, document, execution, key)
            finally:
                self._leave(execution, key)

        results = await asyncio.gather(
            *(run_branch(i, b) for i, b in enumerate(state.branches)),
            return_exceptions=True,
        )
        # First failure by declaration order wins; other branch results are discarded.
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return Document([result.to_json() for result in results])

    # -- bookkeeping --------------------------------------------------------

    def _enter(self, execution: _Execution, branch: str, state_name: str) -> None:
        with execution.lock:
            execution.current_states[branch] = state_name
        self._persist(execution)

    def _leave(self, execution: _Execution, branch: str) -> None:
        with execution.lock:
            execution.current_states.pop(branch, None)

    async def _finish(self, execution: _Execution, outcome: ExecutionOutcome) -> None:
        with execution.lock:
            execution.status = outcome.status
            execution.outcome = outcome
            execution.completed_at = datetime.now(tz=UTC)
            execution.current_states.clear()
            callbacks = list(execution.callbacks)
            execution.callbacks.clear()

        try:
            archived = self._persist(execution)
            if archived is not None:
                await asyncio.wrap_future(archived)
        finally:
            with self._lock:
                self._executions.pop(execution.execution_id, None)
                self._finished[execution.execution_id] = execution
                while len(self._finished) > self._finished_retention:
                    self._finished.popitem(last=False)

            level = (
                logging.INFO if outcome.status is ExecutionStatus.SUCCEEDED else logging.WARNING
            )
            logger.log(
                level,
                "Execution finished",
                extra={
                    "status": outcome.status.value,
                    "error": outcome.error,
                    "cause": outcome.cause,
                },
            )
            execution.done.set()

            for callback in callbacks:
                try:
                    callback(outcome)
                except Exception:
                    logger.exception("Execution done callback failed")

    def _persist(self, execution: _Execution) -> Future[None] | None:
        """Queue a snapshot of the execution for the store writer thread."""

        if self._store is None:
            return None
        with execution.lock:
            record = execution.to_record()
        try:
            return self._writer.submit(self._write_record, self._store, record)
        except RuntimeError:
            logger.warning(
                "Execution record dropped after shutdown",
                extra={"execution_id": execution.execution_id},
            )
            return None

    @staticmethod
    def _write_record(store: ExecutionStore, record: ExecutionRecord) -> None:
        try:
            store.put(record)
        except Exception:
            logger.exception(
                "Failed to persist execution record",
                extra={"execution_id": record.execution_id, "status": record.status},
            )
