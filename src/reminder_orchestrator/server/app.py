"""FastAPI app factory.

Endpoints are thin wrappers over the workflow engine and the execution store.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reminder_orchestrator import __version__
from reminder_orchestrator.orchestrator.config import ReminderSettings
from reminder_orchestrator.orchestrator.workflow.engine import ExecutionEngine
from reminder_orchestrator.orchestrator.workflow.errors import DefinitionInvalid
from reminder_orchestrator.orchestrator.workflow.execution_store import (
    ExecutionRecord,
    ExecutionStore,
)
from reminder_orchestrator.orchestrator.workflow.executors import (
    ExecutorRegistry,
    build_executor_registry,
)
from reminder_orchestrator.orchestrator.workflow.reminder import load_definition
from reminder_orchestrator.server.config import ServerSettings
from reminder_orchestrator.server.models import (
    ApiExecution,
    ApiExecutionError,
    ExecutionStatusName,
    ReminderRequest,
)
from reminder_orchestrator.server.trigger import ReminderTrigger

logger = logging.getLogger(__name__)


def _to_api_execution(record: ExecutionRecord) -> ApiExecution:
    return ApiExecution(
        executionId=record.execution_id,
        status=cast(ExecutionStatusName, record.status),
        startedAt=record.started_at,
        deadline=record.deadline,
        updatedAt=record.updated_at,
        completedAt=record.completed_at,
        currentStates=record.current_states,
        input=record.input,
        output=record.output,
        error=record.error,
        cause=record.cause,
    )


def create_app(*, registry: ExecutorRegistry | None = None) -> FastAPI:
    """Build the app.

    Raises:
        DefinitionInvalid: If the state machine is malformed or references an
            executor that is not registered. The process must not start.
    """

    settings = ReminderSettings()
    server_settings = ServerSettings()

    definition = load_definition(settings.definition_path)
    executors = registry if registry is not None else build_executor_registry(settings)
    missing = sorted(definition.executor_ids() - set(executors))
    if missing:
        raise DefinitionInvalid(
            f"Task states reference unregistered executors: {', '.join(missing)}"
        )

    store = ExecutionStore(settings.executions_dir)
    engine = ExecutionEngine(executors, store=store, task_workers=settings.task_workers)
    trigger = ReminderTrigger(
        engine=engine,
        definition=definition,
        execution_timeout_seconds=settings.execution_timeout_seconds,
        request_timeout_seconds=server_settings.request_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            engine.close()
            executors.close()

    app = FastAPI(
        title="Reminder Orchestrator",
        version=__version__,
        description="Deliver reminders by email, SMS, or both after a delay.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_settings.parsed_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/api/v1/definition")
    def get_definition() -> dict[str, Any]:
        return definition.to_json()

    @app.post(
        "/reminders",
        responses={
            500: {"model": ApiExecutionError, "description": "Execution failed"},
            504: {"model": ApiExecutionError, "description": "Execution or request timed out"},
        },
        openapi_extra={
            "requestBody": {
                "required": True,
                "content": {"application/json": {"schema": ReminderRequest.model_json_schema()}},
            }
        },
    )
    def create_reminder(payload: Any = Body(...)) -> JSONResponse:
        response = trigger.submit(payload)
        return JSONResponse(status_code=response.status_code, content=response.body)

    @app.get("/api/v1/executions", response_model=list[ApiExecution])
    def list_executions() -> list[ApiExecution]:
        return [_to_api_execution(record) for record in store.list()]

    @app.get("/api/v1/executions/{execution_id}", response_model=ApiExecution)
    def get_execution(execution_id: str) -> ApiExecution:
        record = store.get(execution_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return _to_api_execution(record)

    logger.info(
        "Reminder service ready",
        extra={"executors": executors.ids(), "state_dir": str(settings.executions_dir)},
    )
    return app
