"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

ExecutionStatusName = Literal["RUNNING", "SUCCEEDED", "FAILED", "TIMED_OUT"]


class ReminderRequest(BaseModel):
    """Documented shape of a reminder request.

    Only used for the OpenAPI schema: the body is handed to the workflow as-is,
    so unknown fields pass through and invalid values are reported by the
    execution rather than rejected up front.
    """

    waitSeconds: float = Field(description="Delay before the reminder is sent")
    preference: str = Field(description="One of: email | sms | both")
    message: str
    email: str = ""
    phone: str = ""

    model_config = {
        "extra": "allow",
        "json_schema_extra": {
            "examples": [
                {
                    "waitSeconds": 10,
                    "preference": "email",
                    "message": "Hello! this works, but remember your cat needs something",
                    "email": "someone@example.com",
                    "phone": "+00000000000",
                }
            ]
        },
    }


class ApiExecutionError(BaseModel):
    """Body of a failed, timed out, or still running reminder request."""

    status: ExecutionStatusName
    executionId: str
    error: str
    cause: str | None = None


class ApiExecution(BaseModel):
    executionId: str
    status: ExecutionStatusName
    startedAt: str
    deadline: str
    updatedAt: str
    completedAt: str | None = None
    currentStates: dict[str, str] = Field(default_factory=dict)
    input: Any = None
    output: Any = None
    error: str | None = None
    cause: str | None = None
