"""Configuration for the reminder orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Channel executors default to ``log`` (dry run) so that the service starts
without any delivery backend configured.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ExecutorMode = Literal["log", "webhook"]


class ReminderSettings(BaseSettings):
    """Settings for the workflow engine and its task executors.

    Environment variables:
    - LOG_LEVEL                            (optional)
    - REMINDER_EXECUTION_TIMEOUT_SECONDS   (optional)
    - REMINDER_STATE_PATH                  (optional)
    - REMINDER_DEFINITION_PATH             (optional)
    - REMINDER_EMAIL_EXECUTOR / REMINDER_SMS_EXECUTOR
    - REMINDER_EMAIL_WEBHOOK_URL / REMINDER_SMS_WEBHOOK_URL
    - VERIFIED_EMAIL                       (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `ReminderSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    execution_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="REMINDER_EXECUTION_TIMEOUT_SECONDS",
        description="Deadline for a whole execution, waits included",
    )

    state_path: Path = Field(
        default=Path("reminder_state"),
        validation_alias="REMINDER_STATE_PATH",
        description="Directory where execution records are persisted",
    )

    definition_path: Path | None = Field(
        default=None,
        validation_alias="REMINDER_DEFINITION_PATH",
        description="Optional JSON state machine definition replacing the built-in one",
    )

    task_workers: int = Field(
        default=8,
        ge=1,
        le=256,
        validation_alias="REMINDER_TASK_WORKERS",
        description="Worker threads available to task executors",
    )

    email_executor: ExecutorMode = Field(default="log", validation_alias="REMINDER_EMAIL_EXECUTOR")
    email_webhook_url: str = Field(default="", validation_alias="REMINDER_EMAIL_WEBHOOK_URL")
    sms_executor: ExecutorMode = Field(default="log", validation_alias="REMINDER_SMS_EXECUTOR")
    sms_webhook_url: str = Field(default="", validation_alias="REMINDER_SMS_WEBHOOK_URL")

    webhook_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="REMINDER_WEBHOOK_TIMEOUT_SECONDS",
    )

    verified_email: str = Field(
        default="",
        validation_alias="VERIFIED_EMAIL",
        description="Sender address handed to the email channel",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_webhook_urls(self) -> ReminderSettings:
        if self.email_executor == "webhook" and not self.email_webhook_url.strip():
            raise ValueError(
                "REMINDER_EMAIL_WEBHOOK_URL is required when the email executor is 'webhook'"
            )
        if self.sms_executor == "webhook" and not self.sms_webhook_url.strip():
            raise ValueError(
                "REMINDER_SMS_WEBHOOK_URL is required when the sms executor is 'webhook'"
            )
        return self

    @property
    def executions_dir(self) -> Path:
        """Directory holding one JSON record per execution."""

        return self.state_path / "executions"
