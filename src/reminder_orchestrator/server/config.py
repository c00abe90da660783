"""Configuration for the REST server.

Engine and executor settings live in
:class:`reminder_orchestrator.orchestrator.config.ReminderSettings`; this module only
covers HTTP concerns.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the HTTP trigger."""

    host: str = Field(default="127.0.0.1", validation_alias="REMINDER_HOST")
    port: int = Field(default=8000, ge=1, le=65535, validation_alias="REMINDER_PORT")

    request_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="REMINDER_REQUEST_TIMEOUT_SECONDS",
        description=(
            "How long POST /reminders blocks waiting for the execution to finish. "
            "Waits inside the workflow count against this budget."
        ),
    )

    # Permissive by default: the reminder form may be served from any origin.
    cors_origins: str = Field(
        default="*",
        validation_alias="REMINDER_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins ('*' for all).",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
