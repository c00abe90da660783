"""FastAPI server adapter for the reminder orchestrator.

Design intent:
- Keep workflow semantics in `reminder_orchestrator.orchestrator.workflow`
- Keep server-specific concerns (routing, CORS, request/response mapping) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from reminder_orchestrator.server.app import create_app
