"""Reminder Orchestrator.

Delivers a reminder by email, SMS, or both after a configurable delay, driven
by a small state machine interpreter:
- configuration loaded from `.env`
- structured logging
- executions persisted to local JSON
"""

__version__ = "0.1.0"

from reminder_orchestrator.orchestrator.config import ReminderSettings

__all__ = ["__version__", "ReminderSettings"]
