"""Console script entrypoint (`reminders`)."""

from __future__ import annotations

from reminder_orchestrator.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
