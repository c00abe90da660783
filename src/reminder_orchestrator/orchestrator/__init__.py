"""Reminder orchestrator core.

Keep workflow semantics in `reminder_orchestrator.orchestrator.workflow` and
keep process concerns (settings, logging, CLI) alongside it here.
"""
