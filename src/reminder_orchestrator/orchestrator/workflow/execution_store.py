"""Persisted execution records.

Records are written when an execution starts, when any branch enters a new
state, and once more when the execution reaches a terminal status (archived
with its output or failure). Each execution is one JSON file named after its
id, so a write never touches other executions' records.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

_EXECUTION_ID_RE = re.compile(r"[A-Za-z0-9_-]+")


class ExecutionRecord(BaseModel):
    execution_id: str
    status: str
    started_at: str
    deadline: str
    updated_at: str

    input: Any = None
    current_states: dict[str, str] = Field(
        default_factory=dict,
        description="Current state name per active branch ('' is the top-level chain)",
    )
    completed_at: str | None = None
    output: Any = None
    error: str | None = None
    cause: str | None = None


@dataclass
class ExecutionStore:
    directory: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _path(self, execution_id: str) -> Path | None:
        if not _EXECUTION_ID_RE.fullmatch(execution_id):
            return None
        return self.directory / f"{execution_id}.json"

    def _read(self, path: Path) -> ExecutionRecord | None:
        try:
            return ExecutionRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning(
                "Skipping unreadable execution record", extra={"path": str(path), "cause": str(e)}
            )
            return None

    def list(self) -> list[ExecutionRecord]:
        """All readable records, oldest first."""

        if not self.directory.is_dir():
            return []
        records = [
            record
            for record in (self._read(path) for path in self.directory.glob("*.json"))
            if record is not None
        ]
        return sorted(records, key=lambda r: (r.started_at, r.execution_id))

    def get(self, execution_id: str) -> ExecutionRecord | None:
        path = self._path(execution_id)
        if path is None:
            return None
        return self._read(path)

    def put(self, record: ExecutionRecord) -> None:
        """Insert or replace the record with the same execution id."""

        path = self._path(record.execution_id)
        if path is None:
            raise ValueError(f"Invalid execution id {record.execution_id!r}")
        payload = json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False)
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload + "\n", encoding="utf-8")
            tmp.replace(path)
