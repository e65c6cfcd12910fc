"""
Run ledger — append-only record of every run.

Each run appends one JSON line to ``mdeinstall-runs.ndjson`` in the
log directory: what was asked, what was done, how it ended.  Operators
reading a failed deployment after the fact start here, then follow
the artifact paths to the MSI and trace logs.

The ledger is append-only: entries are never modified or deleted.
A ledger that cannot be written never changes the run's exit code.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from mdeinstall.core.context import RunOutcome

logger = logging.getLogger(__name__)

LEDGER_FILE = "mdeinstall-runs.ndjson"


class RunRecord(BaseModel):
    """A single ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    action: str = ""
    host: str = ""
    os_version: str = ""

    # Result
    status: str = ""               # ok, failed
    exit_code: int = 0
    exit_name: str = ""
    message: str = ""
    duration_ms: int = 0

    # What happened
    steps: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: RunOutcome) -> RunRecord:
        data: dict[str, Any] = outcome.to_dict()
        duration = 0
        if outcome.started_at and outcome.ended_at:
            delta = (datetime.fromisoformat(outcome.ended_at)
                     - datetime.fromisoformat(outcome.started_at))
            duration = int(delta.total_seconds() * 1000)
        return cls(
            action=data["action"],
            host=data["host"],
            os_version=data["os_version"],
            status=data["status"],
            exit_code=data["exit_code"],
            exit_name=data["exit_name"],
            message=data["message"],
            duration_ms=duration,
            steps=data["steps"],
            warnings=data["warnings"],
            artifacts=data["artifacts"],
        )


class RunLedger:
    """Append-only ledger writer/reader."""

    def __init__(self, log_dir: Path):
        self._path = log_dir / LEDGER_FILE

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: RunRecord) -> bool:
        """Append one entry.

        Returns:
            True if the line was written.
        """
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write run ledger %s: %s", self._path, e)
            return False
        logger.debug("Ledger entry written: %s → %s", record.action, record.exit_name)
        return True

    def read_all(self) -> list[RunRecord]:
        """All entries, oldest first.  Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries: list[RunRecord] = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(RunRecord.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt ledger entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)
        return entries

    def read_recent(self, n: int = 10) -> list[RunRecord]:
        return self.read_all()[-n:]
