"""
Run context — what this invocation was asked to do, and what happened.

``RunContext`` is built once by the CLI from its options and the loaded
settings, then handed explicitly to every component.  It is frozen:
facts learned while probing (host name, OS version, log base name) are
added with ``with_probe()``, which returns a new context.

``RunOutcome`` is the one mutable accumulator of a run.  Components
append completed steps, warnings and produced artifacts; the lifecycle
controller stamps the final ExitSignal and returns it up to the CLI.
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mdeinstall.core.config.loader import DeploySettings
from mdeinstall.core.models.signal import ExitCode, ExitSignal
from mdeinstall.core.models.system import OSVersion


class DeployAction(str, Enum):
    """Top-level action selected on the command line."""

    INSTALL = "install"
    UNINSTALL = "uninstall"


class RunContext(BaseModel):
    """Immutable description of one orchestrator invocation."""

    model_config = ConfigDict(frozen=True)

    action: DeployAction = DeployAction.INSTALL
    settings: DeploySettings = Field(default_factory=DeploySettings)

    # ── Scripts ──────────────────────────────────────────────────
    onboarding_script: Path | None = None
    offboarding_script: Path | None = None

    # ── Switches ─────────────────────────────────────────────────
    ui: bool = False
    passive: bool = False
    no_msi_log: bool = False
    no_etl: bool = False
    dev_mode: bool = False
    workspace_id: str | None = None

    # ── Locations ────────────────────────────────────────────────
    package_dir: Path = Field(default_factory=Path.cwd)
    log_dir: Path = Field(default_factory=Path.cwd)
    temp_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))

    # ── Filled in after probing ──────────────────────────────────
    host: str = ""
    os_version: OSVersion | None = None

    @property
    def msi_path(self) -> Path:
        """Package file for this run (release or developer build)."""
        name = self.settings.dev_msi_name if self.dev_mode else self.settings.msi_name
        return self.package_dir / name

    @property
    def log_base(self) -> str:
        """Base name shared by this run's log artifacts: action-host-osversion."""
        version = str(self.os_version) if self.os_version else "unknown"
        return f"{self.action.value}-{self.host or 'localhost'}-{version}"

    def with_probe(self, *, host: str, os_version: OSVersion) -> RunContext:
        """Return a copy carrying the probed host identity."""
        return self.model_copy(update={"host": host, "os_version": os_version})


@dataclass
class RunOutcome:
    """Mutable record of what a run did.  Returned up the call chain."""

    action: DeployAction = DeployAction.INSTALL
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    ended_at: str = ""
    signal: ExitSignal | None = None
    steps: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    host: str = ""
    os_version: str = ""

    @property
    def exit_code(self) -> int:
        return self.signal.code if self.signal else int(ExitCode.SUCCESS)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def step(self, name: str) -> None:
        """Record a completed step."""
        self.steps.append(name)

    def warn(self, message: str) -> None:
        """Record a best-effort failure that did not abort the run."""
        self.warnings.append(message)

    def artifact(self, path: Path | str) -> None:
        """Record a file the run leaves behind."""
        text = str(path)
        if text not in self.artifacts:
            self.artifacts.append(text)

    def finish(self, signal: ExitSignal | None = None) -> None:
        """Stamp the end time and, on failure, the terminating signal."""
        if signal is not None and self.signal is None:
            self.signal = signal
        self.ended_at = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "status": "ok" if self.ok else "failed",
            "exit_code": self.exit_code,
            "exit_name": self.signal.label if self.signal else "SUCCESS",
            "message": self.signal.message if self.signal else "",
            "host": self.host,
            "os_version": self.os_version,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "steps": list(self.steps),
            "warnings": list(self.warnings),
            "artifacts": list(self.artifacts),
        }
