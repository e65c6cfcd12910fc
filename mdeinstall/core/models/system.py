"""
System models — read-only shapes describing the host.

Pure data.  Produced by the environment prober and the system facade,
never mutated after creation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict


class OSVersion(NamedTuple):
    """Four-part version resource: (major, minor, build, revision).

    Ordering is the plain tuple ordering, so comparisons are
    lexicographic over the four fields.  The same shape is used for
    every file version the engine reads (system DLLs, the protection
    engine, the platform updater).
    """

    major: int
    minor: int
    build: int = 0
    revision: int = 0

    @classmethod
    def parse(cls, text: str) -> OSVersion:
        """Parse ``"10.0.14393.4651"``; missing trailing parts default to 0.

        Anything after the first whitespace is ignored, so raw
        ``FileVersion`` strings like ``"6.3.9600.17031 (winblue_gdr...)"``
        parse too.

        Raises:
            ValueError: If the text is not 1-4 dot-separated integers.
        """
        token = text.strip().split()[0] if text and text.strip() else ""
        parts = [int(p) for p in token.split(".")] if token else []
        if not 1 <= len(parts) <= 4:
            raise ValueError(f"Not a version string: {text!r}")
        parts.extend([0] * (4 - len(parts)))
        return cls(*parts)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}.{self.revision}"


class FileInfo(BaseModel):
    """Version resource metadata of a file on disk."""

    model_config = ConfigDict(frozen=True)

    path: str
    version: OSVersion | None = None
    product_name: str = ""
    internal_name: str = ""


class ServiceStatus(BaseModel):
    """State of a registered Windows service."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: str = "unknown"          # running, stopped, start_pending, stop_pending, ...
    image_path: str | None = None
    start_type: int | None = None

    @property
    def running(self) -> bool:
        return self.state == "running"

    @property
    def stopped(self) -> bool:
        return self.state == "stopped"


class RunResult(BaseModel):
    """Outcome of one external process invocation."""

    model_config = ConfigDict(frozen=True)

    executable: str
    args: tuple[str, ...] = ()
    exit_code: int
    started_at: datetime
    ended_at: datetime
    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def duration_ms(self) -> int:
        return int((self.ended_at - self.started_at).total_seconds() * 1000)


class InstalledProductRecord(BaseModel):
    """A registered install of the product in the uninstall hive."""

    model_config = ConfigDict(frozen=True)

    uninstall_id: str               # the {GUID} key name, passed to msiexec /x
    display_version: str = ""
    display_name: str = ""


class OnboardingState(str, Enum):
    """Onboarding flag as reported by the protection service."""

    NOT_ONBOARDED = "not_onboarded"
    ONBOARDED = "onboarded"
    TRANSITIONAL = "transitional"

    @classmethod
    def from_registry(cls, value: Any) -> OnboardingState:
        """Map the raw ``OnboardingState`` registry value.

        Absent or 0 means not onboarded; 1 and 2 mean onboarded
        (2 is what current sensor builds write).  Anything else is a
        transient value written while the sensor changes state.
        """
        if value is None:
            return cls.NOT_ONBOARDED
        try:
            number = int(value)
        except (TypeError, ValueError):
            return cls.TRANSITIONAL
        if number == 0:
            return cls.NOT_ONBOARDED
        if number in (1, 2):
            return cls.ONBOARDED
        return cls.TRANSITIONAL
