"""
Exit signals — the terminating-failure contract.

Every fatal path in the engine produces exactly one ExitSignal: a
human-readable message paired with a numeric code.  Components raise
``DeployError`` carrying the signal; the lifecycle controller catches
it once and hands it to the CLI, which is the only place that ends
the process.

Codes are drawn from ``ExitCode``.  Exit codes reported by installer
tools (msiexec, wusa, the platform updater) pass through verbatim
when no named code applies, so ``ExitSignal.code`` is a plain int.
"""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict


class ExitCode(IntEnum):
    """Fixed registry of named process exit codes."""

    SUCCESS = 0
    INTERNAL = 1
    INSUFFICIENT_PRIVILEGES = 3
    NO_INTERNET_CONNECTIVITY = 4
    CONFLICTING_APPS = 5
    INVALID_PARAMETER = 6
    UNSUPPORTED_DISTRO = 10
    UNSUPPORTED_VERSION = 11
    PENDING_REBOOT = 12
    INSUFFICIENT_REQUIREMENTS = 13
    UNEXPECTED_STATE = 14
    CORRUPTED_FILE = 15
    MSI_NOT_FOUND = 16
    ALREADY_UNINSTALLED = 17
    DIRECTORY_NOT_WRITABLE = 18
    MDE_NOT_INSTALLED = 20
    INSTALLATION_FAILED = 21
    UNINSTALLATION_FAILED = 22
    FAILED_DEPENDENCY = 23
    ONBOARDING_NOT_FOUND = 30
    ONBOARDING_FAILED = 31
    OFFBOARDING_NOT_FOUND = 32
    OFFBOARDING_FAILED = 33
    NOT_ONBOARDED = 34
    NOT_OFFBOARDED = 35
    MSI_USED_BY_OTHER_PROCESS = 36


class ExitSignal(BaseModel):
    """Immutable (message, code) pair describing why a run ended."""

    model_config = ConfigDict(frozen=True)

    message: str
    code: int

    @property
    def label(self) -> str:
        """Registry name of the code, or ``EXIT_<n>`` for pass-through codes."""
        try:
            return ExitCode(self.code).name
        except ValueError:
            return f"EXIT_{self.code}"

    def __str__(self) -> str:
        return f"[{self.label}] {self.message}"


class DeployError(Exception):
    """Raised on a fatal path; carries the run's single ExitSignal."""

    def __init__(self, code: ExitCode | int, message: str):
        super().__init__(message)
        self.signal = ExitSignal(message=message, code=int(code))

    @property
    def code(self) -> int:
        return self.signal.code
