"""
L1 Domain — onboarding/offboarding script roles and their failure signals (pure).

Each (role × failure kind) pair maps to its own signal so operators can
tell "missing file" from "wrong file" from "insufficient privilege".
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from mdeinstall.core.models.signal import DeployError, ExitCode


class ScriptRole(str, Enum):
    ONBOARDING = "onboarding"
    OFFBOARDING = "offboarding"


class ScriptFailure(str, Enum):
    NOT_FOUND = "not_found"
    WRONG_CONTENT = "wrong_content"
    NOT_ADMIN = "not_admin"


_CODES: dict[tuple[ScriptRole, ScriptFailure], ExitCode] = {
    (ScriptRole.ONBOARDING, ScriptFailure.NOT_FOUND): ExitCode.ONBOARDING_NOT_FOUND,
    (ScriptRole.ONBOARDING, ScriptFailure.WRONG_CONTENT): ExitCode.INVALID_PARAMETER,
    (ScriptRole.ONBOARDING, ScriptFailure.NOT_ADMIN): ExitCode.INSUFFICIENT_PRIVILEGES,
    (ScriptRole.OFFBOARDING, ScriptFailure.NOT_FOUND): ExitCode.OFFBOARDING_NOT_FOUND,
    (ScriptRole.OFFBOARDING, ScriptFailure.WRONG_CONTENT): ExitCode.INVALID_PARAMETER,
    (ScriptRole.OFFBOARDING, ScriptFailure.NOT_ADMIN): ExitCode.INSUFFICIENT_PRIVILEGES,
}

_MESSAGES: dict[ScriptFailure, str] = {
    ScriptFailure.NOT_FOUND: "{role} script not found: {path}",
    ScriptFailure.WRONG_CONTENT: "{path} does not look like a genuine {role} script",
    ScriptFailure.NOT_ADMIN: "Running the {role} script requires administrative rights",
}


def script_error(role: ScriptRole, failure: ScriptFailure, path: Path) -> DeployError:
    """Build the DeployError for one validation failure."""
    message = _MESSAGES[failure].format(role=role.value, path=path)
    return DeployError(_CODES[(role, failure)], message[0].upper() + message[1:])
