"""
L3 Detection — Onboarding/offboarding script validation.

Light-weight authenticity check, not cryptographic validation: the file
must exist, must contain the role's marker that only the management
portal's generated scripts carry, and the caller must be an
administrator because the scripts write machine-wide policy keys.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from mdeinstall.core.config.loader import DeploySettings
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.domain.scripts import (
    ScriptFailure,
    ScriptRole,
    script_error,
)

logger = logging.getLogger(__name__)


class ScriptValidator:
    def __init__(self, prober: EnvironmentProber, settings: DeploySettings):
        self._prober = prober
        self._markers = {
            ScriptRole.ONBOARDING: re.compile(settings.onboarding_marker, re.IGNORECASE),
            ScriptRole.OFFBOARDING: re.compile(settings.offboarding_marker, re.IGNORECASE),
        }

    def validate(self, role: ScriptRole, path: Path) -> None:
        """Check one script.

        Raises:
            DeployError: With the signal for (role, failure kind).
        """
        if not path.is_file():
            raise script_error(role, ScriptFailure.NOT_FOUND, path)

        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot read %s script %s: %s", role.value, path, e)
            raise script_error(role, ScriptFailure.NOT_FOUND, path) from e

        if not self._markers[role].search(text):
            raise script_error(role, ScriptFailure.WRONG_CONTENT, path)

        if not self._prober.is_administrator():
            raise script_error(role, ScriptFailure.NOT_ADMIN, path)

        logger.info("%s script accepted: %s", role.value.capitalize(), path)

    def validate_all(self, onboarding: Path | None, offboarding: Path | None) -> None:
        """Validate whichever scripts were supplied; the checks are independent."""
        if onboarding is not None:
            self.validate(ScriptRole.ONBOARDING, onboarding)
        if offboarding is not None:
            self.validate(ScriptRole.OFFBOARDING, offboarding)
