"""
L3 Detection — Environment prober.

OS version, privilege, registry and service state, read through the
system facade.  A missing key, value or service is a normal answer
(None), never an exception.
"""

from __future__ import annotations

import logging
from typing import Any

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.system import OnboardingState, OSVersion, ServiceStatus
from mdeinstall.core.services.deploy.data.constants import (
    CURRENT_VERSION_KEY,
    INSTALLATION_TYPE_VALUE,
    KERNEL_IMAGE,
    ONBOARDING_STATUS_KEY,
    ONBOARDING_STATUS_VALUE,
)

logger = logging.getLogger(__name__)


class EnvironmentProber:
    """Read-only view of the host used by every gate in the engine."""

    def __init__(self, system: SystemFacade):
        self._system = system
        self._os_version: OSVersion | None = None

    @property
    def system(self) -> SystemFacade:
        return self._system

    def get_os_version(self) -> OSVersion:
        """Kernel version from ntoskrnl.exe's version resource.

        The version APIs misreport on 2012 R2 for unmanifested
        processes, so the file is the source of truth.  Cached for
        the lifetime of the prober.

        Raises:
            DeployError: UNEXPECTED_STATE if the kernel image has no version.
        """
        if self._os_version is None:
            version = self.get_file_version(KERNEL_IMAGE)
            if version is None:
                raise DeployError(
                    ExitCode.UNEXPECTED_STATE,
                    f"Cannot read the version resource of {KERNEL_IMAGE}",
                )
            self._os_version = version
            logger.info("OS version %s", version)
        return self._os_version

    def get_file_version(self, path: str) -> OSVersion | None:
        """Version of a file, or None if it is missing or unversioned."""
        info = self._system.file_info(self._system.expand_path(path))
        return info.version if info else None

    def is_administrator(self) -> bool:
        return self._system.is_administrator()

    def host_name(self) -> str:
        return self._system.host_name()

    def get_registry_value(self, key: str, name: str) -> Any | None:
        return self._system.read_registry_value(key, name)

    def get_service_status(self, name: str) -> ServiceStatus | None:
        status = self._system.service_status(name)
        logger.debug("Service %s: %s", name, status.state if status else "not registered")
        return status

    def installation_type(self) -> str:
        """'Server', 'Server Core' or 'Client'; empty if unknown."""
        value = self.get_registry_value(CURRENT_VERSION_KEY, INSTALLATION_TYPE_VALUE)
        return str(value) if value is not None else ""

    def get_onboarding_state(self) -> OnboardingState:
        raw = self.get_registry_value(ONBOARDING_STATUS_KEY, ONBOARDING_STATUS_VALUE)
        state = OnboardingState.from_registry(raw)
        logger.debug("Onboarding state %s (raw=%r)", state.value, raw)
        return state
