"""
L0 Data — OS hotfixes required before the package can install.

Each hotfix carries a presence predicate: a side-effect-free check
that answers "is this fix effectively present?" without consulting
the patch catalog, which can be stale.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mdeinstall.core.models.system import OSVersion
from mdeinstall.core.services.deploy.domain.platform import PlatformFamily

if TYPE_CHECKING:
    from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber


@dataclass(frozen=True)
class FileVersionAtLeast:
    """Satisfied when ``path`` exists with a version >= ``minimum``."""

    path: str
    minimum: OSVersion

    def is_satisfied(self, prober: EnvironmentProber) -> bool:
        version = prober.get_file_version(self.path)
        return version is not None and version >= self.minimum

    def describe(self) -> str:
        return f"{self.path} >= {self.minimum}"


@dataclass(frozen=True)
class OSBuildAtLeast:
    """Satisfied when the running kernel is at or above ``minimum``."""

    minimum: OSVersion

    def is_satisfied(self, prober: EnvironmentProber) -> bool:
        return prober.get_os_version() >= self.minimum

    def describe(self) -> str:
        return f"kernel >= {self.minimum}"


@dataclass(frozen=True)
class Hotfix:
    kb: str
    url: str
    predicate: FileVersionAtLeast | OSBuildAtLeast


HOTFIXES: dict[PlatformFamily, tuple[Hotfix, ...]] = {
    PlatformFamily.SERVER_2012_R2: (
        # Universal C runtime
        Hotfix(
            kb="KB2999226",
            url=(
                "https://download.microsoft.com/download/D/1/3/"
                "D13E3150-3BB2-4B22-9D8A-47EE2D609FFF/Windows8.1-KB2999226-x64.msu"
            ),
            predicate=FileVersionAtLeast(
                r"%SystemRoot%\System32\ucrtbase.dll", OSVersion(10, 0, 10240, 16384)
            ),
        ),
        # Telemetry and diagnostics update (tdh.dll)
        Hotfix(
            kb="KB3080149",
            url=(
                "https://download.microsoft.com/download/4/E/8/"
                "4E864B31-7756-4639-8716-0379F6435016/Windows8.1-KB3080149-x64.msu"
            ),
            predicate=FileVersionAtLeast(
                r"%SystemRoot%\System32\tdh.dll", OSVersion(6, 3, 9600, 17958)
            ),
        ),
    ),
    PlatformFamily.SERVER_2016: (
        # Servicing stack + cumulative update carrying the required kernel
        Hotfix(
            kb="KB5005573",
            url=(
                "https://catalog.s.download.windowsupdate.com/c/msdownload/update/software/"
                "secu/2021/09/windows10.0-kb5005573-x64.msu"
            ),
            predicate=OSBuildAtLeast(OSVersion(10, 0, 14393, 4651)),
        ),
    ),
}
