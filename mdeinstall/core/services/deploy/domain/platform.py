"""
L1 Domain — platform families and version gates (pure).
"""

from __future__ import annotations

from enum import Enum

from mdeinstall.core.models.system import OSVersion

# Oldest kernel the package supports (Windows Server 2012 R2)
MINIMUM_OS = OSVersion(6, 3, 0, 0)

# From this build on the sensor ships in-box; the package is not used
IN_BOX_OS = OSVersion(10, 0, 17763, 0)


class PlatformFamily(str, Enum):
    SERVER_2012_R2 = "2012r2"
    SERVER_2016 = "2016"


def platform_family(version: OSVersion) -> PlatformFamily | None:
    """Map a kernel version to the supported family, or None if unsupported."""
    if (version.major, version.minor) == (6, 3):
        return PlatformFamily.SERVER_2012_R2
    if (version.major, version.minor) == (10, 0) and MINIMUM_OS <= version < IN_BOX_OS:
        return PlatformFamily.SERVER_2016
    return None
