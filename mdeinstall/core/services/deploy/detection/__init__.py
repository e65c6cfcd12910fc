"""
L3 Detection — read-only probes of the host.

These READ system state but never WRITE.
"""

from mdeinstall.core.services.deploy.detection.environment import (  # noqa: F401
    EnvironmentProber,
)
from mdeinstall.core.services.deploy.detection.product import (  # noqa: F401
    find_installed_product,
    find_stale_registrations,
    running_engine_version,
)
from mdeinstall.core.services.deploy.detection.scripts import (  # noqa: F401
    ScriptValidator,
)
