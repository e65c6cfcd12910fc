"""
Domain models — types shared across the deployment engine.

    from mdeinstall.core.models import ExitCode, ExitSignal, DeployError, OSVersion
"""

from mdeinstall.core.models.signal import DeployError, ExitCode, ExitSignal
from mdeinstall.core.models.system import (
    FileInfo,
    InstalledProductRecord,
    OnboardingState,
    OSVersion,
    RunResult,
    ServiceStatus,
)
from mdeinstall.core.models.trace import TraceSessionHandle, TraceState

__all__ = [
    "DeployError",
    "ExitCode",
    "ExitSignal",
    "FileInfo",
    "InstalledProductRecord",
    "OSVersion",
    "OnboardingState",
    "RunResult",
    "ServiceStatus",
    "TraceSessionHandle",
    "TraceState",
]
