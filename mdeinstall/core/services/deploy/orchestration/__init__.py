"""
L5 Orchestration — the entry point external code calls.
"""

from mdeinstall.core.services.deploy.orchestration.lifecycle import (  # noqa: F401
    LifecycleController,
)
