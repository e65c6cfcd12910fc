"""
Deployment engine — install and uninstall of the server sensor package.

Layers, innermost first:

    data/           fixed tables (registry paths, hotfixes, trace providers)
    domain/         pure rules (platform families, msiexec arguments, exit codes)
    detection/      read-only probes of the host
    execution/      components that change the host
    orchestration/  the lifecycle controller

    from mdeinstall.core.services.deploy import LifecycleController
"""

from mdeinstall.core.services.deploy.orchestration import (  # noqa: F401
    LifecycleController,
)
