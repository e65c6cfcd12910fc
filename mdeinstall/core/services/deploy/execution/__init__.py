"""
L4 Execution — components that WRITE to the system.

Subprocess calls, downloads, registry writes, log files.
"""

from mdeinstall.core.services.deploy.execution.agent_workspace import (  # noqa: F401
    check_workspace_id,
    remove_workspace,
)
from mdeinstall.core.services.deploy.execution.artifacts import (  # noqa: F401
    ensure_writable,
    rotate_log,
)
from mdeinstall.core.services.deploy.execution.elevation import (  # noqa: F401
    BridgeError,
    ElevationBridge,
)
from mdeinstall.core.services.deploy.execution.onboarding import (  # noqa: F401
    OnboardingCoordinator,
)
from mdeinstall.core.services.deploy.execution.package_installer import (  # noqa: F401
    PackageInstaller,
)
from mdeinstall.core.services.deploy.execution.platform_update import (  # noqa: F401
    PlatformUpdater,
)
from mdeinstall.core.services.deploy.execution.process_runner import (  # noqa: F401
    ProcessRunner,
)
from mdeinstall.core.services.deploy.execution.remediation import (  # noqa: F401
    DependencyRemediator,
)
from mdeinstall.core.services.deploy.execution.trace_session import (  # noqa: F401
    TraceSessionManager,
    trace_session,
)
