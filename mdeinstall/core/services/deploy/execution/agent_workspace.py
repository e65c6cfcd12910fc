"""
L4 Execution — Legacy management-agent workspace removal.

Before the package is removed, a host that also reported through the
legacy monitoring agent can be detached from one of its workspaces.
The agent exposes its configuration as a COM object; PowerShell is
the only caller available on every supported host.
"""

from __future__ import annotations

import logging
import re

from mdeinstall.core.context import RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.services.deploy.data.constants import POWERSHELL
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)

WORKSPACE_ID_RE = re.compile(
    r"^[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}$",
    re.IGNORECASE,
)

AGENT_CONFIG_PROGID = "AgentConfigManager.MgmtSvcCfg"


def check_workspace_id(workspace_id: str) -> str:
    """Return the id if it is GUID-shaped.

    Raises:
        DeployError: INVALID_PARAMETER.
    """
    if not WORKSPACE_ID_RE.match(workspace_id.strip()):
        raise DeployError(
            ExitCode.INVALID_PARAMETER,
            f"Workspace id {workspace_id!r} is not a GUID",
        )
    return workspace_id.strip()


def removal_script(workspace_id: str) -> str:
    return (
        "$ErrorActionPreference = 'Stop'; "
        f"$cfg = New-Object -ComObject '{AGENT_CONFIG_PROGID}'; "
        f"$cfg.RemoveCloudWorkspace('{workspace_id}'); "
        "$cfg.ReloadConfiguration()"
    )


def remove_workspace(
    runner: ProcessRunner,
    workspace_id: str,
    outcome: RunOutcome | None = None,
) -> bool:
    """Detach the legacy agent from ``workspace_id``.  Best-effort.

    Returns:
        True if the agent accepted the removal.
    """
    workspace_id = check_workspace_id(workspace_id)
    try:
        result = runner.run(
            POWERSHELL,
            ["-NoProfile", "-NonInteractive", "-Command", removal_script(workspace_id)],
            pass_through=True,
        )
    except DeployError as e:
        message = f"Cannot remove workspace {workspace_id}: {e}"
    else:
        if result.ok:
            logger.info("Workspace %s removed from the monitoring agent", workspace_id)
            if outcome is not None:
                outcome.step("remove-workspace")
            return True
        message = f"Cannot remove workspace {workspace_id} (exit {result.exit_code})"

    logger.warning("%s", message)
    if outcome is not None:
        outcome.warn(message)
    return False
