"""
Status use case — probe-only summary of the host.

Reads everything the lifecycle controller gates on, changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.signal import DeployError
from mdeinstall.core.models.system import InstalledProductRecord, OnboardingState, ServiceStatus
from mdeinstall.core.persistence.ledger import RunLedger, RunRecord
from mdeinstall.core.services.deploy.data.constants import PROTECTION_SERVICE, SENSOR_SERVICE
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.detection.product import (
    find_installed_product,
    running_engine_version,
)
from mdeinstall.core.services.deploy.domain.platform import platform_family


@dataclass
class StatusResult:
    """Aggregated host status."""

    host: str = ""
    os_version: str = ""
    platform: str = ""                 # 2012r2, 2016, or "" if unsupported
    installation_type: str = ""
    administrator: bool = False
    services: dict[str, ServiceStatus | None] = field(default_factory=dict)
    engine_version: str = ""
    product: InstalledProductRecord | None = None
    onboarding: OnboardingState = OnboardingState.NOT_ONBOARDED
    last_run: RunRecord | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary."""
        if self.error:
            return {"error": self.error}
        return {
            "host": self.host,
            "os_version": self.os_version,
            "platform": self.platform or None,
            "installation_type": self.installation_type,
            "administrator": self.administrator,
            "services": {
                name: (status.model_dump(mode="json") if status else None)
                for name, status in self.services.items()
            },
            "engine_version": self.engine_version or None,
            "product": self.product.model_dump(mode="json") if self.product else None,
            "onboarding": self.onboarding.value,
            "last_run": self.last_run.model_dump(mode="json") if self.last_run else None,
        }


def get_status(system: SystemFacade, log_dir: Path | None = None) -> StatusResult:
    """Probe the host.

    Args:
        system: Host facade.
        log_dir: Where the run ledger lives; the latest entry is included.
    """
    prober = EnvironmentProber(system)
    try:
        version = prober.get_os_version()
    except DeployError as e:
        return StatusResult(error=e.signal.message)

    family = platform_family(version)
    engine = running_engine_version(prober)
    result = StatusResult(
        host=prober.host_name(),
        os_version=str(version),
        platform=family.value if family else "",
        installation_type=prober.installation_type(),
        administrator=prober.is_administrator(),
        services={
            name: prober.get_service_status(name)
            for name in (PROTECTION_SERVICE, SENSOR_SERVICE)
        },
        engine_version=str(engine) if engine else "",
        product=find_installed_product(system),
        onboarding=prober.get_onboarding_state(),
    )
    if log_dir is not None:
        recent = RunLedger(log_dir).read_recent(1)
        result.last_run = recent[0] if recent else None
    return result
