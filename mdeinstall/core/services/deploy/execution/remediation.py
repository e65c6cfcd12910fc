"""
L4 Execution — Dependency remediator (legacy hosts only).

For each required hotfix of the host's platform family:

    1. presence predicate true            → skip
    2. patch catalog lists the KB         → skip
    3. download the .msu, run wusa.exe, classify the exit code
    4. delete the downloaded package      (always)

The predicate comes first so a satisfied host never touches the
network, and the catalog check covers predicates that miss a fix
installed some other way.
"""

from __future__ import annotations

import logging

from mdeinstall.core.context import RunContext, RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.services.deploy.data.constants import WUSA
from mdeinstall.core.services.deploy.data.hotfixes import HOTFIXES, Hotfix
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.domain.exit_classification import (
    UpdateOutcome,
    classify_update_exit,
)
from mdeinstall.core.services.deploy.domain.platform import PlatformFamily
from mdeinstall.core.services.deploy.execution.download import downloaded
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


class DependencyRemediator:
    def __init__(
        self,
        ctx: RunContext,
        prober: EnvironmentProber,
        runner: ProcessRunner,
        outcome: RunOutcome | None = None,
    ):
        self._ctx = ctx
        self._prober = prober
        self._runner = runner
        self._outcome = outcome
        self._catalog: set[str] | None = None

    def hotfixes_for(self, family: PlatformFamily) -> tuple[Hotfix, ...]:
        return HOTFIXES.get(family, ())

    def ensure(self, family: PlatformFamily) -> list[str]:
        """Bring every hotfix for ``family`` in place.

        Returns:
            KB identifiers that were actually installed by this call.

        Raises:
            DeployError: NO_INTERNET_CONNECTIVITY, INSUFFICIENT_REQUIREMENTS,
                PENDING_REBOOT, or the installer's raw exit code.
        """
        applied: list[str] = []
        for hotfix in self.hotfixes_for(family):
            if self._is_present(hotfix):
                continue
            self._apply(hotfix)
            applied.append(hotfix.kb)
            if self._outcome is not None:
                self._outcome.step(f"hotfix:{hotfix.kb}")
        return applied

    def _is_present(self, hotfix: Hotfix) -> bool:
        if hotfix.predicate.is_satisfied(self._prober):
            logger.info("%s present (%s)", hotfix.kb, hotfix.predicate.describe())
            return True
        if hotfix.kb.upper() in self._installed_catalog():
            logger.info("%s listed in the patch catalog", hotfix.kb)
            return True
        return False

    def _installed_catalog(self) -> set[str]:
        if self._catalog is None:
            self._catalog = {kb.upper() for kb in self._prober.system.installed_hotfixes()}
        return self._catalog

    def _apply(self, hotfix: Hotfix) -> None:
        settings = self._ctx.settings
        url = settings.hotfix_urls.get(hotfix.kb, hotfix.url)
        logger.info("Installing %s", hotfix.kb)

        with downloaded(
            self._prober.system,
            url,
            dest_dir=self._ctx.temp_dir,
            file_name=f"{hotfix.kb}.msu",
            timeout=settings.download_timeout,
        ) as package:
            result = self._runner.run(
                WUSA, [str(package), "/quiet", "/norestart"], pass_through=True,
            )

        outcome = classify_update_exit(result.exit_code)
        if outcome is UpdateOutcome.SUCCESS:
            logger.info("%s installed", hotfix.kb)
            return
        if outcome is UpdateOutcome.NOT_APPLICABLE:
            raise DeployError(
                ExitCode.INSUFFICIENT_REQUIREMENTS,
                f"{hotfix.kb} is not applicable to this host; install its prerequisites "
                f"manually, see {settings.manual_steps_url}",
            )
        if outcome is UpdateOutcome.REBOOT_REQUIRED:
            raise DeployError(
                ExitCode.PENDING_REBOOT,
                f"{hotfix.kb} was installed and requires a restart; run again after rebooting",
            )
        raise DeployError(
            result.exit_code,
            f"Installing {hotfix.kb} failed with exit code {result.exit_code}",
        )
