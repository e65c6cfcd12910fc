"""
L4 Execution — Protection-platform update gate (Server 2016 family).

The package carries its own copy of the protection engine.  If the
engine the service runs today is older than the bundled one, the
platform updater must bring it current before the package installs.

Updater acceptance, in order:
    - Authenticode status is exactly "Valid"
    - ProductName / InternalName match the expected values
      (a renamed or substituted binary fails here)
    - file version >= the configured minimum
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path

from mdeinstall.core.context import RunContext, RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.system import OSVersion
from mdeinstall.core.services.deploy.data.constants import ENGINE_FILE
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.detection.product import running_engine_version
from mdeinstall.core.services.deploy.execution.download import downloaded
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


class PlatformUpdater:
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

    def bundled_engine_version(self) -> OSVersion | None:
        """Engine version recorded in the package's File table."""
        raw = self._prober.system.msi_file_version(str(self._ctx.msi_path), ENGINE_FILE)
        if not raw:
            return None
        try:
            return OSVersion.parse(raw)
        except ValueError:
            logger.warning("Unparseable %s version in package: %r", ENGINE_FILE, raw)
            return None

    def needs_update(self) -> tuple[bool, OSVersion | None, OSVersion | None]:
        """Compare the running engine against the bundled one.

        Returns:
            (update needed, running version, bundled version).
        """
        bundled = self.bundled_engine_version()
        running = running_engine_version(self._prober)
        if bundled is None or running is None:
            logger.info("Platform update not applicable (bundled=%s, running=%s)", bundled, running)
            return False, running, bundled
        if running >= bundled:
            logger.info("Running engine %s is current (bundled %s)", running, bundled)
            return False, running, bundled
        logger.info("Running engine %s is older than bundled %s", running, bundled)
        return True, running, bundled

    def ensure_current(self) -> bool:
        """Run the platform updater if the running engine is behind.

        Returns:
            True if an update was applied.

        Raises:
            DeployError: CORRUPTED_FILE / INSUFFICIENT_REQUIREMENTS for a
                rejected updater or an engine that did not reach the bundled one,
                NO_INTERNET_CONNECTIVITY, or the updater's raw exit code.
        """
        needed, before, bundled = self.needs_update()
        if not needed:
            return False

        settings = self._ctx.settings.updater
        name = settings.dev_file_name if self._ctx.dev_mode else settings.file_name

        with ExitStack() as stack:
            local = self._ctx.package_dir / name
            if self._prober.system.file_info(str(local)) is not None:
                updater = local
                logger.info("Using platform updater %s", updater)
            else:
                updater = stack.enter_context(downloaded(
                    self._prober.system,
                    settings.url,
                    dest_dir=self._ctx.temp_dir,
                    file_name=name,
                    timeout=self._ctx.settings.download_timeout,
                ))
            self.verify_updater(updater)
            self._runner.run(
                str(updater),
                [],
                error_message=f"Platform updater {name} failed",
            )

        after = running_engine_version(self._prober)
        if after is None or before is None or after <= before:
            raise DeployError(
                ExitCode.INSUFFICIENT_REQUIREMENTS,
                f"Protection engine did not advance after the platform update "
                f"(before {before}, after {after}); see {self._ctx.settings.manual_steps_url}",
            )
        if bundled is not None and after < bundled:
            raise DeployError(
                ExitCode.INSUFFICIENT_REQUIREMENTS,
                f"Protection engine {after} is still older than the bundled {bundled} "
                f"after the platform update; see {self._ctx.settings.manual_steps_url}",
            )
        logger.info("Protection engine updated %s → %s", before, after)
        if self._outcome is not None:
            self._outcome.step("platform-update")
        return True

    def verify_updater(self, path: Path) -> None:
        """Reject an updater that is unsigned, substituted, or too old.

        Raises:
            DeployError: CORRUPTED_FILE or INSUFFICIENT_REQUIREMENTS.
        """
        system = self._prober.system
        expected = self._ctx.settings.updater

        status = system.authenticode_status(str(path))
        if status != "Valid":
            raise DeployError(
                ExitCode.CORRUPTED_FILE,
                f"Platform updater {path} signature status is {status!r}",
            )

        info = system.file_info(str(path))
        if info is None:
            raise DeployError(ExitCode.CORRUPTED_FILE, f"Platform updater {path} is unreadable")
        if (info.product_name.strip().lower() != expected.product_name.lower()
                or info.internal_name.strip().lower() != expected.internal_name.lower()):
            raise DeployError(
                ExitCode.CORRUPTED_FILE,
                f"Platform updater {path} is not a genuine platform updater "
                f"(product {info.product_name!r}, internal name {info.internal_name!r})",
            )

        minimum = OSVersion.parse(expected.minimum_version)
        if info.version is None or info.version < minimum:
            raise DeployError(
                ExitCode.INSUFFICIENT_REQUIREMENTS,
                f"Platform updater {path} version {info.version} is below {minimum}",
            )
