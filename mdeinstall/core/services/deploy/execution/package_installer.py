"""
L4 Execution — Package installer.

Drives the msiexec transaction and the OS-specific preparation that
must happen before it:

    Server 2012 R2
        - orphaned protection-service registration → ``sc delete``
        - stopped-but-registered protection service → pending reboot
        - legacy Security Client product → its own silent uninstall
    Server 2016
        - protection feature disabled → DISM enable (reboot → pending reboot)
        - stale installer-database entries → renamed aside for the
          transaction, deleted after a successful install

The package must carry a "Valid" Authenticode signature and be
openable for read; the read handle is held for the whole transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from mdeinstall.core.context import RunContext, RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.system import InstalledProductRecord
from mdeinstall.core.services.deploy.data.constants import (
    DEFENDER_FEATURE,
    DISM,
    ERROR_SERVICE_MARKED_FOR_DELETE,
    ERROR_SUCCESS_REBOOT_REQUIRED,
    LEGACY_AV_SETUP,
    LEGACY_AV_UNINSTALL_ARGS,
    MSIEXEC,
    PROTECTION_SERVICE,
    SC,
    SERVICES_KEY,
    STALE_SUFFIX,
)
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.detection.product import (
    find_installed_product,
    find_stale_registrations,
)
from mdeinstall.core.services.deploy.domain.msi_arguments import build_msi_arguments
from mdeinstall.core.services.deploy.domain.platform import PlatformFamily
from mdeinstall.core.services.deploy.execution.artifacts import rotate_log
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


class PackageInstaller:
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

    @property
    def _system(self):
        return self._prober.system

    # ── Package checks ──────────────────────────────────────────

    def verify_package(self, path: Path | None = None) -> Path:
        """Package must exist and carry a "Valid" signature.

        Raises:
            DeployError: MSI_NOT_FOUND or CORRUPTED_FILE.
        """
        path = path or self._ctx.msi_path
        if self._system.file_info(str(path)) is None:
            raise DeployError(ExitCode.MSI_NOT_FOUND, f"Package not found: {path}")
        status = self._system.authenticode_status(str(path))
        if status != "Valid":
            raise DeployError(
                ExitCode.CORRUPTED_FILE,
                f"Package {path} signature status is {status!r}; the file is corrupted or tampered with",
            )
        logger.info("Package signature valid: %s", path)
        return path

    @contextmanager
    def held_open(self, path: Path) -> Iterator[IO[bytes]]:
        """Hold a read handle on the package for the scope.

        Raises:
            DeployError: MSI_USED_BY_OTHER_PROCESS if it cannot be opened.
        """
        try:
            handle = self._system.open_file(str(path))
        except OSError as e:
            raise DeployError(
                ExitCode.MSI_USED_BY_OTHER_PROCESS,
                f"Package {path} is in use by another process: {e}",
            ) from e
        try:
            yield handle
        finally:
            handle.close()

    # ── OS-specific preparation ─────────────────────────────────

    def prepare(self, family: PlatformFamily) -> None:
        if family is PlatformFamily.SERVER_2012_R2:
            self._prepare_2012r2()
        else:
            self._prepare_2016()

    def _prepare_2012r2(self) -> None:
        service = self._prober.get_service_status(PROTECTION_SERVICE)
        if service is not None and service.stopped:
            image = self._prober.get_registry_value(
                f"{SERVICES_KEY}\\{PROTECTION_SERVICE}", "ImagePath",
            )
            if image:
                raise DeployError(
                    ExitCode.PENDING_REBOOT,
                    f"Service {PROTECTION_SERVICE} is stopped but still registered; restart and run again",
                )
            logger.info("Removing orphaned %s service registration", PROTECTION_SERVICE)
            result = self._runner.run(SC, ["delete", PROTECTION_SERVICE], pass_through=True)
            if result.exit_code == ERROR_SERVICE_MARKED_FOR_DELETE:
                raise DeployError(
                    ExitCode.PENDING_REBOOT,
                    f"Service {PROTECTION_SERVICE} is marked for deletion; restart and run again",
                )
            if not result.ok:
                raise DeployError(
                    ExitCode.UNEXPECTED_STATE,
                    f"Cannot remove orphaned {PROTECTION_SERVICE} service (exit {result.exit_code})",
                )
            self._step("remove-orphaned-service")

        setup = self._system.expand_path(LEGACY_AV_SETUP)
        if self._system.file_info(setup) is not None:
            logger.info("Removing legacy Security Client: %s", setup)
            self._runner.run(
                setup,
                list(LEGACY_AV_UNINSTALL_ARGS),
                error_message="Cannot uninstall Microsoft Security Client",
                error_code=ExitCode.CONFLICTING_APPS,
            )
            self._step("remove-legacy-av")

    def _prepare_2016(self) -> None:
        if self._prober.get_service_status(PROTECTION_SERVICE) is not None:
            return
        logger.info("Enabling optional feature %s", DEFENDER_FEATURE)
        result = self._runner.run(
            DISM,
            ["/Online", "/Enable-Feature", f"/FeatureName:{DEFENDER_FEATURE}", "/NoRestart"],
            pass_through=True,
        )
        if result.exit_code == ERROR_SUCCESS_REBOOT_REQUIRED:
            raise DeployError(
                ExitCode.PENDING_REBOOT,
                f"Enabling {DEFENDER_FEATURE} requires a restart; run again after rebooting",
            )
        if not result.ok:
            raise DeployError(
                result.exit_code,
                f"Enabling {DEFENDER_FEATURE} failed with exit code {result.exit_code}",
            )
        self._step("enable-feature")

    @contextmanager
    def stale_registrations_aside(
        self,
        family: PlatformFamily,
        record: InstalledProductRecord | None,
    ) -> Iterator[list[str]]:
        """Rename stale installer-database entries aside for the scope.

        Applies on the 2016 family when no product record exists.  On a
        clean exit the renamed entries are deleted (best-effort); on an
        error they are renamed back.
        """
        renamed: list[str] = []
        if family is PlatformFamily.SERVER_2016 and record is None:
            for key in find_stale_registrations(self._system):
                leaf = key.rsplit("\\", 1)[-1]
                try:
                    self._system.rename_registry_key(key, leaf + STALE_SUFFIX)
                except OSError as e:
                    self._warn(f"Cannot rename stale registration {key}: {e}")
                    continue
                renamed.append(key)
                logger.info("Stale registration %s renamed aside", key)

        try:
            yield renamed
        except BaseException:
            for key in renamed:
                leaf = key.rsplit("\\", 1)[-1]
                try:
                    self._system.rename_registry_key(key + STALE_SUFFIX, leaf)
                except OSError as e:
                    self._warn(f"Cannot restore stale registration {key}: {e}")
            raise

        for key in renamed:
            try:
                self._system.delete_registry_key(key + STALE_SUFFIX)
            except OSError as e:
                self._warn(f"Cannot delete stale registration {key}{STALE_SUFFIX}: {e}")
        if renamed:
            self._step("remove-stale-registrations")

    # ── Transaction ─────────────────────────────────────────────

    def install(self) -> None:
        """Install the package.

        Raises:
            DeployError: Package checks, msiexec's raw exit code, or
                INSTALLATION_FAILED if no product is registered afterwards.
        """
        path = self.verify_package()
        with self.held_open(path):
            self._transaction(install=True, target=str(path))
        if find_installed_product(self._system) is None:
            raise DeployError(
                ExitCode.INSTALLATION_FAILED,
                "msiexec reported success but the product is not registered",
            )
        self._step("install")

    def uninstall(self, record: InstalledProductRecord) -> None:
        """Remove the installed product by its uninstall identifier.

        Raises:
            DeployError: msiexec's raw exit code, or UNINSTALLATION_FAILED
                if the product is still registered afterwards.
        """
        self._transaction(install=False, target=record.uninstall_id)
        if find_installed_product(self._system) is not None:
            raise DeployError(
                ExitCode.UNINSTALLATION_FAILED,
                "msiexec reported success but the product is still registered",
            )
        self._step("uninstall")

    def _transaction(self, *, install: bool, target: str) -> None:
        log_file = None
        if not self._ctx.no_msi_log:
            log_file = self._ctx.log_dir / f"{self._ctx.log_base}.log"
            rotate_log(log_file)

        args = build_msi_arguments(
            install=install,
            target=target,
            log_file=log_file,
            ui=self._ctx.ui,
            passive=self._ctx.passive,
        )
        verb = "Installation" if install else "Uninstallation"
        try:
            self._runner.run(MSIEXEC, args, error_message=f"{verb} of {target} failed")
        finally:
            if log_file is not None and log_file.exists() and self._outcome is not None:
                self._outcome.artifact(log_file)

    # ── helpers ─────────────────────────────────────────────────

    def _step(self, name: str) -> None:
        if self._outcome is not None:
            self._outcome.step(name)

    def _warn(self, message: str) -> None:
        logger.warning("%s", message)
        if self._outcome is not None:
            self._outcome.warn(message)
