"""
L5 Orchestration — Lifecycle controller.

Sequences one install or uninstall run:

    1. validate parameters and scripts
    2. probe the host (OS version, privilege, distro, log directory)
    3. onboarding gate (shared by both actions)
    4. install: package checks → hotfixes → OS preparation → platform update
       uninstall: resolve the installed product
    5. ┌ trace session (optional)
       │   offboarding script (if the gate asked for it)
       │   workspace removal (uninstall, if requested)
       │   msiexec transaction
       │   onboarding script (install, best-effort)
       └ trace session closed on every exit path

Every precondition failure is raised before anything on the host
changes.  The controller is the one place a DeployError is caught: it
becomes the RunOutcome's signal, and ``run()`` returns the outcome to
the caller instead of terminating the process.
"""

from __future__ import annotations

import logging

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.context import DeployAction, RunContext, RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode, ExitSignal
from mdeinstall.core.models.system import InstalledProductRecord
from mdeinstall.core.observability.logging_config import RunLogCapture
from mdeinstall.core.persistence.ledger import RunLedger, RunRecord
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.detection.product import find_installed_product
from mdeinstall.core.services.deploy.detection.scripts import ScriptValidator
from mdeinstall.core.services.deploy.domain.platform import PlatformFamily, platform_family
from mdeinstall.core.services.deploy.execution.agent_workspace import (
    check_workspace_id,
    remove_workspace,
)
from mdeinstall.core.services.deploy.execution.artifacts import ensure_writable, rotate_log
from mdeinstall.core.services.deploy.execution.elevation import ElevationBridge
from mdeinstall.core.services.deploy.execution.onboarding import OnboardingCoordinator
from mdeinstall.core.services.deploy.execution.package_installer import PackageInstaller
from mdeinstall.core.services.deploy.execution.platform_update import PlatformUpdater
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner
from mdeinstall.core.services.deploy.execution.remediation import DependencyRemediator
from mdeinstall.core.services.deploy.execution.trace_session import (
    TraceSessionManager,
    trace_session,
)

logger = logging.getLogger(__name__)


class LifecycleController:
    """Runs one action against one host."""

    def __init__(self, ctx: RunContext, system: SystemFacade, *, record_ledger: bool = True):
        self._ctx = ctx
        self._system = system
        self._prober = EnvironmentProber(system)
        self._record_ledger = record_ledger
        self._run_log: RunLogCapture | None = None

    @property
    def context(self) -> RunContext:
        """The run context, including probed host facts once ``run()`` got that far."""
        return self._ctx

    def run(self) -> RunOutcome:
        """Execute the action.  Never raises.

        Returns:
            The RunOutcome; ``outcome.signal`` is set on failure.
        """
        outcome = RunOutcome(action=self._ctx.action)
        self._run_log = RunLogCapture()
        self._run_log.start()
        try:
            self._execute(outcome)
            if self._ctx.log_dir.is_dir():
                self._keep_run_log(outcome)
        finally:
            self._run_log.stop()

        if self._record_ledger:
            RunLedger(self._ctx.log_dir).append(RunRecord.from_outcome(outcome))
        return outcome

    def _execute(self, outcome: RunOutcome) -> None:
        logger.info("── %s started (backend %s) ──", self._ctx.action.value, self._system.name)
        try:
            if self._ctx.action is DeployAction.INSTALL:
                self._install(outcome)
            else:
                self._uninstall(outcome)
        except DeployError as e:
            logger.error("%s", e.signal)
            outcome.finish(e.signal)
        except Exception as e:
            logger.exception("Unexpected failure during %s", self._ctx.action.value)
            outcome.finish(ExitSignal(
                message=f"Unexpected error: {type(e).__name__}: {e}",
                code=int(ExitCode.INTERNAL),
            ))
        else:
            outcome.finish()
            logger.info("── %s succeeded ──", self._ctx.action.value)

    def _keep_run_log(self, outcome: RunOutcome) -> None:
        """Write the run's DEBUG log to ``<log_base>.run.log`` (best-effort)."""
        if self._run_log is None or self._run_log.path is not None:
            return
        path = self._ctx.log_dir / f"{self._ctx.log_base}.run.log"
        try:
            rotate_log(path)
            self._run_log.attach(path)
        except OSError as e:
            logger.warning("Cannot write run log %s: %s", path, e)
            outcome.warn(f"Cannot write run log {path}: {e}")
            return
        outcome.artifact(path)

    # ── Shared preconditions ────────────────────────────────────

    def _preflight(self, outcome: RunOutcome) -> PlatformFamily:
        ctx = self._ctx
        if ctx.workspace_id is not None:
            check_workspace_id(ctx.workspace_id)

        ScriptValidator(self._prober, ctx.settings).validate_all(
            ctx.onboarding_script, ctx.offboarding_script,
        )
        if ctx.onboarding_script or ctx.offboarding_script:
            outcome.step("validate-scripts")

        version = self._prober.get_os_version()
        host = self._prober.host_name()
        self._ctx = ctx = ctx.with_probe(host=host, os_version=version)
        outcome.host = host
        outcome.os_version = str(version)

        if not self._prober.is_administrator():
            raise DeployError(
                ExitCode.INSUFFICIENT_PRIVILEGES,
                f"{ctx.action.value.capitalize()} requires administrative rights",
            )
        if self._prober.installation_type().lower() == "client":
            raise DeployError(
                ExitCode.UNSUPPORTED_DISTRO,
                "This package installs on Windows Server editions only",
            )
        family = platform_family(version)
        if family is None:
            raise DeployError(
                ExitCode.UNSUPPORTED_VERSION,
                f"OS version {version} is not supported by this package",
            )
        ensure_writable(ctx.log_dir)
        self._keep_run_log(outcome)
        outcome.step("probe")
        logger.info("Host %s: %s (%s family)", host, version, family.value)
        return family

    # ── Actions ─────────────────────────────────────────────────

    def _install(self, outcome: RunOutcome) -> None:
        family = self._preflight(outcome)
        runner, onboarding = self._components(outcome)
        must_offboard = onboarding.check_gate()

        installer = PackageInstaller(self._ctx, self._prober, runner, outcome)
        installer.verify_package()

        DependencyRemediator(self._ctx, self._prober, runner, outcome).ensure(family)
        installer.prepare(family)
        if family is PlatformFamily.SERVER_2016:
            PlatformUpdater(self._ctx, self._prober, runner, outcome).ensure_current()
        record = find_installed_product(self._system)

        with self._trace(runner, outcome):
            if must_offboard:
                onboarding.offboard()
            with installer.stale_registrations_aside(family, record):
                installer.install()
            onboarding.onboard()

    def _uninstall(self, outcome: RunOutcome) -> None:
        self._preflight(outcome)
        runner, onboarding = self._components(outcome)
        must_offboard = onboarding.check_gate()

        record: InstalledProductRecord | None = find_installed_product(self._system)
        if record is None:
            raise DeployError(ExitCode.ALREADY_UNINSTALLED, "The product is not installed")

        installer = PackageInstaller(self._ctx, self._prober, runner, outcome)
        with self._trace(runner, outcome):
            if must_offboard:
                onboarding.offboard()
            if self._ctx.workspace_id:
                remove_workspace(runner, self._ctx.workspace_id, outcome)
            installer.uninstall(record)

    # ── helpers ─────────────────────────────────────────────────

    def _components(self, outcome: RunOutcome) -> tuple[ProcessRunner, OnboardingCoordinator]:
        runner = ProcessRunner(self._system, self._ctx.temp_dir)
        return runner, OnboardingCoordinator(self._ctx, self._prober, runner, outcome)

    def _trace(self, runner: ProcessRunner, outcome: RunOutcome):
        bridge = ElevationBridge(self._system, runner, self._ctx.settings, on_warning=outcome.warn)
        manager = TraceSessionManager(self._ctx, self._system, runner, bridge, outcome)
        return trace_session(manager, enabled=not self._ctx.no_etl)
