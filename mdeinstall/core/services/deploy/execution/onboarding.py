"""
L4 Execution — Onboarding and offboarding script invocation.

Scripts produced by the management portal are batch files that ask
for confirmation; they run under ``cmd.exe /c`` with "Y" on stdin.

    offboard  → fatal on failure; the onboarding flag must clear
                within the bounded poll (OFFBOARDING_FAILED otherwise)
    onboard   → best-effort; failures become warnings because the
                package transaction has already succeeded
"""

from __future__ import annotations

import logging
from pathlib import Path

from mdeinstall.core.context import RunContext, RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.system import OnboardingState, RunResult
from mdeinstall.core.services.deploy.data.constants import CMD
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.execution.polling import wait_until
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


class OnboardingCoordinator:
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

    def check_gate(self) -> bool:
        """Shared precondition of both actions.

        Returns:
            True if offboarding must run before the package transaction.

        Raises:
            DeployError: NOT_OFFBOARDED if the host is onboarded (or in
                transition) and no offboarding script was supplied.
        """
        state = self._prober.get_onboarding_state()
        if state is OnboardingState.NOT_ONBOARDED:
            return False
        if self._ctx.offboarding_script is None:
            raise DeployError(
                ExitCode.NOT_OFFBOARDED,
                f"The host is {state.value.replace('_', ' ')}; offboard it first "
                "or supply an offboarding script",
            )
        logger.info("Host is %s; offboarding will run first", state.value)
        return True

    def offboard(self) -> None:
        """Run the offboarding script and wait for the flag to clear.

        Raises:
            DeployError: OFFBOARDING_FAILED.
        """
        script = self._ctx.offboarding_script
        if script is None:
            raise DeployError(ExitCode.UNEXPECTED_STATE, "No offboarding script to run")

        result = self._run_script(script)
        if not result.ok:
            raise DeployError(
                ExitCode.OFFBOARDING_FAILED,
                f"Offboarding script {script} exited with code {result.exit_code}",
            )

        settings = self._ctx.settings
        cleared = wait_until(
            self._prober.system,
            lambda: self._prober.get_onboarding_state() is OnboardingState.NOT_ONBOARDED,
            interval=settings.onboarding_poll_interval,
            timeout=settings.onboarding_poll_timeout,
        )
        if not cleared:
            raise DeployError(
                ExitCode.OFFBOARDING_FAILED,
                f"Onboarding flag did not clear within {settings.onboarding_poll_timeout:g}s "
                "after offboarding",
            )
        logger.info("Host offboarded")
        if self._outcome is not None:
            self._outcome.step("offboard")

    def onboard(self) -> bool:
        """Run the onboarding script.  Never raises for script failures.

        Returns:
            True if the script succeeded and the host reports onboarded.
        """
        script = self._ctx.onboarding_script
        if script is None:
            return False

        try:
            result = self._run_script(script)
        except DeployError as e:
            self._warn(f"Onboarding script {script} could not run: {e}")
            return False
        if not result.ok:
            self._warn(f"Onboarding script {script} exited with code {result.exit_code}")
            return False

        settings = self._ctx.settings
        onboarded = wait_until(
            self._prober.system,
            lambda: self._prober.get_onboarding_state() is OnboardingState.ONBOARDED,
            interval=settings.onboarding_poll_interval,
            timeout=settings.onboarding_poll_timeout,
        )
        if not onboarded:
            self._warn(
                f"Host did not report onboarded within {settings.onboarding_poll_timeout:g}s"
            )
            return False
        logger.info("Host onboarded")
        if self._outcome is not None:
            self._outcome.step("onboard")
        return True

    def _run_script(self, script: Path) -> RunResult:
        return self._runner.run(
            CMD,
            ["/c", str(script)],
            cwd=script.parent,
            pass_through=True,
            stdin_text="Y\n",
        )

    def _warn(self, message: str) -> None:
        logger.warning("%s", message)
        if self._outcome is not None:
            self._outcome.warn(message)
