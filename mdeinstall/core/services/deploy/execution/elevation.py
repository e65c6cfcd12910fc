"""
L4 Execution — Elevation bridge for single registry writes.

Some values (the engine's trace verbosity) are writable only from the
SYSTEM context, even for administrators.  The bridge first tries a
direct write; if the token is refused, it provisions a transient,
highest-privilege, one-shot scheduled task that runs ``reg.exe`` as
SYSTEM, runs it, polls the registry until the change is visible, and
always deletes the task.  It is a bridge for one write, not
scheduling infrastructure.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.config.loader import DeploySettings
from mdeinstall.core.models.signal import DeployError
from mdeinstall.core.services.deploy.data.constants import SCHTASKS
from mdeinstall.core.services.deploy.execution.polling import wait_until
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)

TASK_PREFIX = "mdeinstall-"


class BridgeError(RuntimeError):
    """The write could not be performed, directly or through the bridge."""


class ElevationBridge:
    def __init__(
        self,
        system: SystemFacade,
        runner: ProcessRunner,
        settings: DeploySettings,
        on_warning: Callable[[str], None] | None = None,
    ):
        self._system = system
        self._on_warning = on_warning
        self._runner = runner
        self._interval = settings.elevation_poll_interval
        self._timeout = settings.elevation_poll_timeout

    def set_value(self, key: str, name: str, value: int) -> bool:
        """Write a DWORD value.

        Returns:
            True if the write needed the bridge, False if it was direct.

        Raises:
            BridgeError: If neither path succeeded.
        """
        try:
            self._system.write_registry_value(key, name, value)
            return False
        except PermissionError:
            logger.info("Direct write of %s\\%s refused; using SYSTEM task", key, name)
        except OSError as e:
            raise BridgeError(f"Cannot write {key}\\{name}: {e}") from e

        command = f'reg.exe add "{key}" /v {name} /t REG_DWORD /d {value} /f'
        self._run_as_system(
            command,
            lambda: self._system.read_registry_value(key, name) == value,
        )
        return True

    def delete_value(self, key: str, name: str) -> bool:
        """Delete a value; same contract as ``set_value``."""
        try:
            self._system.delete_registry_value(key, name)
            return False
        except PermissionError:
            logger.info("Direct delete of %s\\%s refused; using SYSTEM task", key, name)
        except OSError as e:
            raise BridgeError(f"Cannot delete {key}\\{name}: {e}") from e

        command = f'reg.exe delete "{key}" /v {name} /f'
        self._run_as_system(
            command,
            lambda: self._system.read_registry_value(key, name) is None,
        )
        return True

    def _run_as_system(self, command: str, done: Callable[[], bool]) -> None:
        task = f"{TASK_PREFIX}{uuid.uuid4().hex[:8]}"
        created = False
        try:
            result = self._runner.run(
                SCHTASKS,
                ["/Create", "/F", "/TN", task, "/RU", "SYSTEM", "/RL", "HIGHEST",
                 "/SC", "ONCE", "/ST", "00:00", "/TR", command],
                pass_through=True,
            )
            if not result.ok:
                raise BridgeError(f"Cannot create task {task} (exit {result.exit_code})")
            created = True

            result = self._runner.run(SCHTASKS, ["/Run", "/TN", task], pass_through=True)
            if not result.ok:
                raise BridgeError(f"Cannot start task {task} (exit {result.exit_code})")

            if not wait_until(self._system, done, interval=self._interval, timeout=self._timeout):
                raise BridgeError(f"Task {task} did not complete within {self._timeout}s")
            logger.debug("Task %s completed", task)
        except DeployError as e:
            raise BridgeError(str(e)) from e
        finally:
            if created:
                self._delete_task(task)

    def _delete_task(self, task: str) -> None:
        try:
            result = self._runner.run(SCHTASKS, ["/Delete", "/TN", task, "/F"], pass_through=True)
        except DeployError as e:
            self._warn(f"Cannot delete scheduled task {task}: {e}")
            return
        if not result.ok:
            self._warn(f"Cannot delete scheduled task {task} (exit {result.exit_code})")

    def _warn(self, message: str) -> None:
        logger.warning("%s", message)
        if self._on_warning is not None:
            self._on_warning(message)
