"""
L4 Execution — Process runner.

The SINGLE PLACE where external executables are launched.  Output
streams are redirected to two temporary files, read back, logged line
by line and returned in an immutable RunResult.  The temporary files
are deleted on every exit path.

Exit codes:
    - default: a non-zero exit raises DeployError (the caller's message
      and code, or the raw exit code when the caller gives none);
    - ``pass_through=True``: the RunResult is returned whatever the code,
      for callers that map specific codes (reboot required, not
      applicable, ...) themselves.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from datetime import UTC, datetime
from pathlib import Path

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.system import RunResult

logger = logging.getLogger(__name__)


@contextmanager
def _temp_file(temp_dir: Path, prefix: str) -> Iterator[Path]:
    """Create an empty temp file; delete it when the scope exits."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".txt", dir=temp_dir)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cannot delete temp file %s: %s", path, e)


def _read_lines(path: Path) -> tuple[str, ...]:
    data = path.read_bytes()
    if not data:
        return ()
    text = data.decode("utf-8", errors="replace")
    return tuple(line.rstrip("\r") for line in text.split("\n") if line.strip())


class ProcessRunner:
    """Runs external tools synchronously, one at a time."""

    def __init__(self, system: SystemFacade, temp_dir: Path | None = None):
        self._system = system
        self._temp_dir = temp_dir or Path(tempfile.gettempdir())

    def run(
        self,
        executable: str,
        args: list[str] | tuple[str, ...] = (),
        *,
        cwd: Path | None = None,
        pass_through: bool = False,
        error_message: str | None = None,
        error_code: ExitCode | int | None = None,
        stdin_text: str | None = None,
    ) -> RunResult:
        """Run ``executable`` to completion and return its RunResult.

        Args:
            executable: Path to the tool; environment references are expanded.
            args: Argument list.
            cwd: Working directory (default: inherit).
            pass_through: Return non-zero results instead of raising.
            error_message: Message for the DeployError on non-zero exit.
            error_code: Code for that DeployError (default: the raw exit code).
            stdin_text: Text written to the process's standard input.

        Raises:
            DeployError: On non-zero exit (unless ``pass_through``), or
                INTERNAL if the executable cannot be started.
        """
        exe = self._system.expand_path(executable)
        argv = [str(a) for a in args]
        logger.info("Run %s %s", exe, " ".join(argv), stacklevel=2)

        with ExitStack() as stack:
            out_path = stack.enter_context(_temp_file(self._temp_dir, "mdei-out-"))
            err_path = stack.enter_context(_temp_file(self._temp_dir, "mdei-err-"))

            started = datetime.now(UTC)
            try:
                with out_path.open("wb") as out, err_path.open("wb") as err:
                    code = self._system.spawn(
                        exe,
                        argv,
                        cwd=str(cwd) if cwd else None,
                        stdout=out,
                        stderr=err,
                        stdin_text=stdin_text,
                    )
            except OSError as e:
                logger.error("Cannot start %s: %s", exe, e, stacklevel=2)
                raise DeployError(ExitCode.INTERNAL, f"Cannot start {exe}: {e}") from e
            ended = datetime.now(UTC)

            result = RunResult(
                executable=exe,
                args=tuple(argv),
                exit_code=code,
                started_at=started,
                ended_at=ended,
                stdout=_read_lines(out_path),
                stderr=_read_lines(err_path),
            )

        self._log_result(result)

        if result.exit_code != 0 and not pass_through:
            message = error_message or f"{Path(exe).name} exited with code {result.exit_code}"
            code_out = int(error_code) if error_code is not None else result.exit_code
            raise DeployError(code_out, message)

        return result

    @staticmethod
    def _log_result(result: RunResult) -> None:
        level = logging.DEBUG if result.ok else logging.WARNING
        name = Path(result.executable).name
        for line in result.stdout:
            logger.log(level, "%s │ %s", name, line, stacklevel=3)
        for line in result.stderr:
            logger.log(logging.WARNING, "%s ! %s", name, line, stacklevel=3)
        logger.info(
            "%s %s → exit %d (%dms)",
            "✓" if result.ok else "✗",
            name,
            result.exit_code,
            result.duration_ms,
            stacklevel=3,
        )
