"""
L4 Execution — Event-trace session manager.

State machine::

    CLOSED → OPENING → OPEN → CLOSING → CLOSED

Opening writes a provider file from TRACE_PROVIDERS, rotates the
previous ``.etl`` log to ``.prev``, starts a logman session bound to a
temporary buffer file, and raises the engine's trace verbosity through
the elevation bridge.  Closing stops the session, reverts the
verbosity, and moves the buffer to the final log name.

Tracing is diagnostic: a session that cannot start degrades to "no
trace" with a warning instead of failing the run.  Use
``trace_session()`` so that closing runs on every exit path once
opening succeeded.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.context import RunContext, RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.trace import TraceSessionHandle, TraceState
from mdeinstall.core.services.deploy.data.constants import (
    LOGMAN,
    REPORTING_KEY,
    TRACING_LEVEL_VALUE,
    TRACING_LEVEL_VERBOSE,
)
from mdeinstall.core.services.deploy.data.providers import (
    PROVIDER_FILE_HEADER,
    TRACE_PROVIDERS,
)
from mdeinstall.core.services.deploy.execution.artifacts import rotate_log
from mdeinstall.core.services.deploy.execution.elevation import BridgeError, ElevationBridge
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner

logger = logging.getLogger(__name__)


def render_provider_file() -> str:
    """Provider file contents: one ``{GUID} FLAGS LEVEL`` line per provider."""
    lines = [PROVIDER_FILE_HEADER]
    for p in TRACE_PROVIDERS:
        lines.append(f"{{{p.guid}}} 0x{p.flags:X} 0x{p.level:X}")
    return "\n".join(lines) + "\n"


class TraceSessionManager:
    def __init__(
        self,
        ctx: RunContext,
        system: SystemFacade,
        runner: ProcessRunner,
        bridge: ElevationBridge,
        outcome: RunOutcome | None = None,
    ):
        self._ctx = ctx
        self._system = system
        self._runner = runner
        self._bridge = bridge
        self._outcome = outcome
        self._state = TraceState.CLOSED
        self._handle: TraceSessionHandle | None = None

    @property
    def state(self) -> TraceState:
        return self._state

    @property
    def handle(self) -> TraceSessionHandle | None:
        return self._handle

    def open(self) -> TraceSessionHandle | None:
        """Start the session.

        Returns:
            The handle, or None if tracing could not start (warning recorded).

        Raises:
            DeployError: UNEXPECTED_STATE if a session is already open.
        """
        if self._state is not TraceState.CLOSED:
            raise DeployError(
                ExitCode.UNEXPECTED_STATE,
                f"Trace session cannot open from state {self._state.value}",
            )
        self._state = TraceState.OPENING

        token = uuid.uuid4().hex
        provider_file = self._ctx.temp_dir / f"{token}.temp"
        buffer_file = self._ctx.temp_dir / f"{token}.etl"
        log_file = self._ctx.log_dir / f"{self._ctx.log_base}.etl"
        session = self._ctx.log_base

        try:
            provider_file.write_text(render_provider_file(), encoding="ascii")
            rotate_log(log_file)
            result = self._runner.run(
                LOGMAN,
                ["create", "trace", "-n", session, "-pf", str(provider_file),
                 "-ets", "-o", str(buffer_file)],
                pass_through=True,
            )
        except (OSError, DeployError) as e:
            return self._abort_open(provider_file, f"Cannot start trace session: {e}")
        if not result.ok:
            return self._abort_open(
                provider_file,
                f"Cannot start trace session {session} (logman exit {result.exit_code})",
            )
        logger.info("Trace session '%s' started", session)

        verbosity_set = elevated = False
        try:
            elevated = self._bridge.set_value(REPORTING_KEY, TRACING_LEVEL_VALUE, TRACING_LEVEL_VERBOSE)
            verbosity_set = True
        except BridgeError as e:
            self._warn(f"Cannot raise engine trace verbosity: {e}")
        except BaseException:
            self._stop_session(session)
            provider_file.unlink(missing_ok=True)
            buffer_file.unlink(missing_ok=True)
            self._state = TraceState.CLOSED
            raise

        self._handle = TraceSessionHandle(
            session_name=session,
            provider_file=provider_file,
            buffer_file=buffer_file,
            log_file=log_file,
            verbosity_set=verbosity_set,
            elevated=elevated,
        )
        self._state = TraceState.OPEN
        return self._handle

    def close(self) -> None:
        """Stop the session and publish the log.  A no-op unless OPEN."""
        if self._state is not TraceState.OPEN or self._handle is None:
            return
        self._state = TraceState.CLOSING
        handle = self._handle

        try:
            self._stop_session(handle.session_name)

            if handle.verbosity_set:
                try:
                    self._bridge.delete_value(REPORTING_KEY, TRACING_LEVEL_VALUE)
                except BridgeError as e:
                    self._warn(f"Cannot revert engine trace verbosity: {e}")

            if handle.buffer_file.exists():
                try:
                    shutil.move(str(handle.buffer_file), str(handle.log_file))
                    logger.info("Trace log written to %s", handle.log_file)
                    if self._outcome is not None:
                        self._outcome.artifact(handle.log_file)
                except OSError as e:
                    self._warn(f"Cannot move trace buffer to {handle.log_file}: {e}")
            else:
                self._warn(f"Trace buffer {handle.buffer_file} was not produced")
        finally:
            handle.provider_file.unlink(missing_ok=True)
            self._handle = None
            self._state = TraceState.CLOSED

    def _stop_session(self, session: str) -> None:
        try:
            result = self._runner.run(LOGMAN, ["stop", "-n", session, "-ets"], pass_through=True)
        except DeployError as e:
            self._warn(f"Cannot stop trace session: {e}")
            return
        if not result.ok:
            self._warn(f"logman stop exited with {result.exit_code}")

    def _abort_open(self, provider_file, message: str) -> None:
        provider_file.unlink(missing_ok=True)
        self._state = TraceState.CLOSED
        self._warn(message)
        return None

    def _warn(self, message: str) -> None:
        logger.warning("%s", message)
        if self._outcome is not None:
            self._outcome.warn(message)


@contextmanager
def trace_session(manager: TraceSessionManager, enabled: bool = True) -> Iterator[TraceSessionHandle | None]:
    """Scope a trace session: open on entry, close on every exit path."""
    if not enabled:
        yield None
        return
    handle = manager.open()
    try:
        yield handle
    finally:
        manager.close()
