"""
Tests for the trace session manager and the elevation bridge it uses.
"""

import pytest

from mdeinstall.adapters.mock import FakeSystem
from mdeinstall.core.context import RunOutcome
from mdeinstall.core.models.signal import DeployError
from mdeinstall.core.models.trace import TraceState
from mdeinstall.core.services.deploy.data.constants import (
    REPORTING_KEY,
    TRACING_LEVEL_VALUE,
    TRACING_LEVEL_VERBOSE,
)
from mdeinstall.core.services.deploy.data.providers import TRACE_PROVIDERS
from mdeinstall.core.services.deploy.execution.elevation import (
    BridgeError,
    ElevationBridge,
)
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner
from mdeinstall.core.services.deploy.execution.trace_session import (
    TraceSessionManager,
    render_provider_file,
    trace_session,
)


def _manager(system, ctx, outcome=None) -> TraceSessionManager:
    runner = ProcessRunner(system, ctx.temp_dir)
    bridge = ElevationBridge(system, runner, ctx.settings, on_warning=outcome.warn if outcome else None)
    return TraceSessionManager(ctx, system, runner, bridge, outcome)


# ── Provider file ────────────────────────────────────────────────────


class TestProviderFile:
    def test_one_line_per_provider(self):
        lines = render_provider_file().splitlines()
        assert len(lines) == len(TRACE_PROVIDERS) + 1
        assert lines[1].startswith("{" + TRACE_PROVIDERS[0].guid + "} 0xFFFFFFFF 0xFF")


# ── Open / close ─────────────────────────────────────────────────────


class TestOpenClose:
    def test_open_then_close_is_symmetric(self, ctx):
        system = FakeSystem()
        outcome = RunOutcome()
        manager = _manager(system, ctx, outcome)

        handle = manager.open()
        assert handle is not None
        assert manager.state is TraceState.OPEN
        assert handle.provider_file.exists()
        assert system.read_registry_value(REPORTING_KEY, TRACING_LEVEL_VALUE) == TRACING_LEVEL_VERBOSE

        manager.close()
        assert manager.state is TraceState.CLOSED
        assert system.tasks == {}
        assert system.trace_sessions == set()
        assert not handle.provider_file.exists()
        assert not handle.buffer_file.exists()
        assert [p.name for p in ctx.log_dir.iterdir()] == [handle.log_file.name]
        assert handle.log_file.suffix == ".etl"
        assert system.read_registry_value(REPORTING_KEY, TRACING_LEVEL_VALUE) is None
        assert outcome.artifacts == [str(handle.log_file)]
        assert outcome.warnings == []

    def test_close_is_idempotent(self, ctx):
        system = FakeSystem()
        manager = _manager(system, ctx)
        manager.open()
        manager.close()
        manager.close()
        assert len(system.calls_to("logman.exe")) == 2

    def test_double_open_rejected(self, ctx):
        manager = _manager(FakeSystem(), ctx)
        manager.open()
        with pytest.raises(DeployError):
            manager.open()
        manager.close()

    def test_previous_log_rotated(self, ctx):
        system = FakeSystem()
        manager = _manager(system, ctx)
        log = ctx.log_dir / f"{ctx.log_base}.etl"
        log.write_bytes(b"old")
        (ctx.log_dir / f"{ctx.log_base}.etl.prev").write_bytes(b"older")
        manager.open()
        manager.close()
        assert (ctx.log_dir / f"{ctx.log_base}.etl.prev").read_bytes() == b"old"
        assert log.read_bytes() == b"ETL"

    def test_logman_failure_degrades_to_no_trace(self, ctx):
        system = FakeSystem()
        system.on_process("logman.exe", lambda args: 5)
        outcome = RunOutcome()
        manager = _manager(system, ctx, outcome)
        assert manager.open() is None
        assert manager.state is TraceState.CLOSED
        assert len(outcome.warnings) == 1
        assert list(ctx.temp_dir.iterdir()) == []
        manager.close()
        assert len(system.calls_to("logman.exe")) == 1


# ── Elevation bridge ─────────────────────────────────────────────────


class TestElevation:
    def test_protected_value_goes_through_system_task(self, ctx):
        system = FakeSystem()
        system.protect(REPORTING_KEY)
        manager = _manager(system, ctx)

        handle = manager.open()
        assert handle.elevated
        assert system.read_registry_value(REPORTING_KEY, TRACING_LEVEL_VALUE) == TRACING_LEVEL_VERBOSE
        assert system.tasks == {}

        manager.close()
        assert system.read_registry_value(REPORTING_KEY, TRACING_LEVEL_VALUE) is None
        assert system.tasks == {}
        verbs = [c.args[0] for c in system.calls_to("schtasks.exe")]
        assert verbs == ["/Create", "/Run", "/Delete", "/Create", "/Run", "/Delete"]

    def test_task_deleted_when_poll_times_out(self, ctx):
        system = FakeSystem()
        system.protect(REPORTING_KEY)
        system.on_process("schtasks.exe", _schtasks_that_never_runs(system))
        runner = ProcessRunner(system, ctx.temp_dir)
        warnings = []
        bridge = ElevationBridge(system, runner, ctx.settings, on_warning=warnings.append)

        with pytest.raises(BridgeError):
            bridge.set_value(REPORTING_KEY, TRACING_LEVEL_VALUE, 1)
        assert system.tasks == {}
        assert warnings == []

    def test_bridge_failure_keeps_trace_without_verbosity(self, ctx):
        system = FakeSystem()
        system.protect(REPORTING_KEY)
        system.on_process("schtasks.exe", lambda args: 1)
        outcome = RunOutcome()
        manager = _manager(system, ctx, outcome)

        handle = manager.open()
        assert handle is not None
        assert not handle.verbosity_set
        manager.close()
        assert any("verbosity" in w for w in outcome.warnings)
        assert (ctx.log_dir / f"{ctx.log_base}.etl").exists()


def _schtasks_that_never_runs(system: FakeSystem):
    """Create/Delete behave; Run succeeds but the task never writes."""

    def handler(args):
        name = args[args.index("/TN") + 1]
        if args[0] == "/Create":
            system.tasks[name] = args[args.index("/TR") + 1]
        elif args[0] == "/Delete":
            system.tasks.pop(name, None)
        return 0

    return handler


# ── Scoped release ───────────────────────────────────────────────────


class TestScopedRelease:
    def test_crash_inside_scope_still_closes(self, ctx):
        system = FakeSystem()
        manager = _manager(system, ctx)
        with pytest.raises(RuntimeError):
            with trace_session(manager) as handle:
                assert handle is not None
                raise RuntimeError("simulated crash")
        assert manager.state is TraceState.CLOSED
        assert system.trace_sessions == set()
        assert (ctx.log_dir / f"{ctx.log_base}.etl").exists()

    def test_disabled_scope_does_nothing(self, ctx):
        system = FakeSystem()
        with trace_session(_manager(system, ctx), enabled=False) as handle:
            assert handle is None
        assert system.call_log == []

    def test_registry_error_after_start_degrades_to_warning(self, ctx, monkeypatch):
        system = FakeSystem()

        def marked_for_deletion(key, name, value):
            raise OSError(1018, "Illegal operation attempted on a registry key marked for deletion")

        monkeypatch.setattr(system, "write_registry_value", marked_for_deletion)
        outcome = RunOutcome()
        manager = _manager(system, ctx, outcome)

        with trace_session(manager) as handle:
            assert handle is not None
            assert not handle.verbosity_set
        assert manager.state is TraceState.CLOSED
        assert system.trace_sessions == set()
        assert list(ctx.temp_dir.glob("*.temp")) == []
        assert any("1018" in w for w in outcome.warnings)
        assert system.calls_to("schtasks.exe") == []

    def test_unexpected_error_after_start_stops_session(self, ctx, monkeypatch):
        system = FakeSystem()

        def malformed_key(key, name, value):
            raise ValueError(f"Unsupported registry hive in {key}")

        monkeypatch.setattr(system, "write_registry_value", malformed_key)
        manager = _manager(system, ctx)

        with pytest.raises(ValueError):
            with trace_session(manager):
                pass
        assert manager.state is TraceState.CLOSED
        assert system.trace_sessions == set()
        assert [c.args[0] for c in system.calls_to("logman.exe")] == ["create", "stop"]
        assert list(ctx.temp_dir.iterdir()) == []
        manager.open()
        assert manager.state is TraceState.OPEN
        manager.close()
