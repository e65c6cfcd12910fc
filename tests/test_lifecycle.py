"""
End-to-end tests for the lifecycle controller against simulated hosts.
"""

import json
import logging
import threading

import pytest

from mdeinstall.adapters.mock import FakeSystem
from mdeinstall.core.context import DeployAction
from mdeinstall.core.models.signal import ExitCode
from mdeinstall.core.models.system import OSVersion
from mdeinstall.core.persistence.ledger import LEDGER_FILE
from mdeinstall.core.services.deploy import LifecycleController
from mdeinstall.core.services.deploy.data.constants import (
    REPORTING_KEY,
    TRACING_LEVEL_VALUE,
)
from mdeinstall.core.services.deploy.data.hotfixes import HOTFIXES
from mdeinstall.core.services.deploy.domain.platform import PlatformFamily
from tests.hosts import OS_2012R2, TDH, UCRT, onboarding_flips, prepare_2012r2


def _mutations(system: FakeSystem) -> list[str]:
    """Tools that change the host (everything except tracing)."""
    return [c.tool for c in system.call_log if c.tool not in ("logman.exe", "schtasks.exe")]


# ── Scenario A: clean install on a legacy host ───────────────────────


class TestScenarioInstall:
    def test_clean_install_2012r2(self, ctx):
        system = FakeSystem(os_version=OS_2012R2)
        system.add_file(UCRT, version=OSVersion(10, 0, 10240, 16384))
        system.add_file(ctx.msi_path)
        kb_tdh = HOTFIXES[PlatformFamily.SERVER_2012_R2][1]
        system.add_download(kb_tdh.url, b"MSU")

        outcome = LifecycleController(ctx, system).run()

        assert outcome.exit_code == 0, outcome.signal
        assert system.calls_to("wusa.exe")
        assert len(system.calls_to("msiexec.exe")) == 1
        log = ctx.log_dir / "install-FAKEHOST-6.3.9600.0.log"
        etl = ctx.log_dir / "install-FAKEHOST-6.3.9600.0.etl"
        assert log.exists()
        assert etl.exists()
        run_log = ctx.log_dir / "install-FAKEHOST-6.3.9600.0.run.log"
        assert set(outcome.artifacts) == {str(log), str(etl), str(run_log)}
        assert system.tasks == {}
        assert system.trace_sessions == set()
        assert system.read_registry_value(REPORTING_KEY, TRACING_LEVEL_VALUE) is None
        assert list(ctx.temp_dir.iterdir()) == []

    def test_install_with_onboarding(self, host_2016, make_ctx, onboarding_script):
        host_2016.on_process("cmd.exe", onboarding_flips(host_2016, to=2))
        ctx = make_ctx(onboarding_script=onboarding_script)
        outcome = LifecycleController(ctx, host_2016).run()
        assert outcome.ok
        assert outcome.steps[-1] == "onboard"
        assert _mutations(host_2016) == ["msiexec.exe", "cmd.exe"]

    def test_onboarding_failure_does_not_fail_install(self, host_2016, make_ctx, onboarding_script):
        host_2016.on_process("cmd.exe", lambda args: 1)
        outcome = LifecycleController(make_ctx(onboarding_script=onboarding_script), host_2016).run()
        assert outcome.ok
        assert outcome.warnings

    def test_upgrade_offboards_first(self, host_2016, make_ctx, offboarding_script):
        host_2016.register_product("10.8040.14393.1000")
        host_2016.set_onboarding_state(2)
        host_2016.on_process("cmd.exe", onboarding_flips(host_2016, to=0))
        outcome = LifecycleController(make_ctx(offboarding_script=offboarding_script), host_2016).run()
        assert outcome.ok, outcome.signal
        assert _mutations(host_2016) == ["cmd.exe", "msiexec.exe"]

    def test_no_etl(self, host_2016, make_ctx):
        outcome = LifecycleController(make_ctx(no_etl=True), host_2016).run()
        assert outcome.ok
        assert host_2016.calls_to("logman.exe") == []


# ── Scenario B: uninstall of an onboarded host ───────────────────────


class TestScenarioUninstall:
    def test_onboarded_without_offboarding_script(self, make_ctx):
        system = FakeSystem()
        system.register_product()
        system.set_onboarding_state(2)
        outcome = LifecycleController(make_ctx(action=DeployAction.UNINSTALL), system).run()
        assert outcome.exit_code == 35
        assert system.call_log == []

    def test_uninstall_with_offboarding(self, make_ctx, offboarding_script):
        system = FakeSystem()
        system.register_product()
        system.set_onboarding_state(2)
        system.on_process("cmd.exe", onboarding_flips(system, to=0))
        ctx = make_ctx(action=DeployAction.UNINSTALL, offboarding_script=offboarding_script)
        outcome = LifecycleController(ctx, system).run()
        assert outcome.ok, outcome.signal
        assert _mutations(system) == ["cmd.exe", "msiexec.exe"]
        assert (ctx.log_dir / "uninstall-FAKEHOST-10.0.14393.4651.log").exists()

    def test_offboarding_never_completes(self, make_ctx, offboarding_script):
        system = FakeSystem()
        system.register_product()
        system.set_onboarding_state(2)
        ctx = make_ctx(action=DeployAction.UNINSTALL, offboarding_script=offboarding_script)
        outcome = LifecycleController(ctx, system).run()
        assert outcome.exit_code == ExitCode.OFFBOARDING_FAILED
        assert system.calls_to("msiexec.exe") == []
        assert system.trace_sessions == set()

    def test_already_uninstalled(self, make_ctx):
        outcome = LifecycleController(make_ctx(action=DeployAction.UNINSTALL), FakeSystem()).run()
        assert outcome.exit_code == ExitCode.ALREADY_UNINSTALLED

    def test_remove_workspace(self, make_ctx):
        system = FakeSystem()
        system.register_product()
        ctx = make_ctx(action=DeployAction.UNINSTALL, workspace_id="0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0")
        outcome = LifecycleController(ctx, system).run()
        assert outcome.ok
        assert _mutations(system) == ["powershell.exe", "msiexec.exe"]
        assert "remove-workspace" in outcome.steps

    def test_workspace_removal_failure_is_a_warning(self, make_ctx):
        system = FakeSystem()
        system.register_product()
        system.on_process("powershell.exe", lambda args: 1)
        ctx = make_ctx(action=DeployAction.UNINSTALL, workspace_id="0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0")
        outcome = LifecycleController(ctx, system).run()
        assert outcome.ok
        assert outcome.warnings

    def test_invalid_workspace_id(self, make_ctx):
        system = FakeSystem()
        system.register_product()
        outcome = LifecycleController(make_ctx(action=DeployAction.UNINSTALL, workspace_id="nope"), system).run()
        assert outcome.exit_code == ExitCode.INVALID_PARAMETER
        assert system.call_log == []


# ── Scenario C: corrupted package ────────────────────────────────────


class TestScenarioCorruptedPackage:
    def test_bad_signature(self, ctx):
        system = prepare_2012r2(FakeSystem(os_version=OS_2012R2), ctx, signature="HashMismatch")
        outcome = LifecycleController(ctx, system).run()
        assert outcome.exit_code == 15
        assert system.calls_to("msiexec.exe") == []
        assert system.call_log == []

    def test_missing_package(self, ctx):
        system = FakeSystem(os_version=OS_2012R2)
        system.add_file(UCRT, version=OSVersion(10, 0, 10240, 16384))
        system.add_file(TDH, version=OSVersion(6, 3, 9600, 17958))
        outcome = LifecycleController(ctx, system).run()
        assert outcome.exit_code == ExitCode.MSI_NOT_FOUND


# ── Preconditions ────────────────────────────────────────────────────


class TestPreconditions:
    def test_not_administrator(self, ctx):
        system = FakeSystem(administrator=False)
        system.add_file(ctx.msi_path)
        outcome = LifecycleController(ctx, system).run()
        assert outcome.exit_code == ExitCode.INSUFFICIENT_PRIVILEGES

    def test_client_edition(self, ctx):
        outcome = LifecycleController(ctx, FakeSystem(installation_type="Client")).run()
        assert outcome.exit_code == ExitCode.UNSUPPORTED_DISTRO

    @pytest.mark.parametrize("version", [OSVersion(6, 1, 7601, 0), OSVersion(10, 0, 17763, 0)])
    def test_unsupported_version(self, ctx, version):
        outcome = LifecycleController(ctx, FakeSystem(os_version=version)).run()
        assert outcome.exit_code == ExitCode.UNSUPPORTED_VERSION

    def test_script_checked_before_host_detection(self, make_ctx, tmp_path):
        system = FakeSystem(os_version=None)
        outcome = LifecycleController(make_ctx(onboarding_script=tmp_path / "missing.cmd"), system).run()
        assert outcome.exit_code == ExitCode.ONBOARDING_NOT_FOUND

    def test_log_dir_not_writable(self, host_2016, make_ctx, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        outcome = LifecycleController(make_ctx(log_dir=blocker / "logs"), host_2016).run()
        assert outcome.exit_code == ExitCode.DIRECTORY_NOT_WRITABLE

    def test_reboot_pending_before_any_msi(self, ctx):
        system = prepare_2012r2(FakeSystem(os_version=OS_2012R2), ctx)
        system.add_service("WinDefend", state="stopped", image_path=r"C:\old\MsMpEng.exe")
        outcome = LifecycleController(ctx, system).run()
        assert outcome.exit_code == ExitCode.PENDING_REBOOT
        assert system.calls_to("msiexec.exe") == []


# ── Faults and the ledger ────────────────────────────────────────────


class TestFaults:
    def test_crash_during_transaction_releases_trace(self, host_2016, ctx):
        def crash(args):
            raise RuntimeError("simulated crash")

        host_2016.on_process("msiexec.exe", crash)
        outcome = LifecycleController(ctx, host_2016).run()
        assert outcome.exit_code == ExitCode.INTERNAL
        assert "simulated crash" in outcome.signal.message
        assert host_2016.trace_sessions == set()
        assert host_2016.tasks == {}
        assert list(ctx.temp_dir.iterdir()) == []

    def test_msi_failure_passes_raw_code(self, host_2016, ctx):
        host_2016.on_process("msiexec.exe", lambda args: 1603)
        outcome = LifecycleController(ctx, host_2016).run()
        assert outcome.exit_code == 1603
        assert host_2016.trace_sessions == set()

    def test_ledger_records_each_run(self, host_2016, ctx):
        LifecycleController(ctx, host_2016).run()
        LifecycleController(ctx.model_copy(update={"action": DeployAction.UNINSTALL}), host_2016).run()
        lines = (ctx.log_dir / LEDGER_FILE).read_text().splitlines()
        entries = [json.loads(line) for line in lines]
        assert [e["action"] for e in entries] == ["install", "uninstall"]
        assert [e["exit_code"] for e in entries] == [0, 0]
        assert entries[0]["host"] == "FAKEHOST"

    def test_ledger_can_be_disabled(self, host_2016, ctx):
        LifecycleController(ctx, host_2016, record_ledger=False).run()
        assert not (ctx.log_dir / LEDGER_FILE).exists()


# ── Run log ──────────────────────────────────────────────────────────


class TestRunLog:
    def test_process_invocations_recorded_with_thread_and_call_site(self, host_2016, ctx):
        outcome = LifecycleController(ctx, host_2016).run()
        run_log = ctx.log_dir / "install-FAKEHOST-10.0.14393.4651.run.log"
        assert str(run_log) in outcome.artifacts
        text = run_log.read_text(encoding="utf-8")
        lines = [line for line in text.splitlines() if "Run " in line and "msiexec.exe" in line]
        assert lines
        assert f"[{threading.get_ident()}]" in lines[0]
        assert "package_installer._transaction:" in lines[0]
        assert "msiexec.exe → exit 0" in text

    def test_records_before_host_detection_are_kept(self, host_2016, ctx):
        LifecycleController(ctx, host_2016).run()
        text = (ctx.log_dir / "install-FAKEHOST-10.0.14393.4651.run.log").read_text(encoding="utf-8")
        assert text.index("install started") < text.index("Host FAKEHOST")

    def test_previous_run_log_rotated(self, host_2016, ctx):
        LifecycleController(ctx, host_2016).run()
        LifecycleController(ctx, host_2016).run()
        assert (ctx.log_dir / "install-FAKEHOST-10.0.14393.4651.run.log.prev").exists()

    def test_early_failure_still_logged(self, make_ctx):
        ctx = make_ctx(action=DeployAction.UNINSTALL, workspace_id="nope")
        outcome = LifecycleController(ctx, FakeSystem()).run()
        run_log = ctx.log_dir / "uninstall-localhost-unknown.run.log"
        assert run_log.exists()
        assert "INVALID_PARAMETER" in run_log.read_text(encoding="utf-8")
        assert str(run_log) in outcome.artifacts

    def test_root_logger_restored(self, host_2016, ctx):
        root = logging.getLogger()
        level, handlers = root.level, list(root.handlers)
        LifecycleController(ctx, host_2016).run()
        assert root.level == level
        assert root.handlers == handlers
