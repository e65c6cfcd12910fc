"""
Tests for the protection-platform update gate.
"""

import pytest

from mdeinstall.adapters.mock import FakeSystem
from mdeinstall.core.context import RunOutcome
from mdeinstall.core.models.signal import DeployError, ExitCode
from mdeinstall.core.models.system import OSVersion
from mdeinstall.core.services.deploy.data.constants import ENGINE_FILE
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber
from mdeinstall.core.services.deploy.execution.platform_update import PlatformUpdater
from mdeinstall.core.services.deploy.execution.process_runner import ProcessRunner
from tests.hosts import ENGINE_PATH

BUNDLED = "4.18.2302.7"
NEW_ENGINE = OSVersion(4, 18, 2302, 7)
UPDATER_INFO = {
    "version": OSVersion(4, 18, 2302, 7),
    "product_name": "Microsoft Malware Protection",
    "internal_name": "UpdatePlatform.exe",
}


def _updater(system, ctx, outcome=None) -> PlatformUpdater:
    return PlatformUpdater(ctx, EnvironmentProber(system), ProcessRunner(system, ctx.temp_dir), outcome)


def _engine_advances(system: FakeSystem, version: OSVersion = NEW_ENGINE):
    def handler(args):
        system.add_file(ENGINE_PATH, version=version)
        return 0

    return handler


@pytest.fixture
def behind(host_2016, ctx) -> FakeSystem:
    """Running engine older than the one bundled in the package."""
    host_2016.set_msi_file_version(ctx.msi_path, ENGINE_FILE, BUNDLED)
    host_2016.add_download(ctx.settings.updater.url, **UPDATER_INFO)
    host_2016.on_process("updateplatform.exe", _engine_advances(host_2016))
    return host_2016


def _updater_calls(system):
    return [c for c in system.call_log if c.tool.endswith("updateplatform.exe")]


class TestNeedsUpdate:
    def test_current_engine(self, host_2016, ctx):
        assert _updater(host_2016, ctx).ensure_current() is False
        assert host_2016.call_log == []

    def test_no_running_engine(self, ctx):
        system = FakeSystem()
        system.add_file(ctx.msi_path)
        system.set_msi_file_version(ctx.msi_path, ENGINE_FILE, BUNDLED)
        assert _updater(system, ctx).ensure_current() is False

    def test_package_without_engine(self, host_2016, ctx):
        host_2016.set_msi_file_version(ctx.msi_path, ENGINE_FILE, "")
        assert _updater(host_2016, ctx).ensure_current() is False


class TestUpdate:
    def test_downloads_verifies_and_runs(self, behind, ctx):
        outcome = RunOutcome()
        assert _updater(behind, ctx, outcome).ensure_current() is True
        assert behind.download_log == [ctx.settings.updater.url]
        assert len(_updater_calls(behind)) == 1
        assert list(ctx.temp_dir.iterdir()) == []
        assert "platform-update" in outcome.steps

    def test_prefers_updater_next_to_package(self, behind, ctx):
        local = ctx.package_dir / "UpdatePlatform.exe"
        behind.add_file(local, **UPDATER_INFO)
        _updater(behind, ctx).ensure_current()
        assert behind.download_log == []
        assert _updater_calls(behind)[0].executable == str(local)

    def test_unsigned_updater(self, behind, ctx):
        behind.add_download(ctx.settings.updater.url, signature="NotSigned", **UPDATER_INFO)
        with pytest.raises(DeployError) as exc:
            _updater(behind, ctx).ensure_current()
        assert exc.value.code == ExitCode.CORRUPTED_FILE
        assert _updater_calls(behind) == []
        assert list(ctx.temp_dir.iterdir()) == []

    def test_substituted_updater(self, behind, ctx):
        info = dict(UPDATER_INFO, internal_name="evil.exe")
        behind.add_download(ctx.settings.updater.url, **info)
        with pytest.raises(DeployError) as exc:
            _updater(behind, ctx).ensure_current()
        assert exc.value.code == ExitCode.CORRUPTED_FILE
        assert _updater_calls(behind) == []

    def test_updater_below_minimum(self, behind, ctx):
        info = dict(UPDATER_INFO, version=OSVersion(4, 18, 2001, 10))
        behind.add_download(ctx.settings.updater.url, **info)
        with pytest.raises(DeployError) as exc:
            _updater(behind, ctx).ensure_current()
        assert exc.value.code == ExitCode.INSUFFICIENT_REQUIREMENTS

    def test_engine_did_not_advance(self, behind, ctx):
        behind.on_process("updateplatform.exe", lambda args: 0)
        with pytest.raises(DeployError) as exc:
            _updater(behind, ctx).ensure_current()
        assert exc.value.code == ExitCode.INSUFFICIENT_REQUIREMENTS
        assert list(ctx.temp_dir.iterdir()) == []

    def test_engine_advanced_but_still_behind_bundled(self, behind, ctx):
        outcome = RunOutcome()
        behind.on_process("updateplatform.exe", _engine_advances(behind, OSVersion(4, 18, 2207, 8)))
        with pytest.raises(DeployError) as exc:
            _updater(behind, ctx, outcome).ensure_current()
        assert exc.value.code == ExitCode.INSUFFICIENT_REQUIREMENTS
        assert "4.18.2302.7" in exc.value.signal.message
        assert "platform-update" not in outcome.steps

    def test_updater_failure_passes_raw_code(self, behind, ctx):
        behind.on_process("updateplatform.exe", lambda args: 0x80070643)
        with pytest.raises(DeployError) as exc:
            _updater(behind, ctx).ensure_current()
        assert exc.value.code == 0x80070643

    def test_download_failure(self, host_2016, ctx):
        host_2016.set_msi_file_version(ctx.msi_path, ENGINE_FILE, BUNDLED)
        with pytest.raises(DeployError) as exc:
            _updater(host_2016, ctx).ensure_current()
        assert exc.value.code == ExitCode.NO_INTERNET_CONNECTIVITY
