"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from mdeinstall.adapters.mock import FakeSystem
from mdeinstall.core.config.loader import DeploySettings
from mdeinstall.core.context import DeployAction, RunContext
from tests.hosts import (
    OFFBOARDING_SCRIPT,
    ONBOARDING_SCRIPT,
    OS_2012R2,
    prepare_2012r2,
    prepare_2016,
)


@pytest.fixture
def settings() -> DeploySettings:
    """Short poll bounds; the fake clock makes waiting instant anyway."""
    return DeploySettings(
        onboarding_poll_interval=0.1,
        onboarding_poll_timeout=1.0,
        elevation_poll_interval=0.1,
        elevation_poll_timeout=1.0,
    )


@pytest.fixture
def make_ctx(tmp_path: Path, settings: DeploySettings) -> Callable[..., RunContext]:
    """Factory for RunContexts rooted in tmp_path (pkg/, logs/, tmp/)."""
    for name in ("pkg", "logs", "tmp"):
        (tmp_path / name).mkdir(exist_ok=True)

    def _make(**overrides) -> RunContext:
        values = {
            "action": DeployAction.INSTALL,
            "settings": settings,
            "package_dir": tmp_path / "pkg",
            "log_dir": tmp_path / "logs",
            "temp_dir": tmp_path / "tmp",
        }
        values.update(overrides)
        return RunContext(**values)

    return _make


@pytest.fixture
def ctx(make_ctx) -> RunContext:
    return make_ctx()


@pytest.fixture
def host_2016(ctx: RunContext) -> FakeSystem:
    return prepare_2016(FakeSystem(), ctx)


@pytest.fixture
def host_2012r2(ctx: RunContext) -> FakeSystem:
    return prepare_2012r2(FakeSystem(os_version=OS_2012R2), ctx)


@pytest.fixture
def onboarding_script(tmp_path: Path) -> Path:
    path = tmp_path / "WindowsDefenderATPOnboardingScript.cmd"
    path.write_text(ONBOARDING_SCRIPT, encoding="utf-8")
    return path


@pytest.fixture
def offboarding_script(tmp_path: Path) -> Path:
    path = tmp_path / "WindowsDefenderATPOffboardingScript.cmd"
    path.write_text(OFFBOARDING_SCRIPT, encoding="utf-8")
    return path
