"""
Tests for the settings loader.
"""

import textwrap
from pathlib import Path

import pytest

from mdeinstall.core.config.loader import (
    ConfigError,
    DeploySettings,
    find_settings_file,
    load_settings,
)


class TestLoadSettings:
    def test_defaults_without_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings()
        assert settings == DeploySettings()
        assert settings.onboarding_poll_interval == 0.1
        assert settings.onboarding_poll_timeout == 30.0

    def test_explicit_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml")

    def test_loads_values(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text(textwrap.dedent("""\
            msi_name: custom.msi
            onboarding_poll_timeout: 60
            hotfix_urls:
              KB2999226: https://mirror.example/kb2999226.msu
            updater:
              minimum_version: 4.18.2300.1
        """))
        settings = load_settings(path)
        assert settings.msi_name == "custom.msi"
        assert settings.onboarding_poll_timeout == 60
        assert settings.hotfix_urls["KB2999226"].startswith("https://mirror")
        assert settings.updater.minimum_version == "4.18.2300.1"
        assert settings.updater.file_name == "UpdatePlatform.exe"

    def test_package_dir_defaults_to_file_dir(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text("log_dir: logs\n")
        settings = load_settings(path)
        assert settings.package_dir == tmp_path.resolve()
        assert settings.log_dir == tmp_path.resolve() / "logs"

    def test_empty_file_means_defaults(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text("")
        assert load_settings(path).msi_name == "md4ws.msi"

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text("msi_name: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    def test_unknown_key_rejected(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text("msi_nmae: typo.msi\n")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(path)

    def test_zero_poll_interval_rejected(self, tmp_path: Path):
        path = tmp_path / "mdeinstall.yml"
        path.write_text("onboarding_poll_interval: 0\n")
        with pytest.raises(ConfigError):
            load_settings(path)

    @pytest.mark.parametrize("field", ["onboarding_marker", "offboarding_marker"])
    def test_malformed_marker_pattern_rejected(self, tmp_path: Path, field):
        path = tmp_path / "mdeinstall.yml"
        path.write_text(f'{field}: "("\n')
        with pytest.raises(ConfigError, match=field):
            load_settings(path)


class TestFindSettingsFile:
    def test_walks_up(self, tmp_path: Path):
        (tmp_path / "mdeinstall.yml").write_text("")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_settings_file(nested) == (tmp_path / "mdeinstall.yml").resolve()
