"""
Settings loader — reads mdeinstall.yml into DeploySettings.

Every tunable the engine uses (package names, download locations,
poll bounds, script markers) lives on ``DeploySettings``.  The file
is optional: with no file, the defaults below apply.  When present it
is parsed with ``yaml.safe_load`` and validated with Pydantic.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# Default settings filename
SETTINGS_FILE = "mdeinstall.yml"


class ConfigError(Exception):
    """Raised when the settings file is unreadable or invalid."""


class UpdaterSettings(BaseModel):
    """Where to get the platform updater and what it must look like."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = "https://go.microsoft.com/fwlink/?linkid=870379&arch=x64"
    file_name: str = "UpdatePlatform.exe"
    dev_file_name: str = "UpdatePlatformD.exe"
    product_name: str = "Microsoft Malware Protection"
    internal_name: str = "UpdatePlatform.exe"
    minimum_version: str = "4.18.2106.107"


class DeploySettings(BaseModel):
    """All engine tunables.  Immutable once loaded."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # ── Package ──────────────────────────────────────────────────
    msi_name: str = "md4ws.msi"
    dev_msi_name: str = "md4ws-devmode.msi"
    package_dir: Path | None = None     # None = directory of the settings file, else cwd
    log_dir: Path | None = None         # None = package_dir

    # ── Bounded polls (seconds) ──────────────────────────────────
    onboarding_poll_interval: float = Field(default=0.1, gt=0)
    onboarding_poll_timeout: float = Field(default=30.0, gt=0)
    elevation_poll_interval: float = Field(default=0.5, gt=0)
    elevation_poll_timeout: float = Field(default=10.0, gt=0)

    # ── Script markers (regex, case-insensitive) ─────────────────
    onboarding_marker: str = r"OnboardingInfo"
    offboarding_marker: str = r"696C1FA1-4030-4FA4-8713-FAF9B2EA7C0A"

    # ── Downloads ────────────────────────────────────────────────
    download_timeout: int = Field(default=300, gt=0)
    hotfix_urls: dict[str, str] = Field(default_factory=dict)   # KB id → URL override
    updater: UpdaterSettings = Field(default_factory=UpdaterSettings)

    # Reference shown when a dependency cannot be applied automatically
    manual_steps_url: str = (
        "https://learn.microsoft.com/microsoft-365/security/defender-endpoint/"
        "configure-server-endpoints"
    )

    @field_validator("onboarding_marker", "offboarding_marker")
    @classmethod
    def _marker_compiles(cls, value: str) -> str:
        try:
            re.compile(value, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"not a valid regular expression: {e}") from e
        return value


def find_settings_file(start_dir: Path | None = None) -> Path | None:
    """Search for mdeinstall.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to mdeinstall.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SETTINGS_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(path: Path | None = None) -> DeploySettings:
    """Load and validate deployment settings.

    Args:
        path: Explicit settings file.  If None, searches upward from
            the cwd and falls back to defaults when nothing is found.

    Returns:
        Validated DeploySettings.  Relative ``package_dir``/``log_dir``
        are resolved against the settings file's directory.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    explicit = path is not None
    if path is None:
        path = find_settings_file()

    if path is None:
        logger.debug("No %s found — using defaults", SETTINGS_FILE)
        return DeploySettings()

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Settings file not found: {path}")
        return DeploySettings()

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = DeploySettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    base = path.parent.resolve()
    updates: dict[str, Path] = {}
    package_dir = settings.package_dir or base
    if not package_dir.is_absolute():
        package_dir = base / package_dir
    updates["package_dir"] = package_dir
    if settings.log_dir is not None and not settings.log_dir.is_absolute():
        updates["log_dir"] = base / settings.log_dir

    logger.info("Loaded settings from %s", path)
    return settings.model_copy(update=updates)
