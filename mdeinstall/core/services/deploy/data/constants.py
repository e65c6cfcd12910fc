"""
L0 Data — registry paths, service names and product patterns.

Pure data. No logic. No imports beyond stdlib.
"""

from __future__ import annotations

import re

# ── Services ────────────────────────────────────────────────────

PROTECTION_SERVICE = "WinDefend"
SENSOR_SERVICE = "Sense"
SERVICES_KEY = r"HKLM\SYSTEM\CurrentControlSet\Services"

# ── Onboarding flag ─────────────────────────────────────────────

ONBOARDING_STATUS_KEY = r"HKLM\SOFTWARE\Microsoft\Windows Advanced Threat Protection\Status"
ONBOARDING_STATUS_VALUE = "OnboardingState"

# ── Trace verbosity (written only through the elevation bridge) ─

REPORTING_KEY = r"HKLM\SOFTWARE\Microsoft\Windows Defender\Reporting"
TRACING_LEVEL_VALUE = "WppTracingLevel"
TRACING_LEVEL_VERBOSE = 0x1F

# ── OS identity ─────────────────────────────────────────────────

CURRENT_VERSION_KEY = r"HKLM\SOFTWARE\Microsoft\Windows NT\CurrentVersion"
INSTALLATION_TYPE_VALUE = "InstallationType"

# Version resource trusted for the OS version (the public API lies on 2012 R2)
KERNEL_IMAGE = r"%SystemRoot%\System32\ntoskrnl.exe"

# ── Installed-product catalog ───────────────────────────────────

UNINSTALL_KEY = r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
INSTALLER_PRODUCTS_KEY = r"HKLM\SOFTWARE\Classes\Installer\Products"

PRODUCT_NAME_RE = re.compile(r"^Microsoft Defender for (Endpoint|Windows Server)", re.IGNORECASE)
GUID_KEY_RE = re.compile(
    r"^\{[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}\}$",
    re.IGNORECASE,
)
# Installer\Products keys are packed GUIDs: 32 hex digits, no punctuation
PACKED_GUID_KEY_RE = re.compile(r"^[0-9A-F]{32}$", re.IGNORECASE)

# Suffix given to installer-database entries moved aside before install
STALE_SUFFIX = ".mdei-stale"

# ── Protection engine ───────────────────────────────────────────

ENGINE_FILE = "MsMpEng.exe"

# ── Conflicting product (2012 R2) ───────────────────────────────

LEGACY_AV_SETUP = r"%ProgramFiles%\Microsoft Security Client\Setup.exe"
LEGACY_AV_UNINSTALL_ARGS = ("/x", "/s")

# ── In-box feature (2016) ───────────────────────────────────────

DEFENDER_FEATURE = "Windows-Defender"

# ── Well-known process exit codes ───────────────────────────────

ERROR_SUCCESS_REBOOT_REQUIRED = 3010
ERROR_SERVICE_MARKED_FOR_DELETE = 1072
WU_S_ALREADY_INSTALLED = 0x00240006
WU_S_REBOOT_REQUIRED = 0x00240005
WU_E_NOT_APPLICABLE = 0x80240017

# ── External tools ──────────────────────────────────────────────

MSIEXEC = r"%SystemRoot%\System32\msiexec.exe"
WUSA = r"%SystemRoot%\System32\wusa.exe"
LOGMAN = r"%SystemRoot%\System32\logman.exe"
SCHTASKS = r"%SystemRoot%\System32\schtasks.exe"
SC = r"%SystemRoot%\System32\sc.exe"
DISM = r"%SystemRoot%\System32\dism.exe"
CMD = r"%SystemRoot%\System32\cmd.exe"
POWERSHELL = r"%SystemRoot%\System32\WindowsPowerShell\v1.0\powershell.exe"
