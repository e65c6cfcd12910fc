"""
L1 Domain — classification of installer exit codes (pure).
"""

from __future__ import annotations

from enum import Enum

from mdeinstall.core.services.deploy.data.constants import (
    ERROR_SUCCESS_REBOOT_REQUIRED,
    WU_E_NOT_APPLICABLE,
    WU_S_ALREADY_INSTALLED,
    WU_S_REBOOT_REQUIRED,
)


class UpdateOutcome(str, Enum):
    SUCCESS = "success"
    NOT_APPLICABLE = "not_applicable"
    REBOOT_REQUIRED = "reboot_required"
    FAILED = "failed"


def unsigned(code: int) -> int:
    """Normalize a signed 32-bit HRESULT to its unsigned form."""
    return code & 0xFFFFFFFF


def classify_update_exit(code: int) -> UpdateOutcome:
    """Classify a wusa.exe exit code.

    Examples::

        classify_update_exit(0)            → SUCCESS
        classify_update_exit(0x240006)     → SUCCESS          (already installed)
        classify_update_exit(-2145124329)  → NOT_APPLICABLE   (0x80240017)
        classify_update_exit(3010)         → REBOOT_REQUIRED
    """
    value = unsigned(code)
    if value in (0, WU_S_ALREADY_INSTALLED):
        return UpdateOutcome.SUCCESS
    if value == WU_E_NOT_APPLICABLE:
        return UpdateOutcome.NOT_APPLICABLE
    if value in (ERROR_SUCCESS_REBOOT_REQUIRED, WU_S_REBOOT_REQUIRED):
        return UpdateOutcome.REBOOT_REQUIRED
    return UpdateOutcome.FAILED
