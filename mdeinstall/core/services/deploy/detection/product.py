"""
L3 Detection — installed product, stale registrations, running engine.
"""

from __future__ import annotations

import logging

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.system import InstalledProductRecord, OSVersion
from mdeinstall.core.services.deploy.data.constants import (
    ENGINE_FILE,
    GUID_KEY_RE,
    INSTALLER_PRODUCTS_KEY,
    PACKED_GUID_KEY_RE,
    PRODUCT_NAME_RE,
    PROTECTION_SERVICE,
    SERVICES_KEY,
    UNINSTALL_KEY,
)
from mdeinstall.core.services.deploy.detection.environment import EnvironmentProber

logger = logging.getLogger(__name__)


def find_installed_product(system: SystemFacade) -> InstalledProductRecord | None:
    """Scan the uninstall hive for a registered install of the package.

    Only ``{GUID}``-shaped keys whose DisplayName matches the product
    pattern count.  Returns None when the product is not installed.
    """
    for key_name in system.list_registry_subkeys(UNINSTALL_KEY):
        if not GUID_KEY_RE.match(key_name):
            continue
        key = f"{UNINSTALL_KEY}\\{key_name}"
        display_name = system.read_registry_value(key, "DisplayName")
        if not display_name or not PRODUCT_NAME_RE.match(str(display_name)):
            continue
        version = system.read_registry_value(key, "DisplayVersion")
        record = InstalledProductRecord(
            uninstall_id=key_name,
            display_version=str(version or ""),
            display_name=str(display_name),
        )
        logger.info("Installed product: %s %s (%s)",
                    record.display_name, record.display_version, record.uninstall_id)
        return record
    logger.info("Product is not installed")
    return None


def find_stale_registrations(system: SystemFacade) -> list[str]:
    """Installer-database product entries for the package.

    Called only when the uninstall hive has no record: any match here
    is then leftover metadata from a defective uninstall.

    Returns:
        Full registry key paths under Installer\\Products.
    """
    stale: list[str] = []
    for key_name in system.list_registry_subkeys(INSTALLER_PRODUCTS_KEY):
        if not PACKED_GUID_KEY_RE.match(key_name):
            continue
        key = f"{INSTALLER_PRODUCTS_KEY}\\{key_name}"
        product_name = system.read_registry_value(key, "ProductName")
        if product_name and PRODUCT_NAME_RE.match(str(product_name)):
            stale.append(key)
    if stale:
        logger.info("Stale installer registrations: %s", ", ".join(stale))
    return stale


def engine_image_path(prober: EnvironmentProber) -> str | None:
    """Executable path of the running protection engine, from its service ImagePath."""
    raw = prober.get_registry_value(f"{SERVICES_KEY}\\{PROTECTION_SERVICE}", "ImagePath")
    if not raw:
        return None
    text = str(raw).strip()
    if text.startswith('"'):
        return text[1:].split('"', 1)[0]
    lowered = text.lower()
    idx = lowered.find(ENGINE_FILE.lower())
    return text[: idx + len(ENGINE_FILE)] if idx >= 0 else text.split(" ", 1)[0]


def running_engine_version(prober: EnvironmentProber) -> OSVersion | None:
    """File version of the protection engine the service currently points at."""
    path = engine_image_path(prober)
    if path is None:
        return None
    version = prober.get_file_version(path)
    logger.info("Running engine %s: %s", path, version)
    return version
