"""Adapters — the host-system boundary.

Public re-exports for convenient access.  ``WindowsSystem`` is
imported from ``mdeinstall.adapters.windows`` directly.
"""

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.adapters.mock import FakeSystem

__all__ = [
    "FakeSystem",
    "SystemFacade",
]
