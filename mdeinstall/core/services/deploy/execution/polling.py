"""
L4 Execution — Bounded polling.

The engine's only form of waiting: re-check a condition at a fixed
interval until it holds or the bound expires.  Time comes from the
system facade so tests run on a virtual clock.
"""

from __future__ import annotations

from collections.abc import Callable

from mdeinstall.adapters.base import SystemFacade


def wait_until(
    system: SystemFacade,
    condition: Callable[[], bool],
    *,
    interval: float,
    timeout: float,
) -> bool:
    """Poll ``condition`` until it is true or ``timeout`` seconds pass.

    The condition is always evaluated at least once, and once more
    after the deadline is reached.

    Returns:
        True if the condition held within the bound, else False.
    """
    deadline = system.monotonic() + timeout
    while True:
        if condition():
            return True
        if system.monotonic() >= deadline:
            return False
        system.sleep(interval)
