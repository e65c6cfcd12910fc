"""
L1 Domain — msiexec command-line construction (pure).
"""

from __future__ import annotations

from pathlib import Path


def build_msi_arguments(
    *,
    install: bool,
    target: str,
    log_file: Path | None = None,
    ui: bool = False,
    passive: bool = False,
) -> list[str]:
    """Build the msiexec argument list for one transaction.

    Args:
        install: True for ``/i <package>``, False for ``/x <product id>``.
        target: Package path (install) or ``{GUID}`` product identifier (uninstall).
        log_file: Full-verbose log destination; None disables MSI logging.
        ui: Show the installer UI instead of running quiet.
        passive: Put the protection engine in passive mode.

    Returns::

        ["/i", "C:\\pkg\\md4ws.msi", "/l*v", "C:\\pkg\\install-HOST-10.0.14393.0.log", "/quiet"]
    """
    args = ["/i" if install else "/x", target]
    if log_file is not None:
        args += ["/l*v", str(log_file)]
    if not ui:
        args.append("/quiet")
    if passive:
        args.append("FORCEPASSIVEMODE=1")
    return args
