"""
L4 Execution — Log artifact housekeeping.

Log directory writability probe and ``.prev`` rotation of the
per-run log files.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from mdeinstall.core.models.signal import DeployError, ExitCode

logger = logging.getLogger(__name__)


def ensure_writable(directory: Path) -> None:
    """Create ``directory`` if needed and prove a file can be written there.

    Raises:
        DeployError: DIRECTORY_NOT_WRITABLE.
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=directory, prefix=".mdei-probe-"):
            pass
    except OSError as e:
        raise DeployError(
            ExitCode.DIRECTORY_NOT_WRITABLE,
            f"Log directory {directory} is not writable: {e}",
        ) from e


def rotate_log(path: Path) -> Path | None:
    """Move an existing log to ``<name>.prev``, replacing an older ``.prev``.

    Returns:
        The ``.prev`` path if a rotation happened, else None.
    """
    if not path.exists():
        return None
    prev = path.with_name(path.name + ".prev")
    prev.unlink(missing_ok=True)
    path.rename(prev)
    logger.debug("Rotated %s → %s", path, prev)
    return prev
