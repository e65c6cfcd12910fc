"""
L4 Execution — Transient downloads.

A downloaded update package or updater exists only for the scope that
uses it.  Each download gets its own folder under the temp directory so
the file keeps its published name; file and folder are deleted on exit
whatever happened inside.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from mdeinstall.adapters.base import SystemFacade
from mdeinstall.core.models.signal import DeployError, ExitCode

logger = logging.getLogger(__name__)


@contextmanager
def downloaded(
    system: SystemFacade,
    url: str,
    *,
    dest_dir: Path,
    file_name: str,
    timeout: int,
) -> Iterator[Path]:
    """Download ``url`` to ``<dest_dir>/<unique>/<file_name>`` for the duration of the scope.

    Raises:
        DeployError: NO_INTERNET_CONNECTIVITY if the download fails.
    """
    folder = dest_dir / f"mdei-dl-{uuid.uuid4().hex[:8]}"
    folder.mkdir(parents=True)
    path = folder / file_name
    try:
        logger.info("Downloading %s → %s", url, path)
        try:
            system.download(url, path, timeout)
        except OSError as e:
            raise DeployError(
                ExitCode.NO_INTERNET_CONNECTIVITY,
                f"Cannot download {url}: {e}",
            ) from e
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
            folder.rmdir()
        except OSError as e:
            logger.warning("Cannot delete downloaded file %s: %s", path, e)
