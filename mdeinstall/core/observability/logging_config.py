"""
Logging configuration — console setup and the per-run forensic log.

``setup_logging`` runs once at process start (main.py).  The console
stays quiet by default:

    CLI flag  >  MDEI_LOG_LEVEL env var  >  WARNING

An extra file can be requested with --log-file / MDEI_LOG_FILE
(level from MDEI_LOG_FILE_LEVEL).

Independently of the console level, every run keeps its own forensic
log next to the MSI and trace logs: ``RunLogCapture`` records the run
at DEBUG in the file format below, so each process invocation lands
there with timestamp, thread id and call site.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# ── Formats ─────────────────────────────────────────────────────

_FORENSIC_FORMAT = (
    "%(asctime)s.%(msecs)03d %(levelname)-5s [%(thread)d] "
    "%(module)s.%(funcName)s:%(lineno)d │ %(message)s"
)
_FORENSIC_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Console format by threshold: quiet runs print bare messages
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s [%(thread)d] %(module)s:%(lineno)d │ %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(levelname)-5s %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)


def forensic_formatter() -> logging.Formatter:
    return logging.Formatter(_FORENSIC_FORMAT, datefmt=_FORENSIC_DATEFMT)


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler and the optional --log-file handler.

    Args:
        level: Console level name.
        log_file: Extra log file for the whole process.
        log_file_level: Level for that file (default: ``level``).
    """
    console_level = _parse_level(level)
    fmt, datefmt = next(
        ((f, d) for limit, f, d in _CONSOLE_FORMATS if console_level <= limit),
        _CONSOLE_FORMATS[-1][1:],
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    lowest = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(forensic_formatter())
        root.addHandler(handler)
        lowest = min(lowest, file_level)

    root.setLevel(lowest)
    logging.raiseExceptions = False


class RunLogCapture:
    """Records one run at DEBUG into its own log file.

    Records are buffered from ``start()`` until ``attach()`` names the
    file (the name depends on probed host facts), then written there
    directly.  ``stop()`` detaches everything and restores the root
    level; a capture that was never attached is discarded.
    """

    def __init__(self) -> None:
        self._buffer = _BufferHandler()
        self._file: logging.FileHandler | None = None
        self._saved_level: int | None = None

    @property
    def path(self) -> Path | None:
        return Path(self._file.baseFilename) if self._file else None

    def start(self) -> None:
        root = logging.getLogger()
        self._saved_level = root.level
        root.setLevel(logging.DEBUG)
        root.addHandler(self._buffer)

    def attach(self, path: Path) -> None:
        """Open ``path`` and replay the buffered records into it.

        Raises:
            OSError: If the file cannot be opened.
        """
        if self._file is not None:
            return
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(forensic_formatter())
        root = logging.getLogger()
        root.removeHandler(self._buffer)
        for record in self._buffer.drain():
            handler.handle(record)
        root.addHandler(handler)
        self._file = handler

    def stop(self) -> None:
        root = logging.getLogger()
        root.removeHandler(self._buffer)
        self._buffer.drain()
        if self._file is not None:
            root.removeHandler(self._file)
            self._file.close()
        if self._saved_level is not None:
            root.setLevel(self._saved_level)
            self._saved_level = None


class _BufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self._records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self._records.append(record)

    def drain(self) -> list[logging.LogRecord]:
        records, self._records = self._records, []
        return records


def flush_logging() -> None:
    """Flush every handler on the root logger."""
    for handler in logging.getLogger().handlers:
        try:
            handler.flush()
        except (OSError, ValueError):
            pass


def _parse_level(level: str | None) -> int:
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
