"""
Trace session models — the handle shared by open and close.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class TraceState(str, Enum):
    """Lifecycle of an event-trace session."""

    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


class TraceSessionHandle(BaseModel):
    """Everything needed to close a session symmetrically to how it opened."""

    model_config = ConfigDict(frozen=True)

    session_name: str
    provider_file: Path
    buffer_file: Path
    log_file: Path
    verbosity_set: bool = False     # reporting value was written and must be reverted
    elevated: bool = False          # the write went through the elevation bridge
